"""Logging configuration for the API server and the CLI."""

from __future__ import annotations

import logging

from openflow.config import settings

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a root handler at *level* (defaults to ``settings.log_level``).

    Safe to call more than once; ``force=True`` replaces earlier handlers so
    the CLI can lower the level after the API module has been imported.
    """
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=_FORMAT,
        force=True,
    )
