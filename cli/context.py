"""Persistent state management for the OpenFlow CLI.

Tracks the local user plus the "active project" and "active page".
Stored in ``<workspace>/cli/context.json``.
"""

from __future__ import annotations

import getpass
import json
import sqlite3
from dataclasses import asdict, dataclass
from functools import wraps
from pathlib import Path
from typing import Callable

import typer

from openflow.config import settings
from openflow.db import get_connection, init_db
from openflow.db.users import create_user, get_user
from openflow.errors import BuilderError

LOCAL_OPEN_ID = "local-cli"


@dataclass
class CliContext:
    user_id: int | None = None
    active_project_id: int | None = None
    active_project_name: str | None = None
    active_page_id: int | None = None
    active_page_name: str | None = None
    conversation_id: int | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, data: str) -> CliContext:
        try:
            raw = json.loads(data)
            return cls(**raw)
        except (json.JSONDecodeError, TypeError):
            return cls()


def _get_context_path() -> Path:
    """Return the path to the context JSON file."""
    return settings.cli_config_dir / "context.json"


def load_context() -> CliContext:
    """Load the CLI context from disk. Returns defaults if missing/corrupt."""
    path = _get_context_path()
    if not path.exists():
        return CliContext()
    try:
        return CliContext.from_json(path.read_text(encoding="utf-8"))
    except OSError:
        return CliContext()


def save_context(ctx: CliContext) -> None:
    """Save the CLI context to disk."""
    settings.cli_config_dir.mkdir(parents=True, exist_ok=True)
    _get_context_path().write_text(ctx.to_json(), encoding="utf-8")


def open_db() -> sqlite3.Connection:
    """Open the workspace database with the schema applied."""
    settings.ensure_workspace()
    conn = get_connection()
    init_db(conn)
    return conn


def ensure_user(conn: sqlite3.Connection, ctx: CliContext) -> int:
    """Return the local CLI user id, creating the user on first use."""
    if ctx.user_id is None or get_user(conn, ctx.user_id) is None:
        user = create_user(conn, LOCAL_OPEN_ID, name=getpass.getuser())
        ctx.user_id = user.id
        save_context(ctx)
    return ctx.user_id


def fail(exc: BuilderError) -> typer.Exit:
    """Print a structured error and return the ``Exit`` to raise."""
    typer.echo(f"❌ [{exc.kind}] {exc.message}", err=True)
    return typer.Exit(code=1)


def require_project(func: Callable) -> Callable:
    """Decorator for CLI commands that require an active project."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        ctx = load_context()
        if not ctx.active_project_id:
            typer.echo("❌ No active project selected.")
            typer.echo("Run 'project new <name>' or 'project switch <id>' first.")
            raise typer.Exit(code=1)
        return func(*args, **kwargs)

    return wrapper


def require_page(func: Callable) -> Callable:
    """Decorator for CLI commands that require an active page."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        ctx = load_context()
        if not ctx.active_page_id:
            typer.echo("❌ No active page selected.")
            typer.echo("Run 'page new <name> <slug>' or 'page switch <id>' first.")
            raise typer.Exit(code=1)
        return func(*args, **kwargs)

    return wrapper
