"""SQLite connection factory.

Usage::

    from openflow.db.connection import get_connection

    conn = get_connection()
    try:
        conn.execute("SELECT 1")
    finally:
        conn.close()

Connections are opened in autocommit mode (``isolation_level=None``): the
transaction manager in :mod:`openflow.db.transaction` issues ``BEGIN`` /
``SAVEPOINT`` / ``COMMIT`` itself, so store code must never use
``with conn:`` (it would commit an enclosing transaction).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from openflow.config import settings


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Open and configure a SQLite connection.

    Steps performed on every new connection:
    1. Enable ``PRAGMA foreign_keys = ON`` (page and project cascades).
    2. Switch to WAL journal mode for concurrent readers.
    3. Apply ``settings.db_busy_timeout`` so writers wait for locks.

    Args:
        db_path: Override the DB path.  Defaults to ``settings.db_path``.

    Returns:
        A configured :class:`sqlite3.Connection` with ``row_factory`` set to
        :class:`sqlite3.Row` so columns can be accessed by name.
    """
    path = db_path or settings.db_path

    # Create parent directory if needed (no-op for `:memory:`)
    if str(path) != ":memory:":
        settings.ensure_workspace()

    conn = sqlite3.connect(
        str(path),
        timeout=settings.db_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row

    # PRAGMAs
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")

    return conn
