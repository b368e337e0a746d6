"""CRUD operations for the ``users`` table.

Authentication is handled upstream; the store only needs a stable row to hang
project ownership on.
"""

from __future__ import annotations

import sqlite3
from time import time
from typing import Optional

from openflow.db.models import User
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import ValidationError


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        open_id=row["open_id"],
        name=row["name"],
        email=row["email"],
        role=row["role"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_user(
    conn: sqlite3.Connection,
    open_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: str = "user",
    *,
    scope: Optional[TransactionScope] = None,
) -> User:
    """Insert a user, or refresh name/email if *open_id* already exists."""
    if not open_id:
        raise ValidationError("open_id is required")
    if role not in ("user", "admin"):
        raise ValidationError(f"Unknown role {role!r}")
    now = int(time())

    def _upsert(scope: TransactionScope) -> int:
        conn.execute(
            """
            INSERT INTO users (open_id, name, email, role, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(open_id) DO UPDATE SET
                name = COALESCE(excluded.name, users.name),
                email = COALESCE(excluded.email, users.email),
                updated_at = excluded.updated_at
            """,
            (open_id, name, email, role, now, now),
        )
        return conn.execute(
            "SELECT id FROM users WHERE open_id = ?", (open_id,)
        ).fetchone()["id"]

    user_id = with_transaction(conn, _upsert, "create_user", scope=scope)
    return get_user(conn, user_id)  # type: ignore[return-value]


def get_user(conn: sqlite3.Connection, user_id: int) -> Optional[User]:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


def get_user_by_open_id(conn: sqlite3.Connection, open_id: str) -> Optional[User]:
    row = conn.execute("SELECT * FROM users WHERE open_id = ?", (open_id,)).fetchone()
    return _row_to_user(row) if row else None
