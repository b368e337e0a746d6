"""CRUD operations for the ``pages`` table.

Deleting a page cascades to its elements through the ``ON DELETE CASCADE``
foreign key on ``elements.page_id``.
"""

from __future__ import annotations

import json
import re
import sqlite3
from time import time
from typing import Any, Optional

from openflow.db.models import Page
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import NotFoundError, ValidationError

_SLUG_RE = re.compile(r"^[a-z0-9_-]+$")
MAX_NAME_LENGTH = 255


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_page(row: sqlite3.Row) -> Page:
    return Page(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        slug=row["slug"],
        is_home_page=bool(row["is_home_page"]),
        settings=json.loads(row["settings"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _validate_slug(slug: str) -> str:
    if not slug or len(slug) > MAX_NAME_LENGTH or not _SLUG_RE.match(slug):
        raise ValidationError(
            f"Invalid slug {slug!r}: use lowercase letters, digits, '-' or '_'"
        )
    return slug


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Page name must be 1-{MAX_NAME_LENGTH} characters")
    return name


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_page(
    conn: sqlite3.Connection,
    project_id: int,
    name: str,
    slug: str,
    is_home_page: bool = False,
    settings: Optional[dict[str, Any]] = None,
    *,
    scope: Optional[TransactionScope] = None,
) -> Page:
    """Insert a page under *project_id* and return it.

    Raises:
        NotFoundError: The project does not exist.
        ValidationError: Bad name or slug.
    """
    name = _validate_name(name)
    slug = _validate_slug(slug)
    now = int(time())

    def _insert(scope: TransactionScope) -> int:
        if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
            raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
        cur = conn.execute(
            """
            INSERT INTO pages (project_id, name, slug, is_home_page, settings, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (project_id, name, slug, int(is_home_page), json.dumps(settings or {}), now, now),
        )
        return cur.lastrowid

    page_id = with_transaction(conn, _insert, "create_page", scope=scope)
    return get_page(conn, page_id)  # type: ignore[return-value]


def get_page(conn: sqlite3.Connection, page_id: int) -> Optional[Page]:
    """Fetch a single page.  Returns ``None`` if not found."""
    row = conn.execute("SELECT * FROM pages WHERE id = ?", (page_id,)).fetchone()
    return _row_to_page(row) if row else None


def list_pages(conn: sqlite3.Connection, project_id: int) -> list[Page]:
    """Return a project's pages, home page first."""
    rows = conn.execute(
        "SELECT * FROM pages WHERE project_id = ? ORDER BY is_home_page DESC, id",
        (project_id,),
    ).fetchall()
    return [_row_to_page(r) for r in rows]


def update_page(
    conn: sqlite3.Connection,
    page_id: int,
    *,
    scope: Optional[TransactionScope] = None,
    **kwargs: Any,
) -> Page:
    """Update ``name``, ``slug``, ``is_home_page`` and/or ``settings``."""
    if get_page(conn, page_id) is None:
        raise NotFoundError(f"Page {page_id} not found", page_id=page_id)

    updates: dict[str, Any] = {}
    for key, value in kwargs.items():
        if key == "name":
            updates[key] = _validate_name(value)
        elif key == "slug":
            updates[key] = _validate_slug(value)
        elif key == "is_home_page":
            updates[key] = int(bool(value))
        elif key == "settings":
            updates[key] = json.dumps(value or {})
        else:
            raise ValidationError(f"Cannot update field {key!r}")
    if not updates:
        raise ValidationError("No valid fields provided to update_page()")

    updates["updated_at"] = int(time())
    set_clause = ", ".join(f"{col} = ?" for col in updates)

    def _update(scope: TransactionScope) -> None:
        conn.execute(
            f"UPDATE pages SET {set_clause} WHERE id = ?",  # noqa: S608
            [*updates.values(), page_id],
        )

    with_transaction(conn, _update, "update_page", scope=scope)
    return get_page(conn, page_id)  # type: ignore[return-value]


def delete_page(
    conn: sqlite3.Connection,
    page_id: int,
    *,
    scope: Optional[TransactionScope] = None,
) -> int:
    """Delete a page and its elements.  Returns the number of elements removed."""

    def _delete(scope: TransactionScope) -> int:
        if get_page(conn, page_id) is None:
            raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
        removed = conn.execute(
            "DELETE FROM elements WHERE page_id = ?", (page_id,)
        ).rowcount
        conn.execute("DELETE FROM pages WHERE id = ?", (page_id,))
        return removed

    return with_transaction(conn, _delete, "delete_page", scope=scope)


def get_owner_id(conn: sqlite3.Connection, page_id: int) -> Optional[int]:
    """Return the ``user_id`` owning the page's project, or ``None`` if no such page."""
    row = conn.execute(
        """
        SELECT p.user_id
        FROM   pages AS pg
        JOIN   projects AS p ON p.id = pg.project_id
        WHERE  pg.id = ?
        """,
        (page_id,),
    ).fetchone()
    return row["user_id"] if row else None
