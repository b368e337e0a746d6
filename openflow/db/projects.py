"""Project CRUD plus the whole-project bulk operations.

``duplicate_project`` and ``delete_project`` run inside a retryable
transaction; ``check_integrity`` is read-only and reports structural
corruption without repairing it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import defaultdict, deque
from time import time
from typing import Any, Optional

from openflow.db.models import DeleteProjectResult, DuplicateResult, IntegrityReport, Project
from openflow.db.transaction import (
    TransactionScope,
    with_retryable_transaction,
    with_transaction,
)
from openflow.errors import IntegrityViolation, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        thumbnail=row["thumbnail"],
        settings=json.loads(row["settings"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Project name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Project name exceeds {MAX_NAME_LENGTH} characters")
    return name


def _require_project(conn: sqlite3.Connection, project_id: int) -> Project:
    project = get_project(conn, project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
    return project


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def create_project(
    conn: sqlite3.Connection,
    user_id: int,
    name: str,
    description: Optional[str] = None,
    settings: Optional[dict[str, Any]] = None,
    *,
    scope: Optional[TransactionScope] = None,
) -> Project:
    """Insert a project owned by *user_id* and return it."""
    name = _validate_name(name)
    now = int(time())

    def _insert(scope: TransactionScope) -> int:
        try:
            cur = conn.execute(
                """
                INSERT INTO projects (user_id, name, description, settings, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, description, json.dumps(settings or {}), now, now),
            )
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id) from exc
        return cur.lastrowid

    project_id = with_transaction(conn, _insert, "create_project", scope=scope)
    return get_project(conn, project_id)  # type: ignore[return-value]


def get_project(conn: sqlite3.Connection, project_id: int) -> Optional[Project]:
    """Fetch a single project.  Returns ``None`` if not found."""
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return _row_to_project(row) if row else None


def list_projects(conn: sqlite3.Connection, user_id: Optional[int] = None) -> list[Project]:
    """List projects, most recently updated first, optionally for one owner."""
    if user_id is None:
        rows = conn.execute(
            "SELECT * FROM projects ORDER BY updated_at DESC, id DESC"
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM projects WHERE user_id = ? ORDER BY updated_at DESC, id DESC",
            (user_id,),
        ).fetchall()
    return [_row_to_project(r) for r in rows]


def update_project(
    conn: sqlite3.Connection,
    project_id: int,
    *,
    scope: Optional[TransactionScope] = None,
    **kwargs: Any,
) -> Project:
    """Update ``name``, ``description``, ``thumbnail`` and/or ``settings``.

    Raises:
        NotFoundError: If the project does not exist.
        ValidationError: On an unknown field or when no field is given.
    """
    _require_project(conn, project_id)

    allowed = {"name", "description", "thumbnail", "settings"}
    updates: dict[str, Any] = {}
    for key, value in kwargs.items():
        if key not in allowed:
            raise ValidationError(f"Cannot update field {key!r}")
        if key == "settings":
            updates[key] = json.dumps(value or {})
        elif key == "name":
            updates[key] = _validate_name(value)
        else:
            updates[key] = value
    if not updates:
        raise ValidationError("No valid fields provided to update_project()")

    updates["updated_at"] = int(time())
    set_clause = ", ".join(f"{col} = ?" for col in updates)

    def _update(scope: TransactionScope) -> None:
        conn.execute(
            f"UPDATE projects SET {set_clause} WHERE id = ?",  # noqa: S608
            [*updates.values(), project_id],
        )

    with_transaction(conn, _update, "update_project", scope=scope)
    return get_project(conn, project_id)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------

def duplicate_project(
    conn: sqlite3.Connection,
    project_id: int,
    new_name: str,
    *,
    scope: Optional[TransactionScope] = None,
) -> DuplicateResult:
    """Copy a project, its pages and their element trees under fresh ids.

    Elements are copied breadth-first from the roots of each page, siblings
    in ``(order, id)`` order, so a parent always has its new id before any of
    its children is inserted.  Parent references go through an old-to-new id
    map seeded with ``None -> None``; an original id is never written into
    the copy.

    Raises:
        NotFoundError: The source project does not exist.
        IntegrityViolation: Some elements are unreachable from a root (orphans
            or parent cycles); the whole copy is rolled back.
    """
    new_name = _validate_name(new_name)

    def _duplicate(scope: TransactionScope) -> DuplicateResult:
        source = _require_project(conn, project_id)
        now = int(time())
        new_project_id = conn.execute(
            """
            INSERT INTO projects (user_id, name, description, thumbnail, settings, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.user_id,
                new_name,
                source.description,
                source.thumbnail,
                json.dumps(source.settings),
                now,
                now,
            ),
        ).lastrowid

        pages = conn.execute(
            "SELECT * FROM pages WHERE project_id = ? ORDER BY id", (project_id,)
        ).fetchall()
        elements_count = 0

        for page in pages:
            new_page_id = conn.execute(
                """
                INSERT INTO pages (project_id, name, slug, is_home_page, settings, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    new_project_id,
                    page["name"],
                    page["slug"],
                    page["is_home_page"],
                    page["settings"],
                    now,
                    now,
                ),
            ).lastrowid
            elements_count += _copy_page_elements(conn, page["id"], new_page_id, now)

        logger.info(
            "[Projects] Duplicated project %s -> %s (%d pages, %d elements)",
            project_id,
            new_project_id,
            len(pages),
            elements_count,
        )
        return DuplicateResult(
            project_id=new_project_id,
            pages_count=len(pages),
            elements_count=elements_count,
        )

    return with_retryable_transaction(conn, _duplicate, name="duplicate_project", scope=scope)


def _copy_page_elements(
    conn: sqlite3.Connection,
    source_page_id: int,
    target_page_id: int,
    now: int,
) -> int:
    rows = conn.execute(
        'SELECT * FROM elements WHERE page_id = ? ORDER BY "order", id',
        (source_page_id,),
    ).fetchall()
    known = {row["id"] for row in rows}
    children: dict[Optional[int], list[sqlite3.Row]] = defaultdict(list)
    for row in rows:
        parent = row["parent_id"]
        # Roots are copied first; a dangling parent reference is not a root.
        children[parent if parent is None or parent in known else -1].append(row)

    id_map: dict[Optional[int], Optional[int]] = {None: None}
    queue: deque[Optional[int]] = deque([None])
    while queue:
        old_parent = queue.popleft()
        for row in children.get(old_parent, []):
            new_id = conn.execute(
                """
                INSERT INTO elements (page_id, parent_id, element_type, "order", content,
                                      styles, attributes, responsive_styles, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    target_page_id,
                    id_map[old_parent],
                    row["element_type"],
                    row["order"],
                    row["content"],
                    row["styles"],
                    row["attributes"],
                    row["responsive_styles"],
                    now,
                    now,
                ),
            ).lastrowid
            id_map[row["id"]] = new_id
            queue.append(row["id"])

    copied = len(id_map) - 1
    if copied != len(rows):
        stranded = sorted(known - set(id_map))
        raise IntegrityViolation(
            f"Page {source_page_id} has {len(stranded)} element(s) unreachable from a root",
            page_id=source_page_id,
            element_ids=stranded,
        )
    return copied


def delete_project(
    conn: sqlite3.Connection,
    project_id: int,
    *,
    scope: Optional[TransactionScope] = None,
) -> DeleteProjectResult:
    """Delete every element, page and conversation of a project, then the project.

    Raises:
        NotFoundError: The project does not exist.
    """

    def _delete(scope: TransactionScope) -> DeleteProjectResult:
        _require_project(conn, project_id)
        page_ids = [
            r["id"]
            for r in conn.execute(
                "SELECT id FROM pages WHERE project_id = ?", (project_id,)
            ).fetchall()
        ]
        deleted_elements = 0
        if page_ids:
            marks = ", ".join("?" for _ in page_ids)
            deleted_elements = conn.execute(
                f"DELETE FROM elements WHERE page_id IN ({marks})", page_ids  # noqa: S608
            ).rowcount
        deleted_pages = conn.execute(
            "DELETE FROM pages WHERE project_id = ?", (project_id,)
        ).rowcount
        conn.execute("DELETE FROM ai_conversations WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        logger.info(
            "[Projects] Deleted project %s (%d pages, %d elements)",
            project_id,
            deleted_pages,
            deleted_elements,
        )
        return DeleteProjectResult(
            deleted_pages=deleted_pages, deleted_elements=deleted_elements
        )

    return with_retryable_transaction(conn, _delete, name="delete_project", scope=scope)


def check_integrity(conn: sqlite3.Connection, project_id: int) -> IntegrityReport:
    """Scan every page of a project for orphaned elements and parent cycles.

    An element is orphaned when its ``parent_id`` does not resolve to an
    element of the same page.  Cycle members are listed once each.
    """
    if get_project(conn, project_id) is None:
        return IntegrityReport(
            project_id=project_id,
            project_exists=False,
            issues=[f"Project {project_id} not found"],
        )

    report = IntegrityReport(project_id=project_id, project_exists=True)
    pages = conn.execute(
        "SELECT id FROM pages WHERE project_id = ? ORDER BY id", (project_id,)
    ).fetchall()
    report.pages_count = len(pages)

    for page in pages:
        parents = {
            r["id"]: r["parent_id"]
            for r in conn.execute(
                "SELECT id, parent_id FROM elements WHERE page_id = ?", (page["id"],)
            ).fetchall()
        }
        report.elements_count += len(parents)

        for element_id, parent_id in sorted(parents.items()):
            if parent_id is not None and parent_id not in parents:
                report.orphaned_elements.append((element_id, parent_id))
                report.issues.append(
                    f"Element {element_id} on page {page['id']} references missing parent {parent_id}"
                )

        on_cycle = _find_cycle_members(parents)
        if on_cycle:
            report.cycles.extend(on_cycle)
            report.issues.append(
                f"Page {page['id']} has a parent cycle through elements {on_cycle}"
            )

    if report.issues:
        logger.warning(
            "[Projects] Integrity check for project %s found %d issue(s)",
            project_id,
            len(report.issues),
        )
    return report


def _find_cycle_members(parents: dict[int, Optional[int]]) -> list[int]:
    """Return the ids that sit on a parent cycle, sorted."""
    state: dict[int, int] = {}  # 1 = on current path, 2 = done
    members: set[int] = set()
    for start in parents:
        path: list[int] = []
        node: Optional[int] = start
        while node is not None and node in parents and state.get(node) is None:
            state[node] = 1
            path.append(node)
            node = parents[node]
        if node is not None and state.get(node) == 1:
            members.update(path[path.index(node):])
        for visited in path:
            state[visited] = 2
    return sorted(members)
