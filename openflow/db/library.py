"""Saved templates and reusable components.

Both tables share one shape: a name plus a ``structure`` JSON array of
element trees (``{"element_type", "content", "styles", "attributes",
"children": [...]}``).  ``kind`` selects the table.
"""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Any, Optional

from openflow.db.elements import create_elements_batch, list_page_elements
from openflow.db.models import Element, ElementSpec, LibraryItem
from openflow.db.pages import get_page
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import NotFoundError, ValidationError

_TABLES = {"template": "templates", "component": "components"}


def _table(kind: str) -> str:
    try:
        return _TABLES[kind]
    except KeyError:
        raise ValidationError(f"Unknown library kind {kind!r}") from None


def _row_to_item(kind: str, row: sqlite3.Row) -> LibraryItem:
    return LibraryItem(
        id=row["id"],
        kind=kind,
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        thumbnail=row["thumbnail"],
        category=row["category"],
        structure=json.loads(row["structure"] or "[]"),
        is_public=bool(row["is_public"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def elements_to_structure(elements: list[Element]) -> list[dict[str, Any]]:
    """Nest a page's flat element list into ``children`` trees, sibling order kept."""
    nodes: dict[int, dict[str, Any]] = {}
    for el in elements:
        nodes[el.id] = {
            "element_type": el.element_type,
            "content": el.content,
            "styles": el.styles,
            "attributes": el.attributes,
            "children": [],
        }
    roots: list[dict[str, Any]] = []
    for el in elements:
        parent = nodes.get(el.parent_id) if el.parent_id is not None else None
        (parent["children"] if parent is not None else roots).append(nodes[el.id])
    return roots


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_item(
    conn: sqlite3.Connection,
    kind: str,
    name: str,
    structure: list[dict[str, Any]],
    user_id: Optional[int] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
    is_public: bool = False,
    *,
    scope: Optional[TransactionScope] = None,
) -> LibraryItem:
    table = _table(kind)
    if not name or not name.strip():
        raise ValidationError("Name is required")
    now = int(time())

    def _insert(scope: TransactionScope) -> int:
        return conn.execute(
            f"""
            INSERT INTO {table} (user_id, name, description, category, structure,
                                 is_public, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,  # noqa: S608
            (
                user_id,
                name.strip(),
                description,
                category,
                json.dumps(structure),
                int(is_public),
                now,
                now,
            ),
        ).lastrowid

    item_id = with_transaction(conn, _insert, f"create_{kind}", scope=scope)
    return get_item(conn, kind, item_id)  # type: ignore[return-value]


def get_item(conn: sqlite3.Connection, kind: str, item_id: int) -> Optional[LibraryItem]:
    row = conn.execute(
        f"SELECT * FROM {_table(kind)} WHERE id = ?", (item_id,)  # noqa: S608
    ).fetchone()
    return _row_to_item(kind, row) if row else None


def list_items(
    conn: sqlite3.Connection,
    kind: str,
    user_id: Optional[int] = None,
    category: Optional[str] = None,
) -> list[LibraryItem]:
    """Public items plus the user's own, optionally filtered by category."""
    clauses = ["(is_public = 1 OR user_id IS ?)"]
    params: list[Any] = [user_id]
    if category is not None:
        clauses.append("category = ?")
        params.append(category)
    rows = conn.execute(
        f"SELECT * FROM {_table(kind)} WHERE {' AND '.join(clauses)} ORDER BY name, id",  # noqa: S608
        params,
    ).fetchall()
    return [_row_to_item(kind, r) for r in rows]


def delete_item(
    conn: sqlite3.Connection,
    kind: str,
    item_id: int,
    *,
    scope: Optional[TransactionScope] = None,
) -> None:
    table = _table(kind)

    def _delete(scope: TransactionScope) -> None:
        if conn.execute(f"DELETE FROM {table} WHERE id = ?", (item_id,)).rowcount == 0:  # noqa: S608
            raise NotFoundError(f"{kind.capitalize()} {item_id} not found")

    with_transaction(conn, _delete, f"delete_{kind}", scope=scope)


def save_page_as_template(
    conn: sqlite3.Connection,
    page_id: int,
    name: str,
    user_id: Optional[int] = None,
    category: Optional[str] = None,
) -> LibraryItem:
    """Snapshot a page's element forest into a new template."""
    if get_page(conn, page_id) is None:
        raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
    structure = elements_to_structure(list_page_elements(conn, page_id))
    return create_item(conn, "template", name, structure, user_id=user_id, category=category)


def apply_structure(
    conn: sqlite3.Connection,
    page_id: int,
    structure: list[dict[str, Any]],
    *,
    scope: Optional[TransactionScope] = None,
) -> list[Element]:
    """Instantiate a template/component structure as new root trees on a page.

    The trees are flattened parents-first and inserted with one
    :func:`~openflow.db.elements.create_elements_batch` call.
    """
    specs: list[ElementSpec] = []
    pending: list[tuple[dict[str, Any], Optional[int], int]] = [
        (node, None, order) for order, node in enumerate(structure)
    ]
    while pending:
        node, parent_index, order = pending.pop(0)
        if not isinstance(node, dict) or "element_type" not in node:
            raise ValidationError("Structure nodes need an 'element_type'")
        specs.append(
            ElementSpec(
                page_id=page_id,
                element_type=node["element_type"],
                parent_index=parent_index,
                order=order,
                content=node.get("content"),
                styles=node.get("styles") or {},
                attributes=node.get("attributes") or {},
            )
        )
        own_index = len(specs) - 1
        pending.extend(
            (child, own_index, child_order)
            for child_order, child in enumerate(node.get("children") or [])
        )
    return create_elements_batch(conn, specs, scope=scope)
