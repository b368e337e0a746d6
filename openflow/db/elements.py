"""Element tree store: CRUD plus depth- and size-bounded bulk operations.

Each page holds a forest of elements linked by ``parent_id``.  The store
keeps two invariants on every write:

* a parent always lives on the same page as its child;
* no element is its own ancestor.

Tree walks load the page's ``(id, parent_id)`` pairs once into an in-memory
adjacency map and run against that snapshot; writes then go out as a few
set-based statements instead of one query per node.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections import defaultdict
from time import time
from typing import Any, Iterable, Optional, Sequence

from openflow.config import settings
from openflow.db.models import Element, ElementSpec
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import (
    BatchSizeExceeded,
    DepthLimitExceeded,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_TYPE_RE = re.compile(r"^[a-z][a-z0-9-]*$")
MAX_CONTENT_LENGTH = 50_000

# Upper bound on ids per DELETE statement (SQLite host-parameter limit).
_DELETE_CHUNK = 500

_UPDATABLE = {
    "content",
    "styles",
    "attributes",
    "responsive_styles",
    "order",
    "element_type",
    "parent_id",
}
_JSON_FIELDS = {"styles", "attributes", "responsive_styles"}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_element(row: sqlite3.Row) -> Element:
    return Element(
        id=row["id"],
        page_id=row["page_id"],
        parent_id=row["parent_id"],
        element_type=row["element_type"],
        order=row["order"],
        content=row["content"],
        styles=json.loads(row["styles"] or "{}"),
        attributes=json.loads(row["attributes"] or "{}"),
        responsive_styles=json.loads(row["responsive_styles"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _validate_type(element_type: str) -> str:
    if not isinstance(element_type, str) or not _TYPE_RE.match(element_type):
        raise ValidationError(f"Invalid element type {element_type!r}")
    return element_type


def _validate_content(content: Optional[str]) -> Optional[str]:
    if content is not None:
        if not isinstance(content, str):
            raise ValidationError("Element content must be a string")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValidationError(f"Element content exceeds {MAX_CONTENT_LENGTH} characters")
    return content


def _validate_map(key: str, value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    return value


def _validate_order(order: Any) -> int:
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError(f"order must be an integer, got {order!r}")
    return order


def _page_exists(conn: sqlite3.Connection, page_id: int) -> bool:
    return conn.execute("SELECT 1 FROM pages WHERE id = ?", (page_id,)).fetchone() is not None


def _load_parents(conn: sqlite3.Connection, page_id: int) -> dict[int, Optional[int]]:
    """Snapshot ``{id: parent_id}`` for every element on a page."""
    return {
        r["id"]: r["parent_id"]
        for r in conn.execute(
            "SELECT id, parent_id FROM elements WHERE page_id = ?", (page_id,)
        ).fetchall()
    }


def _children_map(parents: dict[int, Optional[int]]) -> dict[int, list[int]]:
    children: dict[int, list[int]] = defaultdict(list)
    for element_id, parent_id in parents.items():
        if parent_id is not None:
            children[parent_id].append(element_id)
    return children


def _is_ancestor(
    parents: dict[int, Optional[int]], candidate: int, element_id: int
) -> bool:
    """True if walking up the parent chain from *candidate* reaches *element_id*."""
    node: Optional[int] = candidate
    seen: set[int] = set()
    while node is not None and node not in seen:
        if node == element_id:
            return True
        seen.add(node)
        node = parents.get(node)
    return False


def _next_order(conn: sqlite3.Connection, page_id: int, parent_id: Optional[int]) -> int:
    row = conn.execute(
        """
        SELECT COALESCE(MAX("order") + 1, 0) AS next_order
        FROM   elements
        WHERE  page_id = ? AND parent_id IS ?
        """,
        (page_id, parent_id),
    ).fetchone()
    return row["next_order"]


def _insert(
    conn: sqlite3.Connection,
    page_id: int,
    parent_id: Optional[int],
    element_type: str,
    order: int,
    content: Optional[str],
    styles: dict[str, Any],
    attributes: dict[str, Any],
    responsive_styles: dict[str, Any],
    now: int,
) -> int:
    try:
        cur = conn.execute(
            """
            INSERT INTO elements (page_id, parent_id, element_type, "order", content,
                                  styles, attributes, responsive_styles, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                page_id,
                parent_id,
                element_type,
                order,
                content,
                json.dumps(styles),
                json.dumps(attributes),
                json.dumps(responsive_styles),
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise ValidationError(f"Element violates a constraint: {exc}") from exc
    return cur.lastrowid


def _chunks(ids: Sequence[int], size: int) -> Iterable[Sequence[int]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


def _fetch_many(conn: sqlite3.Connection, ids: Sequence[int]) -> dict[int, Element]:
    found: dict[int, Element] = {}
    for chunk in _chunks(list(ids), _DELETE_CHUNK):
        marks = ", ".join("?" for _ in chunk)
        for row in conn.execute(
            f"SELECT * FROM elements WHERE id IN ({marks})", list(chunk)  # noqa: S608
        ).fetchall():
            found[row["id"]] = _row_to_element(row)
    return found


def collect_subtree(
    parents: dict[int, Optional[int]],
    root_id: int,
    max_depth: int,
) -> list[int]:
    """Breadth-first ids of *root_id* and its descendants.

    Depth counts levels: a lone root has depth 1.  The visited set stops a
    corrupted parent cycle from looping forever.

    Raises:
        DepthLimitExceeded: The subtree is deeper than *max_depth*.
    """
    children = _children_map(parents)
    visited = {root_id}
    frontier = [root_id]
    collected: list[int] = []
    depth = 0
    while frontier:
        depth += 1
        if depth > max_depth:
            raise DepthLimitExceeded(
                f"Element hierarchy exceeds maximum depth of {max_depth}",
                root_id=root_id,
                max_depth=max_depth,
            )
        collected.extend(frontier)
        next_level: list[int] = []
        for node in frontier:
            for child in children.get(node, ()):
                if child not in visited:
                    visited.add(child)
                    next_level.append(child)
        frontier = next_level
    return collected


# ---------------------------------------------------------------------------
# Single-element CRUD
# ---------------------------------------------------------------------------

def create_element(
    conn: sqlite3.Connection,
    page_id: int,
    element_type: str,
    *,
    parent_id: Optional[int] = None,
    order: Optional[int] = None,
    content: Optional[str] = None,
    styles: Optional[dict[str, Any]] = None,
    attributes: Optional[dict[str, Any]] = None,
    responsive_styles: Optional[dict[str, Any]] = None,
    scope: Optional[TransactionScope] = None,
) -> Element:
    """Insert one element and return it.

    ``order`` defaults to one past the last sibling under *parent_id*.

    Raises:
        NotFoundError: The page does not exist.
        ValidationError: Bad type/content, or *parent_id* is not an element of
            the same page.
    """
    element_type = _validate_type(element_type)
    content = _validate_content(content)
    styles = _validate_map("styles", styles)
    attributes = _validate_map("attributes", attributes)
    responsive_styles = _validate_map("responsive_styles", responsive_styles)
    if order is not None:
        order = _validate_order(order)

    def _create(scope: TransactionScope) -> int:
        if not _page_exists(conn, page_id):
            raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
        if parent_id is not None:
            parent = get_element(conn, parent_id)
            if parent is None or parent.page_id != page_id:
                raise ValidationError(
                    f"Parent {parent_id} is not an element of page {page_id}",
                    parent_id=parent_id,
                )
        position = order if order is not None else _next_order(conn, page_id, parent_id)
        return _insert(
            conn,
            page_id,
            parent_id,
            element_type,
            position,
            content,
            styles,
            attributes,
            responsive_styles,
            int(time()),
        )

    element_id = with_transaction(conn, _create, "create_element", scope=scope)
    return get_element(conn, element_id)  # type: ignore[return-value]


def get_element(conn: sqlite3.Connection, element_id: int) -> Optional[Element]:
    """Fetch a single element.  Returns ``None`` if not found."""
    row = conn.execute("SELECT * FROM elements WHERE id = ?", (element_id,)).fetchone()
    return _row_to_element(row) if row else None


def list_page_elements(conn: sqlite3.Connection, page_id: int) -> list[Element]:
    """All elements of a page, siblings in ``(order, id)`` order."""
    rows = conn.execute(
        'SELECT * FROM elements WHERE page_id = ? ORDER BY "order", id', (page_id,)
    ).fetchall()
    return [_row_to_element(r) for r in rows]


def get_children(conn: sqlite3.Connection, element_id: int) -> list[Element]:
    rows = conn.execute(
        'SELECT * FROM elements WHERE parent_id = ? ORDER BY "order", id', (element_id,)
    ).fetchall()
    return [_row_to_element(r) for r in rows]


def _prepare_updates(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate and serialise an update patch (without the ``id`` key)."""
    updates: dict[str, Any] = {}
    for key, value in fields.items():
        if key not in _UPDATABLE:
            raise ValidationError(f"Cannot update field {key!r}")
        if key in _JSON_FIELDS:
            updates[key] = json.dumps(_validate_map(key, value))
        elif key == "content":
            updates[key] = _validate_content(value)
        elif key == "element_type":
            updates[key] = _validate_type(value)
        elif key == "order":
            updates[key] = _validate_order(value)
        elif key == "parent_id":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationError(f"parent_id must be an integer or null, got {value!r}")
            updates[key] = value
    if not updates:
        raise ValidationError("No valid fields provided to update_element()")
    return updates


def _apply_update(
    conn: sqlite3.Connection,
    element_id: int,
    updates: dict[str, Any],
    now: int,
) -> int:
    """Write a prepared patch.  Returns the affected row count (0 if missing)."""
    if "parent_id" in updates:
        current = conn.execute(
            "SELECT page_id FROM elements WHERE id = ?", (element_id,)
        ).fetchone()
        if current is None:
            return 0
        new_parent = updates["parent_id"]
        if new_parent is not None:
            parents = _load_parents(conn, current["page_id"])
            if new_parent not in parents:
                raise ValidationError(
                    f"Parent {new_parent} is not an element of page {current['page_id']}",
                    parent_id=new_parent,
                )
            if _is_ancestor(parents, new_parent, element_id):
                raise ValidationError(
                    f"Moving element {element_id} under {new_parent} would create a cycle",
                    element_id=element_id,
                    parent_id=new_parent,
                )

    columns = {**updates, "updated_at": now}
    set_clause = ", ".join(f'"{col}" = ?' for col in columns)
    try:
        cur = conn.execute(
            f"UPDATE elements SET {set_clause} WHERE id = ?",  # noqa: S608
            [*columns.values(), element_id],
        )
    except sqlite3.IntegrityError as exc:
        raise ValidationError(
            f"Update of element {element_id} violates a constraint: {exc}",
            element_id=element_id,
        ) from exc
    return cur.rowcount


def update_element(
    conn: sqlite3.Connection,
    element_id: int,
    *,
    scope: Optional[TransactionScope] = None,
    **fields: Any,
) -> Element:
    """Update one or more fields on an element; omitted fields are untouched.

    Allowed keyword arguments: ``content``, ``styles``, ``attributes``,
    ``responsive_styles`` (dicts replace the stored map), ``order``,
    ``element_type``, ``parent_id``.  Re-parenting is checked for same-page
    membership and for cycles.

    Raises:
        NotFoundError: If *element_id* does not exist.
        ValidationError: Unknown field, no field, or an invalid move.
    """
    updates = _prepare_updates(fields)

    def _update(scope: TransactionScope) -> None:
        if _apply_update(conn, element_id, updates, int(time())) == 0:
            raise NotFoundError(f"Element {element_id} not found", element_id=element_id)

    with_transaction(conn, _update, "update_element", scope=scope)
    return get_element(conn, element_id)  # type: ignore[return-value]


def delete_element(
    conn: sqlite3.Connection,
    element_id: int,
    *,
    scope: Optional[TransactionScope] = None,
) -> int:
    """Delete an element together with its descendants.  See :func:`delete_subtree`."""
    return delete_subtree(conn, element_id, scope=scope)


def delete_page_elements(
    conn: sqlite3.Connection,
    page_id: int,
    *,
    scope: Optional[TransactionScope] = None,
) -> int:
    """Remove every element of a page in one statement.  Returns the count."""

    def _clear(scope: TransactionScope) -> int:
        if not _page_exists(conn, page_id):
            raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
        return conn.execute("DELETE FROM elements WHERE page_id = ?", (page_id,)).rowcount

    return with_transaction(conn, _clear, "delete_page_elements", scope=scope)


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------

def delete_subtree(
    conn: sqlite3.Connection,
    root_id: int,
    *,
    max_depth: Optional[int] = None,
    scope: Optional[TransactionScope] = None,
) -> int:
    """Delete *root_id* and all of its descendants atomically.

    The page's adjacency is loaded once, walked breadth-first with a visited
    set, and the collected ids are deleted in chunked ``IN (...)`` statements
    inside one transaction.  A failure at any point removes nothing.

    Args:
        conn: Open DB connection.
        root_id: Element at the top of the subtree.
        max_depth: Level ceiling (lone root = 1); ``settings.max_tree_depth``
            when omitted.
        scope: Enclosing transaction scope.

    Returns:
        Number of elements deleted.

    Raises:
        NotFoundError: *root_id* does not exist.
        DepthLimitExceeded: The subtree is deeper than the ceiling; nothing
            is deleted.
    """
    ceiling = max_depth if max_depth is not None else settings.max_tree_depth

    def _delete(scope: TransactionScope) -> int:
        row = conn.execute("SELECT page_id FROM elements WHERE id = ?", (root_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Element {root_id} not found", element_id=root_id)
        ids = collect_subtree(_load_parents(conn, row["page_id"]), root_id, ceiling)

        deleted = 0
        for chunk in _chunks(ids, _DELETE_CHUNK):
            marks = ", ".join("?" for _ in chunk)
            deleted += conn.execute(
                f"DELETE FROM elements WHERE id IN ({marks})", list(chunk)  # noqa: S608
            ).rowcount
        return deleted

    deleted = with_transaction(conn, _delete, "delete_subtree", scope=scope)
    logger.debug("[Elements] Deleted subtree of %s (%d elements)", root_id, deleted)
    return deleted


def _check_batch_size(size: int) -> None:
    if size > settings.max_batch_size:
        raise BatchSizeExceeded(
            f"Batch size {size} exceeds maximum of {settings.max_batch_size}",
            size=size,
            max_batch_size=settings.max_batch_size,
        )


def create_elements_batch(
    conn: sqlite3.Connection,
    specs: Sequence[ElementSpec],
    *,
    scope: Optional[TransactionScope] = None,
) -> list[Element]:
    """Insert many elements in one transaction and return them in input order.

    A spec may point at an element created earlier in the same batch with
    ``parent_index`` (its position in *specs*) instead of ``parent_id``.

    Raises:
        BatchSizeExceeded: More than ``settings.max_batch_size`` specs.
        NotFoundError: A referenced page does not exist.
        ValidationError: Bad spec, or a parent outside the spec's page.
    """
    if not specs:
        return []
    _check_batch_size(len(specs))

    for index, spec in enumerate(specs):
        _validate_type(spec.element_type)
        _validate_content(spec.content)
        _validate_order(spec.order)
        for key in _JSON_FIELDS:
            _validate_map(key, getattr(spec, key))
        if spec.parent_index is not None:
            if spec.parent_id is not None:
                raise ValidationError(f"Spec {index} sets both parent_id and parent_index")
            if not 0 <= spec.parent_index < index:
                raise ValidationError(
                    f"Spec {index} parent_index must refer to an earlier spec"
                )
            if specs[spec.parent_index].page_id != spec.page_id:
                raise ValidationError(f"Spec {index} parent_index refers to another page")

    def _create(scope: TransactionScope) -> list[int]:
        for page_id in {s.page_id for s in specs}:
            if not _page_exists(conn, page_id):
                raise NotFoundError(f"Page {page_id} not found", page_id=page_id)

        parent_ids = [s.parent_id for s in specs if s.parent_id is not None]
        existing = _fetch_many(conn, parent_ids)
        for index, spec in enumerate(specs):
            if spec.parent_id is None:
                continue
            parent = existing.get(spec.parent_id)
            if parent is None or parent.page_id != spec.page_id:
                raise ValidationError(
                    f"Spec {index}: parent {spec.parent_id} is not an element of page {spec.page_id}",
                    parent_id=spec.parent_id,
                )

        now = int(time())
        created: list[int] = []
        for spec in specs:
            parent_id = created[spec.parent_index] if spec.parent_index is not None else spec.parent_id
            created.append(
                _insert(
                    conn,
                    spec.page_id,
                    parent_id,
                    spec.element_type,
                    spec.order,
                    spec.content,
                    spec.styles,
                    spec.attributes,
                    spec.responsive_styles,
                    now,
                )
            )
        return created

    ids = with_transaction(conn, _create, "create_elements_batch", scope=scope)
    rows = _fetch_many(conn, ids)
    return [rows[i] for i in ids]


def update_elements_batch(
    conn: sqlite3.Connection,
    patches: Sequence[dict[str, Any]],
    *,
    scope: Optional[TransactionScope] = None,
) -> int:
    """Apply partial updates to many elements atomically.

    Each patch is ``{"id": <element id>, <field>: <value>, ...}``; only the
    supplied fields change.  Every patch is validated before the first write,
    and a constraint violation part-way through rolls the whole batch back.

    Returns:
        The number of distinct element ids whose row was updated; ids that do
        not exist are not counted.

    Raises:
        BatchSizeExceeded: More than ``settings.max_batch_size`` patches.
        ValidationError: Missing id, unknown field, or an invalid value/move.
    """
    if not patches:
        return 0
    _check_batch_size(len(patches))

    prepared: list[tuple[int, dict[str, Any]]] = []
    for index, patch in enumerate(patches):
        if not isinstance(patch, dict):
            raise ValidationError(f"Patch {index} must be an object")
        fields = dict(patch)
        element_id = fields.pop("id", None)
        if isinstance(element_id, bool) or not isinstance(element_id, int):
            raise ValidationError(f"Patch {index} is missing an integer 'id'")
        prepared.append((element_id, _prepare_updates(fields)))

    def _update(scope: TransactionScope) -> int:
        now = int(time())
        affected: set[int] = set()
        for element_id, updates in prepared:
            if _apply_update(conn, element_id, updates, now) > 0:
                affected.add(element_id)
        return len(affected)

    return with_transaction(conn, _update, "update_elements_batch", scope=scope)
