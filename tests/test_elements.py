"""Tests for the hierarchical element store.

In-memory SQLite with the full schema; every test starts from one user, one
project and one page.
"""

from __future__ import annotations

import random
import sqlite3
from typing import Generator

import pytest

from openflow.config import settings
from openflow.db import elements as element_store
from openflow.db.connection import get_connection
from openflow.db.elements import (
    collect_subtree,
    create_element,
    create_elements_batch,
    delete_page_elements,
    delete_subtree,
    get_children,
    get_element,
    list_page_elements,
    update_element,
    update_elements_batch,
)
from openflow.db.migrations import init_db
from openflow.db.models import ElementSpec
from openflow.db.pages import create_page
from openflow.db.projects import check_integrity, create_project
from openflow.db.users import create_user
from openflow.errors import (
    BatchSizeExceeded,
    DepthLimitExceeded,
    NotFoundError,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def project_id(conn: sqlite3.Connection) -> int:
    user = create_user(conn, "owner-1", name="Owner")
    return create_project(conn, user.id, "Site").id


@pytest.fixture()
def page_id(conn: sqlite3.Connection, project_id: int) -> int:
    return create_page(conn, project_id, "Home", "home", is_home_page=True).id


def _count(conn: sqlite3.Connection, page_id: int) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM elements WHERE page_id = ?", (page_id,)
    ).fetchone()[0]


def _chain(conn: sqlite3.Connection, page_id: int, length: int) -> list[int]:
    """Create root -> child -> ... of *length* levels; return ids top-down."""
    ids: list[int] = []
    parent = None
    for _ in range(length):
        parent = create_element(conn, page_id, "div", parent_id=parent).id
        ids.append(parent)
    return ids


# ---------------------------------------------------------------------------
# Single-element CRUD
# ---------------------------------------------------------------------------

class TestCreateElement:
    def test_defaults(self, conn: sqlite3.Connection, page_id: int) -> None:
        el = create_element(conn, page_id, "heading", content="Hello")
        assert el.page_id == page_id
        assert el.parent_id is None
        assert el.order == 0
        assert el.styles == {}
        assert get_element(conn, el.id) == el

    def test_order_appends_to_siblings(self, conn: sqlite3.Connection, page_id: int) -> None:
        parent = create_element(conn, page_id, "section")
        first = create_element(conn, page_id, "text", parent_id=parent.id)
        second = create_element(conn, page_id, "text", parent_id=parent.id)
        assert (first.order, second.order) == (0, 1)
        assert [c.id for c in get_children(conn, parent.id)] == [first.id, second.id]

    def test_rejects_parent_on_other_page(
        self, conn: sqlite3.Connection, project_id: int, page_id: int
    ) -> None:
        other = create_page(conn, project_id, "About", "about")
        foreign = create_element(conn, other.id, "div")
        with pytest.raises(ValidationError):
            create_element(conn, page_id, "div", parent_id=foreign.id)

    def test_unknown_page(self, conn: sqlite3.Connection) -> None:
        with pytest.raises(NotFoundError):
            create_element(conn, 999, "div")

    @pytest.mark.parametrize("bad_type", ["", "Div", "1col", "my type"])
    def test_rejects_bad_type(self, conn: sqlite3.Connection, page_id: int, bad_type: str) -> None:
        with pytest.raises(ValidationError):
            create_element(conn, page_id, bad_type)

    def test_rejects_negative_order(self, conn: sqlite3.Connection, page_id: int) -> None:
        with pytest.raises(ValidationError):
            create_element(conn, page_id, "div", order=-1)
        assert _count(conn, page_id) == 0


class TestUpdateElement:
    def test_partial_update(self, conn: sqlite3.Connection, page_id: int) -> None:
        el = create_element(conn, page_id, "text", content="a", styles={"color": "red"})
        updated = update_element(conn, el.id, content="b")
        assert updated.content == "b"
        assert updated.styles == {"color": "red"}

    def test_missing_element(self, conn: sqlite3.Connection, page_id: int) -> None:
        with pytest.raises(NotFoundError):
            update_element(conn, 12345, content="x")

    def test_unknown_field(self, conn: sqlite3.Connection, page_id: int) -> None:
        el = create_element(conn, page_id, "text")
        with pytest.raises(ValidationError):
            update_element(conn, el.id, page_id=2)

    def test_move_under_own_descendant_is_rejected(
        self, conn: sqlite3.Connection, page_id: int
    ) -> None:
        root, child, grandchild = _chain(conn, page_id, 3)
        with pytest.raises(ValidationError):
            update_element(conn, root, parent_id=grandchild)
        with pytest.raises(ValidationError):
            update_element(conn, child, parent_id=child)
        assert get_element(conn, root).parent_id is None

    def test_move_to_root(self, conn: sqlite3.Connection, page_id: int) -> None:
        _, child, _ = _chain(conn, page_id, 3)
        assert update_element(conn, child, parent_id=None).parent_id is None

    def test_random_moves_never_create_cycles(
        self, conn: sqlite3.Connection, project_id: int, page_id: int
    ) -> None:
        rng = random.Random(1234)
        ids: list[int] = []
        for _ in range(30):
            parent = rng.choice(ids) if ids and rng.random() < 0.7 else None
            ids.append(create_element(conn, page_id, "div", parent_id=parent).id)

        rejected = 0
        for _ in range(200):
            element_id = rng.choice(ids)
            target = rng.choice(ids + [None])
            try:
                update_element(conn, element_id, parent_id=target)
            except ValidationError:
                rejected += 1

        report = check_integrity(conn, project_id)
        assert report.is_valid
        assert report.cycles == []
        assert rejected > 0


# ---------------------------------------------------------------------------
# delete_subtree
# ---------------------------------------------------------------------------

class TestDeleteSubtree:
    def test_deletes_root_and_descendants(self, conn: sqlite3.Connection, page_id: int) -> None:
        root = create_element(conn, page_id, "section")
        a = create_element(conn, page_id, "div", parent_id=root.id)
        create_element(conn, page_id, "text", parent_id=a.id)
        create_element(conn, page_id, "text", parent_id=root.id)
        keep = create_element(conn, page_id, "footer")

        assert delete_subtree(conn, root.id) == 4
        assert [e.id for e in list_page_elements(conn, page_id)] == [keep.id]

    def test_lone_root_has_depth_one(self, conn: sqlite3.Connection, page_id: int) -> None:
        el = create_element(conn, page_id, "div")
        assert delete_subtree(conn, el.id, max_depth=1) == 1

    def test_depth_at_ceiling_succeeds(self, conn: sqlite3.Connection, page_id: int) -> None:
        ids = _chain(conn, page_id, 5)
        assert delete_subtree(conn, ids[0], max_depth=5) == 5

    def test_depth_over_ceiling_deletes_nothing(
        self, conn: sqlite3.Connection, page_id: int
    ) -> None:
        ids = _chain(conn, page_id, 6)
        with pytest.raises(DepthLimitExceeded) as info:
            delete_subtree(conn, ids[0], max_depth=5)
        assert info.value.kind == "structural"
        assert _count(conn, page_id) == 6

    def test_default_ceiling_from_settings(
        self, conn: sqlite3.Connection, page_id: int, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "max_tree_depth", 2)
        ids = _chain(conn, page_id, 3)
        with pytest.raises(DepthLimitExceeded):
            delete_subtree(conn, ids[0])

    def test_missing_root(self, conn: sqlite3.Connection, page_id: int) -> None:
        with pytest.raises(NotFoundError):
            delete_subtree(conn, 4242)

    def test_failure_mid_delete_removes_nothing(
        self, conn: sqlite3.Connection, page_id: int, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(element_store, "_DELETE_CHUNK", 1)
        ids = _chain(conn, page_id, 4)
        conn.execute(
            f"""
            CREATE TRIGGER block_leaf_delete BEFORE DELETE ON elements
            WHEN OLD.id = {ids[-1]}
            BEGIN SELECT RAISE(ABORT, 'leaf is protected'); END
            """
        )
        with pytest.raises(sqlite3.DatabaseError):
            delete_subtree(conn, ids[0])
        assert _count(conn, page_id) == 4
        assert not conn.in_transaction

    def test_collect_subtree_survives_corrupt_cycle(self) -> None:
        parents = {1: None, 2: 1, 3: 2, 4: 3}
        # Corrupt: 2 and 3 point at each other below the root.
        parents[2] = 3
        assert sorted(collect_subtree(parents, 3, max_depth=10)) == [2, 3, 4]

    def test_delete_page_elements(self, conn: sqlite3.Connection, page_id: int) -> None:
        _chain(conn, page_id, 3)
        create_element(conn, page_id, "footer")
        assert delete_page_elements(conn, page_id) == 4
        assert _count(conn, page_id) == 0


# ---------------------------------------------------------------------------
# Batch create / update
# ---------------------------------------------------------------------------

class TestCreateElementsBatch:
    def test_creates_in_input_order_with_parent_index(
        self, conn: sqlite3.Connection, page_id: int
    ) -> None:
        specs = [
            ElementSpec(page_id=page_id, element_type="section"),
            ElementSpec(page_id=page_id, element_type="heading", parent_index=0, content="Hi"),
            ElementSpec(page_id=page_id, element_type="text", parent_index=0, order=1),
        ]
        created = create_elements_batch(conn, specs)
        assert [e.element_type for e in created] == ["section", "heading", "text"]
        assert created[1].parent_id == created[0].id
        assert created[2].parent_id == created[0].id

    def test_empty_batch(self, conn: sqlite3.Connection) -> None:
        assert create_elements_batch(conn, []) == []

    def test_constraint_violation_rolls_back_whole_batch(
        self, conn: sqlite3.Connection, page_id: int
    ) -> None:
        specs = [
            ElementSpec(page_id=page_id, element_type="div"),
            ElementSpec(page_id=page_id, element_type="div", order=-1),
            ElementSpec(page_id=page_id, element_type="div"),
        ]
        with pytest.raises(ValidationError):
            create_elements_batch(conn, specs)
        assert _count(conn, page_id) == 0

    def test_forward_parent_index_rejected(self, conn: sqlite3.Connection, page_id: int) -> None:
        specs = [
            ElementSpec(page_id=page_id, element_type="div", parent_index=1),
            ElementSpec(page_id=page_id, element_type="div"),
        ]
        with pytest.raises(ValidationError):
            create_elements_batch(conn, specs)

    def test_batch_size_limit(
        self, conn: sqlite3.Connection, page_id: int, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "max_batch_size", 2)
        specs = [ElementSpec(page_id=page_id, element_type="div") for _ in range(3)]
        with pytest.raises(BatchSizeExceeded):
            create_elements_batch(conn, specs)
        assert _count(conn, page_id) == 0


class TestUpdateElementsBatch:
    def test_updates_only_supplied_fields(self, conn: sqlite3.Connection, page_id: int) -> None:
        a = create_element(conn, page_id, "text", content="a", styles={"color": "red"})
        b = create_element(conn, page_id, "text", content="b")
        count = update_elements_batch(
            conn, [{"id": a.id, "content": "A"}, {"id": b.id, "order": 5}]
        )
        assert count == 2
        assert get_element(conn, a.id).styles == {"color": "red"}
        assert get_element(conn, a.id).content == "A"
        assert get_element(conn, b.id).order == 5

    def test_missing_ids_are_not_counted(self, conn: sqlite3.Connection, page_id: int) -> None:
        a = create_element(conn, page_id, "text")
        assert update_elements_batch(
            conn, [{"id": a.id, "content": "x"}, {"id": 9999, "content": "y"}]
        ) == 1

    def test_constraint_violation_rolls_back(self, conn: sqlite3.Connection, page_id: int) -> None:
        a = create_element(conn, page_id, "text", content="a")
        b = create_element(conn, page_id, "text", content="b")
        with pytest.raises(ValidationError):
            update_elements_batch(
                conn, [{"id": a.id, "content": "changed"}, {"id": b.id, "order": -1}]
            )
        assert get_element(conn, a.id).content == "a"

    def test_patch_without_id(self, conn: sqlite3.Connection, page_id: int) -> None:
        with pytest.raises(ValidationError):
            update_elements_batch(conn, [{"content": "x"}])
