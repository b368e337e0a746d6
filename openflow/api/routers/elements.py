"""Element endpoints.

Routes
------
PATCH  /elements/batch   Update many elements atomically
GET    /elements/{id}    Fetch one element
PATCH  /elements/{id}    Partial update (content, styles, parent, order, ...)
DELETE /elements/{id}    Delete the element and its whole subtree
"""

from __future__ import annotations

import sqlite3
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from openflow.api.deps import get_actor, get_db, require_element, require_page
from openflow.db import elements as element_store

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ElementUpdate(BaseModel):
    element_type: Optional[str] = None
    parent_id: Optional[int] = None
    order: Optional[int] = None
    content: Optional[str] = None
    styles: Optional[dict[str, Any]] = None
    attributes: Optional[dict[str, Any]] = None
    responsive_styles: Optional[dict[str, Any]] = None


class ElementPatch(ElementUpdate):
    model_config = ConfigDict(extra="forbid")

    id: int


class BatchUpdateRequest(BaseModel):
    patches: list[ElementPatch]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.patch("/batch", response_model=dict[str, Any])
def update_elements_batch_endpoint(
    body: BatchUpdateRequest,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Apply every patch or none; returns how many elements changed."""
    checked: set[int] = set()
    for patch in body.patches:
        element = element_store.get_element(conn, patch.id)
        if element is not None and element.page_id not in checked:
            require_page(conn, element.page_id, actor)
            checked.add(element.page_id)
    patches = [p.model_dump(exclude_unset=True) for p in body.patches]
    return {"updated": element_store.update_elements_batch(conn, patches)}


@router.get("/{element_id}", response_model=dict[str, Any])
def get_element_endpoint(
    element_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return require_element(conn, element_id, actor).to_dict()


@router.patch("/{element_id}", response_model=dict[str, Any])
def update_element_endpoint(
    element_id: int,
    body: ElementUpdate,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_element(conn, element_id, actor)
    fields = body.model_dump(exclude_unset=True)
    return element_store.update_element(conn, element_id, **fields).to_dict()


@router.delete("/{element_id}", response_model=dict[str, Any])
def delete_element_endpoint(
    element_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_element(conn, element_id, actor)
    return {"deleted_count": element_store.delete_subtree(conn, element_id)}
