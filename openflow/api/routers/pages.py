"""Page endpoints.

Routes
------
GET    /pages/{id}                  Fetch one page
PATCH  /pages/{id}                  Update name / slug / home flag / settings
DELETE /pages/{id}                  Delete the page and its elements
GET    /pages/{id}/elements         Elements in ``(order, id)`` order
POST   /pages/{id}/elements         Create one element
POST   /pages/{id}/elements/batch   Create many elements atomically
DELETE /pages/{id}/elements         Remove every element on the page
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from openflow.api.deps import get_actor, get_db, require_page
from openflow.db import elements as element_store
from openflow.db import pages as page_store
from openflow.db.models import ElementSpec

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class PageUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    is_home_page: Optional[bool] = None
    settings: Optional[dict[str, Any]] = None


class ElementCreate(BaseModel):
    element_type: str
    parent_id: Optional[int] = None
    order: Optional[int] = None
    content: Optional[str] = None
    styles: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    responsive_styles: dict[str, Any] = Field(default_factory=dict)


class BatchElementCreate(ElementCreate):
    # Position of an earlier entry in the same batch to nest under.
    parent_index: Optional[int] = None
    order: int = 0


class BatchCreateRequest(BaseModel):
    elements: list[BatchElementCreate]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/{page_id}", response_model=dict[str, Any])
def get_page_endpoint(
    page_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return asdict(require_page(conn, page_id, actor))


@router.patch("/{page_id}", response_model=dict[str, Any])
def update_page_endpoint(
    page_id: int,
    body: PageUpdate,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_page(conn, page_id, actor)
    page = page_store.update_page(conn, page_id, **body.model_dump(exclude_unset=True))
    return asdict(page)


@router.delete("/{page_id}", response_model=dict[str, Any])
def delete_page_endpoint(
    page_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_page(conn, page_id, actor)
    return {"deleted_elements": page_store.delete_page(conn, page_id)}


@router.get("/{page_id}/elements", response_model=list[dict[str, Any]])
def list_elements_endpoint(
    page_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    require_page(conn, page_id, actor)
    return [el.to_dict() for el in element_store.list_page_elements(conn, page_id)]


@router.post("/{page_id}/elements", status_code=201, response_model=dict[str, Any])
def create_element_endpoint(
    page_id: int,
    body: ElementCreate,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_page(conn, page_id, actor)
    element = element_store.create_element(conn, page_id, **body.model_dump())
    return element.to_dict()


@router.post("/{page_id}/elements/batch", status_code=201, response_model=list[dict[str, Any]])
def create_elements_batch_endpoint(
    page_id: int,
    body: BatchCreateRequest,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    """Create every element or none; parents may be earlier entries via ``parent_index``."""
    require_page(conn, page_id, actor)
    specs = [ElementSpec(page_id=page_id, **item.model_dump()) for item in body.elements]
    return [el.to_dict() for el in element_store.create_elements_batch(conn, specs)]


@router.delete("/{page_id}/elements", response_model=dict[str, Any])
def delete_page_elements_endpoint(
    page_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_page(conn, page_id, actor)
    return {"deleted_count": element_store.delete_page_elements(conn, page_id)}
