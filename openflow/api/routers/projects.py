"""Project endpoints.

Routes
------
GET    /projects                    List the acting user's projects
POST   /projects                    Create a project
GET    /projects/{id}               Fetch one project
PATCH  /projects/{id}               Update name / description / thumbnail / settings
DELETE /projects/{id}               Delete the project with all pages and elements
POST   /projects/{id}/duplicate     Deep-copy the project under a new name
GET    /projects/{id}/integrity     Orphan / cycle report for every page
GET    /projects/{id}/pages         List pages
POST   /projects/{id}/pages         Create a page
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from openflow.api.deps import get_actor, get_db, require_project
from openflow.db import pages as page_store
from openflow.db import projects as project_store

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    settings: Optional[dict[str, Any]] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    settings: Optional[dict[str, Any]] = None


class DuplicateRequest(BaseModel):
    name: str


class PageCreate(BaseModel):
    name: str
    slug: str
    is_home_page: bool = False
    settings: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=list[dict[str, Any]])
def list_projects_endpoint(
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    return [asdict(p) for p in project_store.list_projects(conn, actor)]


@router.post("", status_code=201, response_model=dict[str, Any])
def create_project_endpoint(
    body: ProjectCreate,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    project = project_store.create_project(
        conn, actor, body.name, body.description, body.settings
    )
    return asdict(project)


@router.get("/{project_id}", response_model=dict[str, Any])
def get_project_endpoint(
    project_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return asdict(require_project(conn, project_id, actor))


@router.patch("/{project_id}", response_model=dict[str, Any])
def update_project_endpoint(
    project_id: int,
    body: ProjectUpdate,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_project(conn, project_id, actor)
    project = project_store.update_project(conn, project_id, **body.model_dump(exclude_unset=True))
    return asdict(project)


@router.delete("/{project_id}", response_model=dict[str, Any])
def delete_project_endpoint(
    project_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Delete a project; returns the number of pages and elements removed."""
    require_project(conn, project_id, actor)
    return asdict(project_store.delete_project(conn, project_id))


@router.post("/{project_id}/duplicate", status_code=201, response_model=dict[str, Any])
def duplicate_project_endpoint(
    project_id: int,
    body: DuplicateRequest,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_project(conn, project_id, actor)
    return asdict(project_store.duplicate_project(conn, project_id, body.name))


@router.get("/{project_id}/integrity", response_model=dict[str, Any])
def check_integrity_endpoint(
    project_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_project(conn, project_id, actor)
    return project_store.check_integrity(conn, project_id).to_dict()


@router.get("/{project_id}/pages", response_model=list[dict[str, Any]])
def list_pages_endpoint(
    project_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    require_project(conn, project_id, actor)
    return [asdict(p) for p in page_store.list_pages(conn, project_id)]


@router.post("/{project_id}/pages", status_code=201, response_model=dict[str, Any])
def create_page_endpoint(
    project_id: int,
    body: PageCreate,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    require_project(conn, project_id, actor)
    page = page_store.create_page(
        conn, project_id, body.name, body.slug, body.is_home_page, body.settings
    )
    return asdict(page)
