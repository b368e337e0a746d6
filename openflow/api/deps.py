"""Shared FastAPI dependencies: per-request DB connection, acting user, ownership."""

from __future__ import annotations

import sqlite3
from typing import Iterator

from fastapi import Depends, Header, Request

from openflow.builder.dispatcher import ActionDispatcher
from openflow.db.connection import get_connection
from openflow.db.elements import get_element
from openflow.db.models import Element, Page, Project
from openflow.db.pages import get_page
from openflow.db.projects import get_project
from openflow.errors import AuthorizationError, NotFoundError


def get_db(request: Request) -> Iterator[sqlite3.Connection]:
    """Open a connection for the duration of one request."""
    conn = get_connection(request.app.state.db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_actor(x_user_id: int = Header(..., description="Acting user id")) -> int:
    return x_user_id


def get_dispatcher(
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
) -> ActionDispatcher:
    return ActionDispatcher(conn, request.app.state.image_generator)


# ---------------------------------------------------------------------------
# Ownership helpers
# ---------------------------------------------------------------------------

def require_project(conn: sqlite3.Connection, project_id: int, actor_id: int) -> Project:
    project = get_project(conn, project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
    if project.user_id != actor_id:
        raise AuthorizationError(
            f"User {actor_id} does not own project {project_id}", project_id=project_id
        )
    return project


def require_page(conn: sqlite3.Connection, page_id: int, actor_id: int) -> Page:
    page = get_page(conn, page_id)
    if page is None:
        raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
    require_project(conn, page.project_id, actor_id)
    return page


def require_element(conn: sqlite3.Connection, element_id: int, actor_id: int) -> Element:
    element = get_element(conn, element_id)
    if element is None:
        raise NotFoundError(f"Element {element_id} not found", element_id=element_id)
    require_page(conn, element.page_id, actor_id)
    return element
