"""FastAPI application factory.

Lifespan
--------
On startup the app configures logging, makes sure the workspace exists and
initialises the schema.  Each request then opens its own SQLite connection
(see :func:`openflow.api.deps.get_db`) so concurrent requests never share a
transaction.

Errors
------
Every :class:`~openflow.errors.BuilderError` is returned as
``{"kind": ..., "message": ...}`` with a status code chosen by its kind.
Anything else becomes a 500 with kind ``internal`` in the same shape.

Routers
-------
    /projects  — project CRUD, duplication, integrity, pages
    /pages     — page CRUD and element listing / batch creation
    /elements  — element CRUD and batch update
    /actions   — builder action dispatch
    /builder   — AI builder chat
    /health    — circuit breaker metrics
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from openflow.builder.directives import ImageGenerator, build_image_generator
from openflow.config import settings
from openflow.db import get_connection, init_db
from openflow.errors import BuilderError, error_payload
from openflow.logging_setup import configure_logging

from openflow.api.routers import actions as actions_router
from openflow.api.routers import builder as builder_router
from openflow.api.routers import elements as elements_router
from openflow.api.routers import health as health_router
from openflow.api.routers import pages as pages_router
from openflow.api.routers import projects as projects_router

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "validation": 422,
    "authorization": 403,
    "not_found": 404,
    "structural": 409,
    "transient": 503,
    "circuit_open": 503,
    "timeout": 504,
    "provider": 502,
    "internal": 500,
}


async def builder_error_handler(request: Request, exc: BuilderError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[API] %s %s crashed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=error_payload(exc))


def create_app(
    db_path: Optional[Path] = None,
    image_generator: Optional[ImageGenerator] = None,
) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Args:
        db_path: SQLite file to serve; defaults to ``settings.db_path``.
        image_generator: Generator for ``<nano:...>`` directives; built from
            ``settings`` when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Initialise the schema once on startup."""
        configure_logging()
        if db_path is None:
            settings.ensure_workspace()
        conn = get_connection(app.state.db_path)
        try:
            init_db(conn)
        finally:
            conn.close()
        yield

    app = FastAPI(
        title="OpenFlow Builder API",
        description=(
            "REST interface for the OpenFlow page builder. Exposes project, "
            "page and element CRUD, builder action dispatch, the AI builder "
            "chat agent and circuit breaker health."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.db_path = db_path or settings.db_path
    app.state.image_generator = image_generator or build_image_generator()

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BuilderError, builder_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(projects_router.router, prefix="/projects", tags=["projects"])
    app.include_router(pages_router.router, prefix="/pages", tags=["pages"])
    app.include_router(elements_router.router, prefix="/elements", tags=["elements"])
    app.include_router(actions_router.router, prefix="/actions", tags=["actions"])
    app.include_router(builder_router.router, prefix="/builder", tags=["builder"])
    app.include_router(health_router.router, prefix="/health", tags=["health"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn openflow.api.app:app --reload
app = create_app()
