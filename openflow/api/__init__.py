"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from openflow.api import create_app

    uvicorn openflow.api:app --reload
"""

from openflow.api.app import app, create_app

__all__ = ["app", "create_app"]
