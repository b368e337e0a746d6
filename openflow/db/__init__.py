"""Database layer package.

Public re-exports so callers can write::

    from openflow.db import get_connection, init_db
    from openflow.db import elements, projects
"""

from openflow.db.connection import get_connection
from openflow.db.migrations import init_db
from openflow.db import elements, pages, projects

__all__ = ["get_connection", "init_db", "elements", "pages", "projects"]
