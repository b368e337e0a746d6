"""OpenFlow CLI — entry-point for local builder operations.

Usage:
    python cli/main.py --help

Command groups:
    db       → schema setup
    project  → project CRUD, duplication, integrity check
    page     → pages of the active project
    element  → element tree of the active page
    action   → raw builder action dispatch
    library  → saved templates and components
    agent    → AI builder chat
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from openflow.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import typer

from cli.commands.action import action_app
from cli.commands.agent import agent_app
from cli.commands.element import element_app
from cli.commands.library import library_app
from cli.commands.page import page_app
from cli.commands.project import project_app
from openflow.config import settings
from openflow.db import get_connection, init_db
from openflow.db.migrations import current_version
from openflow.logging_setup import configure_logging

app = typer.Typer(
    name="openflow",
    help="OpenFlow page builder CLI.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    configure_logging("DEBUG" if verbose else None)


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    settings.ensure_workspace()
    conn = get_connection()
    try:
        init_db(conn)
        version = current_version(conn)
    finally:
        conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path} (schema v{version})")


app.add_typer(project_app, name="project")
app.add_typer(page_app, name="page")
app.add_typer(element_app, name="element")
app.add_typer(action_app, name="action")
app.add_typer(library_app, name="library")
app.add_typer(agent_app, name="agent")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
