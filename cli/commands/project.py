"""Project management commands."""

import typer

from cli.context import (
    ensure_user,
    fail,
    load_context,
    open_db,
    require_project,
    save_context,
)
from openflow.db.projects import (
    check_integrity,
    create_project,
    delete_project,
    duplicate_project,
    get_project,
    list_projects,
)
from openflow.errors import BuilderError

project_app = typer.Typer(help="Manage builder projects.")


@project_app.command("new")
def project_new(
    name: str = typer.Argument(..., help="Name of the new project."),
    description: str = typer.Option(None, help="Optional description."),
) -> None:
    """Create a new project and switch to it."""
    conn = open_db()
    try:
        ctx = load_context()
        user_id = ensure_user(conn, ctx)
        try:
            project = create_project(conn, user_id, name, description)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(f"✅ Project created: {project.name} ({project.id})")

        ctx.active_project_id = project.id
        ctx.active_project_name = project.name
        ctx.active_page_id = None
        ctx.active_page_name = None
        ctx.conversation_id = None
        save_context(ctx)
        typer.echo(f"📂 Switched to project: {project.name}")
    finally:
        conn.close()


@project_app.command("list")
def project_list() -> None:
    """List the local user's projects."""
    conn = open_db()
    try:
        ctx = load_context()
        projects = list_projects(conn, ensure_user(conn, ctx))
        if not projects:
            typer.echo("No projects found.")
            return
        typer.echo("Projects:")
        for p in projects:
            marker = "*" if p.id == ctx.active_project_id else " "
            typer.echo(f"{marker} {p.name} \t[{p.id}]")
    finally:
        conn.close()


@project_app.command("switch")
def project_switch(
    project_id: int = typer.Argument(..., help="Project id."),
) -> None:
    """Switch the active project context."""
    conn = open_db()
    try:
        ctx = load_context()
        project = get_project(conn, project_id)
        if project is None or project.user_id != ensure_user(conn, ctx):
            typer.echo(f"❌ Project {project_id} not found.")
            raise typer.Exit(code=1)
        ctx.active_project_id = project.id
        ctx.active_project_name = project.name
        ctx.active_page_id = None
        ctx.active_page_name = None
        ctx.conversation_id = None
        save_context(ctx)
        typer.echo(f"📂 Switched to project: {project.name}")
    finally:
        conn.close()


@project_app.command("duplicate")
@require_project
def project_duplicate(
    name: str = typer.Argument(..., help="Name of the copy."),
) -> None:
    """Deep-copy the active project (pages and element trees)."""
    ctx = load_context()
    conn = open_db()
    try:
        try:
            result = duplicate_project(conn, ctx.active_project_id, name)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(
            f"✅ Duplicated into project {result.project_id}: "
            f"{result.pages_count} page(s), {result.elements_count} element(s)"
        )
    finally:
        conn.close()


@project_app.command("delete")
@require_project
def project_delete(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete the active project with all its pages and elements."""
    ctx = load_context()
    if not yes:
        typer.confirm(f"Delete project {ctx.active_project_name!r}?", abort=True)
    conn = open_db()
    try:
        try:
            result = delete_project(conn, ctx.active_project_id)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(
            f"🗑️  Deleted {result.deleted_pages} page(s) and "
            f"{result.deleted_elements} element(s)"
        )
        ctx.active_project_id = None
        ctx.active_project_name = None
        ctx.active_page_id = None
        ctx.active_page_name = None
        ctx.conversation_id = None
        save_context(ctx)
    finally:
        conn.close()


@project_app.command("check")
@require_project
def project_check() -> None:
    """Report orphaned elements and parent cycles in the active project."""
    ctx = load_context()
    conn = open_db()
    try:
        report = check_integrity(conn, ctx.active_project_id)
        typer.echo(f"\n🔍 Project: {ctx.active_project_name}")
        typer.echo(f"   Pages    : {report.pages_count}")
        typer.echo(f"   Elements : {report.elements_count}")
        if report.is_valid:
            typer.echo("✅ No integrity issues found.")
            return
        for issue in report.issues:
            typer.echo(f"   ⚠️  {issue}")
        raise typer.Exit(code=1)
    finally:
        conn.close()
