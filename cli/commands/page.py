"""Page commands scoped to the active project."""

import typer

from cli.context import fail, load_context, open_db, require_project, save_context
from openflow.db.pages import create_page, get_page, list_pages
from openflow.errors import BuilderError

page_app = typer.Typer(help="Manage pages of the active project.")


@page_app.command("new")
@require_project
def page_new(
    name: str = typer.Argument(..., help="Page name."),
    slug: str = typer.Argument(..., help="URL slug (lowercase letters, digits, - and _)."),
    home: bool = typer.Option(False, "--home", help="Mark as the project's home page."),
) -> None:
    """Create a page in the active project and switch to it."""
    ctx = load_context()
    conn = open_db()
    try:
        try:
            page = create_page(conn, ctx.active_project_id, name, slug, is_home_page=home)
        except BuilderError as exc:
            raise fail(exc)
        ctx.active_page_id = page.id
        ctx.active_page_name = page.name
        ctx.conversation_id = None
        save_context(ctx)
        typer.echo(f"✅ Page created: {page.name} /{page.slug} ({page.id})")
    finally:
        conn.close()


@page_app.command("list")
@require_project
def page_list() -> None:
    """List pages of the active project."""
    ctx = load_context()
    conn = open_db()
    try:
        pages = list_pages(conn, ctx.active_project_id)
        if not pages:
            typer.echo("No pages yet.")
            return
        for p in pages:
            marker = "*" if p.id == ctx.active_page_id else " "
            home = " 🏠" if p.is_home_page else ""
            typer.echo(f"{marker} {p.name} \t/{p.slug} \t[{p.id}]{home}")
    finally:
        conn.close()


@page_app.command("switch")
@require_project
def page_switch(
    page_id: int = typer.Argument(..., help="Page id."),
) -> None:
    """Switch the active page."""
    ctx = load_context()
    conn = open_db()
    try:
        page = get_page(conn, page_id)
        if page is None or page.project_id != ctx.active_project_id:
            typer.echo(f"❌ Page {page_id} not found in the active project.")
            raise typer.Exit(code=1)
        ctx.active_page_id = page.id
        ctx.active_page_name = page.name
        ctx.conversation_id = None
        save_context(ctx)
        typer.echo(f"📄 Switched to page: {page.name}")
    finally:
        conn.close()
