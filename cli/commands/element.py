"""Element commands on the active page."""

import json

import typer

from cli.context import fail, load_context, open_db, require_page
from cli.rendering import render_tree
from openflow.db.elements import (
    create_element,
    delete_subtree,
    get_element,
    list_page_elements,
)
from openflow.errors import BuilderError

element_app = typer.Typer(help="Inspect and edit elements of the active page.")


@element_app.command("tree")
@require_page
def element_tree() -> None:
    """Print the active page's element tree."""
    ctx = load_context()
    conn = open_db()
    try:
        elements = list_page_elements(conn, ctx.active_page_id)
        typer.echo(render_tree(elements, ctx.active_page_name or f"Page {ctx.active_page_id}"))
    finally:
        conn.close()


@element_app.command("add")
@require_page
def element_add(
    element_type: str = typer.Argument(..., help="Element type, e.g. section, heading."),
    content: str = typer.Option(None, "--content", "-c", help="Text content."),
    parent: int = typer.Option(None, "--parent", "-p", help="Parent element id."),
    styles: str = typer.Option(None, "--styles", help='JSON object, e.g. \'{"color": "red"}\'.'),
) -> None:
    """Create an element on the active page."""
    ctx = load_context()
    try:
        style_map = json.loads(styles) if styles else None
    except json.JSONDecodeError as exc:
        typer.echo(f"❌ --styles is not valid JSON: {exc}", err=True)
        raise typer.Exit(code=1)

    conn = open_db()
    try:
        try:
            element = create_element(
                conn,
                ctx.active_page_id,
                element_type,
                parent_id=parent,
                content=content,
                styles=style_map,
            )
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(f"✅ Created {element.element_type} #{element.id} (order {element.order})")
    finally:
        conn.close()


@element_app.command("delete")
@require_page
def element_delete(
    element_id: int = typer.Argument(..., help="Root of the subtree to delete."),
) -> None:
    """Delete an element and all of its descendants."""
    ctx = load_context()
    conn = open_db()
    try:
        element = get_element(conn, element_id)
        if element is None or element.page_id != ctx.active_page_id:
            typer.echo(f"❌ Element {element_id} not found on the active page.")
            raise typer.Exit(code=1)
        try:
            deleted = delete_subtree(conn, element_id)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(f"🗑️  Deleted {deleted} element(s)")
    finally:
        conn.close()
