"""Library commands: save pages as templates and stamp them onto other pages."""

import typer

from cli.context import ensure_user, fail, load_context, open_db, require_page
from openflow.db.library import (
    apply_structure,
    delete_item,
    get_item,
    list_items,
    save_page_as_template,
)
from openflow.errors import BuilderError

library_app = typer.Typer(help="Manage saved templates and components.")

_KIND_OPTION = typer.Option("template", "--kind", "-k", help="template | component")


@library_app.command("save")
@require_page
def library_save(
    name: str = typer.Argument(..., help="Template name."),
    category: str = typer.Option(None, help="Optional category, e.g. landing."),
) -> None:
    """Snapshot the active page's element tree as a template."""
    ctx = load_context()
    conn = open_db()
    try:
        try:
            item = save_page_as_template(
                conn, ctx.active_page_id, name, user_id=ensure_user(conn, ctx), category=category
            )
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(f"✅ Saved template: {item.name} [{item.id}] ({len(item.structure)} root(s))")
    finally:
        conn.close()


@library_app.command("list")
def library_list(
    kind: str = _KIND_OPTION,
    category: str = typer.Option(None, help="Only this category."),
) -> None:
    """List public items plus the local user's own."""
    ctx = load_context()
    conn = open_db()
    try:
        try:
            items = list_items(conn, kind, ensure_user(conn, ctx), category)
        except BuilderError as exc:
            raise fail(exc)
        if not items:
            typer.echo(f"No {kind}s found.")
            return
        for item in items:
            tag = f" ({item.category})" if item.category else ""
            typer.echo(f" - {item.name}{tag} \t[{item.id}]")
    finally:
        conn.close()


@library_app.command("apply")
@require_page
def library_apply(
    item_id: int = typer.Argument(..., help="Template or component id."),
    kind: str = _KIND_OPTION,
) -> None:
    """Insert the item's element trees at the root of the active page."""
    ctx = load_context()
    conn = open_db()
    try:
        try:
            item = get_item(conn, kind, item_id)
            if item is None:
                typer.echo(f"❌ {kind.capitalize()} {item_id} not found.")
                raise typer.Exit(code=1)
            created = apply_structure(conn, ctx.active_page_id, item.structure)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(f"✅ Applied {item.name}: {len(created)} element(s) created")
    finally:
        conn.close()


@library_app.command("delete")
def library_delete(
    item_id: int = typer.Argument(..., help="Template or component id."),
    kind: str = _KIND_OPTION,
) -> None:
    """Delete a saved item."""
    conn = open_db()
    try:
        try:
            delete_item(conn, kind, item_id)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(f"🗑️  Deleted {kind} {item_id}")
    finally:
        conn.close()
