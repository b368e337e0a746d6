"""Apply raw builder actions from the command line."""

import json

import typer

from cli.context import ensure_user, fail, load_context, open_db
from openflow.builder.dispatcher import ActionDispatcher
from openflow.errors import BuilderError

action_app = typer.Typer(help="Dispatch builder actions.")


@action_app.command("apply")
def action_apply(
    command: str = typer.Argument(
        ..., help='Action JSON, e.g. \'{"type": "createElement", "data": {...}}\' or a list.'
    ),
) -> None:
    """Parse, authorise and apply one action (or a JSON list of actions)."""
    try:
        raw = json.loads(command)
    except json.JSONDecodeError as exc:
        typer.echo(f"❌ Not valid JSON: {exc}", err=True)
        raise typer.Exit(code=1)

    ctx = load_context()
    conn = open_db()
    try:
        dispatcher = ActionDispatcher(conn)
        actor = ensure_user(conn, ctx)
        if isinstance(raw, list):
            outcomes = dispatcher.execute_actions(raw, actor)
            for outcome in outcomes:
                if outcome.success:
                    typer.echo(f"✅ [{outcome.index}] {outcome.action}")
                else:
                    error = outcome.error or {}
                    typer.echo(f"❌ [{outcome.index}] {error.get('kind')}: {error.get('message')}")
            if not all(o.success for o in outcomes):
                raise typer.Exit(code=1)
            return

        try:
            result = dispatcher.execute_action(raw, actor)
        except BuilderError as exc:
            raise fail(exc)
        typer.echo(json.dumps(result.to_dict(), indent=2))
    finally:
        conn.close()
