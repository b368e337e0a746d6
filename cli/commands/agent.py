"""AI builder chat on the active page."""

from __future__ import annotations

import typer

from cli.context import ensure_user, fail, load_context, open_db, require_page, save_context
from openflow.agent.runner import run_builder_chat
from openflow.errors import BuilderError

agent_app = typer.Typer(help="Edit the active page by chatting with the builder agent.")


@agent_app.command("chat")
@require_page
def agent_chat(
    message: str = typer.Argument(..., help="What to build or change."),
    new: bool = typer.Option(False, "--new", help="Start a fresh conversation."),
    provider: str = typer.Option(None, help="LLM provider override: ollama | openai."),
    model: str = typer.Option(None, help="Model override."),
) -> None:
    """Send one message; the agent's actions are applied to the active page."""
    ctx = load_context()
    conn = open_db()
    try:
        conversation_id = None if new else ctx.conversation_id
        try:
            reply = run_builder_chat(
                conn,
                ensure_user(conn, ctx),
                ctx.active_page_id,
                message,
                conversation_id=conversation_id,
                provider=provider,
                model=model,
            )
        except BuilderError as exc:
            raise fail(exc)

        ctx.conversation_id = reply["conversation_id"]
        save_context(ctx)

        typer.echo(f"🤖 {reply['message']}")
        for outcome in reply["actions"]:
            if outcome["success"]:
                typer.echo(f"   ✅ {outcome['action']}")
            else:
                error = outcome.get("error") or {}
                typer.echo(f"   ❌ {outcome.get('action')}: {error.get('message')}")
    finally:
        conn.close()
