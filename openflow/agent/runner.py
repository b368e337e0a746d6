"""High-level runner for the builder chat agent.

``run_builder_chat`` wires together the conversation store, the compiled
LangGraph and the action dispatcher.  The API and the CLI both go through it.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from time import time
from typing import Any, Optional

from openflow.agent.graph import build_graph
from openflow.agent.llm import _get_llm
from openflow.agent.state import BuilderState
from openflow.builder.directives import ImageGenerator
from openflow.builder.dispatcher import ActionDispatcher
from openflow.config import settings
from openflow.db import conversations as conversation_store
from openflow.db.pages import get_owner_id, get_page
from openflow.db.provider_configs import get_provider_config
from openflow.errors import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)


def run_builder_chat(
    conn: sqlite3.Connection,
    user_id: int,
    page_id: int,
    message: str,
    conversation_id: Optional[int] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    generator: Optional[ImageGenerator] = None,
) -> dict[str, Any]:
    """Send *message* to the builder agent for *page_id* and apply its actions.

    A new conversation is created when *conversation_id* is ``None``.  The
    user turn and the assistant reply (with its per-action outcomes) are
    appended to the conversation afterwards, even when some actions failed.

    Returns:
        ``{"conversation_id", "message", "actions", "context"}`` where
        ``actions`` is the list of outcome dicts from the dispatcher.

    Raises:
        NotFoundError: Unknown page or conversation.
        AuthorizationError: The conversation or page belongs to another user.
        ProviderError / CircuitOpenError: The LLM could not be reached.
    """
    provider_name = provider or settings.llm_provider
    page = get_page(conn, page_id)
    if page is None:
        raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
    if get_owner_id(conn, page_id) != user_id:
        raise AuthorizationError(f"User {user_id} does not own page {page_id}", page_id=page_id)

    if conversation_id is None:
        conversation = conversation_store.create_conversation(
            conn, user_id, provider_name, model, project_id=page.project_id, page_id=page_id
        )
    else:
        conversation = conversation_store.get_conversation(conn, conversation_id)
        if conversation is None:
            raise NotFoundError(
                f"Conversation {conversation_id} not found", conversation_id=conversation_id
            )
        if conversation.user_id != user_id:
            raise AuthorizationError(
                f"User {user_id} does not own conversation {conversation_id}",
                conversation_id=conversation_id,
            )

    provider_config = get_provider_config(conn, user_id, provider_name)
    if provider_config is not None and not provider_config.is_active:
        provider_config = None

    def _llm_factory() -> Any:
        return _get_llm(provider_config, model, provider_name)

    dispatcher = ActionDispatcher(conn, generator)
    graph = build_graph(conn, dispatcher, _llm_factory)
    run_config: dict[str, Any] = {"configurable": {"thread_id": str(uuid.uuid4())}}

    initial_state: BuilderState = {
        "user_id": user_id,
        "page_id": page_id,
        "message": message,
        "history": conversation.messages,
        "context": {},
        "reply": "",
        "actions": [],
        "outcomes": [],
        "status": "loading",
    }

    for event in graph.stream(initial_state, config=run_config):
        node_name = next(iter(event), None)
        if node_name:
            logger.debug("[Agent] Node finished: %s", node_name)

    final: BuilderState = graph.get_state(run_config).values  # type: ignore[assignment]

    now = int(time())
    outcomes = final.get("outcomes", [])
    conversation_store.append_messages(
        conn,
        conversation.id,
        [
            {"role": "user", "content": message, "ts": now},
            {
                "role": "assistant",
                "content": final.get("reply", ""),
                "ts": now,
                "actions": outcomes,
            },
        ],
    )
    return {
        "conversation_id": conversation.id,
        "message": final.get("reply", ""),
        "actions": outcomes,
        "context": final.get("context", {}),
    }
