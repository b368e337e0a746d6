"""AI builder chat endpoints.

Routes
------
POST /builder/chat                      Send a message; the agent edits the page
GET  /builder/conversations/{conv_id}   Conversation with its full message history
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from openflow.agent.runner import run_builder_chat
from openflow.api.deps import get_actor, get_db
from openflow.db import conversations as conversation_store
from openflow.errors import AuthorizationError, NotFoundError

router = APIRouter()


class ChatRequest(BaseModel):
    page_id: int
    message: str
    conversation_id: Optional[int] = None
    provider: Optional[str] = None
    model: Optional[str] = None


@router.post("/chat", response_model=dict[str, Any])
def builder_chat_endpoint(
    body: ChatRequest,
    request: Request,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Run one agent turn: plan with the LLM, apply actions, persist the exchange."""
    return run_builder_chat(
        conn,
        actor,
        body.page_id,
        body.message,
        conversation_id=body.conversation_id,
        provider=body.provider,
        model=body.model,
        generator=request.app.state.image_generator,
    )


@router.get("/conversations/{conv_id}", response_model=dict[str, Any])
def get_conversation_endpoint(
    conv_id: int,
    actor: int = Depends(get_actor),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    conversation = conversation_store.get_conversation(conn, conv_id)
    if conversation is None:
        raise NotFoundError(f"Conversation {conv_id} not found", conversation_id=conv_id)
    if conversation.user_id != actor:
        raise AuthorizationError(
            f"User {actor} does not own conversation {conv_id}", conversation_id=conv_id
        )
    return asdict(conversation)
