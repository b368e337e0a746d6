"""CRUD helpers for AI builder conversations and their message payloads.

A conversation belongs to a user and, optionally, to the project/page the
user was editing.  Messages are stored as a JSON array in ``messages``.

Message dict shape::

    {
        "role": "user" | "assistant",
        "content": "...",
        "ts": 1700000000   # Unix timestamp (int)
    }
"""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Any, Optional

from openflow.db.models import Conversation
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import NotFoundError


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        project_id=row["project_id"],
        page_id=row["page_id"],
        provider=row["provider"],
        model=row["model"],
        messages=json.loads(row["messages"] or "[]"),
        context=json.loads(row["context"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_conversation(
    conn: sqlite3.Connection,
    user_id: int,
    provider: str,
    model: Optional[str] = None,
    project_id: Optional[int] = None,
    page_id: Optional[int] = None,
    context: Optional[dict[str, Any]] = None,
    *,
    scope: Optional[TransactionScope] = None,
) -> Conversation:
    """Create an empty conversation.

    Args:
        conn: Open DB connection.
        user_id: Owner of the conversation.
        provider: LLM provider name (``ollama``, ``openai``, ...).
        model: Model identifier used for the replies.
        project_id: Project being edited, if any.
        page_id: Page being edited, if any.
        context: Free-form context (selected element, canvas state, ...).

    Returns:
        The newly created :class:`~openflow.db.models.Conversation`.
    """
    now = int(time())

    def _insert(scope: TransactionScope) -> int:
        return conn.execute(
            """
            INSERT INTO ai_conversations (user_id, project_id, page_id, provider, model,
                                          messages, context, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, '[]', ?, ?, ?)
            """,
            (user_id, project_id, page_id, provider, model, json.dumps(context or {}), now, now),
        ).lastrowid

    conv_id = with_transaction(conn, _insert, "create_conversation", scope=scope)
    return get_conversation(conn, conv_id)  # type: ignore[return-value]


def get_conversation(conn: sqlite3.Connection, conv_id: int) -> Optional[Conversation]:
    """Fetch a single conversation.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM ai_conversations WHERE id = ?", (conv_id,)
    ).fetchone()
    return _row_to_conversation(row) if row else None


def list_conversations(
    conn: sqlite3.Connection,
    user_id: int,
    project_id: Optional[int] = None,
) -> list[Conversation]:
    """Return a user's conversations, most recently active first."""
    if project_id is None:
        rows = conn.execute(
            "SELECT * FROM ai_conversations WHERE user_id = ? ORDER BY updated_at DESC, id DESC",
            (user_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            """
            SELECT * FROM ai_conversations
            WHERE  user_id = ? AND project_id = ?
            ORDER  BY updated_at DESC, id DESC
            """,
            (user_id, project_id),
        ).fetchall()
    return [_row_to_conversation(r) for r in rows]


def append_messages(
    conn: sqlite3.Connection,
    conv_id: int,
    messages: list[dict[str, Any]],
    *,
    scope: Optional[TransactionScope] = None,
) -> Conversation:
    """Append *messages* to the stored history and refresh ``updated_at``.

    Raises:
        NotFoundError: If *conv_id* does not exist.
    """

    def _append(scope: TransactionScope) -> None:
        conversation = get_conversation(conn, conv_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conv_id} not found", conversation_id=conv_id)
        conn.execute(
            "UPDATE ai_conversations SET messages = ?, updated_at = ? WHERE id = ?",
            (json.dumps(conversation.messages + messages), int(time()), conv_id),
        )

    with_transaction(conn, _append, "append_messages", scope=scope)
    return get_conversation(conn, conv_id)  # type: ignore[return-value]


def delete_conversation(
    conn: sqlite3.Connection,
    conv_id: int,
    *,
    scope: Optional[TransactionScope] = None,
) -> None:
    """Delete a conversation.  This is a no-op if *conv_id* does not exist."""
    with_transaction(
        conn,
        lambda scope: conn.execute("DELETE FROM ai_conversations WHERE id = ?", (conv_id,)),
        "delete_conversation",
        scope=scope,
    )
