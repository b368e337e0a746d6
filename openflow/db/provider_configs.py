"""Per-user AI provider settings (API key, base URL, default model)."""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Any, Optional

from openflow.db.models import ProviderConfig
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import ValidationError

KNOWN_PROVIDERS = ("ollama", "openai")


def _row_to_config(row: sqlite3.Row) -> ProviderConfig:
    return ProviderConfig(
        id=row["id"],
        user_id=row["user_id"],
        provider=row["provider"],
        api_key=row["api_key"],
        base_url=row["base_url"],
        model=row["model"],
        settings=json.loads(row["settings"] or "{}"),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def save_provider_config(
    conn: sqlite3.Connection,
    user_id: int,
    provider: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    model: Optional[str] = None,
    settings: Optional[dict[str, Any]] = None,
    is_active: bool = True,
    *,
    scope: Optional[TransactionScope] = None,
) -> ProviderConfig:
    """Insert or replace the config for ``(user_id, provider)``."""
    if provider not in KNOWN_PROVIDERS:
        raise ValidationError(
            f"Unknown provider {provider!r}; expected one of {', '.join(KNOWN_PROVIDERS)}"
        )
    now = int(time())

    def _upsert(scope: TransactionScope) -> None:
        conn.execute(
            """
            INSERT INTO ai_provider_configs (user_id, provider, api_key, base_url, model,
                                             settings, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                api_key    = excluded.api_key,
                base_url   = excluded.base_url,
                model      = excluded.model,
                settings   = excluded.settings,
                is_active  = excluded.is_active,
                updated_at = excluded.updated_at
            """,
            (
                user_id,
                provider,
                api_key,
                base_url,
                model,
                json.dumps(settings or {}),
                int(is_active),
                now,
                now,
            ),
        )

    with_transaction(conn, _upsert, "save_provider_config", scope=scope)
    return get_provider_config(conn, user_id, provider)  # type: ignore[return-value]


def get_provider_config(
    conn: sqlite3.Connection, user_id: int, provider: str
) -> Optional[ProviderConfig]:
    row = conn.execute(
        "SELECT * FROM ai_provider_configs WHERE user_id = ? AND provider = ?",
        (user_id, provider),
    ).fetchone()
    return _row_to_config(row) if row else None


def list_provider_configs(conn: sqlite3.Connection, user_id: int) -> list[ProviderConfig]:
    rows = conn.execute(
        "SELECT * FROM ai_provider_configs WHERE user_id = ? ORDER BY provider",
        (user_id,),
    ).fetchall()
    return [_row_to_config(r) for r in rows]


def delete_provider_config(
    conn: sqlite3.Connection,
    user_id: int,
    provider: str,
    *,
    scope: Optional[TransactionScope] = None,
) -> bool:
    """Remove a config.  Returns ``False`` when there was nothing to remove."""
    removed = with_transaction(
        conn,
        lambda scope: conn.execute(
            "DELETE FROM ai_provider_configs WHERE user_id = ? AND provider = ?",
            (user_id, provider),
        ).rowcount,
        "delete_provider_config",
        scope=scope,
    )
    return removed > 0
