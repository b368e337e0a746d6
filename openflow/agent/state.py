"""State bag passed between builder-agent graph nodes."""

from __future__ import annotations

from typing import Any, TypedDict


class BuilderState(TypedDict, total=False):
    user_id: int
    page_id: int
    message: str
    history: list[dict[str, Any]]
    # Filled by load_context: {"project": {...}, "page": {...}, "elements": [...]}
    context: dict[str, Any]
    reply: str
    actions: list[Any]
    outcomes: list[dict[str, Any]]
    status: str
