"""LangGraph node functions for the builder agent.

Each public symbol is a *factory* that accepts what its node needs (the open
DB connection, the dispatcher or an LLM factory) and returns a callable
``(BuilderState) -> dict`` suitable for use as a LangGraph node.  Using
factories keeps the connection and the dispatcher out of the state bag.

Public factories
----------------
``make_context_loader`` loads the project, page and element list.
``make_planner``        asks the LLM for a reply plus a list of actions.
``make_executor``       applies the actions through the dispatcher.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Callable, Optional

from openflow.agent.llm import chat_completion
from openflow.agent.state import BuilderState
from openflow.builder.dispatcher import ActionDispatcher
from openflow.config import settings
from openflow.db.elements import list_page_elements
from openflow.db.pages import get_page
from openflow.db.projects import get_project
from openflow.errors import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 50


# ---------------------------------------------------------------------------
# Prompt + response helpers
# ---------------------------------------------------------------------------

def build_system_prompt(context: dict[str, Any]) -> str:
    """Describe the page being edited and the JSON reply contract."""
    page = context["page"]
    project = context["project"]
    elements = context["elements"]
    if elements:
        listing = "\n".join(
            f"{i}. ID:{el['id']} - {el['element_type']}: \"{(el['content'] or '')[:_PREVIEW_CHARS]}\""
            for i, el in enumerate(elements, start=1)
        )
        canvas = f"\n\nExisting elements on canvas:\n{listing}"
    else:
        canvas = "\n\nThe canvas is empty - start fresh!"

    return (
        "You are an AI website builder. You turn precise commands and vague "
        "creative direction into edits of a static page.\n\n"
        "CURRENT CONTEXT:\n"
        f"- Page: \"{page['name']}\" in project \"{project['name']}\"\n"
        f"- Elements on canvas: {len(elements)}{canvas}\n\n"
        "RULES:\n"
        "- Only reference element IDs from the list above; create new elements otherwise.\n"
        "- Elements flow vertically: never use position: absolute; use width: 100%.\n"
        "- Static HTML/CSS only: no scripts or event handlers.\n"
        "- For images use <nano:detailed description of the image> as content; "
        "the system replaces it with a generated image.\n\n"
        "ACTIONS: createElement, updateElement, deleteElement, deletePageElements, "
        "selectElement, updateStyle (elementId, property, value), "
        "updateContent (elementId, content, optional range {start, end}).\n\n"
        "RESPONSE FORMAT (JSON only, no markdown):\n"
        "{\n"
        '  "message": "Friendly explanation of what you are doing",\n'
        '  "actions": [\n'
        f'    {{"type": "createElement", "data": {{"pageId": {page["id"]}, '
        '"elementType": "heading", "content": "Welcome"}}\n'
        "  ]\n"
        "}\n"
        f"Always include pageId: {page['id']} in createElement actions. Return ONLY valid JSON."
    )


def _strip_code_fence(text: str) -> str:
    body = text.strip()
    if body.startswith("```json"):
        body = body[7:]
    elif body.startswith("```"):
        body = body[3:]
    if body.endswith("```"):
        body = body[:-3]
    return body.strip()


def parse_llm_response(raw: str) -> tuple[str, list[Any]]:
    """Split an LLM reply into ``(message, actions)``.

    A reply that is not the expected JSON object is treated as a plain chat
    message with no actions.
    """
    try:
        parsed = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError:
        return raw, []
    if isinstance(parsed, dict) and isinstance(parsed.get("actions"), list):
        message = parsed.get("message")
        return (message if isinstance(message, str) else ""), parsed["actions"]
    return raw, []


# ---------------------------------------------------------------------------
# Node factories
# ---------------------------------------------------------------------------

def make_context_loader(conn: sqlite3.Connection):
    """Return a *load_context* node that snapshots the page being edited.

    Raises (inside the graph run):
        NotFoundError / AuthorizationError for a missing or foreign page.
    """

    def load_context(state: BuilderState) -> dict:
        page = get_page(conn, state["page_id"])
        if page is None:
            raise NotFoundError(f"Page {state['page_id']} not found", page_id=state["page_id"])
        project = get_project(conn, page.project_id)
        if project is None or project.user_id != state["user_id"]:
            raise AuthorizationError(
                f"User {state['user_id']} does not own page {page.id}", page_id=page.id
            )
        elements = list_page_elements(conn, page.id)
        logger.info("[Agent] Context: page %s with %d element(s)", page.id, len(elements))
        return {
            "context": {
                "project": {"id": project.id, "name": project.name},
                "page": {"id": page.id, "name": page.name, "slug": page.slug},
                "elements": [
                    {
                        "id": el.id,
                        "element_type": el.element_type,
                        "content": el.content,
                        "parent_id": el.parent_id,
                    }
                    for el in elements
                ],
            },
            "status": "planning",
        }

    return load_context


def make_planner(llm_factory: Optional[Callable[[], Any]] = None):
    """Return a *planner* node that asks the LLM for a reply and actions."""

    def planner(state: BuilderState) -> dict:
        history = state.get("history", [])[-(settings.llm_history_limit * 2):]
        messages = [
            {"role": "system", "content": build_system_prompt(state["context"])},
            *(
                {"role": turn.get("role", "user"), "content": turn.get("content", "")}
                for turn in history
            ),
            {"role": "user", "content": state["message"]},
        ]
        llm = llm_factory() if llm_factory is not None else None
        raw = chat_completion(messages, llm=llm)
        reply, actions = parse_llm_response(raw)
        logger.info("[Agent] Planner proposed %d action(s)", len(actions))
        return {
            "reply": reply,
            "actions": actions,
            "status": "executing" if actions else "done",
        }

    return planner


def make_executor(dispatcher: ActionDispatcher):
    """Return an *executor* node applying each action independently."""

    def executor(state: BuilderState) -> dict:
        outcomes = dispatcher.execute_actions(state.get("actions", []), state["user_id"])
        failed = sum(1 for o in outcomes if not o.success)
        if failed:
            logger.warning("[Agent] %d of %d action(s) failed", failed, len(outcomes))
        return {"outcomes": [o.to_dict() for o in outcomes], "status": "done"}

    return executor
