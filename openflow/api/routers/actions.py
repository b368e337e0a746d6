"""Builder action endpoints.

Routes
------
POST /actions         Execute one command (raises on failure)
POST /actions/batch   Execute commands independently, one outcome each
POST /actions/find    Find elements on a page by description keywords

Commands are accepted in any shape :func:`~openflow.builder.actions.parse_action`
understands, so the body of ``POST /actions`` is a free-form JSON value.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from openflow.api.deps import get_actor, get_dispatcher
from openflow.builder.dispatcher import ActionDispatcher

router = APIRouter()


class BatchRequest(BaseModel):
    actions: list[Any]


class FindRequest(BaseModel):
    page_id: int
    description: str


@router.post("", response_model=dict[str, Any])
def execute_action_endpoint(
    command: Any = Body(...),
    actor: int = Depends(get_actor),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    return dispatcher.execute_action(command, actor).to_dict()


@router.post("/batch", response_model=list[dict[str, Any]])
def execute_actions_endpoint(
    body: BatchRequest,
    actor: int = Depends(get_actor),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
) -> list[dict[str, Any]]:
    return [o.to_dict() for o in dispatcher.execute_actions(body.actions, actor)]


@router.post("/find", response_model=list[dict[str, Any]])
def find_elements_endpoint(
    body: FindRequest,
    actor: int = Depends(get_actor),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
) -> list[dict[str, Any]]:
    return [
        el.to_dict()
        for el in dispatcher.find_elements(body.page_id, body.description, actor)
    ]
