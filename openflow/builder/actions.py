"""Parsing of externally produced mutation commands.

Commands come from the UI and, mostly, from an LLM that is loose with names:
``createElement``, ``create_element``, ``add`` and ``{"action": {...}}``
double wrapping all show up in practice.  :func:`parse_action` is the one
place that maps every accepted spelling onto a closed :class:`ActionType`
and a validated payload model; everything downstream works on the canonical
form only.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from openflow.errors import UnknownActionError, ValidationError


class ActionType(str, Enum):
    CREATE_ELEMENT = "create_element"
    UPDATE_ELEMENT = "update_element"
    DELETE_ELEMENT = "delete_element"
    DELETE_PAGE_ELEMENTS = "delete_page_elements"
    SELECT_ELEMENT = "select_element"
    UPDATE_STYLE = "update_style"
    UPDATE_CONTENT = "update_content"


# Keys are case-folded with spaces, '_' and '-' removed.
_SYNONYMS: dict[ActionType, tuple[str, ...]] = {
    ActionType.CREATE_ELEMENT: (
        "createelement", "create", "add", "addelement", "insert",
        "insertelement", "new", "newelement", "append", "appendelement",
    ),
    ActionType.UPDATE_ELEMENT: (
        "updateelement", "update", "edit", "editelement", "modify",
        "modifyelement", "change", "changeelement", "patch", "setstyles",
        "updatestyles",
    ),
    ActionType.DELETE_ELEMENT: (
        "deleteelement", "delete", "remove", "removeelement", "destroy",
        "destroyelement",
    ),
    ActionType.DELETE_PAGE_ELEMENTS: (
        "deletepageelements", "deleteallelements", "deleteall", "clearpage",
        "clear", "clearall", "clearelements", "removeall", "removeallelements",
        "wipe", "wipepage", "reset", "resetpage",
    ),
    ActionType.SELECT_ELEMENT: (
        "selectelement", "select", "focus", "focuselement", "highlight",
    ),
    ActionType.UPDATE_STYLE: (
        "updatestyle", "setstyle", "style", "changestyle", "setstyleproperty",
        "css",
    ),
    ActionType.UPDATE_CONTENT: (
        "updatecontent", "setcontent", "content", "changecontent", "settext",
        "updatetext", "edittext", "changetext", "text",
    ),
}

ALIASES: dict[str, ActionType] = {
    alias: action for action, aliases in _SYNONYMS.items() for alias in aliases
}

_TYPE_KEYS = ("type", "action_type", "actionType", "action", "command", "op")
_PAYLOAD_KEYS = ("data", "params", "payload", "args", "arguments")
_MAX_UNWRAP = 5


def _fold(name: str) -> str:
    return re.sub(r"[\s_\-]", "", name).casefold()


def resolve_action_type(name: str) -> ActionType:
    """Map any accepted spelling of an action name to its :class:`ActionType`.

    Raises:
        UnknownActionError: No synonym matches.
    """
    action = ALIASES.get(_fold(name))
    if action is None:
        raise UnknownActionError(f"Unknown action type: {name!r}", action_type=name)
    return action


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Position(BaseModel):
    x: float
    y: float


class Range(BaseModel):
    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "Range":
        if self.end < self.start:
            raise ValueError("range end must not precede start")
        return self


class CreateElementPayload(_Payload):
    page_id: int = Field(validation_alias=_aliases("page_id", "pageId", "page"))
    element_type: str = Field(
        validation_alias=_aliases("element_type", "elementType", "type", "tag", "kind")
    )
    parent_id: Optional[int] = Field(
        default=None, validation_alias=_aliases("parent_id", "parentId", "parent")
    )
    content: Optional[str] = Field(default=None, validation_alias=_aliases("content", "text"))
    styles: dict[str, Any] = Field(
        default_factory=dict, validation_alias=_aliases("styles", "style", "css")
    )
    attributes: dict[str, Any] = Field(
        default_factory=dict, validation_alias=_aliases("attributes", "attrs", "props")
    )
    order: Optional[int] = Field(default=None, ge=0)
    position: Optional[Position] = None

    @model_validator(mode="before")
    @classmethod
    def _loose_coordinates(cls, data: Any) -> Any:
        # {"x": 10, "y": 20} at payload level is an explicit position too.
        if isinstance(data, dict) and "position" not in data and "x" in data and "y" in data:
            data = {**data, "position": {"x": data["x"], "y": data["y"]}}
        return data


class UpdateElementPayload(_Payload):
    element_id: int = Field(validation_alias=_aliases("element_id", "elementId", "id"))
    content: Optional[str] = Field(default=None, validation_alias=_aliases("content", "text"))
    styles: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=_aliases("styles", "style", "css")
    )
    attributes: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=_aliases("attributes", "attrs", "props")
    )
    order: Optional[int] = Field(default=None, ge=0)
    parent_id: Optional[int] = Field(
        default=None, validation_alias=_aliases("parent_id", "parentId", "parent")
    )

    def changes(self) -> dict[str, Any]:
        """Only the fields the command actually supplied."""
        return {
            name: getattr(self, name)
            for name in ("content", "styles", "attributes", "order", "parent_id")
            if name in self.model_fields_set
        }


class ElementRefPayload(_Payload):
    element_id: int = Field(validation_alias=_aliases("element_id", "elementId", "id"))


class PageRefPayload(_Payload):
    page_id: int = Field(validation_alias=_aliases("page_id", "pageId", "page", "id"))


class UpdateStylePayload(_Payload):
    element_id: int = Field(validation_alias=_aliases("element_id", "elementId", "id"))
    property: str = Field(
        min_length=1,
        validation_alias=_aliases("property", "prop", "key", "styleProperty", "name"),
    )
    value: Union[str, int, float, None] = Field(
        validation_alias=_aliases("value", "val", "styleValue")
    )


class UpdateContentPayload(_Payload):
    element_id: int = Field(validation_alias=_aliases("element_id", "elementId", "id"))
    content: str = Field(validation_alias=_aliases("content", "text", "value"))
    range: Optional[Range] = None


PAYLOAD_MODELS: dict[ActionType, type[_Payload]] = {
    ActionType.CREATE_ELEMENT: CreateElementPayload,
    ActionType.UPDATE_ELEMENT: UpdateElementPayload,
    ActionType.DELETE_ELEMENT: ElementRefPayload,
    ActionType.DELETE_PAGE_ELEMENTS: PageRefPayload,
    ActionType.SELECT_ELEMENT: ElementRefPayload,
    ActionType.UPDATE_STYLE: UpdateStylePayload,
    ActionType.UPDATE_CONTENT: UpdateContentPayload,
}


@dataclass
class BuilderAction:
    type: ActionType
    payload: _Payload


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _decode(value: Any, what: str) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{what} is not valid JSON: {exc}") from None
    return value


def _format_errors(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
        for err in exc.errors()
    )


def parse_action(raw: Any) -> BuilderAction:
    """Normalise one raw command into a :class:`BuilderAction`.

    Accepts ``{"type": ..., "data": {...}}`` and the usual deviations: the
    command nested under ``action``, the payload under ``params``/``payload``
    or doubly wrapped in ``data``, payload fields at the top level, JSON
    strings instead of objects, and aliased field names.

    Raises:
        ValidationError: Not an object, missing type, or an invalid payload.
        UnknownActionError: The type matches no known action.
    """
    command = _decode(raw, "Command")
    for _ in range(_MAX_UNWRAP):
        if isinstance(command, dict) and isinstance(command.get("action"), dict):
            command = command["action"]
        else:
            break
    if not isinstance(command, dict):
        raise ValidationError("Command must be an object")

    type_key = next(
        (k for k in _TYPE_KEYS if isinstance(command.get(k), str) and command[k].strip()),
        None,
    )
    if type_key is None:
        raise ValidationError("Command is missing an action type")
    action_type = resolve_action_type(command[type_key])

    payload_key = next((k for k in _PAYLOAD_KEYS if k in command), None)
    if payload_key is not None:
        payload = _decode(command[payload_key], "Command payload")
    else:
        payload = {k: v for k, v in command.items() if k != type_key}

    for _ in range(_MAX_UNWRAP):
        if (
            isinstance(payload, dict)
            and isinstance(payload.get("data"), dict)
            and set(payload) <= {"data", *_TYPE_KEYS}
        ):
            payload = payload["data"]
        else:
            break
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Command payload must be an object")

    try:
        model = PAYLOAD_MODELS[action_type].model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {action_type.value} payload: {_format_errors(exc)}",
            action_type=action_type.value,
        ) from None
    return BuilderAction(type=action_type, payload=model)
