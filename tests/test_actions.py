"""Tests for builder action parsing: aliases, wrapping and payload fields."""

from __future__ import annotations

import pytest

from openflow.builder.actions import (
    ALIASES,
    _SYNONYMS,
    ActionType,
    CreateElementPayload,
    UpdateContentPayload,
    UpdateElementPayload,
    UpdateStylePayload,
    parse_action,
    resolve_action_type,
)
from openflow.errors import UnknownActionError, ValidationError


# ---------------------------------------------------------------------------
# resolve_action_type
# ---------------------------------------------------------------------------

class TestResolveActionType:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("createElement", ActionType.CREATE_ELEMENT),
            ("create_element", ActionType.CREATE_ELEMENT),
            ("ADD", ActionType.CREATE_ELEMENT),
            ("insert-element", ActionType.CREATE_ELEMENT),
            ("updateElement", ActionType.UPDATE_ELEMENT),
            ("modify", ActionType.UPDATE_ELEMENT),
            ("remove", ActionType.DELETE_ELEMENT),
            ("deletePageElements", ActionType.DELETE_PAGE_ELEMENTS),
            ("clear page", ActionType.DELETE_PAGE_ELEMENTS),
            ("wipe", ActionType.DELETE_PAGE_ELEMENTS),
            ("highlight", ActionType.SELECT_ELEMENT),
            ("setStyle", ActionType.UPDATE_STYLE),
            ("setText", ActionType.UPDATE_CONTENT),
        ],
    )
    def test_synonyms(self, name: str, expected: ActionType) -> None:
        assert resolve_action_type(name) is expected

    def test_every_canonical_value_resolves_to_itself(self) -> None:
        for action in ActionType:
            assert resolve_action_type(action.value) is action

    def test_no_alias_maps_to_two_actions(self) -> None:
        assert len(ALIASES) == sum(len(names) for names in _SYNONYMS.values())

    def test_unknown(self) -> None:
        with pytest.raises(UnknownActionError) as info:
            resolve_action_type("teleport")
        assert info.value.kind == "validation"


# ---------------------------------------------------------------------------
# parse_action: envelope
# ---------------------------------------------------------------------------

class TestParseEnvelope:
    def test_canonical_shape(self) -> None:
        action = parse_action(
            {"type": "create_element", "data": {"page_id": 1, "element_type": "heading"}}
        )
        assert action.type is ActionType.CREATE_ELEMENT
        assert isinstance(action.payload, CreateElementPayload)
        assert action.payload.page_id == 1

    def test_nested_action_wrappers(self) -> None:
        raw = {"action": {"action": {"type": "delete", "data": {"id": 9}}}}
        action = parse_action(raw)
        assert action.type is ActionType.DELETE_ELEMENT
        assert action.payload.element_id == 9

    def test_double_wrapped_data(self) -> None:
        raw = {"type": "select", "data": {"data": {"elementId": 3}}}
        assert parse_action(raw).payload.element_id == 3

    @pytest.mark.parametrize("key", ["params", "payload", "args", "arguments"])
    def test_payload_key_variants(self, key: str) -> None:
        action = parse_action({"type": "delete", key: {"elementId": 4}})
        assert action.payload.element_id == 4

    @pytest.mark.parametrize("key", ["action_type", "actionType", "command", "op"])
    def test_type_key_variants(self, key: str) -> None:
        action = parse_action({key: "remove", "data": {"id": 4}})
        assert action.type is ActionType.DELETE_ELEMENT

    def test_flat_payload(self) -> None:
        action = parse_action({"type": "createElement", "pageId": 2, "elementType": "text"})
        assert action.payload.page_id == 2
        assert action.payload.element_type == "text"

    def test_json_strings(self) -> None:
        action = parse_action('{"type": "delete", "data": "{\\"id\\": 5}"}')
        assert action.payload.element_id == 5

    @pytest.mark.parametrize("raw", [[], 42, "not json", '"a string"'])
    def test_non_object_rejected(self, raw) -> None:
        with pytest.raises(ValidationError):
            parse_action(raw)

    def test_missing_type(self) -> None:
        with pytest.raises(ValidationError):
            parse_action({"data": {"id": 1}})

    def test_unknown_type(self) -> None:
        with pytest.raises(UnknownActionError):
            parse_action({"type": "explode", "data": {}})


# ---------------------------------------------------------------------------
# parse_action: payloads
# ---------------------------------------------------------------------------

class TestParsePayloads:
    def test_create_aliases_and_position(self) -> None:
        action = parse_action(
            {
                "type": "add",
                "data": {"page": 1, "tag": "button", "parentId": 7, "text": "Go", "x": 10, "y": 20},
            }
        )
        p = action.payload
        assert (p.element_type, p.parent_id, p.content) == ("button", 7, "Go")
        assert (p.position.x, p.position.y) == (10, 20)

    def test_create_requires_page_and_type(self) -> None:
        with pytest.raises(ValidationError):
            parse_action({"type": "create", "data": {"element_type": "div"}})
        with pytest.raises(ValidationError):
            parse_action({"type": "create", "data": {"page_id": 1}})

    def test_update_tracks_supplied_fields(self) -> None:
        action = parse_action({"type": "update", "data": {"id": 3, "content": "x"}})
        assert isinstance(action.payload, UpdateElementPayload)
        assert action.payload.changes() == {"content": "x"}

    def test_update_parent_null_is_a_change(self) -> None:
        action = parse_action({"type": "update", "data": {"id": 3, "parentId": None}})
        assert action.payload.changes() == {"parent_id": None}

    def test_update_style_aliases(self) -> None:
        action = parse_action({"type": "css", "data": {"elementId": 1, "prop": "color", "val": "red"}})
        assert isinstance(action.payload, UpdateStylePayload)
        assert (action.payload.property, action.payload.value) == ("color", "red")

    def test_update_style_value_may_be_null(self) -> None:
        action = parse_action({"type": "setStyle", "data": {"id": 1, "key": "color", "value": None}})
        assert action.payload.value is None

    def test_update_content_range(self) -> None:
        action = parse_action(
            {"type": "updateContent", "data": {"id": 1, "text": "ab", "range": {"start": 1, "end": 3}}}
        )
        assert isinstance(action.payload, UpdateContentPayload)
        assert (action.payload.range.start, action.payload.range.end) == (1, 3)

    def test_inverted_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_action(
                {"type": "updateContent", "data": {"id": 1, "text": "x", "range": {"start": 4, "end": 2}}}
            )

    def test_negative_order_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_action({"type": "create", "data": {"pageId": 1, "type": "div", "order": -1}})
