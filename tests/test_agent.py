"""Tests for the builder chat agent (LangGraph pipeline).

The chat model is replaced with a MagicMock through
``openflow.agent.runner._get_llm``; no Ollama/OpenAI calls are made.
"""

from __future__ import annotations

import json
import sqlite3
from types import SimpleNamespace
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest

from openflow.agent import run_builder_chat
from openflow.agent.llm import chat_completion
from openflow.agent.nodes import build_system_prompt, parse_llm_response
from openflow.builder.directives import ImageGenerator
from openflow.config import settings
from openflow.db.connection import get_connection
from openflow.db.conversations import get_conversation
from openflow.db.elements import create_element, list_page_elements
from openflow.db.migrations import init_db
from openflow.db.pages import create_page
from openflow.db.projects import create_project
from openflow.db.users import create_user
from openflow.errors import AuthorizationError, CircuitOpenError, NotFoundError, ProviderError
from openflow.resilience.circuit_breaker import get_circuit_breaker, reset_circuit_breakers


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

class StaticGenerator(ImageGenerator):
    @property
    def name(self) -> str:
        return "static"

    def generate(self, prompt: str) -> str:
        return "https://img.test/generated.png"


@pytest.fixture(autouse=True)
def _fresh_breakers(monkeypatch: pytest.MonkeyPatch):
    reset_circuit_breakers()
    monkeypatch.setattr(settings, "retry_initial_delay", 0.0)
    monkeypatch.setattr(settings, "retry_max_attempts", 2)
    yield
    reset_circuit_breakers()


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def owner(conn: sqlite3.Connection) -> int:
    return create_user(conn, "owner-1").id


@pytest.fixture()
def page_id(conn: sqlite3.Connection, owner: int) -> int:
    project = create_project(conn, owner, "Demo")
    return create_page(conn, project.id, "Home", "home", is_home_page=True).id


def _llm_replying(*replies: str) -> MagicMock:
    llm = MagicMock()
    llm.invoke.side_effect = [SimpleNamespace(content=r) for r in replies]
    return llm


def _reply(message: str, actions: list) -> str:
    return json.dumps({"message": message, "actions": actions})


# ---------------------------------------------------------------------------
# Response parsing / prompt
# ---------------------------------------------------------------------------

class TestParseLlmResponse:
    def test_json_reply(self) -> None:
        message, actions = parse_llm_response(_reply("Done", [{"type": "select", "data": {"id": 1}}]))
        assert message == "Done"
        assert actions == [{"type": "select", "data": {"id": 1}}]

    def test_fenced_json(self) -> None:
        raw = "```json\n" + _reply("Ok", []) + "\n```"
        assert parse_llm_response(raw) == ("Ok", [])

    def test_plain_text_is_message_only(self) -> None:
        assert parse_llm_response("Sure, what colour?") == ("Sure, what colour?", [])

    def test_json_without_actions_is_message_only(self) -> None:
        raw = json.dumps({"foo": "bar"})
        assert parse_llm_response(raw) == (raw, [])


class TestSystemPrompt:
    def test_lists_elements_and_rules(self) -> None:
        prompt = build_system_prompt(
            {
                "project": {"id": 1, "name": "Demo"},
                "page": {"id": 7, "name": "Home", "slug": "home"},
                "elements": [{"id": 3, "element_type": "heading", "content": "W" * 80, "parent_id": None}],
            }
        )
        assert 'ID:3 - heading: "' + "W" * 50 + '"' in prompt
        assert "<nano:" in prompt
        assert "pageId: 7" in prompt

    def test_empty_canvas(self) -> None:
        prompt = build_system_prompt(
            {"project": {"id": 1, "name": "Demo"}, "page": {"id": 7, "name": "Home", "slug": "home"}, "elements": []}
        )
        assert "canvas is empty" in prompt


# ---------------------------------------------------------------------------
# chat_completion resilience
# ---------------------------------------------------------------------------

class TestChatCompletion:
    def test_retries_transient_failure(self) -> None:
        llm = MagicMock()
        llm.invoke.side_effect = [ConnectionError("reset"), SimpleNamespace(content="hi")]
        assert chat_completion([{"role": "user", "content": "hello"}], llm=llm) == "hi"
        assert llm.invoke.call_count == 2

    def test_exhausted_retries_raise_provider_error(self) -> None:
        llm = MagicMock()
        llm.invoke.side_effect = ConnectionError("down")
        with pytest.raises(ProviderError) as info:
            chat_completion([{"role": "user", "content": "hello"}], llm=llm)
        assert info.value.attempts == 2

    def test_terminal_error_is_not_retried(self) -> None:
        class AuthError(Exception):
            status_code = 401

        llm = MagicMock()
        llm.invoke.side_effect = AuthError("invalid api key")
        with pytest.raises(ProviderError) as info:
            chat_completion([{"role": "user", "content": "hello"}], llm=llm)
        assert llm.invoke.call_count == 1
        assert info.value.attempts == 1
        assert get_circuit_breaker("llm").failure_count == 1

    def test_open_breaker_fails_fast(self) -> None:
        def _boom() -> None:
            raise ConnectionError("x")

        breaker = get_circuit_breaker("llm")
        for _ in range(breaker.failure_threshold):
            with pytest.raises(ConnectionError):
                breaker.execute(_boom)
        llm = MagicMock()
        with pytest.raises(CircuitOpenError):
            chat_completion([{"role": "user", "content": "hello"}], llm=llm)
        llm.invoke.assert_not_called()


# ---------------------------------------------------------------------------
# run_builder_chat
# ---------------------------------------------------------------------------

class TestRunBuilderChat:
    def test_applies_actions_and_stores_turns(
        self, conn: sqlite3.Connection, owner: int, page_id: int
    ) -> None:
        llm = _llm_replying(
            _reply(
                "Added a heading and a hero image",
                [
                    {"type": "createElement", "data": {"pageId": page_id, "elementType": "heading", "content": "Welcome"}},
                    {"type": "createElement", "data": {"pageId": page_id, "elementType": "image", "content": "<nano:a sunny beach>"}},
                ],
            )
        )
        with patch("openflow.agent.runner._get_llm", return_value=llm):
            result = run_builder_chat(
                conn, owner, page_id, "Make a landing page", generator=StaticGenerator()
            )

        assert result["message"] == "Added a heading and a hero image"
        assert [a["success"] for a in result["actions"]] == [True, True]
        contents = [e.content for e in list_page_elements(conn, page_id)]
        assert contents == ["Welcome", "https://img.test/generated.png"]

        conversation = get_conversation(conn, result["conversation_id"])
        assert [m["role"] for m in conversation.messages] == ["user", "assistant"]
        assert conversation.messages[1]["actions"] == result["actions"]
        assert conversation.page_id == page_id

    def test_history_is_sent_on_follow_up(
        self, conn: sqlite3.Connection, owner: int, page_id: int
    ) -> None:
        llm = _llm_replying(_reply("First answer", []), _reply("Second answer", []))
        with patch("openflow.agent.runner._get_llm", return_value=llm):
            first = run_builder_chat(conn, owner, page_id, "first question", generator=StaticGenerator())
            run_builder_chat(
                conn,
                owner,
                page_id,
                "second question",
                conversation_id=first["conversation_id"],
                generator=StaticGenerator(),
            )

        sent = [m.content for m in llm.invoke.call_args_list[1][0][0]]
        assert sent[1:] == ["first question", "First answer", "second question"]
        conversation = get_conversation(conn, first["conversation_id"])
        assert len(conversation.messages) == 4

    def test_context_lists_existing_elements(
        self, conn: sqlite3.Connection, owner: int, page_id: int
    ) -> None:
        el = create_element(conn, page_id, "heading", content="Existing")
        llm = _llm_replying("Just chatting")
        with patch("openflow.agent.runner._get_llm", return_value=llm):
            result = run_builder_chat(conn, owner, page_id, "hi", generator=StaticGenerator())
        assert result["actions"] == []
        assert result["message"] == "Just chatting"
        assert result["context"]["elements"][0]["id"] == el.id
        system_prompt = llm.invoke.call_args[0][0][0].content
        assert f"ID:{el.id}" in system_prompt

    def test_failed_action_is_reported_not_raised(
        self, conn: sqlite3.Connection, owner: int, page_id: int
    ) -> None:
        llm = _llm_replying(
            _reply(
                "Trying",
                [
                    {"type": "deleteElement", "data": {"elementId": 99999}},
                    {"type": "createElement", "data": {"pageId": page_id, "elementType": "text", "content": "ok"}},
                ],
            )
        )
        with patch("openflow.agent.runner._get_llm", return_value=llm):
            result = run_builder_chat(conn, owner, page_id, "go", generator=StaticGenerator())
        assert [a["success"] for a in result["actions"]] == [False, True]
        assert result["actions"][0]["error"]["kind"] == "not_found"

    def test_foreign_page_is_rejected(self, conn: sqlite3.Connection, page_id: int) -> None:
        stranger = create_user(conn, "stranger-1").id
        llm = _llm_replying("never")
        with patch("openflow.agent.runner._get_llm", return_value=llm):
            with pytest.raises(AuthorizationError):
                run_builder_chat(conn, stranger, page_id, "hi", generator=StaticGenerator())
        llm.invoke.assert_not_called()

    def test_unknown_page_and_conversation(
        self, conn: sqlite3.Connection, owner: int, page_id: int
    ) -> None:
        with pytest.raises(NotFoundError):
            run_builder_chat(conn, owner, 404, "hi", generator=StaticGenerator())
        with pytest.raises(NotFoundError):
            run_builder_chat(conn, owner, page_id, "hi", conversation_id=404, generator=StaticGenerator())

    def test_llm_outage_raises_provider_error(
        self, conn: sqlite3.Connection, owner: int, page_id: int
    ) -> None:
        llm = MagicMock()
        llm.invoke.side_effect = ConnectionError("ollama not running")
        with patch("openflow.agent.runner._get_llm", return_value=llm):
            with pytest.raises(ProviderError):
                run_builder_chat(conn, owner, page_id, "hi", generator=StaticGenerator())
        assert list_page_elements(conn, page_id) == []
