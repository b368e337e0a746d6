"""Tests for the OpenFlow CLI command groups."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from cli.context import CliContext, load_context, save_context
from cli.main import app
from cli.rendering import render_tree
from openflow.config import settings
from openflow.db import get_connection
from openflow.db.elements import list_page_elements
from openflow.db.models import Element
from openflow.resilience.circuit_breaker import reset_circuit_breakers

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Point the DB and the CLI context at a throwaway workspace."""
    monkeypatch.setattr(settings, "workspace_dir", tmp_path)
    monkeypatch.setattr(settings, "retry_initial_delay", 0.0)
    reset_circuit_breakers()
    yield tmp_path
    reset_circuit_breakers()


def _invoke(*args: str):
    return runner.invoke(app, list(args))


def _project_and_page():
    assert _invoke("project", "new", "Site").exit_code == 0
    assert _invoke("page", "new", "Home", "home", "--home").exit_code == 0
    return load_context()


def _element(element_id, parent_id=None, element_type="div", order=0, content=None):
    return Element(
        id=element_id,
        page_id=1,
        element_type=element_type,
        parent_id=parent_id,
        order=order,
        content=content,
        styles={},
        attributes={},
        responsive_styles={},
        created_at=0,
        updated_at=0,
    )


# ---------------------------------------------------------------------------
# db / context
# ---------------------------------------------------------------------------

def test_db_init(workspace):
    result = _invoke("db", "init")
    assert result.exit_code == 0
    assert "Database ready" in result.output
    assert (workspace / "builder.db").exists()


def test_context_roundtrip(workspace):
    save_context(CliContext(user_id=3, active_page_id=9, active_page_name="Home"))
    ctx = load_context()
    assert (ctx.user_id, ctx.active_page_id, ctx.active_page_name) == (3, 9, "Home")


def test_corrupt_context_falls_back_to_defaults(workspace):
    settings.cli_config_dir.mkdir(parents=True)
    (settings.cli_config_dir / "context.json").write_text("{not json", encoding="utf-8")
    assert load_context() == CliContext()


# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------

def test_project_new_switches_context(workspace):
    result = _invoke("project", "new", "Landing")
    assert result.exit_code == 0
    assert "✅ Project created: Landing" in result.output

    ctx = load_context()
    assert ctx.active_project_name == "Landing"
    assert ctx.user_id is not None


def test_project_new_rejects_blank_name(workspace):
    result = _invoke("project", "new", "   ")
    assert result.exit_code == 1
    assert "[validation]" in result.output


def test_project_list_marks_active(workspace):
    _invoke("project", "new", "P1")
    _invoke("project", "new", "P2")
    result = _invoke("project", "list")
    assert result.exit_code == 0
    assert "* P2" in result.output
    assert "  P1" in result.output


def test_project_switch(workspace):
    _invoke("project", "new", "P1")
    first = load_context().active_project_id
    _invoke("project", "new", "P2")

    result = _invoke("project", "switch", str(first))
    assert result.exit_code == 0
    assert load_context().active_project_id == first

    assert _invoke("project", "switch", "999").exit_code == 1


def test_commands_need_active_project(workspace):
    result = _invoke("page", "list")
    assert result.exit_code == 1
    assert "No active project selected" in result.output


def test_project_duplicate_and_check(workspace):
    _project_and_page()
    _invoke("element", "add", "section")

    result = _invoke("project", "duplicate", "Copy")
    assert result.exit_code == 0
    assert "1 page(s), 1 element(s)" in result.output

    result = _invoke("project", "check")
    assert result.exit_code == 0
    assert "No integrity issues found" in result.output


def test_project_delete(workspace):
    _project_and_page()
    _invoke("element", "add", "section")

    result = _invoke("project", "delete", "--yes")
    assert result.exit_code == 0
    assert "Deleted 1 page(s) and 1 element(s)" in result.output
    assert load_context().active_project_id is None


def test_project_delete_prompt_can_abort(workspace):
    _invoke("project", "new", "Keep")
    result = runner.invoke(app, ["project", "delete"], input="n\n")
    assert result.exit_code == 1
    assert load_context().active_project_id is not None


# ---------------------------------------------------------------------------
# page
# ---------------------------------------------------------------------------

def test_page_new_and_list(workspace):
    _project_and_page()
    _invoke("page", "new", "About", "about")

    result = _invoke("page", "list")
    assert result.exit_code == 0
    lines = [line for line in result.output.splitlines() if line.strip()]
    assert "Home" in lines[0] and "🏠" in lines[0]
    assert lines[1].startswith("* About")


def test_page_bad_slug(workspace):
    _invoke("project", "new", "Site")
    result = _invoke("page", "new", "Bad", "Has Spaces")
    assert result.exit_code == 1
    assert "Invalid slug" in result.output


def test_page_switch(workspace):
    ctx = _project_and_page()
    _invoke("page", "new", "About", "about")
    assert _invoke("page", "switch", str(ctx.active_page_id)).exit_code == 0
    assert load_context().active_page_name == "Home"


# ---------------------------------------------------------------------------
# element
# ---------------------------------------------------------------------------

def test_element_add_tree_delete(workspace):
    ctx = _project_and_page()
    _invoke("element", "add", "section")
    conn = get_connection()
    section = list_page_elements(conn, ctx.active_page_id)[0]
    conn.close()
    _invoke("element", "add", "heading", "--parent", str(section.id), "-c", "Hello")

    tree = _invoke("element", "tree")
    assert tree.exit_code == 0
    assert f"section #{section.id}" in tree.output
    assert "'Hello'" in tree.output

    result = _invoke("element", "delete", str(section.id))
    assert result.exit_code == 0
    assert "Deleted 2 element(s)" in result.output


def test_element_add_bad_styles(workspace):
    _project_and_page()
    result = _invoke("element", "add", "div", "--styles", "{oops")
    assert result.exit_code == 1
    assert "not valid JSON" in result.output


def test_element_delete_unknown(workspace):
    _project_and_page()
    assert _invoke("element", "delete", "42").exit_code == 1


# ---------------------------------------------------------------------------
# action
# ---------------------------------------------------------------------------

def test_action_apply_single(workspace):
    ctx = _project_and_page()
    command = json.dumps({"type": "add", "data": {"pageId": ctx.active_page_id, "tag": "button"}})
    result = _invoke("action", "apply", command)
    assert result.exit_code == 0
    assert '"action": "create_element"' in result.stdout
    assert '"content": "Button"' in result.stdout


def test_action_apply_list_reports_each(workspace):
    ctx = _project_and_page()
    command = json.dumps(
        [
            {"type": "create", "data": {"pageId": ctx.active_page_id, "type": "text"}},
            {"type": "delete", "data": {"id": 999}},
        ]
    )
    result = _invoke("action", "apply", command)
    assert result.exit_code == 1
    assert "✅ [0] create_element" in result.output
    assert "❌ [1] not_found" in result.output


def test_action_apply_unknown_type(workspace):
    _project_and_page()
    result = _invoke("action", "apply", '{"type": "teleport"}')
    assert result.exit_code == 1
    assert "[validation]" in result.output


# ---------------------------------------------------------------------------
# agent
# ---------------------------------------------------------------------------

def test_agent_chat_applies_actions_and_keeps_conversation(workspace):
    ctx = _project_and_page()
    reply = json.dumps(
        {
            "message": "Added a heading",
            "actions": [
                {"type": "createElement", "data": {"pageId": ctx.active_page_id, "elementType": "heading", "content": "Hi"}}
            ],
        }
    )
    llm = MagicMock()
    llm.invoke.return_value = SimpleNamespace(content=reply)
    with patch("openflow.agent.runner._get_llm", return_value=llm):
        result = _invoke("agent", "chat", "add a heading")

    assert result.exit_code == 0
    assert "🤖 Added a heading" in result.output
    assert "✅ create_element" in result.output
    assert load_context().conversation_id is not None


def test_agent_chat_provider_failure(workspace, monkeypatch):
    monkeypatch.setattr(settings, "retry_max_attempts", 1)
    _project_and_page()
    llm = MagicMock()
    llm.invoke.side_effect = ConnectionError("ollama down")
    with patch("openflow.agent.runner._get_llm", return_value=llm):
        result = _invoke("agent", "chat", "hi")
    assert result.exit_code == 1
    assert "[provider]" in result.output


# ---------------------------------------------------------------------------
# rendering
# ---------------------------------------------------------------------------

def test_render_tree_orders_siblings():
    out = render_tree(
        [_element(1), _element(3, 1, order=1), _element(2, 1, order=0)],
        "Home",
    )
    lines = out.splitlines()
    assert lines[0] == "📄 Home"
    assert "#2" in lines[2] and "#3" in lines[3]


def test_render_tree_orphans_and_cycles():
    out = render_tree([_element(1, parent_id=99), _element(5, 6), _element(6, 5)], "P")
    assert "(orphaned)" in out
    assert "(unreachable)" in out


# ---------------------------------------------------------------------------
# library
# ---------------------------------------------------------------------------

def test_library_save_list_apply(workspace):
    _project_and_page()
    _invoke("element", "add", "section", "-c", "Hero")
    saved = _invoke("library", "save", "Landing", "--category", "marketing")
    assert saved.exit_code == 0
    assert "1 root(s)" in saved.output

    listed = _invoke("library", "list")
    assert "Landing (marketing)" in listed.output

    _invoke("page", "new", "About", "about")
    template_id = listed.output.split("[")[1].split("]")[0]
    applied = _invoke("library", "apply", template_id)
    assert applied.exit_code == 0
    assert "1 element(s) created" in applied.output

    tree = _invoke("element", "tree")
    assert "'Hero'" in tree.output


def test_library_unknown_kind(workspace):
    result = _invoke("library", "list", "--kind", "widget")
    assert result.exit_code == 1
    assert "[validation]" in result.output
