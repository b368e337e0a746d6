"""LangGraph builder agent: chat message in, element actions out."""

from openflow.agent.runner import run_builder_chat

__all__ = ["run_builder_chat"]
