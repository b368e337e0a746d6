"""Build and compile the LangGraph builder-agent StateGraph.

The graph topology is:

    START -> load_context -> planner -> executor -> END
                                  |
                                  +--(no actions)--> END

All nodes are created as closures via the ``make_*`` factories in
``openflow.agent.nodes``, so every node shares the same DB connection and
dispatcher without them appearing in the state bag.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Optional

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from openflow.agent.nodes import make_context_loader, make_executor, make_planner
from openflow.agent.state import BuilderState
from openflow.builder.dispatcher import ActionDispatcher


def build_graph(
    conn: sqlite3.Connection,
    dispatcher: ActionDispatcher,
    llm_factory: Optional[Callable[[], Any]] = None,
):
    """Compile and return the builder ``StateGraph`` with an in-memory checkpointer.

    Args:
        conn: Open, initialised DB connection captured by the context loader.
        dispatcher: Dispatcher the executor applies actions through.
        llm_factory: Returns the chat model for the planner; the configured
            default is used when omitted.
    """
    graph = StateGraph(BuilderState)

    graph.add_node("load_context", make_context_loader(conn))
    graph.add_node("planner", make_planner(llm_factory))
    graph.add_node("executor", make_executor(dispatcher))

    graph.add_edge(START, "load_context")
    graph.add_edge("load_context", "planner")

    def _route_planner(state: BuilderState) -> str:
        return "executor" if state.get("actions") else END

    graph.add_conditional_edges("planner", _route_planner)
    graph.add_edge("executor", END)

    return graph.compile(checkpointer=MemorySaver())
