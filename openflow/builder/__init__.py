"""Builder action parsing, directive resolution and dispatch.

    from openflow.builder import ActionDispatcher, parse_action
"""

from openflow.builder.actions import ActionType, BuilderAction, parse_action
from openflow.builder.dispatcher import ActionDispatcher, ActionOutcome, ActionResult

__all__ = [
    "ActionDispatcher",
    "ActionOutcome",
    "ActionResult",
    "ActionType",
    "BuilderAction",
    "parse_action",
]
