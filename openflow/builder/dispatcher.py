"""Apply normalised builder actions to the element store.

Every command goes through the same steps:

1. :func:`~openflow.builder.actions.parse_action` (aliases, wrapping, payload).
2. Authorisation: the target page/element must belong to a project owned by
   the acting user.
3. Directive resolution on content and string style values.
4. The store mutation, inside one transaction.

``execute_action`` raises on failure; ``execute_actions`` runs a list of
commands independently and reports each outcome as a structured record.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from openflow.builder.actions import (
    ActionType,
    BuilderAction,
    CreateElementPayload,
    ElementRefPayload,
    PageRefPayload,
    UpdateContentPayload,
    UpdateElementPayload,
    UpdateStylePayload,
    parse_action,
)
from openflow.builder.defaults import default_content, default_styles
from openflow.builder.directives import (
    ImageGenerator,
    build_image_generator,
    resolve_directives,
    resolve_styles,
)
from openflow.db import elements as element_store
from openflow.db.models import Element
from openflow.db.pages import get_owner_id
from openflow.db.transaction import TransactionScope, with_transaction
from openflow.errors import AuthorizationError, NotFoundError, error_payload

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    action: ActionType
    success: bool = True
    element: Optional[Element] = None
    deleted_count: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"action": self.action.value, "success": self.success}
        if self.element is not None:
            payload["element"] = self.element.to_dict()
        if self.deleted_count is not None:
            payload["deleted_count"] = self.deleted_count
        return payload


@dataclass
class ActionOutcome:
    """Per-command record from :meth:`ActionDispatcher.execute_actions`."""

    index: int
    success: bool
    action: Optional[str] = None
    result: Optional[ActionResult] = None
    error: Optional[dict[str, Any]] = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "index": self.index,
            "success": self.success,
            "action": self.action,
        }
        if self.result is not None:
            payload["result"] = self.result.to_dict()
        if self.error is not None:
            payload["error"] = self.error
        return payload


class ActionDispatcher:
    """Validates, authorises and applies builder actions for one connection.

    Args:
        conn: Open DB connection.
        generator: Image generator for ``<nano:...>`` directives; built from
            ``settings`` when omitted.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        generator: Optional[ImageGenerator] = None,
    ) -> None:
        self.conn = conn
        self.generator = generator or build_image_generator()
        self._handlers: dict[
            ActionType, Callable[[Any, TransactionScope], ActionResult]
        ] = {
            ActionType.CREATE_ELEMENT: self._create_element,
            ActionType.UPDATE_ELEMENT: self._update_element,
            ActionType.DELETE_ELEMENT: self._delete_element,
            ActionType.DELETE_PAGE_ELEMENTS: self._delete_page_elements,
            ActionType.SELECT_ELEMENT: self._select_element,
            ActionType.UPDATE_STYLE: self._update_style,
            ActionType.UPDATE_CONTENT: self._update_content,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for {sorted(a.value for a in missing)}")

    # ------------------------------------------------------------------
    # Authorisation
    # ------------------------------------------------------------------
    def _authorize_page(self, page_id: int, actor_id: int) -> None:
        owner = get_owner_id(self.conn, page_id)
        if owner is None:
            raise NotFoundError(f"Page {page_id} not found", page_id=page_id)
        if owner != actor_id:
            raise AuthorizationError(
                f"User {actor_id} does not own page {page_id}", page_id=page_id
            )

    def _authorize_element(self, element_id: int, actor_id: int) -> Element:
        element = element_store.get_element(self.conn, element_id)
        if element is None:
            raise NotFoundError(f"Element {element_id} not found", element_id=element_id)
        self._authorize_page(element.page_id, actor_id)
        return element

    def _authorize(self, action: BuilderAction, actor_id: int) -> None:
        payload = action.payload
        if isinstance(payload, (CreateElementPayload, PageRefPayload)):
            self._authorize_page(payload.page_id, actor_id)
        else:
            self._authorize_element(payload.element_id, actor_id)  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def execute_action(self, command: Any, actor_id: int) -> ActionResult:
        """Parse, authorise and apply one command.

        Raises:
            ValidationError: Malformed command or unknown action type.
            NotFoundError: The target page or element does not exist.
            AuthorizationError: *actor_id* does not own the target project.
        """
        action = command if isinstance(command, BuilderAction) else parse_action(command)
        self._authorize(action, actor_id)
        # Directives resolve before the transaction opens so no outbound
        # call runs while the write lock is held.
        action = self._resolve_action(action)
        handler = self._handlers[action.type]
        result = with_transaction(
            self.conn,
            lambda scope: handler(action.payload, scope),
            f"action_{action.type.value}",
        )
        logger.info("[Dispatcher] %s applied for user %s", action.type.value, actor_id)
        return result

    def execute_actions(self, commands: Sequence[Any], actor_id: int) -> list[ActionOutcome]:
        """Apply each command independently; a failure does not stop the rest."""
        outcomes: list[ActionOutcome] = []
        for index, command in enumerate(commands):
            try:
                action = parse_action(command)
                result = self.execute_action(action, actor_id)
            except Exception as exc:
                logger.warning("[Dispatcher] Command %d failed: %s", index, exc)
                raw_type = command.get("type") if isinstance(command, dict) else None
                outcomes.append(
                    ActionOutcome(
                        index=index,
                        success=False,
                        action=raw_type if isinstance(raw_type, str) else None,
                        error=error_payload(exc),
                    )
                )
                continue
            outcomes.append(
                ActionOutcome(
                    index=index, success=True, action=action.type.value, result=result
                )
            )
        return outcomes

    def find_elements(self, page_id: int, description: str, actor_id: int) -> list[Element]:
        """Elements whose content, type or style values mention any keyword of *description*."""
        self._authorize_page(page_id, actor_id)
        keywords = [w for w in description.lower().split() if len(w) > 2]
        if not keywords:
            return []
        matches: list[Element] = []
        for element in element_store.list_page_elements(self.conn, page_id):
            haystack = " ".join(
                [
                    element.content or "",
                    element.element_type,
                    *(str(v) for v in element.styles.values()),
                ]
            ).lower()
            if any(word in haystack for word in keywords):
                matches.append(element)
        return matches

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _resolve_action(self, action: BuilderAction) -> BuilderAction:
        """Return *action* with every directive in its text fields resolved."""
        p = action.payload
        updates: dict[str, Any] = {}
        if isinstance(p, (CreateElementPayload, UpdateElementPayload, UpdateContentPayload)):
            if p.content is not None:
                updates["content"] = resolve_directives(p.content, self.generator)
        if isinstance(p, (CreateElementPayload, UpdateElementPayload)) and p.styles:
            updates["styles"] = resolve_styles(p.styles, self.generator)
        if isinstance(p, UpdateStylePayload) and isinstance(p.value, str):
            updates["value"] = resolve_styles({p.property: p.value}, self.generator)[p.property]
        if not updates:
            return action
        return BuilderAction(type=action.type, payload=p.model_copy(update=updates))

    def _create_element(self, p: CreateElementPayload, scope: TransactionScope) -> ActionResult:
        styles = {**default_styles(p.element_type, p.position), **p.styles}
        content = p.content if p.content is not None else default_content(p.element_type)
        element = element_store.create_element(
            self.conn,
            p.page_id,
            p.element_type,
            parent_id=p.parent_id,
            order=p.order,
            content=content,
            styles=styles,
            attributes=p.attributes,
            scope=scope,
        )
        return ActionResult(ActionType.CREATE_ELEMENT, element=element)

    def _update_element(self, p: UpdateElementPayload, scope: TransactionScope) -> ActionResult:
        changes = p.changes()
        if changes.get("styles") is not None:
            current = element_store.get_element(self.conn, p.element_id)
            changes["styles"] = {**(current.styles if current else {}), **changes["styles"]}
        element = element_store.update_element(self.conn, p.element_id, scope=scope, **changes)
        return ActionResult(ActionType.UPDATE_ELEMENT, element=element)

    def _delete_element(self, p: ElementRefPayload, scope: TransactionScope) -> ActionResult:
        deleted = element_store.delete_subtree(self.conn, p.element_id, scope=scope)
        return ActionResult(ActionType.DELETE_ELEMENT, deleted_count=deleted)

    def _delete_page_elements(self, p: PageRefPayload, scope: TransactionScope) -> ActionResult:
        deleted = element_store.delete_page_elements(self.conn, p.page_id, scope=scope)
        return ActionResult(ActionType.DELETE_PAGE_ELEMENTS, deleted_count=deleted)

    def _select_element(self, p: ElementRefPayload, scope: TransactionScope) -> ActionResult:
        return ActionResult(
            ActionType.SELECT_ELEMENT,
            element=element_store.get_element(self.conn, p.element_id),
        )

    def _update_style(self, p: UpdateStylePayload, scope: TransactionScope) -> ActionResult:
        current = element_store.get_element(self.conn, p.element_id)
        styles = dict(current.styles) if current else {}
        if p.value is None:
            styles.pop(p.property, None)
        else:
            styles[p.property] = p.value
        element = element_store.update_element(
            self.conn, p.element_id, styles=styles, scope=scope
        )
        return ActionResult(ActionType.UPDATE_STYLE, element=element)

    def _update_content(self, p: UpdateContentPayload, scope: TransactionScope) -> ActionResult:
        new_content = p.content
        if p.range is not None:
            current = element_store.get_element(self.conn, p.element_id)
            existing = (current.content if current else None) or ""
            new_content = existing[: p.range.start] + p.content + existing[p.range.end:]
        element = element_store.update_element(
            self.conn, p.element_id, content=new_content, scope=scope
        )
        return ActionResult(ActionType.UPDATE_CONTENT, element=element)
