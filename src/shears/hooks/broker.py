"""ConfirmationBroker -- routes UI events to pending prune requests.

Each conversation has at most one outstanding request.  UI events
carry the request id they answer; events for unknown or already
resolved requests are rejected with ConfirmationError.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shears.exceptions import ConfirmationError
from shears.hooks.pending import ChecklistItem, PendingPrune

logger = logging.getLogger(__name__)


class ConfirmationEventType(str, Enum):
    """UI events understood by the broker."""

    ITEM_TOGGLED = "item-toggled"
    CONFIRM = "confirm-prune"
    CANCEL = "cancel-prune"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ConfirmationEvent:
    """One message from the confirmation UI.

    For ``item-toggled``, ``data`` holds either ``{"id": ..., "checked": ...}``
    for a single item or ``{"items": [...]}`` with the full checklist.
    """

    request_id: str
    type: ConfirmationEventType
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> ConfirmationEvent:
        try:
            event_type = ConfirmationEventType(d.get("event") or d.get("type"))
        except ValueError as exc:
            raise ConfirmationError(f"Unknown confirmation event: {d.get('event')!r}") from exc
        request_id = d.get("request_id")
        if not request_id:
            raise ConfirmationError("Confirmation event has no request_id")
        return cls(request_id=str(request_id), type=event_type, data=d.get("data") or {})


class ConfirmationBroker:
    """Creates confirmation requests and resolves them from UI events.

    Args:
        deliver: Shows a request to the user.  If it raises, the request
            is cancelled and nothing is pruned.
        auto_confirm: Approve every request immediately without UI.
    """

    def __init__(
        self,
        deliver: Callable[[PendingPrune], None] | None = None,
        *,
        auto_confirm: bool = False,
    ) -> None:
        self._deliver = deliver
        self.auto_confirm = auto_confirm
        self._by_conversation: dict[str, PendingPrune] = {}
        self._by_request: dict[str, PendingPrune] = {}

    def outstanding(self, conversation_id: str) -> PendingPrune | None:
        return self._by_conversation.get(conversation_id)

    def get(self, request_id: str) -> PendingPrune | None:
        return self._by_request.get(request_id)

    def request(
        self,
        conversation_id: str,
        items: list[ChecklistItem],
        *,
        execute_fn: Callable[[list[ChecklistItem]], Any] | None = None,
        auto_confirm: bool | None = None,
        triggered_by: str | None = None,
    ) -> PendingPrune:
        """Open a confirmation request for ``items``.

        With auto-confirm the returned request is already approved.

        Raises:
            ConfirmationError: If the conversation already has an
                outstanding request, or ``items`` is empty.
        """
        if not items:
            raise ConfirmationError("Nothing to confirm")
        current = self._by_conversation.get(conversation_id)
        if current is not None:
            raise ConfirmationError(
                f"Conversation {conversation_id!r} already has a pending "
                f"confirmation ({current.pending_id})"
            )

        pending = PendingPrune(
            conversation_id=conversation_id,
            items=list(items),
            triggered_by=triggered_by,
            _execute_fn=execute_fn,
        )
        auto = self.auto_confirm if auto_confirm is None else auto_confirm
        if auto:
            logger.info("Auto-confirming prune of %d item(s)", len(items))
            pending.approve()
            return pending

        self._by_conversation[conversation_id] = pending
        self._by_request[pending.pending_id] = pending
        logger.info(
            "Requesting prune confirmation %s (%d item(s))", pending.pending_id, len(items),
        )
        if self._deliver is not None:
            try:
                self._deliver(pending)
            except Exception as exc:
                logger.error("Failed to deliver confirmation %s: %s", pending.pending_id, exc)
                self._close(pending)
                pending.reject(f"delivery failed: {exc}")
        return pending

    def handle_event(self, event: ConfirmationEvent | Mapping[str, Any]) -> PendingPrune:
        """Apply one UI event to the request it names.

        Returns:
            The affected request (resolved after confirm/cancel).

        Raises:
            ConfirmationError: Unknown request id, or bad event data.
        """
        if not isinstance(event, ConfirmationEvent):
            event = ConfirmationEvent.from_dict(event)
        pending = self._by_request.get(event.request_id)
        if pending is None:
            raise ConfirmationError(f"No pending confirmation {event.request_id!r}")

        logger.debug("Confirmation event %s for %s", event.type, event.request_id)
        if event.type is ConfirmationEventType.ITEM_TOGGLED:
            if "items" in event.data:
                pending.set_items(list(event.data["items"]))
            elif "id" in event.data:
                try:
                    pending.toggle_item(str(event.data["id"]), event.data.get("checked"))
                except KeyError as exc:
                    raise ConfirmationError(str(exc)) from exc
            else:
                raise ConfirmationError("item-toggled event needs 'id' or 'items'")
            return pending

        self._close(pending)
        if event.type is ConfirmationEventType.CONFIRM:
            pending.approve()
            logger.info(
                "Prune confirmation %s approved: %d item(s)",
                pending.pending_id, len(pending.confirmed_ids),
            )
        else:
            pending.reject(str(event.data.get("reason", "cancelled")))
            logger.info("Prune confirmation %s cancelled", pending.pending_id)
        return pending

    def forget(self, conversation_id: str) -> None:
        """Cancel and drop a conversation's outstanding request."""
        pending = self._by_conversation.get(conversation_id)
        if pending is None:
            return
        self._close(pending)
        if not pending.is_resolved:
            pending.reject("conversation deleted")

    def _close(self, pending: PendingPrune) -> None:
        self._by_conversation.pop(pending.conversation_id, None)
        self._by_request.pop(pending.pending_id, None)

    def __len__(self) -> int:
        return len(self._by_request)
