"""PendingPrune -- a prune waiting for the user's confirmation.

A confirmation request is a plain value object: the broker creates it,
the UI toggles its checklist items, and it is resolved exactly once by
``approve()`` (keep the checked items) or ``reject()`` (prune nothing).
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class PendingStatus(str, Enum):
    """Status of a pending confirmation."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


@dataclass
class ChecklistItem:
    """One prunable tool shown to the user.

    ``id`` is the canonical id the model used, ``key`` the correlation key
    it resolved to.
    """

    id: str
    key: str
    label: str
    checked: bool = True

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "checked": self.checked}


@dataclass(repr=False)
class PendingPrune:
    """A directed prune planned but not yet applied.

    Fields:
        conversation_id: Conversation the prune belongs to.
        items: Checklist shown to the user, all checked initially.
        pending_id: Request id used to route UI events (auto-generated).
        created_at: When this request was created (UTC).
        status: "pending", "approved" or "rejected".
        triggered_by: Optional provenance string (e.g. "tool:discard").
        rejection_reason: Human-readable reason if rejected.

    Internal:
        _execute_fn: Called with the confirmed items on approval.
        _public_actions: Whitelist of method names allowed via dispatch.
    """

    conversation_id: str
    items: list[ChecklistItem] = field(default_factory=list)
    pending_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: PendingStatus = PendingStatus.PENDING
    triggered_by: str | None = None
    rejection_reason: str | None = None

    _execute_fn: Callable[[list[ChecklistItem]], Any] | None = field(default=None, repr=False)
    _result: Any = field(default=None, repr=False)
    _confirmed: list[ChecklistItem] = field(default_factory=list, repr=False)
    _public_actions: frozenset[str] = field(
        default_factory=lambda: frozenset({"approve", "reject", "toggle_item"}), repr=False
    )

    def _require_pending(self) -> None:
        if self.status != PendingStatus.PENDING:
            raise RuntimeError(
                f"Cannot modify a prune confirmation with status {self.status!r}. "
                f"Only 'pending' requests can be changed."
            )

    @property
    def is_resolved(self) -> bool:
        return self.status != PendingStatus.PENDING

    @property
    def selected(self) -> list[ChecklistItem]:
        return [item for item in self.items if item.checked]

    @property
    def confirmed_ids(self) -> list[str]:
        """Canonical ids that were confirmed (empty until approved)."""
        return [item.id for item in self._confirmed]

    @property
    def confirmed_keys(self) -> list[str]:
        return [item.key for item in self._confirmed]

    @property
    def result(self) -> Any:
        return self._result

    def _item(self, item_id: str) -> ChecklistItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise KeyError(f"No checklist item {item_id!r} in request {self.pending_id}")

    def toggle_item(self, item_id: str, checked: bool | None = None) -> bool:
        """Flip (or set) one item's checkbox. Returns the new state."""
        self._require_pending()
        item = self._item(item_id)
        item.checked = (not item.checked) if checked is None else bool(checked)
        return item.checked

    def set_items(self, states: list[dict]) -> None:
        """Apply a full checklist snapshot as sent by the UI.

        Entries for unknown ids are ignored.
        """
        self._require_pending()
        by_id = {item.id: item for item in self.items}
        for entry in states:
            item = by_id.get(str(entry.get("id")))
            if item is not None:
                item.checked = bool(entry.get("checked", item.checked))

    def approve(self) -> Any:
        """Confirm the checked items and run the prune on them.

        Returns:
            Whatever the execute function returns, or the confirmed
            canonical ids when none is set.

        Raises:
            RuntimeError: If already resolved.
        """
        self._require_pending()
        self.status = PendingStatus.APPROVED
        self._confirmed = self.selected
        if self._execute_fn is not None:
            self._result = self._execute_fn(self._confirmed) if self._confirmed else None
        else:
            self._result = self.confirmed_ids
        return self._result

    def reject(self, reason: str = "") -> None:
        """Cancel the prune. Nothing is confirmed."""
        self._require_pending()
        self.status = PendingStatus.REJECTED
        self.rejection_reason = reason
        self._confirmed = []

    def execute_tool(self, name: str, args: dict | None = None) -> Any:
        """Execute a named action on this request, guarded by whitelist.

        Raises:
            ValueError: If name is private or not an allowed action.
        """
        if args is None:
            args = {}
        if name.startswith("_") or name not in self._public_actions:
            raise ValueError(
                f"Action {name!r} is not allowed for {type(self).__name__}. "
                f"Allowed: {sorted(self._public_actions)}"
            )
        return getattr(self, name)(**args)

    def to_dict(self) -> dict:
        """Payload for the UI checklist component."""
        return {
            "request_id": self.pending_id,
            "conversation_id": self.conversation_id,
            "status": str(self.status),
            "items": [item.to_dict() for item in self.items],
        }

    def __repr__(self):
        return (
            f"<PendingPrune: {self.conversation_id}, {self.status}, "
            f"{len(self.selected)}/{len(self.items)} selected, id={self.pending_id[:8]}>"
        )

    def pprint(self) -> None:
        """Pretty-print the checklist using Rich."""
        from rich.console import Console
        from rich.table import Table

        console = Console()
        status_color = {
            PendingStatus.PENDING: "yellow",
            PendingStatus.APPROVED: "green",
            PendingStatus.REJECTED: "red",
        }.get(self.status, "white")

        console.print(f"[bold]PendingPrune[/bold] [dim]id={self.pending_id}[/dim]")
        console.print(
            f"  conversation: [bold]{self.conversation_id}[/bold]  "
            f"status: [{status_color}]{self.status}[/{status_color}]"
        )
        if self.rejection_reason:
            console.print(f"  rejection_reason: [red]{self.rejection_reason}[/red]")

        table = Table(title="Select tools to prune", show_header=True, header_style="bold")
        table.add_column("", width=3)
        table.add_column("ID", style="cyan")
        table.add_column("Tool")
        for item in self.items:
            table.add_row("[x]" if item.checked else "[ ]", item.id, item.label)
        console.print(table)

    def review(self, *, prompt_fn: Callable[[str], str] | None = None) -> None:
        """Interactive review: toggle ids, then confirm or cancel."""
        _prompt = prompt_fn or input
        self.pprint()
        while self.status == PendingStatus.PENDING:
            choice = _prompt("\n[<id> to toggle / confirm / cancel] > ").strip().lower()
            if choice == "confirm":
                self.approve()
                print(f"Confirmed {len(self._confirmed)} tool(s).")
            elif choice == "cancel":
                self.reject("cancelled by user")
                print("Cancelled.")
            elif any(item.id == choice for item in self.items):
                state = self.toggle_item(choice)
                print(f"{choice}: {'selected' if state else 'deselected'}")
            else:
                print("Enter an item id, 'confirm', or 'cancel'.")
