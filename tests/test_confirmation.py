"""Tests for PendingPrune and the ConfirmationBroker."""

from __future__ import annotations

import pytest

from shears.exceptions import ConfirmationError
from shears.hooks import (
    ChecklistItem,
    ConfirmationBroker,
    ConfirmationEvent,
    ConfirmationEventType,
    PendingPrune,
    PendingStatus,
)


def _items() -> list[ChecklistItem]:
    return [
        ChecklistItem("0", "call_a", "Read src/a.ts"),
        ChecklistItem("1", "call_b", "Bash npm test"),
        ChecklistItem("2", "call_c", "Glob **/*.py"),
    ]


class TestPendingPrune:
    def test_starts_pending_all_checked(self):
        pending = PendingPrune("conv", items=_items())
        assert pending.status == PendingStatus.PENDING
        assert not pending.is_resolved
        assert [item.id for item in pending.selected] == ["0", "1", "2"]
        assert pending.confirmed_ids == []

    def test_toggle(self):
        pending = PendingPrune("conv", items=_items())
        assert pending.toggle_item("1") is False
        assert pending.toggle_item("1") is True
        assert pending.toggle_item("1", checked=False) is False
        with pytest.raises(KeyError):
            pending.toggle_item("9")

    def test_set_items_ignores_unknown(self):
        pending = PendingPrune("conv", items=_items())
        pending.set_items([{"id": "0", "checked": False}, {"id": "7", "checked": False}])
        assert [item.id for item in pending.selected] == ["1", "2"]

    def test_approve_runs_execute_with_checked(self):
        seen = []
        pending = PendingPrune(
            "conv", items=_items(), _execute_fn=lambda items: seen.append(items) or "done",
        )
        pending.toggle_item("2")
        assert pending.approve() == "done"
        assert [item.key for item in seen[0]] == ["call_a", "call_b"]
        assert pending.confirmed_ids == ["0", "1"]
        assert pending.confirmed_keys == ["call_a", "call_b"]
        assert pending.result == "done"

    def test_approve_nothing_checked_skips_execute(self):
        calls = []
        pending = PendingPrune("conv", items=_items(), _execute_fn=calls.append)
        pending.set_items([{"id": i, "checked": False} for i in ("0", "1", "2")])
        assert pending.approve() is None
        assert calls == []

    def test_approve_without_execute_returns_ids(self):
        assert PendingPrune("conv", items=_items()).approve() == ["0", "1", "2"]

    def test_resolved_is_final(self):
        pending = PendingPrune("conv", items=_items())
        pending.reject("no thanks")
        assert pending.status == PendingStatus.REJECTED
        assert pending.rejection_reason == "no thanks"
        assert pending.confirmed_ids == []
        for action in (pending.approve, lambda: pending.toggle_item("0"), pending.reject):
            with pytest.raises(RuntimeError):
                action()

    def test_execute_tool_whitelist(self):
        pending = PendingPrune("conv", items=_items())
        assert pending.execute_tool("toggle_item", {"item_id": "0"}) is False
        for name in ("_require_pending", "set_items", "pprint"):
            with pytest.raises(ValueError):
                pending.execute_tool(name)
        pending.execute_tool("approve")
        assert pending.confirmed_ids == ["1", "2"]

    def test_to_dict(self):
        pending = PendingPrune("conv", items=_items()[:1])
        assert pending.to_dict() == {
            "request_id": pending.pending_id,
            "conversation_id": "conv",
            "status": "pending",
            "items": [{"id": "0", "label": "Read src/a.ts", "checked": True}],
        }

    def test_review(self, capsys):
        answers = iter(["1", "bogus", "confirm"])
        pending = PendingPrune("conv", items=_items())
        pending.review(prompt_fn=lambda prompt: next(answers))
        assert pending.status == PendingStatus.APPROVED
        assert pending.confirmed_ids == ["0", "2"]
        out = capsys.readouterr().out
        assert "1: deselected" in out
        assert "Confirmed 2 tool(s)." in out

    def test_review_cancel(self):
        pending = PendingPrune("conv", items=_items())
        pending.review(prompt_fn=lambda prompt: "cancel")
        assert pending.status == PendingStatus.REJECTED
        assert pending.rejection_reason == "cancelled by user"


class TestBroker:
    def test_request_delivers(self):
        delivered = []
        broker = ConfirmationBroker(delivered.append)
        pending = broker.request("conv", _items(), triggered_by="tool:discard")
        assert delivered == [pending]
        assert broker.outstanding("conv") is pending
        assert broker.get(pending.pending_id) is pending
        assert len(broker) == 1

    def test_auto_confirm(self):
        broker = ConfirmationBroker(auto_confirm=True)
        pending = broker.request("conv", _items())
        assert pending.status == PendingStatus.APPROVED
        assert broker.outstanding("conv") is None

    def test_per_request_auto_confirm_overrides(self):
        broker = ConfirmationBroker(auto_confirm=True)
        pending = broker.request("conv", _items(), auto_confirm=False)
        assert not pending.is_resolved

    def test_empty_items(self):
        with pytest.raises(ConfirmationError):
            ConfirmationBroker().request("conv", [])

    def test_one_outstanding_per_conversation(self):
        broker = ConfirmationBroker()
        broker.request("conv", _items())
        with pytest.raises(ConfirmationError, match="already has a pending"):
            broker.request("conv", _items())
        broker.request("other", _items())

    def test_delivery_failure_rejects(self):
        def deliver(pending):
            raise ConnectionError("ui gone")

        broker = ConfirmationBroker(deliver)
        pending = broker.request("conv", _items())
        assert pending.status == PendingStatus.REJECTED
        assert "ui gone" in pending.rejection_reason
        assert broker.outstanding("conv") is None

    def test_toggle_then_confirm(self):
        broker = ConfirmationBroker()
        pending = broker.request("conv", _items())
        rid = pending.pending_id
        broker.handle_event({"event": "item-toggled", "request_id": rid, "data": {"id": "1"}})
        broker.handle_event(ConfirmationEvent(rid, ConfirmationEventType.ITEM_TOGGLED, {
            "items": [{"id": "2", "checked": False}],
        }))
        resolved = broker.handle_event({"event": "confirm-prune", "request_id": rid})
        assert resolved is pending
        assert pending.confirmed_ids == ["0"]
        assert len(broker) == 0

    def test_cancel(self):
        broker = ConfirmationBroker()
        pending = broker.request("conv", _items())
        broker.handle_event({
            "event": "cancel-prune", "request_id": pending.pending_id, "data": {"reason": "later"},
        })
        assert pending.rejection_reason == "later"
        with pytest.raises(ConfirmationError, match="No pending confirmation"):
            broker.handle_event({"event": "confirm-prune", "request_id": pending.pending_id})

    @pytest.mark.parametrize(
        "event",
        [
            {"event": "explode", "request_id": "x"},
            {"event": "confirm-prune"},
        ],
    )
    def test_malformed_events(self, event):
        with pytest.raises(ConfirmationError):
            ConfirmationBroker().handle_event(event)

    def test_toggle_needs_target(self):
        broker = ConfirmationBroker()
        pending = broker.request("conv", _items())
        with pytest.raises(ConfirmationError):
            broker.handle_event({"event": "item-toggled", "request_id": pending.pending_id})
        with pytest.raises(ConfirmationError):
            broker.handle_event({
                "event": "item-toggled", "request_id": pending.pending_id, "data": {"id": "42"},
            })

    def test_forget(self):
        broker = ConfirmationBroker()
        pending = broker.request("conv", _items())
        broker.forget("conv")
        broker.forget("never-seen")
        assert pending.rejection_reason == "conversation deleted"
        assert broker.outstanding("conv") is None
