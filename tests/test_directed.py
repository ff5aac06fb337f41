"""Tests for the directed pruning operations: discard, extract and pin."""

from __future__ import annotations

import copy

import pytest

from shears.exceptions import DirectedPruneError, StaleReferenceError
from shears.models.config import PrunerConfig
from shears.models.invocation import PruneReason
from shears.prompts import PRUNED_OUTPUT_PLACEHOLDER
from tests.conftest import gemini_body, make_pruner, openai_body, tool_message


def _ten_calls() -> dict:
    """Ten distinct completed calls; position 7 is ``call_abc``."""
    steps = []
    for i in range(10):
        call_id = "call_abc" if i == 7 else f"call_{i}"
        steps.append((call_id, "read", {"filePath": f"/repo/src/file{i}.ts"}, f"contents of file {i}\n" * 20))
    return openai_body(steps)


@pytest.fixture
def listed(pruner):
    """A pruner that has already shown the ten-call list for 'conv'."""
    pruner.transform(_ten_calls(), "conv")
    return pruner


class TestExtract:
    def test_distillation_replaces_output(self, listed):
        """extract writes each distillation over the matching output."""
        text = listed.extract("conv", ["7", "9"], ["summary A", "summary B"])
        assert text.startswith("Extracted 2 tool output(s):")
        assert "7: read, /repo/src/file7.ts" in text

        body = _ten_calls()
        listed.transform(body, "conv")
        assert tool_message(body, "call_abc")["content"] == "summary A"
        assert tool_message(body, "call_9")["content"] == "summary B"
        assert tool_message(body, "call_8")["content"].startswith("contents of file 8")
        assert listed.state("conv").pruned["call_abc"].reason == PruneReason.USER_DIRECTED

    def test_unknown_id_changes_nothing(self, listed):
        with pytest.raises(StaleReferenceError) as excinfo:
            listed.extract("conv", ["99"], ["x"])
        assert excinfo.value.ids == ["99"]
        assert listed.state("conv").pruned == {}

    def test_partially_unknown_ids_change_nothing(self, listed):
        with pytest.raises(StaleReferenceError):
            listed.extract("conv", ["1", "42"], ["a", "b"])
        assert listed.state("conv").pruned == {}

    def test_length_mismatch(self, listed):
        with pytest.raises(DirectedPruneError, match="one distillation per id"):
            listed.extract("conv", ["1", "2"], ["only one"])

    def test_duplicate_ids(self, listed):
        with pytest.raises(DirectedPruneError, match="unique"):
            listed.extract("conv", ["1", "1"], ["a", "b"])

    def test_empty_distillation(self, listed):
        with pytest.raises(DirectedPruneError, match="non-empty"):
            listed.extract("conv", ["1"], ["   "])

    def test_disabled(self):
        pruner = make_pruner(PrunerConfig.from_dict({"tools": {"extract": {"enabled": False}}}))
        pruner.transform(_ten_calls(), "conv")
        with pytest.raises(DirectedPruneError, match="extract tool is disabled"):
            pruner.extract("conv", ["1"], ["x"])


class TestDiscard:
    def test_discard(self, listed):
        text = listed.discard("conv", ["0", "3"], "completion")
        assert text.startswith("Discarded 2 tool output(s) (completion):")
        state = listed.state("conv")
        assert state.pruned["call_0"].reason == PruneReason.COMPLETION
        assert state.last_tool_prune is True

        body = _ten_calls()
        listed.transform(body, "conv")
        assert tool_message(body, "call_3")["content"] == PRUNED_OUTPUT_PLACEHOLDER

    def test_already_pruned_id_is_stale(self, listed):
        listed.discard("conv", ["0"])
        with pytest.raises(StaleReferenceError) as excinfo:
            listed.discard("conv", ["0"])
        assert "0" not in excinfo.value.available
        assert "1" in excinfo.value.available

    def test_repeated_id_counted_once(self, listed):
        text = listed.discard("conv", ["2", "2"])
        assert text.startswith("Discarded 1 tool output(s)")

    def test_bad_reason(self, listed):
        with pytest.raises(DirectedPruneError, match="Unknown discard reason"):
            listed.discard("conv", ["0"], "boredom")

    def test_empty_ids(self, listed):
        with pytest.raises(DirectedPruneError, match="non-empty"):
            listed.discard("conv", [])

    def test_before_any_transform(self, pruner):
        with pytest.raises(StaleReferenceError, match="No tools are currently prunable"):
            pruner.discard("conv", ["0"])

    def test_ids_survive_external_compaction(self, listed):
        """Ids come from the live list, so dropped history does not shift them."""
        body = _ten_calls()
        messages = body["messages"]
        body["messages"] = messages[:2] + messages[8:]
        listed.transform(body, "conv")
        assert listed.prunable("conv").ids == ["0", "1", "2", "3", "4", "5", "6"]
        listed.discard("conv", ["0"])
        assert "call_3" in listed.state("conv").pruned


class TestPin:
    @pytest.fixture
    def pinning(self):
        pruner = make_pruner(PrunerConfig.from_dict({"tools": {"pin": {"enabled": True}}}))
        pruner.transform(_ten_calls(), "conv")
        return pruner

    def test_pin_sets_expiry(self, pinning):
        text = pinning.pin("conv", ["4"], duration_turns=3)
        assert "until turn 13" in text
        assert "expires in 3 turn(s)" in text
        assert pinning.state("conv").pins == {"call_4": 13}

    def test_default_duration(self, pinning):
        pinning.pin("conv", ["4"])
        assert pinning.state("conv").pins["call_4"] == 10 + 10

    def test_pinned_suffix_in_list(self, pinning):
        pinning.pin("conv", ["4"], duration_turns=3)
        body = _ten_calls()
        pinning.transform(body, "conv")
        assert "4: read, /repo/src/file4.ts [PINNED, expires in 3 turn(s)]" in body["messages"][1]["content"]

    def test_pin_does_not_start_cooldown(self, pinning):
        pinning.pin("conv", ["4"], duration_turns=3)
        assert pinning.state("conv").last_tool_prune is False

    @pytest.mark.parametrize("duration", [0, -2, True, "5"])
    def test_bad_duration(self, pinning, duration):
        with pytest.raises(DirectedPruneError, match="positive integer"):
            pinning.pin("conv", ["4"], duration_turns=duration)

    def test_disabled_by_default(self, listed):
        with pytest.raises(DirectedPruneError, match="pin tool is disabled"):
            listed.pin("conv", ["1"])


class TestRequestDiscard:
    def test_auto_confirm_discards(self, listed):
        pending = listed.request_discard("conv", ["1", "2"], auto_confirm=True)
        assert pending.status == "approved"
        assert pending.result.startswith("Discarded 2 tool output(s)")
        assert {"call_1", "call_2"} <= set(listed.state("conv").pruned)

    def test_unchecked_items_kept(self, listed):
        pending = listed.request_discard("conv", ["1", "2", "3"])
        assert listed.state("conv").pruned == {}
        assert [item.label for item in pending.items] == [
            "Read /repo/src/file1.ts", "Read /repo/src/file2.ts", "Read /repo/src/file3.ts",
        ]

        listed.broker.handle_event({"event": "item-toggled", "request_id": pending.pending_id,
                                    "data": {"id": "2", "checked": False}})
        listed.broker.handle_event({"event": "confirm-prune", "request_id": pending.pending_id})

        pruned = listed.state("conv").pruned
        assert "call_1" in pruned and "call_3" in pruned
        assert "call_2" not in pruned

    def test_cancel_prunes_nothing(self, listed):
        pending = listed.request_discard("conv", ["1"])
        listed.broker.handle_event({"event": "cancel-prune", "request_id": pending.pending_id})
        assert pending.status == "rejected"
        assert listed.state("conv").pruned == {}

    def test_stale_ids_rejected_up_front(self, listed):
        with pytest.raises(StaleReferenceError):
            listed.request_discard("conv", ["55"])
        assert listed.broker.outstanding("conv") is None

    def test_uncheck_everything(self, listed):
        pending = listed.request_discard("conv", ["1"])
        pending.toggle_item("1")
        pending.approve()
        assert pending.result is None
        assert listed.state("conv").pruned == {}


def test_state_untouched_by_fresh_copy(listed):
    """Directed marks live in state, not in the body the host keeps."""
    body = _ten_calls()
    pristine = copy.deepcopy(body)
    listed.discard("conv", ["5"])
    assert body == pristine


def test_positional_mark_does_not_follow_shifted_history(pruner):
    """After earlier contents are dropped, a discard stays with the call it named."""
    body = gemini_body([
        [("read", {"filePath": "/a"}, {"output": "A" * 400})],
        [("read", {"filePath": "/b"}, {"output": "B" * 400})],
    ])
    pruner.transform(copy.deepcopy(body), "conv")
    pruner.discard("conv", ["0"])
    assert "gemini:1:0" in pruner.state("conv").pruned

    shifted = copy.deepcopy(body)
    shifted["contents"] = shifted["contents"][:1] + shifted["contents"][3:]
    pruner.transform(shifted, "conv")

    response = shifted["contents"][2]["parts"][0]["functionResponse"]["response"]
    assert response == {"output": "B" * 400}
    state = pruner.state("conv")
    assert "gemini:1:0" not in state.pruned
    assert state.invocations["gemini:1:0"].parameters == {"filePath": "/b"}
