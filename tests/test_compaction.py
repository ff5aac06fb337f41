"""Tests for preemptive compaction: model limits, truncation and the controller."""

from __future__ import annotations

import pytest

from shears.compaction import (
    CompactionController,
    applied_truncation,
    infer_context_limit,
    truncate_until_target,
    usage_ratio,
)
from shears.exceptions import CompactionError
from shears.formats import detect_format
from shears.models.compaction import CompactionPhase, TokenUsage, TruncatedTool, TruncationResult
from shears.models.config import CompactionConfig, PrunerConfig
from shears.models.invocation import PruneReason
from shears.notify.dispatcher import NotificationDispatcher
from shears.prompts import TRUNCATION_MESSAGE
from shears.state.correlation import sync_state
from shears.strategies.protection import ProtectionGuard
from tests.conftest import (
    BlockingNotifier,
    RecordingNotifier,
    make_pruner,
    openai_body,
    openai_call,
    tool_message,
)

P = CompactionPhase


class FakeTarget:
    """Compaction target with canned savings."""

    def __init__(self, strategies_saved: int = 0, bytes_removed: int = 0) -> None:
        self.strategies_saved = strategies_saved
        self.bytes_removed = bytes_removed
        self.truncate_calls: list[dict] = []

    def run_strategies(self, conversation_id: str) -> int:
        return self.strategies_saved

    def truncate(self, conversation_id: str, **kwargs) -> TruncationResult:
        self.truncate_calls.append(kwargs)
        return TruncationResult(truncated_count=1, bytes_removed=self.bytes_removed)


class FakeSummarizer:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.error = error
        self.during = None

    def summarize(self, conversation_id: str, provider_id: str, model_id: str) -> None:
        self.calls.append((conversation_id, provider_id, model_id))
        if self.during is not None:
            self.during()
        if self.error is not None:
            raise self.error


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _controller(target=None, summarizer=None, notifier=None, clock=None, dispatcher=None, **config):
    settings = {"enabled": True, **config}
    return CompactionController(
        CompactionConfig(**settings),
        target,
        summarizer=summarizer,
        dispatcher=dispatcher or (NotificationDispatcher(notifier) if notifier else None),
        clock=clock or Clock(),
        environ={},
    )


def _evaluate(controller, total: int = 180_000, **kwargs):
    kwargs.setdefault("model_id", "claude-sonnet-4")
    kwargs.setdefault("provider_id", "anthropic")
    return controller.evaluate("conv", TokenUsage(input_tokens=total), **kwargs)


# ---------------------------------------------------------------------------
# Model limits
# ---------------------------------------------------------------------------


class TestModelLimits:
    @pytest.mark.parametrize(
        "model, expected",
        [
            ("claude-sonnet-4", 200_000),
            ("anthropic/claude-opus-4-1", 200_000),
            ("gpt-5-codex", 1_000_000),
            ("gpt-4o-mini", 128_000),
            ("gpt-4-turbo", 128_000),
            ("gpt-4", 8_192),
            ("o3-mini", 200_000),
            ("gemini-2.5-pro", 2_000_000),
            ("gemini-2.0-flash", 1_000_000),
            ("some-local-model", 200_000),
            (None, 200_000),
        ],
    )
    def test_inferred(self, model, expected):
        assert infer_context_limit(model, {}) == expected

    @pytest.mark.parametrize("var", ["ANTHROPIC_1M_CONTEXT", "VERTEX_ANTHROPIC_1M_CONTEXT"])
    def test_claude_extended_opt_in(self, var):
        assert infer_context_limit("claude-sonnet-4", {var: "true"}) == 1_000_000
        assert infer_context_limit("claude-sonnet-4", {var: "1"}) == 200_000

    def test_ratio(self):
        assert usage_ratio(50, 200) == 0.25
        assert usage_ratio(50, 0) == 0.0


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class TestController:
    def test_truncation_sufficient_skips_summary(self):
        """Enough truncation ends in ``skipped`` with no summarization."""
        summarizer = FakeSummarizer()
        target = FakeTarget(bytes_removed=80_000)
        result = _evaluate(_controller(target, summarizer))

        assert result.phases == (P.TRIGGERED, P.STRATEGIES_APPLIED, P.TRUNCATION_APPLIED, P.DECISION, P.SKIPPED)
        assert result.final_phase == P.SKIPPED
        assert result.tokens_saved == 20_000
        assert result.initial_ratio == pytest.approx(0.9)
        assert result.final_ratio == pytest.approx(0.8)
        assert summarizer.calls == []
        assert target.truncate_calls == [{
            "current_tokens": 180_000,
            "context_limit": 200_000,
            "target_ratio": 0.85,
            "protected_messages": 3,
        }]

    def test_insufficient_truncation_summarizes(self):
        summarizer = FakeSummarizer()
        result = _evaluate(_controller(FakeTarget(bytes_removed=12_000), summarizer))

        assert result.final_phase == P.SUMMARIZATION_FALLBACK
        assert result.phases[-2:] == (P.DECISION, P.SUMMARIZATION_FALLBACK)
        assert result.summarized
        assert summarizer.calls == [("conv", "anthropic", "claude-sonnet-4")]

    def test_strategies_alone_can_suffice(self):
        target = FakeTarget(strategies_saved=20_000)
        result = _evaluate(_controller(target))
        assert result.phases == (P.TRIGGERED, P.STRATEGIES_APPLIED, P.DECISION, P.SKIPPED)
        assert target.truncate_calls == []

    def test_truncation_disabled(self):
        target = FakeTarget(bytes_removed=80_000)
        result = _evaluate(_controller(target, FakeSummarizer(), truncation={"enabled": False}))
        assert P.TRUNCATION_APPLIED not in result.phases
        assert result.final_phase == P.SUMMARIZATION_FALLBACK

    def test_summarizer_failure(self):
        controller = _controller(FakeTarget(), FakeSummarizer(error=RuntimeError("host down")))
        result = _evaluate(controller)
        assert result.final_phase == P.FAILED
        assert result.error == "host down"
        assert not controller.is_in_progress("conv")

    def test_missing_model_fails(self):
        result = _evaluate(_controller(FakeTarget(), FakeSummarizer()), provider_id=None)
        assert result.final_phase == P.FAILED
        assert result.reason == "missing provider or model id"

    def test_no_summarizer(self):
        result = _evaluate(_controller(FakeTarget()))
        assert result.final_phase == P.FAILED
        assert result.reason == "no summarizer"

    def test_content_phase_failure(self):
        class Exploding(FakeTarget):
            def run_strategies(self, conversation_id):
                raise ValueError("bad data")

        result = _evaluate(_controller(Exploding(), FakeSummarizer()))
        assert result.final_phase == P.FAILED
        assert result.error == "bad data"

    def test_cooldown(self):
        clock = Clock()
        controller = _controller(FakeTarget(bytes_removed=80_000), clock=clock, cooldown_seconds=60)
        assert _evaluate(controller).final_phase == P.SKIPPED

        clock.now += 30
        second = _evaluate(controller)
        assert second.final_phase == P.IDLE
        assert second.reason == "cooldown"

        clock.now += 31
        assert _evaluate(controller).final_phase == P.SKIPPED

    def test_in_progress_guard(self):
        summarizer = FakeSummarizer()
        controller = _controller(FakeTarget(), summarizer, cooldown_seconds=0)
        nested = []
        summarizer.during = lambda: nested.append(_evaluate(controller))

        result = _evaluate(controller)

        assert result.final_phase == P.SUMMARIZATION_FALLBACK
        assert nested[0].final_phase == P.IDLE
        assert nested[0].reason == "already in progress"

    @pytest.mark.parametrize(
        "kwargs, reason",
        [
            ({"total": 150_000}, "under threshold"),
            ({"total": 40_000, "model_id": "gpt-4"}, "below minimum tokens"),
            ({"is_summary": True}, "summary message"),
        ],
    )
    def test_idle(self, kwargs, reason):
        result = _evaluate(_controller(FakeTarget(), FakeSummarizer()), **kwargs)
        assert result.final_phase == P.IDLE
        assert result.reason == reason

    def test_disabled(self):
        controller = CompactionController(CompactionConfig(), FakeTarget())
        assert _evaluate(controller).reason == "disabled"

    def test_cache_reads_count_toward_usage(self):
        controller = _controller(FakeTarget(bytes_removed=80_000))
        usage = TokenUsage(input_tokens=10_000, cache_read_tokens=170_000, output_tokens=500)
        result = controller.evaluate("conv", usage, model_id="claude-sonnet-4", provider_id="anthropic")
        assert result.final_phase == P.SKIPPED

    def test_toasts(self):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier)
        _evaluate(_controller(FakeTarget(bytes_removed=12_000), FakeSummarizer(), dispatcher=dispatcher))
        dispatcher.close()
        assert [t[0] for t in notifier.toasts] == [
            "Smart Compaction", "Smart Compaction", "Compaction Complete",
        ]
        assert notifier.toasts[0][2] == "warning"
        assert notifier.toasts[-1][2] == "success"

    def test_stalled_toast_does_not_delay_strategies(self):
        notifier = BlockingNotifier()
        dispatcher = NotificationDispatcher(notifier)
        target = FakeTarget(strategies_saved=50_000)
        result = _evaluate(_controller(target, dispatcher=dispatcher))
        assert result.final_phase == P.SKIPPED
        assert notifier.toasts == []

        notifier.release.set()
        dispatcher.close()
        assert [t[0] for t in notifier.toasts] == ["Smart Compaction", "Smart Compaction Success"]


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------


def _history(sizes: list[int]) -> dict:
    return openai_body([
        (f"c{i}", "read", {"filePath": f"/repo/f{i}.ts"}, "x" * size) for i, size in enumerate(sizes)
    ])


class TestTruncation:
    def test_largest_first_until_target(self, state):
        body = _history([1_000, 30_000, 5_000, 20_000, 500, 500])
        fmt = detect_format(body)
        data = fmt.get_data_array(body)
        sync_state(fmt, data, state)

        marks, result = truncate_until_target(
            fmt, data, state, ProtectionGuard(),
            current_tokens=100_000, context_limit=100_000, target_ratio=0.9,
        )
        # 10,000 tokens = 40,000 chars: the 30k and 20k results cover it.
        assert [m.correlation_key for m in marks] == ["c1", "c3"]
        assert all(m.reason == PruneReason.SIZE and m.replacement == TRUNCATION_MESSAGE for m in marks)
        assert result.bytes_removed == 50_000 - 2 * len(TRUNCATION_MESSAGE)
        assert result.target_bytes == 40_000
        assert result.sufficient

    def test_recent_messages_protected(self, state):
        body = _history([1_000, 1_000, 90_000])
        fmt = detect_format(body)
        data = fmt.get_data_array(body)
        sync_state(fmt, data, state)
        marks, result = truncate_until_target(
            fmt, data, state, ProtectionGuard(),
            current_tokens=100_000, context_limit=100_000, target_ratio=0.5, protected_messages=3,
        )
        assert "c2" not in [m.correlation_key for m in marks]
        assert not result.sufficient

    @pytest.mark.parametrize("limit, ratio", [(0, 0.85), (100_000, 0.0), (100_000, 1.5)])
    def test_bad_target(self, state, limit, ratio):
        body = _history([1_000])
        fmt = detect_format(body)
        with pytest.raises(CompactionError):
            truncate_until_target(
                fmt, fmt.get_data_array(body), state, ProtectionGuard(),
                current_tokens=10, context_limit=limit, target_ratio=ratio,
            )

    def test_applied_plan_keeps_only_rewritten(self):
        plan = TruncationResult(
            truncated_count=2,
            bytes_removed=0,
            target_bytes=1_000,
            truncated_tools=(TruncatedTool("c1", "read", 5_000), TruncatedTool("c2", "bash", 900)),
        )
        applied = applied_truncation(plan, {"c2"})
        assert applied.truncated_count == 1
        assert [t.correlation_key for t in applied.truncated_tools] == ["c2"]
        assert applied.bytes_removed == 900 - len(TRUNCATION_MESSAGE)
        assert applied.target_bytes == 1_000

    def test_nothing_to_do_under_target(self, state):
        body = _history([1_000])
        fmt = detect_format(body)
        marks, result = truncate_until_target(
            fmt, fmt.get_data_array(body), state, ProtectionGuard(),
            current_tokens=10, context_limit=100_000, target_ratio=0.5,
        )
        assert marks == [] and result == TruncationResult()


def test_compaction_through_pruner():
    """A finished step over the threshold truncates the largest result in place."""
    config = PrunerConfig.from_dict({"compaction": {"enabled": True}})
    pruner = make_pruner(config, environ={})
    steps_sizes = [2_000, 50_000, 3_000, 1_000, 500, 500]
    pruner.transform(_history(steps_sizes), "conv")

    result = pruner.on_assistant_finished(
        "conv", {"input": 180_000}, model_id="claude-sonnet-4", provider_id="anthropic",
    )

    assert result.final_phase == P.SKIPPED
    assert result.truncation.truncated_count == 1
    assert pruner.state("conv").pruned["c1"].reason == PruneReason.SIZE

    body = _history(steps_sizes)
    pruner.transform(body, "conv")
    assert tool_message(body, "c1")["content"] == TRUNCATION_MESSAGE
    assert tool_message(body, "c0")["content"] == "x" * 2_000


def test_unresolvable_truncation_is_not_counted():
    """A planned result whose pair cannot be resolved saves nothing and keeps no mark."""
    config = PrunerConfig.from_dict({"compaction": {"enabled": True}})
    pruner = make_pruner(config, environ={})
    body = _history([2_000, 50_000, 3_000, 1_000, 500, 500])
    # A second call reusing c1's id makes its pair ambiguous.
    body["messages"].insert(2, {
        "role": "assistant", "content": None,
        "tool_calls": [openai_call("c1", "read", {"filePath": "/repo/other.ts"})],
    })
    pruner.transform(body, "conv")

    result = pruner.on_assistant_finished(
        "conv", {"input": 180_000}, model_id="claude-sonnet-4", provider_id="anthropic",
    )

    assert result.truncation.truncated_count == 0
    assert result.truncation.bytes_removed == 0
    assert result.final_phase == P.FAILED
    assert result.reason == "no summarizer"
    assert "c1" not in pruner.state("conv").pruned
    assert tool_message(body, "c1")["content"] == "x" * 50_000
