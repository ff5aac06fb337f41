"""Preemptive compaction controller.

Multi-phase escalation run when an assistant step finishes close to the
model's context window:

1. ``triggered``: usage ratio at or over the threshold, enough tokens,
   not already compacting, not in cooldown.
2. ``strategies-applied``: one immediate strategies + rewrite pass.
3. ``truncation-applied``: largest tool results truncated, skipping the
   most recent messages, until the target ratio is met.
4. ``decision``: ``skipped`` when back under the threshold, otherwise
   ``summarization-fallback`` through the host Summarizer.

A set of in-progress conversation ids and a per-conversation cooldown
timestamp are the only concurrency control.  A failing summarizer is
logged, the guard is cleared and the conversation is left as it is.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Protocol

from shears.compaction.model_limits import infer_context_limit, usage_ratio
from shears.engine.tokens import CHARS_PER_TOKEN
from shears.models.compaction import (
    CompactionPhase,
    CompactionResult,
    TokenUsage,
    TruncationResult,
)

if TYPE_CHECKING:
    from shears.models.config import CompactionConfig
    from shears.notify.dispatcher import NotificationDispatcher
    from shears.protocols import Summarizer

logger = logging.getLogger(__name__)


class CompactionTarget(Protocol):
    """The engine side of compaction: the phases that touch content."""

    def run_strategies(self, conversation_id: str) -> int:
        """Run strategies and rewrite now. Returns tokens saved."""
        ...

    def truncate(
        self,
        conversation_id: str,
        *,
        current_tokens: int,
        context_limit: int,
        target_ratio: float,
        protected_messages: int,
    ) -> TruncationResult:
        """Truncate large results toward the target ratio."""
        ...


class CompactionController:
    """Per-process compaction state machine.

    Args:
        config: Compaction thresholds.
        target: Engine hooks for the content phases.  Without one, only
            the decision and summarization phases do anything.
        summarizer: Host summarization fallback.
        dispatcher: Toast delivery.
        clock: Monotonic seconds, injectable for tests.
        environ: Environment used for context-limit opt-ins.
    """

    def __init__(
        self,
        config: CompactionConfig,
        target: CompactionTarget | None = None,
        *,
        summarizer: Summarizer | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], float] = time.monotonic,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config
        self._target = target
        self._summarizer = summarizer
        self._dispatcher = dispatcher
        self._clock = clock
        self._environ = environ
        self._in_progress: set[str] = set()
        self._last_compaction: dict[str, float] = {}

    @property
    def config(self) -> CompactionConfig:
        return self._config

    def bind(self, target: CompactionTarget) -> None:
        self._target = target

    def is_in_progress(self, conversation_id: str) -> bool:
        return conversation_id in self._in_progress

    def in_cooldown(self, conversation_id: str) -> bool:
        last = self._last_compaction.get(conversation_id)
        return last is not None and self._clock() - last < self._config.cooldown_seconds

    def forget(self, conversation_id: str) -> None:
        """Drop cooldown and guard entries (conversation deleted)."""
        self._last_compaction.pop(conversation_id, None)
        self._in_progress.discard(conversation_id)

    def _toast(self, title: str, message: str, variant: str, duration_ms: int) -> None:
        if self._dispatcher is not None:
            self._dispatcher.toast(title, message, variant, duration_ms)  # type: ignore[arg-type]

    def _idle(self, conversation_id: str, reason: str, **kwargs: object) -> CompactionResult:
        logger.debug("Compaction idle for %s: %s", conversation_id, reason)
        return CompactionResult(
            conversation_id=conversation_id,
            final_phase=CompactionPhase.IDLE,
            phases=(CompactionPhase.IDLE,),
            reason=reason,
            **kwargs,  # type: ignore[arg-type]
        )

    def evaluate(
        self,
        conversation_id: str,
        usage: TokenUsage,
        *,
        model_id: str | None,
        provider_id: str | None,
        is_summary: bool = False,
    ) -> CompactionResult:
        """Check usage after an assistant step and compact if needed.

        Never raises: every failure ends in a ``failed`` result.
        """
        if not self._config.enabled:
            return self._idle(conversation_id, "disabled")
        if conversation_id in self._in_progress:
            return self._idle(conversation_id, "already in progress")
        if self.in_cooldown(conversation_id):
            return self._idle(conversation_id, "cooldown")
        if is_summary:
            return self._idle(conversation_id, "summary message")

        total = usage.total
        if total < self._config.min_tokens:
            return self._idle(conversation_id, "below minimum tokens")

        limit = infer_context_limit(model_id, self._environ)
        threshold = self._config.threshold
        initial = usage_ratio(total, limit)
        logger.info(
            "Compaction check for %s: %d/%d tokens (%.2f, threshold %.2f)",
            conversation_id, total, limit, initial, threshold,
        )
        if initial < threshold:
            return self._idle(conversation_id, "under threshold", context_limit=limit,
                              initial_ratio=initial, final_ratio=initial)

        self._in_progress.add(conversation_id)
        self._last_compaction[conversation_id] = self._clock()
        phases = [CompactionPhase.TRIGGERED]
        try:
            return self._run(conversation_id, total, limit, initial, model_id, provider_id, phases)
        finally:
            self._in_progress.discard(conversation_id)

    def _run(
        self,
        conversation_id: str,
        total: int,
        limit: int,
        initial: float,
        model_id: str | None,
        provider_id: str | None,
        phases: list[CompactionPhase],
    ) -> CompactionResult:
        threshold = self._config.threshold
        saved = 0
        truncation: TruncationResult | None = None

        def result(final: CompactionPhase, reason: str, error: str | None = None) -> CompactionResult:
            if phases[-1] != final:
                phases.append(final)
            return CompactionResult(
                conversation_id=conversation_id,
                final_phase=final,
                phases=tuple(phases),
                context_limit=limit,
                initial_ratio=initial,
                final_ratio=usage_ratio(total - saved, limit),
                tokens_saved=saved,
                truncation=truncation,
                reason=reason,
                error=error,
                metadata={"model_id": model_id, "provider_id": provider_id},
            )

        self._toast(
            "Smart Compaction",
            f"Context at {initial * 100:.0f}% - pruning and truncating...",
            "warning", 3000,
        )
        try:
            if self._target is not None:
                saved += max(0, self._target.run_strategies(conversation_id))
            phases.append(CompactionPhase.STRATEGIES_APPLIED)
            logger.info("Compaction %s: strategies saved ~%d tokens", conversation_id, saved)

            ratio = usage_ratio(total - saved, limit)
            if ratio >= threshold and self._config.truncation.enabled and self._target is not None:
                truncation = self._target.truncate(
                    conversation_id,
                    current_tokens=total - saved,
                    context_limit=limit,
                    target_ratio=threshold,
                    protected_messages=self._config.truncation.protected_messages,
                )
                saved += truncation.bytes_removed // CHARS_PER_TOKEN
                phases.append(CompactionPhase.TRUNCATION_APPLIED)
                logger.info(
                    "Compaction %s: truncated %d result(s), %d chars",
                    conversation_id, truncation.truncated_count, truncation.bytes_removed,
                )
        except Exception as exc:
            logger.error("Compaction failed for %s: %s", conversation_id, exc)
            return result(CompactionPhase.FAILED, "content phase failed", error=str(exc))

        phases.append(CompactionPhase.DECISION)
        ratio = usage_ratio(total - saved, limit)
        if ratio < threshold:
            self._toast(
                "Smart Compaction Success",
                f"Reduced to {ratio * 100:.0f}% via pruning and truncation. No summarization needed.",
                "success", 4000,
            )
            logger.info("Compaction %s: skipped summarization at %.2f", conversation_id, ratio)
            return result(CompactionPhase.SKIPPED, "pruning was sufficient")

        if not provider_id or not model_id:
            logger.warning("Compaction %s: missing provider/model, cannot summarize", conversation_id)
            return result(CompactionPhase.FAILED, "missing provider or model id")
        if self._summarizer is None:
            logger.warning("Compaction %s: no summarizer configured", conversation_id)
            return result(CompactionPhase.FAILED, "no summarizer")

        phases.append(CompactionPhase.SUMMARIZATION_FALLBACK)
        self._toast(
            "Smart Compaction",
            f"Still at {ratio * 100:.0f}% after pruning. Summarizing...",
            "warning", 3000,
        )
        try:
            self._summarizer.summarize(conversation_id, provider_id, model_id)
        except Exception as exc:
            logger.error("Summarization failed for %s: %s", conversation_id, exc)
            return result(CompactionPhase.FAILED, "summarization failed", error=str(exc))

        self._toast("Compaction Complete", "Session compacted successfully.", "success", 2000)
        logger.info("Compaction %s: summarization completed", conversation_id)
        return result(CompactionPhase.SUMMARIZATION_FALLBACK, "summarized")
