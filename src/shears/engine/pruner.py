"""ContextPruner -- the public entry point for shears.

Ties together format detection, state sync, strategies, the rewrite
engine, auxiliary-content injection, directed tools and preemptive
compaction.  The host calls :meth:`ContextPruner.transform` on every
outgoing request body; everything else hangs off the per-conversation
state it maintains.

Each stage of a transform is fail-open: an error is logged and the body
goes out with whatever the earlier stages produced.

Not thread-safe.  One pruner per process, one logical thread per
conversation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shears.compaction.controller import CompactionController
from shears.compaction.truncation import applied_truncation, truncate_until_target
from shears.engine.rewrite import RewriteEngine, RewriteOutcome
from shears.engine.tokens import TiktokenCounter
from shears.exceptions import DirectedPruneError, ShearsError, StaleReferenceError
from shears.formats import detect_format
from shears.formatting import describe_invocation, extract_parameter_key, shorten_path
from shears.hooks.broker import ConfirmationBroker
from shears.hooks.pending import ChecklistItem, PendingPrune
from shears.models.compaction import TokenUsage, TruncationResult
from shears.models.config import PrunerConfig
from shears.models.invocation import PruneMark, PruneReason
from shears.notify.dispatcher import NotificationDispatcher
from shears.notify.summary import PruneSummary
from shears.prompts import (
    auto_prune_warning,
    cooldown_message,
    nudge_message,
    pinned_suffix,
    system_prompt,
    wrap_prunable_tools,
)
from shears.state.correlation import CanonicalEntry, CanonicalIndex, SyncResult, build_canonical_index, sync_state
from shears.state.store import StateStore
from shears.storage.engine import open_database
from shears.strategies import default_strategies, should_warn, turns_until_auto_prune
from shears.strategies.base import StrategyContext
from shears.strategies.protection import ProtectionGuard

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from shears.formats.base import FormatDescriptor
    from shears.models.compaction import CompactionResult
    from shears.models.state import ConversationState
    from shears.protocols import Notifier, Summarizer, TokenCounter
    from shears.strategies.base import Strategy

logger = logging.getLogger(__name__)

DISCARD_REASONS: dict[str, PruneReason] = {
    "noise": PruneReason.NOISE,
    "completion": PruneReason.COMPLETION,
}


@dataclass
class TransformResult:
    """What one transform did to a request body.

    Fields:
        body: The (possibly rewritten) request body.
        format_name: Detected wire format, None when unrecognized.
        sync: Correlation sync result.
        new_marks: Marks recorded by strategies in this transform.
        rewrite: Rewrite pass outcome.
        injected: Kinds of auxiliary content injected ("prunable-list",
            "cooldown", "nudge", "auto-prune-warning").
        errors: Stage failures that were logged and skipped.
    """

    body: dict
    format_name: str | None = None
    sync: SyncResult | None = None
    new_marks: list[PruneMark] = field(default_factory=list)
    rewrite: RewriteOutcome | None = None
    injected: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return bool((self.rewrite and self.rewrite.rewritten) or self.injected)


@dataclass
class _LiveView:
    """The latest data array seen for a conversation."""

    fmt: FormatDescriptor
    data: list
    live_keys: list[str]
    index: CanonicalIndex
    provider_id: str | None = None


class ContextPruner:
    """Dynamic context pruning for LLM request bodies.

    Create via :meth:`ContextPruner.open` (persistent state) or the
    constructor (memory-only, or pre-built collaborators).

    Example::

        pruner = ContextPruner.open("shears.db", config=load_config("."))
        result = pruner.transform(body, "conv-1", provider_id="anthropic")
        send(result.body)
    """

    def __init__(
        self,
        config: PrunerConfig | None = None,
        *,
        store: StateStore | None = None,
        token_counter: TokenCounter | None = None,
        notifier: Notifier | None = None,
        summarizer: Summarizer | None = None,
        broker: ConfirmationBroker | None = None,
        strategies: list[Strategy] | None = None,
        working_directory: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config or PrunerConfig()
        self._store = store or StateStore()
        self._counter = token_counter or TiktokenCounter()
        self._rewriter = RewriteEngine(self._counter)
        self._strategies = sorted(
            strategies if strategies is not None else default_strategies(),
            key=lambda s: s.priority,
        )
        self._working_directory = working_directory
        self._dispatcher = NotificationDispatcher(
            notifier,
            level=self._config.pruning_summary,
            working_directory=working_directory,
        )
        self._broker = broker or ConfirmationBroker()
        self._compaction = CompactionController(
            self._config.compaction,
            self,
            summarizer=summarizer,
            dispatcher=self._dispatcher,
            clock=clock,
            environ=environ,
        )
        self._views: dict[str, _LiveView] = {}
        self._engine: Engine | None = None

    @classmethod
    def open(
        cls,
        path: str = ":memory:",
        *,
        config: PrunerConfig | None = None,
        **kwargs: object,
    ) -> ContextPruner:
        """Create a pruner whose conversation states persist in SQLite.

        Args:
            path: SQLite path.  ``":memory:"`` keeps states for the
                lifetime of the process only.
            config: Pruner configuration.  Defaults created if *None*.
            **kwargs: Passed to the constructor.
        """
        engine, session_factory = open_database(path)
        pruner = cls(config, store=StateStore(session_factory), **kwargs)  # type: ignore[arg-type]
        pruner._engine = engine
        return pruner

    def close(self) -> None:
        """Finish queued notifications and dispose the database engine."""
        self._dispatcher.close()
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def flush_notifications(self, timeout: float | None = None) -> bool:
        """Block until queued summaries and toasts have been delivered."""
        return self._dispatcher.wait(timeout)

    def __enter__(self) -> ContextPruner:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> PrunerConfig:
        return self._config

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def broker(self) -> ConfirmationBroker:
        return self._broker

    @property
    def compaction(self) -> CompactionController:
        return self._compaction

    def state(self, conversation_id: str) -> ConversationState:
        return self._store.get(conversation_id)

    def system_prompt(self, provider_id: str | None = None) -> str:
        """Instructions describing the enabled directed tools."""
        return system_prompt(self._config.for_provider(provider_id))

    # ------------------------------------------------------------------
    # Transform pipeline
    # ------------------------------------------------------------------

    def transform(
        self,
        body: dict,
        conversation_id: str,
        provider_id: str | None = None,
        *,
        is_sub_agent: bool | None = None,
    ) -> TransformResult:
        """Prune and annotate one outgoing request body.

        Runs sync, strategies, rewrite and injection in that order.
        The data array inside ``body`` is modified in place.

        Args:
            body: Provider request body.
            conversation_id: Host conversation id.
            provider_id: Host provider id (selects overrides and the
                injection role).
            is_sub_agent: Marks the conversation as a sub-agent session;
                automatic strategies are skipped for those.

        Returns:
            A TransformResult; ``result.body`` is ``body``.
        """
        result = TransformResult(body=body)
        config = self._config.for_provider(provider_id)
        if not config.enabled:
            return result

        fmt = detect_format(body)
        if fmt is None:
            return result
        data = fmt.get_data_array(body)
        if not data:
            return result
        result.format_name = fmt.name

        state = self._store.get(conversation_id)
        if is_sub_agent is not None:
            state.is_sub_agent = is_sub_agent
        guard = ProtectionGuard.from_config(config)

        try:
            result.sync = sync_state(fmt, data, state, max_entries=config.cache_max_entries)
        except Exception as exc:
            logger.error("%s: state sync failed for %s: %s", fmt.name, conversation_id, exc)
            result.errors.append(f"sync: {exc}")
            return result
        live_keys = result.sync.live_keys

        if not state.is_sub_agent:
            try:
                result.new_marks = self._run_strategies(state, live_keys, guard, config)
            except Exception as exc:
                logger.error("Strategies failed for %s: %s", conversation_id, exc)
                result.errors.append(f"strategies: {exc}")

        try:
            result.rewrite = self._rewriter.apply(fmt, data, state, live_keys=set(live_keys))
        except Exception as exc:
            logger.error("%s: rewrite failed for %s: %s", fmt.name, conversation_id, exc)
            result.errors.append(f"rewrite: {exc}")

        self._track_results(state, result.sync, guard)
        index = build_canonical_index(
            state, live_keys, guard, protected_turns=self._protected_turns(config),
        )
        self._views[conversation_id] = _LiveView(fmt, data, live_keys, index, provider_id)

        markers_before = fmt.count_cache_markers(body)
        before_injection = list(data)
        try:
            result.injected = self._inject(fmt, data, state, index, config, provider_id)
        except Exception as exc:
            logger.error("%s: injection failed for %s: %s", fmt.name, conversation_id, exc)
            result.errors.append(f"inject: {exc}")
        if result.injected and fmt.exceeds_cache_cap(body, markers_before):
            logger.warning(
                "%s: injection would exceed %d cache markers for %s; left out",
                fmt.name, fmt.max_cache_markers, conversation_id,
            )
            data[:] = before_injection
            result.injected = []

        if result.rewrite is not None and result.rewrite.newly_accounted:
            self._notify(state, result.rewrite)
        self._store.save(state)
        return result

    def _run_strategies(
        self,
        state: ConversationState,
        live_keys: list[str],
        guard: ProtectionGuard,
        config: PrunerConfig,
    ) -> list[PruneMark]:
        ctx = StrategyContext(state=state, live_keys=live_keys, guard=guard, config=config)
        recorded: list[PruneMark] = []
        for strategy in self._strategies:
            if not strategy.enabled(config):
                continue
            try:
                marks = strategy.evaluate(ctx)
            except ShearsError as exc:
                logger.warning("Strategy %s failed: %s", strategy.name, exc)
                continue
            for mark in marks:
                if state.mark(mark):
                    recorded.append(mark)
            if marks:
                logger.debug("Strategy %s proposed %d mark(s)", strategy.name, len(marks))
        return recorded

    @staticmethod
    def _protected_turns(config: PrunerConfig) -> int:
        return config.turn_protection.turns if config.turn_protection.enabled else 0

    def _track_results(self, state: ConversationState, sync: SyncResult, guard: ProtectionGuard) -> None:
        """Count new unprotected results for nudging and the cooldown reset."""
        fresh = 0
        for key in sync.new_result_keys:
            record = state.invocations.get(key)
            if record is not None and not guard.is_protected(record):
                fresh += 1
        if fresh:
            state.nudge_counter += fresh
            state.last_tool_prune = False

    def _inject(
        self,
        fmt: FormatDescriptor,
        data: list,
        state: ConversationState,
        index: CanonicalIndex,
        config: PrunerConfig,
        provider_id: str | None,
    ) -> list[str]:
        if not config.tools.any_enabled:
            return []
        as_assistant = bool(provider_id) and provider_id in config.assistant_injection_providers
        blocks: list[tuple[str, str]] = []

        if state.last_tool_prune:
            blocks.append(("cooldown", cooldown_message(config)))
        elif len(index):
            blocks.append(("prunable-list", self._prunable_list(state, index)))

        nudge = config.tools.nudge
        if nudge.enabled and not state.last_tool_prune and state.nudge_counter >= nudge.frequency:
            text = nudge_message(config)
            if text:
                blocks.append(("nudge", text))

        if should_warn(state, config):
            turns = int(turns_until_auto_prune(state, config))
            blocks.append(("auto-prune-warning", auto_prune_warning(turns, len(state.pins))))

        if not blocks:
            return []
        text = "\n\n".join(block for _kind, block in blocks)
        if not fmt.inject_auxiliary_content(data, text, as_assistant=as_assistant):
            return []
        return [kind for kind, _block in blocks]

    def _prunable_list(self, state: ConversationState, index: CanonicalIndex) -> str:
        lines = []
        for entry in index:
            record = entry.record
            line = f"{entry.canonical_id}: {describe_invocation(record.tool_name, record.parameters, self._working_directory)}"
            if state.is_pinned(entry.correlation_key):
                line += pinned_suffix(state.pins[entry.correlation_key] - state.turn_counter)
            lines.append(line)
        return wrap_prunable_tools(lines)

    def _notify(self, state: ConversationState, outcome: RewriteOutcome) -> None:
        records = []
        unknown = 0
        for key in outcome.newly_accounted:
            record = state.invocations.get(key)
            if record is None:
                unknown += 1
            else:
                records.append(record)
        self._dispatcher.notify_prune(
            state, PruneSummary(tokens_saved=outcome.tokens_saved, records=records, unknown=unknown),
        )

    # ------------------------------------------------------------------
    # Directed tools
    # ------------------------------------------------------------------

    def prunable(self, conversation_id: str) -> CanonicalIndex:
        """The canonical list offered to the model in the latest transform."""
        view = self._views.get(conversation_id)
        return view.index if view is not None else CanonicalIndex([])

    def _resolve(self, conversation_id: str, ids: list[str]) -> list[CanonicalEntry]:
        """Resolve ids against the latest list; all or nothing."""
        if not ids:
            raise DirectedPruneError("ids must be a non-empty list")
        index = self.prunable(conversation_id)
        entries = index.resolve([str(i) for i in ids])
        state = self._store.get(conversation_id)
        gone = [e.canonical_id for e in entries if state.is_pruned(e.correlation_key)]
        if gone:
            available = [e.canonical_id for e in index if not state.is_pruned(e.correlation_key)]
            raise StaleReferenceError(gone, available)
        return entries

    def _require_tool(self, conversation_id: str, name: str) -> PrunerConfig:
        view = self._views.get(conversation_id)
        config = self._config.for_provider(view.provider_id if view else None)
        if not getattr(config.tools, name).enabled:
            raise DirectedPruneError(f"The {name} tool is disabled")
        return config

    def _describe(self, entries: list[CanonicalEntry]) -> str:
        return "\n".join(
            f"  {e.canonical_id}: "
            f"{describe_invocation(e.record.tool_name, e.record.parameters, self._working_directory)}"
            for e in entries
        )

    def _record_directed(self, conversation_id: str, marks: list[PruneMark]) -> int:
        state = self._store.get(conversation_id)
        recorded = sum(1 for mark in marks if state.mark(mark))
        state.last_tool_prune = True
        state.nudge_counter = 0
        self._store.save(state)
        return recorded

    def discard(self, conversation_id: str, ids: list[str], reason: str = "noise") -> str:
        """Discard tool outputs the model no longer needs.

        Args:
            conversation_id: Conversation the ids belong to.
            ids: Canonical ids from the latest prunable list.
            reason: ``noise`` or ``completion``.

        Returns:
            Confirmation text listing what was removed.

        Raises:
            DirectedPruneError: Disabled tool or bad arguments.
            StaleReferenceError: An id is not in the current list.
        """
        self._require_tool(conversation_id, "discard")
        prune_reason = DISCARD_REASONS.get(str(reason).strip().lower())
        if prune_reason is None:
            raise DirectedPruneError(
                f"Unknown discard reason {reason!r}; use one of {sorted(DISCARD_REASONS)}"
            )
        entries = self._dedupe(self._resolve(conversation_id, ids))
        turn = self._store.get(conversation_id).turn_counter
        marks = [PruneMark(e.correlation_key, prune_reason, marked_at_turn=turn) for e in entries]
        count = self._record_directed(conversation_id, marks)
        logger.info("discard (%s): %d tool output(s) in %s", prune_reason, count, conversation_id)
        return f"Discarded {count} tool output(s) ({prune_reason}):\n{self._describe(entries)}"

    def extract(self, conversation_id: str, ids: list[str], distillation: list[str]) -> str:
        """Replace tool outputs with model-written distillations.

        ``distillation[i]`` replaces the output of ``ids[i]``.

        Raises:
            DirectedPruneError: Disabled tool, length mismatch, duplicate
                ids or empty distillation text.
            StaleReferenceError: An id is not in the current list.
        """
        self._require_tool(conversation_id, "extract")
        if not isinstance(distillation, list) or len(ids) != len(distillation):
            raise DirectedPruneError(
                f"extract needs one distillation per id: got {len(ids)} id(s) "
                f"and {len(distillation) if isinstance(distillation, list) else 0} distillation(s)"
            )
        if len({str(i).strip() for i in ids}) != len(ids):
            raise DirectedPruneError("extract ids must be unique")
        if any(not isinstance(text, str) or not text.strip() for text in distillation):
            raise DirectedPruneError("every distillation must be non-empty text")
        entries = self._resolve(conversation_id, ids)
        turn = self._store.get(conversation_id).turn_counter
        marks = [
            PruneMark(e.correlation_key, PruneReason.USER_DIRECTED, replacement=text, marked_at_turn=turn)
            for e, text in zip(entries, distillation)
        ]
        count = self._record_directed(conversation_id, marks)
        logger.info("extract: %d tool output(s) in %s", count, conversation_id)
        return f"Extracted {count} tool output(s):\n{self._describe(entries)}"

    def pin(self, conversation_id: str, ids: list[str], duration_turns: int | None = None) -> str:
        """Protect tool outputs from automatic pruning for a number of turns.

        Re-pinning replaces the expiry.

        Raises:
            DirectedPruneError: Disabled tool or a non-positive duration.
            StaleReferenceError: An id is not in the current list.
        """
        config = self._require_tool(conversation_id, "pin")
        turns = config.tools.pinning_mode.default_pin_turns if duration_turns is None else duration_turns
        if isinstance(turns, bool) or not isinstance(turns, int) or turns < 1:
            raise DirectedPruneError(f"duration_turns must be a positive integer, got {duration_turns!r}")
        entries = self._dedupe(self._resolve(conversation_id, ids))
        state = self._store.get(conversation_id)
        expiry = state.turn_counter + turns
        for entry in entries:
            state.pins[entry.correlation_key] = expiry
        self._store.save(state)
        logger.info("pin: %d tool output(s) until turn %d in %s", len(entries), expiry, conversation_id)
        return (
            f"Pinned {len(entries)} tool output(s) until turn {expiry} "
            f"(expires in {turns} turn(s)):\n{self._describe(entries)}"
        )

    @staticmethod
    def _dedupe(entries: list[CanonicalEntry]) -> list[CanonicalEntry]:
        seen: set[str] = set()
        unique = []
        for entry in entries:
            if entry.correlation_key not in seen:
                seen.add(entry.correlation_key)
                unique.append(entry)
        return unique

    def request_discard(
        self,
        conversation_id: str,
        ids: list[str],
        reason: str = "noise",
        *,
        auto_confirm: bool | None = None,
    ) -> PendingPrune:
        """Ask the user to confirm a discard before applying it.

        The ids are validated now; approval discards the items still
        checked at that point.

        Raises:
            ConfirmationError: The conversation already has a request open.
            StaleReferenceError: An id is not in the current list.
        """
        self._require_tool(conversation_id, "discard")
        entries = self._dedupe(self._resolve(conversation_id, ids))
        items = [
            ChecklistItem(id=e.canonical_id, key=e.correlation_key, label=self._label(e))
            for e in entries
        ]

        def execute(confirmed: list[ChecklistItem]) -> str:
            return self.discard(conversation_id, [item.id for item in confirmed], reason)

        return self._broker.request(
            conversation_id, items, execute_fn=execute, auto_confirm=auto_confirm,
            triggered_by="tool:discard",
        )

    def _label(self, entry: CanonicalEntry) -> str:
        record = entry.record
        key = extract_parameter_key(record.tool_name, record.parameters, self._working_directory)
        name = record.tool_name[:1].upper() + record.tool_name[1:]
        return f"{name} {shorten_path(key, self._working_directory)}" if key else name

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def on_assistant_finished(
        self,
        conversation_id: str,
        usage: TokenUsage | dict,
        *,
        model_id: str | None = None,
        provider_id: str | None = None,
        is_summary: bool = False,
    ) -> CompactionResult:
        """Feed token usage from a finished assistant step to compaction."""
        if isinstance(usage, dict):
            usage = TokenUsage.from_dict(usage)
        return self._compaction.evaluate(
            conversation_id, usage,
            model_id=model_id, provider_id=provider_id, is_summary=is_summary,
        )

    def run_strategies(self, conversation_id: str) -> int:
        """Run strategies and rewrite on the latest view now.

        Returns:
            Tokens saved by the rewrite.
        """
        view = self._views.get(conversation_id)
        if view is None:
            return 0
        config = self._config.for_provider(view.provider_id)
        state = self._store.get(conversation_id)
        guard = ProtectionGuard.from_config(config)
        sync = sync_state(view.fmt, view.data, state, max_entries=config.cache_max_entries)
        if not state.is_sub_agent:
            self._run_strategies(state, sync.live_keys, guard, config)
        outcome = self._rewriter.apply(view.fmt, view.data, state, live_keys=set(sync.live_keys))
        self._store.save(state)
        return outcome.tokens_saved

    def truncate(
        self,
        conversation_id: str,
        *,
        current_tokens: int,
        context_limit: int,
        target_ratio: float,
        protected_messages: int,
    ) -> TruncationResult:
        """Truncate the largest results of the latest view toward a target ratio.

        Only results whose rewrite went through are reported; a planned
        result whose pair could not be resolved keeps its content and
        loses its mark.
        """
        view = self._views.get(conversation_id)
        if view is None:
            return TruncationResult()
        config = self._config.for_provider(view.provider_id)
        state = self._store.get(conversation_id)
        marks, result = truncate_until_target(
            view.fmt, view.data, state, ProtectionGuard.from_config(config),
            current_tokens=current_tokens,
            context_limit=context_limit,
            target_ratio=target_ratio,
            protected_messages=protected_messages,
        )
        if not marks:
            return result
        for mark in marks:
            state.mark(mark)
        outcome = self._rewriter.apply(view.fmt, view.data, state, live_keys=set(view.live_keys))
        applied = set(outcome.rewritten)
        for mark in marks:
            if mark.correlation_key not in applied:
                logger.warning(
                    "Truncation of %s in %s was not applied; dropping its mark",
                    mark.correlation_key, conversation_id,
                )
                state.pruned.pop(mark.correlation_key, None)
        self._store.save(state)
        return applied_truncation(result, applied)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def delete_conversation(self, conversation_id: str) -> None:
        """Forget everything about a deleted conversation."""
        self._views.pop(conversation_id, None)
        self._compaction.forget(conversation_id)
        self._broker.forget(conversation_id)
        self._store.evict(conversation_id)
        logger.info("Deleted state for conversation %s", conversation_id)
