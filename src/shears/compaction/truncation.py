"""Greedy largest-first truncation of tool results.

Truncation does not edit content itself: it marks results ``size`` with
the truncation notice as replacement text, and the rewrite engine
applies the marks like any other.  Removed size is counted net of the
notice that replaces each result.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from typing import TYPE_CHECKING

from shears.engine.tokens import CHARS_PER_TOKEN
from shears.exceptions import CompactionError
from shears.models.compaction import TruncatedTool, TruncationResult
from shears.models.invocation import PruneMark, PruneReason
from shears.prompts import TRUNCATION_MESSAGE

if TYPE_CHECKING:
    from shears.formats.base import FormatDescriptor
    from shears.models.state import ConversationState
    from shears.strategies.protection import ProtectionGuard

logger = logging.getLogger(__name__)


def _net_removed(size: int) -> int:
    return max(0, size - len(TRUNCATION_MESSAGE))


def truncate_until_target(
    fmt: FormatDescriptor,
    data: list,
    state: ConversationState,
    guard: ProtectionGuard,
    *,
    current_tokens: int,
    context_limit: int,
    target_ratio: float,
    protected_messages: int = 3,
    chars_per_token: int = CHARS_PER_TOKEN,
) -> tuple[list[PruneMark], TruncationResult]:
    """Pick the largest results to truncate until usage meets the target.

    Results in the last ``protected_messages`` containers, results
    already marked, in-flight calls and protected tools are skipped.

    Returns:
        The marks to record and a summary of what they remove.

    Raises:
        CompactionError: If the limit or target ratio is out of range.
    """
    if context_limit <= 0 or not 0.0 < target_ratio <= 1.0:
        raise CompactionError(
            f"Bad truncation target: limit {context_limit}, ratio {target_ratio}"
        )
    target_tokens = int(context_limit * target_ratio)
    tokens_to_reduce = current_tokens - target_tokens
    if tokens_to_reduce <= 0:
        return [], TruncationResult()
    chars_to_reduce = tokens_to_reduce * chars_per_token

    cutoff = len(data) - protected_messages
    candidates = []
    for output in fmt.extract_tool_outputs(data):
        if output.container_index >= cutoff or state.is_pruned(output.key):
            continue
        record = state.invocations.get(output.key)
        if record is None or record.status.in_flight or guard.is_protected(record):
            continue
        if output.size <= len(TRUNCATION_MESSAGE):
            continue
        candidates.append((output, record))
    candidates.sort(key=lambda pair: pair[0].size, reverse=True)

    marks: list[PruneMark] = []
    truncated: list[TruncatedTool] = []
    removed = 0
    for output, record in candidates:
        if removed >= chars_to_reduce:
            break
        marks.append(PruneMark(
            correlation_key=output.key,
            reason=PruneReason.SIZE,
            replacement=TRUNCATION_MESSAGE,
            marked_at_turn=state.turn_counter,
        ))
        truncated.append(TruncatedTool(output.key, record.tool_name, output.size))
        removed += _net_removed(output.size)

    logger.debug(
        "Truncation plan: %d result(s), %d of %d chars", len(marks), removed, chars_to_reduce,
    )
    return marks, TruncationResult(
        truncated_count=len(marks),
        bytes_removed=removed,
        target_bytes=chars_to_reduce,
        truncated_tools=tuple(truncated),
    )


def applied_truncation(plan: TruncationResult, applied: Collection[str]) -> TruncationResult:
    """Restrict a truncation plan to the results that were actually rewritten."""
    tools = tuple(t for t in plan.truncated_tools if t.correlation_key in applied)
    return TruncationResult(
        truncated_count=len(tools),
        bytes_removed=sum(_net_removed(t.original_size) for t in tools),
        target_bytes=plan.target_bytes,
        truncated_tools=tools,
    )
