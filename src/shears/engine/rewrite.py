"""Rewrite engine -- applies prune marks to the live data array.

The host sends the full, unpruned history on every request, so every
mark in ``state.pruned`` is applied on every transform.  Writing the
same replacement text twice yields the same containers, which makes the
pass idempotent; savings are credited to the stats only the first time
a key is rewritten.

Every mark is resolved as a pair (call and result) before anything is
written, and each pair is committed with a single staged swap.  A pair
that does not resolve, or whose positional key now holds a different
call, is refused and logged; a write that raises is rolled back.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shears.exceptions import PairingError
from shears.formats.base import ToolPair
from shears.formatting import file_path_from_parameters
from shears.models.invocation import PruneMark, PruneTarget
from shears.prompts import PRUNED_INPUT_PLACEHOLDER, PRUNED_OUTPUT_PLACEHOLDER

if TYPE_CHECKING:
    from shears.formats.base import FormatDescriptor
    from shears.models.state import ConversationState
    from shears.protocols import TokenCounter

logger = logging.getLogger(__name__)

_KEPT_INPUT_KEYS = ("filePath", "file_path", "path")


def collapse_parameters(parameters: dict) -> dict:
    """Replace every argument value except the target path.

    Keeping the path leaves the call readable (``write src/a.py``) while
    dropping the payload that made it large.
    """
    if not parameters:
        return {}
    path = file_path_from_parameters(parameters)
    collapsed: dict = {}
    for key in parameters:
        if key in _KEPT_INPUT_KEYS and parameters[key] == path:
            collapsed[key] = path
        else:
            collapsed[key] = PRUNED_INPUT_PLACEHOLDER
    return collapsed


def replacement_for(mark: PruneMark) -> str:
    return mark.replacement if mark.replacement is not None else PRUNED_OUTPUT_PLACEHOLDER


@dataclass
class RewriteOutcome:
    """What one rewrite pass did.

    Fields:
        rewritten: Keys whose content changed in this pass.
        refused: Keys whose pair could not be resolved.
        newly_accounted: Keys credited to the stats in this pass.
        tokens_saved: Tokens removed by newly accounted keys.
        bytes_saved: Characters removed by newly accounted keys.
    """

    rewritten: list[str] = field(default_factory=list)
    refused: list[str] = field(default_factory=list)
    newly_accounted: list[str] = field(default_factory=list)
    tokens_saved: int = 0
    bytes_saved: int = 0
    per_key_tokens: dict[str, int] = field(default_factory=dict)


class RewriteEngine:
    """Applies ``state.pruned`` to a data array through its format descriptor.

    Args:
        token_counter: Counter used to measure savings.
    """

    def __init__(self, token_counter: TokenCounter) -> None:
        self._counter = token_counter

    def _measure(self, containers: list[dict]) -> tuple[int, int]:
        text = "".join(json.dumps(c, ensure_ascii=False, default=str) for c in containers)
        return self._counter.count_text(text), len(text)

    def apply(
        self,
        fmt: FormatDescriptor,
        data: list,
        state: ConversationState,
        *,
        live_keys: set[str] | None = None,
    ) -> RewriteOutcome:
        """Rewrite every marked pair present in ``data``.

        Args:
            fmt: Descriptor of the body's wire format.
            data: Data array, mutated in place (containers are replaced).
            state: Conversation state holding the marks.
            live_keys: Call keys present in ``data``; marks for other keys
                are skipped quietly.  Computed when omitted.
        """
        outcome = RewriteOutcome()
        if not state.pruned:
            return outcome
        if live_keys is None:
            live_keys = {ref.key for ref in fmt.iter_tool_calls(data)}

        marks = [m for k, m in state.pruned.items() if k in live_keys]
        if not marks:
            return outcome
        resolved = fmt.resolve_pairs(data, [m.correlation_key for m in marks])

        for mark in marks:
            pair = resolved[mark.correlation_key]
            if isinstance(pair, PairingError):
                logger.warning("%s: refusing rewrite: %s", fmt.name, pair)
                outcome.refused.append(mark.correlation_key)
                continue
            record = state.invocations.get(mark.correlation_key)
            if record is not None and not fmt.still_matches(pair.call, record):
                logger.warning(
                    "%s: refusing rewrite: %s is now %s, mark was for %s",
                    fmt.name, mark.correlation_key, pair.call.tool_name, record.tool_name,
                )
                outcome.refused.append(mark.correlation_key)
                continue
            self._apply_one(fmt, data, state, mark, pair, outcome)

        if outcome.newly_accounted:
            state.stats.pending_tokens += outcome.tokens_saved
            state.stats.bytes_saved += outcome.bytes_saved
            state.stats.prune_count += len(outcome.newly_accounted)
            logger.info(
                "Pruned %d tool(s), ~%d tokens saved", len(outcome.newly_accounted), outcome.tokens_saved,
            )
        return outcome

    def _apply_one(
        self,
        fmt: FormatDescriptor,
        data: list,
        state: ConversationState,
        mark: PruneMark,
        pair: ToolPair,
        outcome: RewriteOutcome,
    ) -> None:
        indexes = sorted({pair.call.container_index, pair.output.container_index})
        snapshot = {ci: data[ci] for ci in indexes}

        if mark.target == PruneTarget.INPUT:
            kwargs = {"input_parameters": collapse_parameters(pair.call.parameters)}
        else:
            kwargs = {"output_text": replacement_for(mark)}

        try:
            changed = fmt.apply_pair_rewrite(data, pair, **kwargs)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            for ci, container in snapshot.items():
                data[ci] = container
            logger.warning(
                "%s: rewrite of %s failed, restored original: %s",
                fmt.name, mark.correlation_key, exc,
            )
            outcome.refused.append(mark.correlation_key)
            return

        if not changed:
            return
        outcome.rewritten.append(mark.correlation_key)
        if mark.correlation_key in state.accounted:
            return

        before_tokens, before_bytes = self._measure(list(snapshot.values()))
        after_tokens, after_bytes = self._measure([data[ci] for ci in indexes])
        tokens = max(0, before_tokens - after_tokens)
        state.accounted.add(mark.correlation_key)
        outcome.newly_accounted.append(mark.correlation_key)
        outcome.tokens_saved += tokens
        outcome.bytes_saved += max(0, before_bytes - after_bytes)
        outcome.per_key_tokens[mark.correlation_key] = tokens
        logger.debug(
            "Rewrote %s (%s, %s): ~%d tokens", mark.correlation_key, mark.reason, mark.target, tokens,
        )


def output_sizes(fmt: FormatDescriptor, data: list) -> dict[str, int]:
    """Serialized result size per correlation key."""
    return {o.key: o.size for o in fmt.extract_tool_outputs(data)}
