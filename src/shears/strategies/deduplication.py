"""Deduplication -- keep only the latest of identical tool calls.

Calls are grouped by tool name and a canonical serialization of their
parameters.  In each group of two or more completed calls, every call
but the most recent is marked ``duplicate``.  A group with a call still
in flight is left alone until it settles.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict

from shears.models.invocation import PruneMark, PruneReason, ToolInvocationRecord, ToolStatus
from shears.models.config import PrunerConfig
from shears.strategies.base import Strategy, StrategyContext

logger = logging.getLogger(__name__)


def signature(record: ToolInvocationRecord) -> str:
    """Canonical identity of a call: tool name plus sorted-key parameters."""
    params = json.dumps(record.parameters, sort_keys=True, separators=(",", ":"), default=str)
    return f"{record.tool_name}::{params}"


class DeduplicationStrategy(Strategy):
    """Mark all but the most recent of identical calls as ``duplicate``."""

    @property
    def name(self) -> str:
        return "deduplication"

    @property
    def priority(self) -> int:
        return 10

    def enabled(self, config: PrunerConfig) -> bool:
        return config.strategies.deduplication.enabled

    def evaluate(self, ctx: StrategyContext) -> list[PruneMark]:
        extra = ctx.config.strategies.deduplication.protected_tools
        groups: OrderedDict[str, list[ToolInvocationRecord]] = OrderedDict()
        for record in ctx.candidates(extra_protected=extra):
            if record.status == ToolStatus.ERROR:
                continue
            groups.setdefault(signature(record), []).append(record)

        marks: list[PruneMark] = []
        for sig, members in groups.items():
            if len(members) < 2:
                continue
            if any(m.status.in_flight for m in members):
                logger.debug("Dedup: group %s has a call in flight; deferring", sig[:60])
                continue
            for record in members[:-1]:
                marks.append(PruneMark(
                    correlation_key=record.correlation_key,
                    reason=PruneReason.DUPLICATE,
                    marked_at_turn=ctx.turn,
                ))
        if marks:
            logger.info("Dedup: %d duplicate call(s) marked", len(marks))
        return marks
