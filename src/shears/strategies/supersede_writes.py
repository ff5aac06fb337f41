"""Supersede-writes -- drop write arguments once the file was re-read.

When a file-mutating call is later followed by a successful read of the
same path, the write's input payload no longer carries information the
model cannot get from the read result.  The write's *input* is marked
``superseded``; the read and the write's own result stay untouched.
"""

from __future__ import annotations

import logging

from shears.formatting import file_path_from_parameters
from shears.models.config import PrunerConfig
from shears.models.invocation import PruneMark, PruneReason, PruneTarget, ToolStatus
from shears.strategies.base import Strategy, StrategyContext

logger = logging.getLogger(__name__)


def _normalize(path: str) -> str:
    return path.replace("\\", "/").rstrip("/")


class SupersedeWritesStrategy(Strategy):
    """Mark write inputs ``superseded`` by a later read of the same path."""

    @property
    def name(self) -> str:
        return "supersede-writes"

    @property
    def priority(self) -> int:
        return 20

    def enabled(self, config: PrunerConfig) -> bool:
        return config.strategies.supersede_writes.enabled

    def evaluate(self, ctx: StrategyContext) -> list[PruneMark]:
        settings = ctx.config.strategies.supersede_writes
        write_tools = set(settings.write_tools)
        read_tools = set(settings.read_tools)

        # Latest successful read position per path, over every live call:
        # a read that was itself pruned still proves the write was observed.
        last_read: dict[str, int] = {}
        for key in ctx.live_keys:
            record = ctx.state.invocations.get(key)
            if record is None or record.tool_name not in read_tools:
                continue
            if record.status != ToolStatus.COMPLETED:
                continue
            path = file_path_from_parameters(record.parameters)
            if path:
                last_read[_normalize(path)] = ctx.position(key)

        marks: list[PruneMark] = []
        for record in ctx.candidates():
            if record.tool_name not in write_tools or record.status.in_flight:
                continue
            path = file_path_from_parameters(record.parameters)
            if not path:
                continue
            read_at = last_read.get(_normalize(path), -1)
            if read_at > ctx.position(record.correlation_key):
                marks.append(PruneMark(
                    correlation_key=record.correlation_key,
                    reason=PruneReason.SUPERSEDED,
                    target=PruneTarget.INPUT,
                    marked_at_turn=ctx.turn,
                ))
                logger.debug("Supersede: %s of %s re-read later", record.tool_name, path)
        if marks:
            logger.info("Supersede: %d write input(s) marked", len(marks))
        return marks
