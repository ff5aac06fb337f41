"""Purge-errors -- collapse the input of old failed calls.

A failed call's arguments are rarely useful a few turns later, while the
error message itself may still explain why an approach was abandoned.
Errored calls older than ``turns`` turns have their input collapsed; the
error result is kept.
"""

from __future__ import annotations

from shears.models.config import PrunerConfig
from shears.models.invocation import PruneMark, PruneReason, PruneTarget, ToolStatus
from shears.strategies.base import Strategy, StrategyContext


class PurgeErrorsStrategy(Strategy):

    @property
    def name(self) -> str:
        return "purge-errors"

    @property
    def priority(self) -> int:
        return 30

    def enabled(self, config: PrunerConfig) -> bool:
        return config.strategies.purge_errors.enabled

    def evaluate(self, ctx: StrategyContext) -> list[PruneMark]:
        turns = ctx.config.strategies.purge_errors.turns
        return [
            PruneMark(
                correlation_key=record.correlation_key,
                reason=PruneReason.NOISE,
                target=PruneTarget.INPUT,
                marked_at_turn=ctx.turn,
            )
            for record in ctx.candidates()
            if record.status == ToolStatus.ERROR and ctx.age(record) >= turns
        ]
