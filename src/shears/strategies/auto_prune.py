"""Pinning-mode auto-prune.

With pinning mode on, the model is expected to ``pin`` what it wants to
keep.  Every ``prune_frequency`` turns, every live tool output that is
not pinned (and not protected) is discarded as ``noise``.  A warning is
injected during the last ``warning_turns`` turns before each cycle.
"""

from __future__ import annotations

import logging
import math

from shears.models.config import PrunerConfig
from shears.models.invocation import PruneMark, PruneReason
from shears.models.state import ConversationState
from shears.strategies.base import Strategy, StrategyContext

logger = logging.getLogger(__name__)


def turns_until_auto_prune(state: ConversationState, config: PrunerConfig) -> float:
    """Turns left before the next auto-prune cycle (``inf`` when disabled)."""
    mode = config.tools.pinning_mode
    if not mode.enabled:
        return math.inf
    elapsed = state.turn_counter - state.last_auto_prune_turn
    return max(0, mode.prune_frequency - elapsed)


def should_warn(state: ConversationState, config: PrunerConfig) -> bool:
    """True during the warning window just before a cycle."""
    if not config.tools.pinning_mode.enabled:
        return False
    turns = turns_until_auto_prune(state, config)
    return 0 < turns <= config.tools.pinning_mode.warning_turns


class AutoPruneStrategy(Strategy):
    """Discard everything unpinned once per cycle."""

    @property
    def name(self) -> str:
        return "auto-prune"

    @property
    def priority(self) -> int:
        return 90

    def enabled(self, config: PrunerConfig) -> bool:
        return config.tools.pinning_mode.enabled

    def evaluate(self, ctx: StrategyContext) -> list[PruneMark]:
        if turns_until_auto_prune(ctx.state, ctx.config) > 0:
            return []

        logger.info("Auto-prune triggered at turn %d", ctx.turn)
        ctx.state.expire_pins()
        ctx.state.last_auto_prune_turn = ctx.turn
        marks = [
            PruneMark(
                correlation_key=record.correlation_key,
                reason=PruneReason.NOISE,
                marked_at_turn=ctx.turn,
            )
            for record in ctx.candidates()
            if not record.status.in_flight
        ]
        logger.info("Auto-prune: %d unpinned output(s), %d pin(s) kept", len(marks), len(ctx.state.pins))
        return marks
