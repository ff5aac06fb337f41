"""Automatic pruning strategies.

Provides the Strategy ABC, the shared StrategyContext, the protection
guard, and the built-in strategies in their default run order.
"""

from shears.strategies.auto_prune import AutoPruneStrategy, should_warn, turns_until_auto_prune
from shears.strategies.base import Strategy, StrategyContext
from shears.strategies.deduplication import DeduplicationStrategy
from shears.strategies.protection import ProtectionGuard
from shears.strategies.purge_errors import PurgeErrorsStrategy
from shears.strategies.supersede_writes import SupersedeWritesStrategy


def default_strategies() -> list[Strategy]:
    """Built-in strategies sorted by priority."""
    strategies: list[Strategy] = [
        DeduplicationStrategy(),
        SupersedeWritesStrategy(),
        PurgeErrorsStrategy(),
        AutoPruneStrategy(),
    ]
    return sorted(strategies, key=lambda s: s.priority)


__all__ = [
    "AutoPruneStrategy",
    "DeduplicationStrategy",
    "ProtectionGuard",
    "PurgeErrorsStrategy",
    "Strategy",
    "StrategyContext",
    "SupersedeWritesStrategy",
    "default_strategies",
    "should_warn",
    "turns_until_auto_prune",
]
