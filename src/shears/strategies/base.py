"""Strategy ABC -- base class for all automatic pruning strategies.

A strategy inspects synced conversation state and proposes PruneMarks.
It never rewrites content and never records marks itself; the pruner
applies the returned marks through ``ConversationState.mark``.

Example::

    class DropOldGlobs(Strategy):
        @property
        def name(self) -> str:
            return "drop-old-globs"

        def evaluate(self, ctx: StrategyContext) -> list[PruneMark]:
            return [
                PruneMark(r.correlation_key, PruneReason.NOISE, marked_at_turn=ctx.turn)
                for r in ctx.candidates()
                if r.tool_name == "glob" and ctx.age(r) > 5
            ]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shears.models.config import PrunerConfig
    from shears.models.invocation import PruneMark, ToolInvocationRecord
    from shears.models.state import ConversationState
    from shears.strategies.protection import ProtectionGuard


@dataclass
class StrategyContext:
    """Inputs shared by every strategy in one transform.

    Fields:
        state: Conversation state, already synced from the live list.
        live_keys: Call keys present in the live list, in order.
        guard: Protected tool/path filter.
        config: Effective config for the current provider.
    """

    state: ConversationState
    live_keys: list[str]
    guard: ProtectionGuard
    config: PrunerConfig
    _positions: dict[str, int] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._positions = {k: i for i, k in enumerate(self.live_keys)}

    @property
    def turn(self) -> int:
        return self.state.turn_counter

    def position(self, key: str) -> int:
        """Index of a call in the live list (-1 when absent)."""
        return self._positions.get(key, -1)

    def age(self, record: ToolInvocationRecord) -> int:
        """Turns elapsed since the record's call."""
        return self.state.turn_counter - record.turn_index

    def candidates(self, *, extra_protected: list[str] | None = None) -> list[ToolInvocationRecord]:
        """Live, unpruned, unpinned, unprotected records in live order."""
        guard = self.guard.with_tools(extra_protected or [])
        records: list[ToolInvocationRecord] = []
        seen: set[str] = set()
        for key in self.live_keys:
            if key in seen:
                continue
            seen.add(key)
            record = self.state.invocations.get(key)
            if record is None or self.state.is_pruned(key) or self.state.is_pinned(key):
                continue
            if guard.is_protected(record):
                continue
            records.append(record)
        return records


class Strategy(ABC):
    """Abstract base class for automatic pruning strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this strategy (e.g., 'deduplication')."""
        ...

    @property
    def priority(self) -> int:
        """Execution priority. Lower runs first. Default 100."""
        return 100

    def enabled(self, config: PrunerConfig) -> bool:
        """Whether the strategy runs under the given config."""
        return True

    @abstractmethod
    def evaluate(self, ctx: StrategyContext) -> list[PruneMark]:
        """Propose marks for this turn.

        Must not mutate ``ctx.state.pruned``; return marks instead.
        """
        ...
