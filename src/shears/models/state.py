"""Per-conversation pruning state.

ConversationState is owned by the StateStore, keyed by conversation id,
and is the only mutable structure the engine touches between turns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from shears.models.invocation import PruneMark, ToolInvocationRecord


@dataclass
class SessionStats:
    """Cumulative savings for one conversation.

    ``pending_tokens`` accumulates savings since the last notification and
    is folded into ``total_tokens`` when a summary is emitted.
    """

    total_tokens: int = 0
    pending_tokens: int = 0
    bytes_saved: int = 0
    prune_count: int = 0

    @property
    def tokens_saved(self) -> int:
        return self.total_tokens + self.pending_tokens

    def flush(self) -> int:
        """Fold pending savings into the total and return what was pending."""
        pending = self.pending_tokens
        self.total_tokens += pending
        self.pending_tokens = 0
        return pending

    def to_dict(self) -> dict:
        return {
            "total_tokens": self.total_tokens,
            "pending_tokens": self.pending_tokens,
            "bytes_saved": self.bytes_saved,
            "prune_count": self.prune_count,
        }

    @classmethod
    def from_dict(cls, d: dict | None) -> SessionStats:
        d = d or {}
        return cls(
            total_tokens=int(d.get("total_tokens", 0)),
            pending_tokens=int(d.get("pending_tokens", 0)),
            bytes_saved=int(d.get("bytes_saved", 0)),
            prune_count=int(d.get("prune_count", 0)),
        )


@dataclass
class ConversationState:
    """Everything the engine remembers about one conversation.

    Fields:
        conversation_id: Host conversation/session identifier.
        invocations: correlation_key -> record, insertion-ordered.
        pruned: correlation_key -> PruneMark for every marked record.
        pins: correlation_key -> turn at which the pin expires.
        turn_counter: Assistant steps seen, never decreasing.
        stats: Cumulative savings.
        accounted: Keys whose savings were already added to ``stats``.
        seen_results: Keys whose results were already counted for nudging.
        nudge_counter: Unprotected tool results since the last directed prune.
        last_tool_prune: True directly after a discard/extract call.
        last_auto_prune_turn: Turn of the last pinning-mode auto-prune.
        is_sub_agent: Automatic strategies are skipped for sub-agents.
    """

    conversation_id: str
    invocations: dict[str, ToolInvocationRecord] = field(default_factory=dict)
    pruned: dict[str, PruneMark] = field(default_factory=dict)
    pins: dict[str, int] = field(default_factory=dict)
    turn_counter: int = 0
    stats: SessionStats = field(default_factory=SessionStats)
    accounted: set[str] = field(default_factory=set)
    seen_results: set[str] = field(default_factory=set)
    nudge_counter: int = 0
    last_tool_prune: bool = False
    last_auto_prune_turn: int = 0
    is_sub_agent: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Turn derivation bookkeeping: the list may be truncated externally,
    # so the derived count can drop while turn_counter must not.
    _last_derived_turns: int = field(default=0, repr=False)
    _turn_offset: int = field(default=0, repr=False)

    # -- Marks ---------------------------------------------------------

    def is_pruned(self, key: str) -> bool:
        return key in self.pruned

    def mark(self, mark: PruneMark) -> bool:
        """Record a prune mark. Returns False if the key was already marked."""
        if mark.correlation_key in self.pruned:
            return False
        self.pruned[mark.correlation_key] = mark
        self.pins.pop(mark.correlation_key, None)
        return True

    def forget(self, key: str) -> None:
        """Drop everything known about a key: record, mark, pin, accounting."""
        self.invocations.pop(key, None)
        self.pruned.pop(key, None)
        self.pins.pop(key, None)
        self.accounted.discard(key)
        self.seen_results.discard(key)

    def is_pinned(self, key: str) -> bool:
        expiry = self.pins.get(key)
        return expiry is not None and self.turn_counter < expiry

    # -- Turns ---------------------------------------------------------

    def observe_turns(self, derived: int) -> int:
        """Fold a turn count derived from the live list into turn_counter.

        If the live list lost turns since the last sync (external
        summarization), the loss is absorbed into an offset so the
        counter never moves backwards.

        Returns:
            The turn offset to add to list-derived turn indexes.
        """
        if derived < self._last_derived_turns:
            self._turn_offset += self._last_derived_turns - derived
        self._last_derived_turns = derived
        self.turn_counter = max(self.turn_counter, derived + self._turn_offset)
        return self._turn_offset

    def expire_pins(self) -> list[str]:
        """Drop pins whose expiry turn has been reached."""
        expired = [k for k, turn in self.pins.items() if self.turn_counter >= turn]
        for key in expired:
            del self.pins[key]
        return expired

    # -- Serialization -------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "invocations": [r.to_dict() for r in self.invocations.values()],
            "pruned": [m.to_dict() for m in self.pruned.values()],
            "pins": dict(self.pins),
            "turn_counter": self.turn_counter,
            "stats": self.stats.to_dict(),
            "accounted": sorted(self.accounted),
            "seen_results": sorted(self.seen_results),
            "nudge_counter": self.nudge_counter,
            "last_tool_prune": self.last_tool_prune,
            "last_auto_prune_turn": self.last_auto_prune_turn,
            "is_sub_agent": self.is_sub_agent,
            "last_derived_turns": self._last_derived_turns,
            "turn_offset": self._turn_offset,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ConversationState:
        state = cls(conversation_id=d["conversation_id"])
        for raw in d.get("invocations", []):
            record = ToolInvocationRecord.from_dict(raw)
            state.invocations[record.correlation_key] = record
        for raw in d.get("pruned", []):
            mark = PruneMark.from_dict(raw)
            state.pruned[mark.correlation_key] = mark
        state.pins = {k: int(v) for k, v in (d.get("pins") or {}).items()}
        state.turn_counter = int(d.get("turn_counter", 0))
        state.stats = SessionStats.from_dict(d.get("stats"))
        state.accounted = set(d.get("accounted", []))
        state.seen_results = set(d.get("seen_results", []))
        state.nudge_counter = int(d.get("nudge_counter", 0))
        state.last_tool_prune = bool(d.get("last_tool_prune", False))
        state.last_auto_prune_turn = int(d.get("last_auto_prune_turn", 0))
        state.is_sub_agent = bool(d.get("is_sub_agent", False))
        state._last_derived_turns = int(d.get("last_derived_turns", 0))
        state._turn_offset = int(d.get("turn_offset", 0))
        return state
