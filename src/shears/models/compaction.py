"""Domain models for preemptive compaction.

Provides token usage input, the phase enum walked by the controller,
and the frozen result objects returned from each run.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class CompactionPhase(str, enum.Enum):
    """States of the compaction controller."""

    IDLE = "idle"
    TRIGGERED = "triggered"
    STRATEGIES_APPLIED = "strategies-applied"
    TRUNCATION_APPLIED = "truncation-applied"
    DECISION = "decision"
    SKIPPED = "skipped"
    SUMMARIZATION_FALLBACK = "summarization-fallback"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by the provider for the last assistant step."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.cache_read_tokens + self.output_tokens

    @classmethod
    def from_dict(cls, d: dict | None) -> TokenUsage:
        """Build from an OpenAI-style or host-style usage dict."""
        if not d:
            return cls()
        cache = d.get("cache") or {}
        return cls(
            input_tokens=int(d.get("input", d.get("input_tokens", d.get("prompt_tokens", 0))) or 0),
            output_tokens=int(d.get("output", d.get("output_tokens", d.get("completion_tokens", 0))) or 0),
            cache_read_tokens=int(cache.get("read", d.get("cache_read_tokens", 0)) or 0),
            cache_write_tokens=int(cache.get("write", d.get("cache_write_tokens", 0)) or 0),
        )


@dataclass(frozen=True)
class TruncatedTool:
    correlation_key: str
    tool_name: str
    original_size: int


@dataclass(frozen=True)
class TruncationResult:
    """Outcome of the greedy largest-first truncation phase."""

    truncated_count: int = 0
    bytes_removed: int = 0
    target_bytes: int = 0
    truncated_tools: tuple[TruncatedTool, ...] = ()

    @property
    def sufficient(self) -> bool:
        return self.bytes_removed >= self.target_bytes


@dataclass(frozen=True)
class CompactionResult:
    """Result of one controller evaluation.

    ``phases`` lists every state the controller passed through, in order.
    ``final_phase`` is the terminal state.
    """

    conversation_id: str
    final_phase: CompactionPhase
    phases: tuple[CompactionPhase, ...] = ()
    context_limit: int = 0
    initial_ratio: float = 0.0
    final_ratio: float = 0.0
    tokens_saved: int = 0
    truncation: TruncationResult | None = None
    reason: str = ""
    error: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def summarized(self) -> bool:
        return self.final_phase == CompactionPhase.SUMMARIZATION_FALLBACK
