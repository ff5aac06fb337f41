"""Domain models for tool invocations and prune decisions.

ToolInvocationRecord tracks one tool call seen in a conversation.
PruneMark records the decision to replace part of that call's content.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class ToolStatus(str, enum.Enum):
    """Lifecycle status of a tool invocation."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value

    @property
    def in_flight(self) -> bool:
        return self in (ToolStatus.PENDING, ToolStatus.RUNNING)


class PruneReason(str, enum.Enum):
    """Why an invocation became prunable."""

    NOISE = "noise"
    COMPLETION = "completion"
    DUPLICATE = "duplicate"
    SUPERSEDED = "superseded"
    SIZE = "size"
    USER_DIRECTED = "user-directed"

    def __str__(self) -> str:
        return self.value


class PruneTarget(str, enum.Enum):
    """Which side of the call/result pair carries the replaced content.

    Both sides are always resolved together; the target only selects
    whose payload is collapsed.
    """

    OUTPUT = "output"
    INPUT = "input"

    def __str__(self) -> str:
        return self.value


@dataclass
class ToolInvocationRecord:
    """One tool call observed in a conversation.

    Records are created on first sight and updated as results arrive.
    They are never deleted from a live conversation, only marked.
    """

    correlation_key: str
    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    status: ToolStatus = ToolStatus.PENDING
    turn_index: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "correlation_key": self.correlation_key,
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "status": self.status.value,
            "turn_index": self.turn_index,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ToolInvocationRecord:
        return cls(
            correlation_key=d["correlation_key"],
            tool_name=d["tool_name"],
            parameters=d.get("parameters") or {},
            status=ToolStatus(d.get("status", "pending")),
            turn_index=int(d.get("turn_index", 0)),
            error=d.get("error"),
        )


@dataclass(frozen=True)
class PruneMark:
    """A decision to replace the content of one invocation.

    Attributes:
        correlation_key: Provider-native or synthesized key of the call.
        reason: Why the record was marked.
        target: Which payload is collapsed (result output or call input).
        replacement: Custom replacement text (extract distillation or
            truncation notice). None means the generic placeholder.
        marked_at_turn: Turn counter value when the mark was created.
    """

    correlation_key: str
    reason: PruneReason
    target: PruneTarget = PruneTarget.OUTPUT
    replacement: str | None = None
    marked_at_turn: int = 0

    def to_dict(self) -> dict:
        return {
            "correlation_key": self.correlation_key,
            "reason": self.reason.value,
            "target": self.target.value,
            "replacement": self.replacement,
            "marked_at_turn": self.marked_at_turn,
        }

    @classmethod
    def from_dict(cls, d: dict) -> PruneMark:
        return cls(
            correlation_key=d["correlation_key"],
            reason=PruneReason(d["reason"]),
            target=PruneTarget(d.get("target", "output")),
            replacement=d.get("replacement"),
            marked_at_turn=int(d.get("marked_at_turn", 0)),
        )
