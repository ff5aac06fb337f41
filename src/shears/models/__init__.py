"""Domain and configuration models for Shears."""

from shears.models.compaction import (
    CompactionPhase,
    CompactionResult,
    TokenUsage,
    TruncatedTool,
    TruncationResult,
)
from shears.models.config import PrunerConfig, load_config
from shears.models.invocation import (
    PruneMark,
    PruneReason,
    PruneTarget,
    ToolInvocationRecord,
    ToolStatus,
)
from shears.models.state import ConversationState, SessionStats

__all__ = [
    "CompactionPhase",
    "CompactionResult",
    "ConversationState",
    "PruneMark",
    "PruneReason",
    "PruneTarget",
    "PrunerConfig",
    "SessionStats",
    "TokenUsage",
    "ToolInvocationRecord",
    "ToolStatus",
    "TruncatedTool",
    "TruncationResult",
    "load_config",
]
