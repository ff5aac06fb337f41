"""Preemptive compaction: usage-triggered escalation before summarization."""

from shears.compaction.controller import CompactionController, CompactionTarget
from shears.compaction.model_limits import (
    DEFAULT_CONTEXT_LIMIT,
    EXTENDED_CONTEXT_LIMIT,
    infer_context_limit,
    usage_ratio,
)
from shears.compaction.truncation import applied_truncation, truncate_until_target

__all__ = [
    "DEFAULT_CONTEXT_LIMIT",
    "EXTENDED_CONTEXT_LIMIT",
    "CompactionController",
    "CompactionTarget",
    "applied_truncation",
    "infer_context_limit",
    "truncate_until_target",
    "usage_ratio",
]
