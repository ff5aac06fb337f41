"""Shears: dynamic context pruning for LLM conversations.

Long agent sessions fill the context window with stale tool output.
Shears rewrites outgoing request bodies so that duplicate, superseded
and discarded tool results are replaced with short placeholders, while
the conversation structure the provider expects stays intact.
"""

from shears._version import __version__

# Core entry point
from shears.engine.pruner import ContextPruner, TransformResult

# Configuration
from shears.models.config import PrunerConfig, load_config

# Domain models
from shears.models.compaction import CompactionPhase, CompactionResult, TokenUsage
from shears.models.invocation import PruneMark, PruneReason, PruneTarget, ToolInvocationRecord, ToolStatus
from shears.models.state import ConversationState, SessionStats

# Formats
from shears.formats import FormatDescriptor, detect_format, get_format

# Protocols and token counters
from shears.protocols import Notifier, Summarizer, TokenCounter
from shears.engine.tokens import CharTokenCounter, TiktokenCounter

# Confirmation
from shears.hooks import ConfirmationBroker, PendingPrune

# Toolkit
from shears.toolkit import ToolDefinition, ToolExecutor, ToolResult

# Exceptions
from shears.exceptions import (
    CompactionError,
    ConfigError,
    ConfirmationError,
    DirectedPruneError,
    FormatError,
    PairingError,
    PersistenceError,
    ShearsError,
    StaleReferenceError,
)

__all__ = [
    "__version__",
    "ContextPruner",
    "TransformResult",
    "PrunerConfig",
    "load_config",
    "CompactionPhase",
    "CompactionResult",
    "TokenUsage",
    "PruneMark",
    "PruneReason",
    "PruneTarget",
    "ToolInvocationRecord",
    "ToolStatus",
    "ConversationState",
    "SessionStats",
    "FormatDescriptor",
    "detect_format",
    "get_format",
    "Notifier",
    "Summarizer",
    "TokenCounter",
    "CharTokenCounter",
    "TiktokenCounter",
    "ConfirmationBroker",
    "PendingPrune",
    "ToolDefinition",
    "ToolExecutor",
    "ToolResult",
    "CompactionError",
    "ConfigError",
    "ConfirmationError",
    "DirectedPruneError",
    "FormatError",
    "PairingError",
    "PersistenceError",
    "ShearsError",
    "StaleReferenceError",
]
