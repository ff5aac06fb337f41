"""Shears exception hierarchy.

All Shears-specific exceptions inherit from ShearsError.
"""

from __future__ import annotations


class ShearsError(Exception):
    """Base exception for all Shears errors."""


class ConfigError(ShearsError):
    """Raised when a configuration file or dict fails validation."""

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class FormatError(ShearsError):
    """Raised when a request body matches no known wire format."""


class PairingError(ShearsError):
    """Raised when a tool call and its result cannot both be resolved.

    A rewrite that would touch only one side of a call/result pair is
    refused as a whole.
    """

    def __init__(self, correlation_key: str, reason: str) -> None:
        self.correlation_key = correlation_key
        self.reason = reason
        super().__init__(f"Cannot pair tool call {correlation_key!r}: {reason}")


class StaleReferenceError(ShearsError):
    """Raised when a directed prune references ids not in the current list."""

    def __init__(self, ids: list[str], available: list[str] | None = None) -> None:
        self.ids = list(ids)
        self.available = list(available or [])
        msg = f"Unknown or stale tool id(s): {', '.join(self.ids)}"
        if self.available:
            shown = ", ".join(self.available[:20])
            msg += f". Current prunable ids: {shown}"
        else:
            msg += ". No tools are currently prunable."
        super().__init__(msg)


class DirectedPruneError(ShearsError):
    """Raised when discard/extract/pin arguments are malformed."""


class CompactionError(ShearsError):
    """Raised when a compaction phase fails."""


class PersistenceError(ShearsError):
    """Raised when conversation state cannot be loaded or saved."""


class ConfirmationError(ShearsError):
    """Raised on invalid confirmation requests or events."""
