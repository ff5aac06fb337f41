"""Protocol definitions for Shears.

Defines the pluggable collaborator interfaces the engine consumes:
token counting, notification delivery and summarization.

No SQLAlchemy imports allowed in this module -- pure domain protocols.
"""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

ToastVariant = Literal["info", "success", "warning", "error"]


@runtime_checkable
class TokenCounter(Protocol):
    """Protocol for pluggable token counting."""

    def count_text(self, text: str) -> int:
        """Count tokens in a plain text string."""
        ...

    def count_messages(self, messages: list[dict]) -> int:
        """Count tokens in a structured message list (including overhead)."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers human-readable status to the host UI.

    Calls arrive on the dispatcher's background worker, never on the
    transform path, so implementations may block on I/O.  Errors are
    logged by the caller.
    """

    def send_ignored_message(self, conversation_id: str, text: str) -> None:
        """Show text in the conversation without sending it to the model."""
        ...

    def show_toast(
        self,
        title: str,
        message: str,
        variant: ToastVariant = "info",
        duration_ms: int = 3000,
    ) -> None:
        """Show a transient toast."""
        ...


@runtime_checkable
class Summarizer(Protocol):
    """Host-side conversation summarization (compaction fallback)."""

    def summarize(self, conversation_id: str, provider_id: str, model_id: str) -> None:
        """Summarize the conversation. Returns once complete; raises on failure."""
        ...
