"""Abstract repository interfaces for Shears storage.

No SQLAlchemy imports here -- pure abstract contracts.
Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from shears.storage.schema import ConversationStateRow


class StateRepository(ABC):
    """Abstract interface for conversation state storage."""

    @abstractmethod
    def get(self, conversation_id: str) -> ConversationStateRow | None:
        """Get the stored state for a conversation. Returns None if not found."""
        ...

    @abstractmethod
    def save(self, row: ConversationStateRow) -> None:
        """Insert or replace the stored state for ``row.conversation_id``."""
        ...

    @abstractmethod
    def delete(self, conversation_id: str) -> bool:
        """Delete a conversation's state. Returns True if a row was removed."""
        ...

    @abstractmethod
    def list_all(self) -> Sequence[ConversationStateRow]:
        """All stored states, most recently updated first."""
        ...
