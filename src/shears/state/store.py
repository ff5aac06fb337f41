"""StateStore -- owns every ConversationState, keyed by conversation id.

Lifecycle is explicit: ``get`` creates a state on first sight (restoring
a persisted copy when a session factory is configured), ``save`` writes
it back, ``evict`` forgets it in memory and in storage.  Storage
failures are logged and never propagate into the transform pipeline.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from shears.exceptions import PersistenceError
from shears.models.state import ConversationState
from shears.storage.schema import ConversationStateRow
from shears.storage.sqlite import SqliteStateRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


class StateStore:
    """In-memory conversation states with optional SQLAlchemy persistence.

    Args:
        session_factory: Session factory for persistence.  When None the
            store is memory-only.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory
        self._states: dict[str, ConversationState] = {}

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    @property
    def persistent(self) -> bool:
        return self._session_factory is not None

    def get(self, conversation_id: str) -> ConversationState:
        """Return the state for a conversation, creating or restoring it."""
        state = self._states.get(conversation_id)
        if state is not None:
            return state
        state = self._restore(conversation_id)
        if state is None:
            state = ConversationState(conversation_id=conversation_id)
            logger.debug("Created state for conversation %s", conversation_id)
        self._states[conversation_id] = state
        return state

    def peek(self, conversation_id: str) -> ConversationState | None:
        """Return the in-memory state without creating one."""
        return self._states.get(conversation_id)

    def _restore(self, conversation_id: str) -> ConversationState | None:
        if self._session_factory is None:
            return None
        try:
            state = self.load(conversation_id)
        except PersistenceError as exc:
            logger.error("Could not restore state for %s: %s", conversation_id, exc)
            return None
        if state is not None:
            logger.info(
                "Restored state for %s (%d invocations, %d pruned, turn %d)",
                conversation_id, len(state.invocations), len(state.pruned), state.turn_counter,
            )
        return state

    def load(self, conversation_id: str) -> ConversationState | None:
        """Read a persisted state.

        Raises:
            PersistenceError: If the row cannot be read or decoded.
        """
        if self._session_factory is None:
            return None
        try:
            with self._session_factory() as session:
                row = SqliteStateRepository(session).get(conversation_id)
                if row is None:
                    return None
                return ConversationState.from_dict(row.payload_json)
        except (SQLAlchemyError, KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Cannot load state for {conversation_id!r}: {exc}") from exc

    def save(self, state: ConversationState) -> bool:
        """Persist a state. Returns False (and logs) on failure."""
        state.updated_at = datetime.now(timezone.utc)
        if self._session_factory is None:
            return True
        row = ConversationStateRow(
            conversation_id=state.conversation_id,
            payload_json=state.to_dict(),
            turn_counter=state.turn_counter,
            tokens_saved=state.stats.tokens_saved,
            prune_count=state.stats.prune_count,
            updated_at=state.updated_at.replace(tzinfo=None),
        )
        try:
            with self._session_factory() as session:
                SqliteStateRepository(session).save(row)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to persist state for %s: %s", state.conversation_id, exc)
            return False
        return True

    def evict(self, conversation_id: str) -> bool:
        """Forget a conversation in memory and in storage.

        Returns True if anything was removed.
        """
        removed = self._states.pop(conversation_id, None) is not None
        if self._session_factory is not None:
            try:
                with self._session_factory() as session:
                    removed = SqliteStateRepository(session).delete(conversation_id) or removed
                    session.commit()
            except SQLAlchemyError as exc:
                logger.error("Failed to delete state for %s: %s", conversation_id, exc)
        if removed:
            logger.info("Evicted state for conversation %s", conversation_id)
        return removed

    def list_persisted(self) -> list[ConversationStateRow]:
        """All persisted rows, most recent first.

        Raises:
            PersistenceError: If storage cannot be read.
        """
        if self._session_factory is None:
            return []
        try:
            with self._session_factory() as session:
                return list(SqliteStateRepository(session).list_all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Cannot list stored states: {exc}") from exc
