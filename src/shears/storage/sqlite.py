"""SQLite implementations of repository interfaces.

All repositories use SQLAlchemy 2.0-style queries (select() + session.execute()).
Each repository takes a Session in its constructor.
"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from shears.storage.repositories import StateRepository
from shears.storage.schema import ConversationStateRow


class SqliteStateRepository(StateRepository):
    """SQLite implementation of the conversation state repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, conversation_id: str) -> ConversationStateRow | None:
        stmt = select(ConversationStateRow).where(
            ConversationStateRow.conversation_id == conversation_id
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, row: ConversationStateRow) -> None:
        existing = self.get(row.conversation_id)
        if existing is None:
            self._session.add(row)
        else:
            existing.payload_json = row.payload_json
            existing.turn_counter = row.turn_counter
            existing.tokens_saved = row.tokens_saved
            existing.prune_count = row.prune_count
            existing.updated_at = row.updated_at
        self._session.flush()

    def delete(self, conversation_id: str) -> bool:
        stmt = delete(ConversationStateRow).where(
            ConversationStateRow.conversation_id == conversation_id
        )
        result = self._session.execute(stmt)
        self._session.flush()
        return bool(result.rowcount)

    def list_all(self) -> Sequence[ConversationStateRow]:
        stmt = select(ConversationStateRow).order_by(ConversationStateRow.updated_at.desc())
        return list(self._session.execute(stmt).scalars().all())
