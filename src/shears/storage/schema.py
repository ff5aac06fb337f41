"""SQLAlchemy ORM schema for Shears.

Defines the tables: conversation_states, _shears_meta.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all Shears ORM models."""

    pass


class ConversationStateRow(Base):
    """Persisted pruning state for one conversation.

    The full ``ConversationState`` lives in ``payload_json``; the other
    columns are denormalized for listing without decoding the payload.
    """

    __tablename__ = "conversation_states"

    conversation_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    turn_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_saved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prune_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class ShearsMetaRow(Base):
    """Key-value metadata for the database itself (e.g., schema version)."""

    __tablename__ = "_shears_meta"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
