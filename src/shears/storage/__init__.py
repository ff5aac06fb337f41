"""Persistence of conversation state (SQLAlchemy)."""

from shears.storage.engine import (
    SCHEMA_VERSION,
    create_session_factory,
    create_shears_engine,
    init_db,
    open_database,
)
from shears.storage.repositories import StateRepository
from shears.storage.schema import Base, ConversationStateRow, ShearsMetaRow
from shears.storage.sqlite import SqliteStateRepository

__all__ = [
    "SCHEMA_VERSION",
    "Base",
    "ConversationStateRow",
    "ShearsMetaRow",
    "SqliteStateRepository",
    "StateRepository",
    "create_session_factory",
    "create_shears_engine",
    "init_db",
    "open_database",
]
