"""Database setup for persisted conversation states.

A state database is a single SQLite file (or any SQLAlchemy URL) holding
``conversation_states`` and a ``_shears_meta`` key-value table.  The
meta table records the schema version; a database written by a newer
shears is refused instead of being read with the wrong layout.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker

from shears.exceptions import PersistenceError
from shears.storage.schema import Base, ShearsMetaRow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"


def _sqlite_url(db_path: str) -> str:
    return "sqlite://" if db_path == ":memory:" else f"sqlite:///{db_path}"


def create_shears_engine(db_path: str = ":memory:", *, url: str | None = None) -> Engine:
    """Create the engine for a state database.

    Args:
        db_path: SQLite file path, or ``":memory:"``.  Ignored when *url*
            is given.
        url: Any SQLAlchemy database URL.
    """
    engine = create_engine(url or _sqlite_url(db_path), echo=False)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _pragmas(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory for StateStore (no expiry on commit)."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create tables and stamp or check the schema version.

    Raises:
        PersistenceError: If the database was written by a newer schema.
    """
    Base.metadata.create_all(engine)
    with create_session_factory(engine)() as session:
        row = session.execute(
            select(ShearsMetaRow).where(ShearsMetaRow.key == "schema_version")
        ).scalar_one_or_none()
        if row is None:
            session.add(ShearsMetaRow(key="schema_version", value=SCHEMA_VERSION))
            session.commit()
            logger.debug("Initialized state database at schema %s", SCHEMA_VERSION)
            return
        if int(row.value) > int(SCHEMA_VERSION):
            raise PersistenceError(
                f"State database has schema {row.value}, this version supports {SCHEMA_VERSION}"
            )


def open_database(db_path: str = ":memory:", *, url: str | None = None) -> tuple[Engine, sessionmaker[Session]]:
    """Create, initialize and return ``(engine, session_factory)``.

    The caller owns the engine and should ``dispose()`` it when done.
    """
    engine = create_shears_engine(db_path, url=url)
    try:
        init_db(engine)
    except Exception:
        engine.dispose()
        raise
    return engine, create_session_factory(engine)
