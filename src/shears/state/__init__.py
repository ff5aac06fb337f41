"""Conversation state: correlation sync, canonical ids, lifecycle."""

from shears.state.correlation import (
    CanonicalEntry,
    CanonicalIndex,
    SyncResult,
    build_canonical_index,
    sync_state,
    trim_invocations,
)
from shears.state.store import StateStore

__all__ = [
    "CanonicalEntry",
    "CanonicalIndex",
    "StateStore",
    "SyncResult",
    "build_canonical_index",
    "sync_state",
    "trim_invocations",
]
