"""Correlation sync and canonical id derivation.

Every transform starts by syncing ``ConversationState`` from the live
data array: turn count, tool parameters, result status and pin expiry.
The canonical id list is then re-derived from the live list, never
from the cache alone, so it heals itself when the host compacts history
out from under the engine.

A canonical id is the position of a call in the live list of tool
calls, as a decimal string.  Only records that are live, unpruned,
settled and unprotected are offered, but positions are counted over the
full list, so an id does not shift when another record gets pruned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shears.exceptions import StaleReferenceError

if TYPE_CHECKING:
    from shears.formats.base import FormatDescriptor
    from shears.models.invocation import ToolInvocationRecord
    from shears.models.state import ConversationState
    from shears.strategies.protection import ProtectionGuard

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """What one sync pass found in the live data array.

    Fields:
        live_keys: Correlation keys of every call in the list, in order.
        result_keys: Keys of every result present, in order.
        new_result_keys: Results seen for the first time in this conversation.
        turn_offset: Turns lost to external truncation so far.
        expired_pins: Pins swept during this sync.
        evicted: Keys dropped from the bounded cache.
    """

    live_keys: list[str] = field(default_factory=list)
    result_keys: list[str] = field(default_factory=list)
    new_result_keys: list[str] = field(default_factory=list)
    turn_offset: int = 0
    expired_pins: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)


def sync_state(
    fmt: FormatDescriptor,
    data: list,
    state: ConversationState,
    *,
    max_entries: int = 500,
) -> SyncResult:
    """Bring ``state`` in line with the live data array."""
    offset = state.observe_turns(fmt.count_turns(data))
    live_keys = fmt.cache_tool_parameters(data, state, turn_offset=offset)
    result_keys = [o.key for o in fmt.extract_tool_outputs(data)]

    new_results = [k for k in result_keys if k not in state.seen_results]
    state.seen_results.update(new_results)

    expired = state.expire_pins()
    if expired:
        logger.info("Expired %d pin(s) at turn %d", len(expired), state.turn_counter)

    evicted = trim_invocations(state, set(live_keys), max_entries)
    logger.debug(
        "%s sync: %d calls, %d results, turn %d (offset %d)",
        fmt.name, len(live_keys), len(result_keys), state.turn_counter, offset,
    )
    return SyncResult(
        live_keys=live_keys,
        result_keys=result_keys,
        new_result_keys=new_results,
        turn_offset=offset,
        expired_pins=expired,
        evicted=evicted,
    )


def trim_invocations(state: ConversationState, live: set[str], max_entries: int) -> list[str]:
    """Evict the oldest records beyond ``max_entries``.

    Keys still present in the live list are never evicted; everything
    known about an evicted key (mark, pin, accounting) goes with it.
    """
    excess = len(state.invocations) - max_entries
    if excess <= 0:
        return []
    evicted: list[str] = []
    for key in list(state.invocations):
        if len(evicted) >= excess:
            break
        if key in live:
            continue
        state.forget(key)
        evicted.append(key)
    if evicted:
        logger.debug("Evicted %d cached invocation(s)", len(evicted))
    if len(state.invocations) > max_entries:
        logger.debug(
            "Invocation cache holds %d live entries (cap %d)",
            len(state.invocations), max_entries,
        )
    return evicted


@dataclass(frozen=True)
class CanonicalEntry:
    """One prunable record as presented to the model."""

    canonical_id: str
    correlation_key: str
    record: ToolInvocationRecord


class CanonicalIndex:
    """Prunable records of the current turn, addressable by canonical id.

    Args:
        entries: Prunable entries in live-list order.
    """

    def __init__(self, entries: list[CanonicalEntry]) -> None:
        self._entries = list(entries)
        self._by_id = {e.canonical_id: e for e in self._entries}
        self._by_key = {e.correlation_key: e for e in self._entries}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __contains__(self, canonical_id: object) -> bool:
        return canonical_id in self._by_id

    @property
    def ids(self) -> list[str]:
        return [e.canonical_id for e in self._entries]

    def id_for(self, correlation_key: str) -> str | None:
        entry = self._by_key.get(correlation_key)
        return entry.canonical_id if entry else None

    def resolve(self, ids: list[str]) -> list[CanonicalEntry]:
        """Map canonical ids to entries, all or nothing.

        Raises:
            StaleReferenceError: If any id is not currently prunable.
        """
        normalized = [str(i).strip() for i in ids]
        unknown = [i for i in normalized if i not in self._by_id]
        if unknown:
            raise StaleReferenceError(unknown, self.ids)
        return [self._by_id[i] for i in normalized]


def build_canonical_index(
    state: ConversationState,
    live_keys: list[str],
    guard: ProtectionGuard,
    *,
    protected_turns: int = 0,
) -> CanonicalIndex:
    """Derive the prunable listing from the live call order.

    Args:
        state: Synced conversation state.
        live_keys: Call keys from the latest sync, in order.
        guard: Protected tool/path filter.
        protected_turns: Records younger than this many turns are held
            back (0 disables turn protection).
    """
    entries: list[CanonicalEntry] = []
    for position, key in enumerate(live_keys):
        record = state.invocations.get(key)
        if record is None:
            logger.warning("Live call %s missing from cache; skipping", key)
            continue
        if state.is_pruned(key) or record.status.in_flight:
            continue
        if guard.is_protected(record):
            continue
        if protected_turns and state.turn_counter - record.turn_index < protected_turns:
            continue
        entries.append(CanonicalEntry(str(position), key, record))
    return CanonicalIndex(entries)
