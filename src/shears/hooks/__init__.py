"""Prune confirmation for shears.

A directed prune that needs the user's approval produces a PendingPrune,
a value object with a checklist of the tools about to be pruned.  The
ConfirmationBroker hands it to the UI and resolves it from UI events
keyed by request id.

Public API:
    PendingPrune            -- the confirmation request
    ChecklistItem           -- one tool in the checklist
    ConfirmationBroker      -- request creation and event routing
    ConfirmationEvent       -- one UI event
"""

from shears.hooks.broker import ConfirmationBroker, ConfirmationEvent, ConfirmationEventType
from shears.hooks.pending import ChecklistItem, PendingPrune, PendingStatus

__all__ = [
    "ChecklistItem",
    "ConfirmationBroker",
    "ConfirmationEvent",
    "ConfirmationEventType",
    "PendingPrune",
    "PendingStatus",
]
