"""User-facing pruning summaries and toast delivery."""

from shears.notify.dispatcher import NotificationDispatcher
from shears.notify.summary import PruneSummary, build_detailed, build_message, build_minimal

__all__ = [
    "NotificationDispatcher",
    "PruneSummary",
    "build_detailed",
    "build_message",
    "build_minimal",
]
