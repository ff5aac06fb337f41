"""Fire-and-forget delivery of summaries and toasts.

Deliveries run on a single background worker, in the order they were
queued, so a slow or retrying Notifier never holds up a transform or a
compaction phase.  A failing Notifier is logged and otherwise ignored.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from shears.notify.summary import PruneSummary, build_message

if TYPE_CHECKING:
    from shears.models.state import ConversationState
    from shears.protocols import Notifier, ToastVariant

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Sends pruning summaries and toasts through an optional Notifier.

    Args:
        notifier: Delivery channel; None disables delivery.
        level: Summary level ('off', 'minimal', 'detailed').
        working_directory: Used to shorten file paths in summaries.
        executor: Where deliveries run.  Defaults to a private
            single-thread pool created on first use and shut down by
            :meth:`close`.
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        *,
        level: str = "detailed",
        working_directory: str | None = None,
        executor: concurrent.futures.Executor | None = None,
    ) -> None:
        self._notifier = notifier
        self._level = level
        self._working_directory = working_directory
        self._executor = executor
        self._owns_executor = False
        self._queued: list[concurrent.futures.Future] = []

    @property
    def level(self) -> str:
        return self._level

    def notify_prune(self, state: ConversationState, summary: PruneSummary) -> bool:
        """Queue a summary and fold pending savings into the session total.

        Returns True if a message was queued for delivery.
        """
        message = build_message(self._level, summary, state.stats, self._working_directory)
        state.stats.flush()
        if message is None or self._notifier is None:
            return False
        return self._submit(
            self._notifier.send_ignored_message,
            (state.conversation_id, message),
            f"pruning summary for {state.conversation_id}",
        )

    def toast(
        self,
        title: str,
        message: str,
        variant: ToastVariant = "info",
        duration_ms: int = 3000,
    ) -> bool:
        """Queue a toast. Returns True if it was queued."""
        if self._notifier is None:
            return False
        return self._submit(
            self._notifier.show_toast, (title, message, variant, duration_ms), f"toast {title!r}",
        )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every queued delivery has run.

        Returns False if the timeout expired first.
        """
        pending = [f for f in self._queued if not f.done()]
        if not pending:
            return True
        _done, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Finish queued deliveries and stop the private worker."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._owns_executor = False
        self._queued.clear()

    def _submit(self, fn: Callable[..., Any], args: tuple, what: str) -> bool:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="shears-notify",
            )
            self._owns_executor = True
        self._queued = [f for f in self._queued if not f.done()]
        try:
            future = self._executor.submit(_deliver, fn, args, what)
        except RuntimeError as exc:
            logger.error("Cannot queue %s: %s", what, exc)
            return False
        self._queued.append(future)
        return True


def _deliver(fn: Callable[..., Any], args: tuple, what: str) -> None:
    try:
        fn(*args)
    except Exception as exc:
        logger.error("Failed to deliver %s: %s", what, exc)
