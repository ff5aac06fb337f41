"""httpx client for the host application's HTTP API, with tenacity retry.

Implements the Notifier and Summarizer protocols against the host's
session and TUI endpoints, and can deliver prune confirmation requests
to the host UI.  Reads its base URL from the constructor or the
``SHEARS_HOST_URL`` environment variable.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import httpx
import tenacity

from shears.host.errors import (
    HostAuthError,
    HostClientError,
    HostRateLimitError,
    HostResponseError,
)

if TYPE_CHECKING:
    from shears.hooks.pending import PendingPrune
    from shears.protocols import ToastVariant

logger = logging.getLogger(__name__)

DEFAULT_HOST_URL = "http://127.0.0.1:4096"
CONFIRM_COMPONENT = "shears-confirm"

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_AUTH_ERROR_STATUS_CODES = {401, 403}


def _is_retryable(exc: BaseException) -> bool:
    """Check if an exception is retryable.

    Retryable: 429, 500, 502, 503, 504, connection errors.
    Not retryable: 401, 403, 400, other client errors.
    """
    if isinstance(exc, HostAuthError):
        return False
    if isinstance(exc, HostRateLimitError):
        return True
    if isinstance(exc, HostResponseError):
        return exc.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


class HostClient:
    """Sync httpx client for the host's session and TUI endpoints.

    Usage::

        with HostClient() as host:
            pruner = ContextPruner(config, notifier=host, summarizer=host)

    Args:
        base_url: Host API URL.  Falls back to ``SHEARS_HOST_URL``, then
            to ``http://127.0.0.1:4096``.
        api_key: Optional bearer token.
        timeout: Request timeout in seconds.
        max_retries: Maximum attempts for retryable errors.
        transport: Custom httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or os.environ.get("SHEARS_HOST_URL", DEFAULT_HOST_URL)).rstrip("/")
        self._max_retries = max_retries
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, path: str, payload: dict) -> Any:
        """POST with retry.

        Raises:
            HostAuthError: On 401/403 (no retry).
            HostRateLimitError: On 429 after all retries exhausted.
            HostResponseError: On other error statuses.
            httpx.TransportError: On connection failures after retries.
        """
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=(
                tenacity.wait_exponential(multiplier=0.5, min=0.5, max=10)
                + tenacity.wait_random(0, 1)
            ),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(self._do_post, path, payload)

    def _do_post(self, path: str, payload: dict) -> Any:
        """Execute a single POST (no retry)."""
        response = self._client.post(path, json=payload)

        if response.status_code in _AUTH_ERROR_STATUS_CODES:
            raise HostAuthError(
                f"Authentication failed: HTTP {response.status_code} - {response.text}"
            )

        if response.status_code == 429:
            retry_after_raw = response.headers.get("Retry-After")
            retry_after: float | None = None
            if retry_after_raw is not None:
                try:
                    retry_after = float(retry_after_raw)
                except (ValueError, TypeError):
                    retry_after = None
            raise HostRateLimitError(
                f"Rate limited: HTTP 429 - {response.text}",
                retry_after=retry_after,
            )

        if response.is_error:
            raise HostResponseError(
                f"{path} failed: HTTP {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # Notifier
    # ------------------------------------------------------------------

    def send_ignored_message(self, conversation_id: str, text: str) -> None:
        """Show text in the conversation without sending it to the model."""
        self._post(
            f"/session/{conversation_id}/message",
            {
                "noReply": True,
                "parts": [{"type": "text", "text": text, "ignored": True}],
            },
        )

    def show_toast(
        self,
        title: str,
        message: str,
        variant: ToastVariant = "info",
        duration_ms: int = 3000,
    ) -> None:
        self._post(
            "/tui/show-toast",
            {"title": title, "message": message, "variant": variant, "duration": duration_ms},
        )

    # ------------------------------------------------------------------
    # Summarizer
    # ------------------------------------------------------------------

    def summarize(self, conversation_id: str, provider_id: str, model_id: str) -> None:
        """Ask the host to summarize a conversation; returns once it is done."""
        if not provider_id or not model_id:
            raise HostClientError("summarize needs both provider_id and model_id")
        self._post(
            f"/session/{conversation_id}/summarize",
            {"providerID": provider_id, "modelID": model_id, "auto": True},
        )

    # ------------------------------------------------------------------
    # Confirmation UI
    # ------------------------------------------------------------------

    def deliver_confirmation(self, pending: PendingPrune) -> None:
        """Render a confirmation checklist in the host UI.

        Suitable as ``ConfirmationBroker(deliver=host.deliver_confirmation)``.
        """
        self._post(
            f"/session/{pending.conversation_id}/message",
            {
                "noReply": True,
                "parts": [{
                    "type": "text",
                    "text": CONFIRM_COMPONENT,
                    "plugin": True,
                    "metadata": pending.to_dict(),
                }],
            },
        )

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> HostClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
