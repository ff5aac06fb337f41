"""Host-client error hierarchy.

All host errors inherit from ShearsError for consistent exception handling.
"""

from __future__ import annotations

from shears.exceptions import ShearsError


class HostClientError(ShearsError):
    """Base for all host client errors."""


class HostRateLimitError(HostClientError):
    """Rate limited by the host (429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header),
            or None if not provided.
    """

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message)


class HostAuthError(HostClientError):
    """Authentication failed (401/403)."""


class HostResponseError(HostClientError):
    """The host answered with an error status or an unexpected body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
