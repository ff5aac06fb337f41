"""Host application client (notifications, toasts, summarization)."""

from shears.host.client import HostClient
from shears.host.errors import HostAuthError, HostClientError, HostRateLimitError, HostResponseError

__all__ = [
    "HostAuthError",
    "HostClient",
    "HostClientError",
    "HostRateLimitError",
    "HostResponseError",
]
