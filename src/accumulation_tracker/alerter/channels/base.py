"""Base class for notification channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from accumulation_tracker.alerter.models import FormattedAlert
    from accumulation_tracker.storage.repos import UserDTO

DEFAULT_TIMEOUT_SECONDS = 10.0


class ChannelError(Exception):
    """Raised when a channel cannot reach its provider."""


class AlertChannel(ABC):
    """A delivery channel (Telegram, email, ...).

    Channels own a lazily created `httpx.AsyncClient`; pass `client` to
    share one or to inject a mock transport.
    """

    name: str = "channel"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True when credentials for the provider are present."""

    @abstractmethod
    def recipient_for(self, user: UserDTO) -> str | None:
        """Return the user's address on this channel, if any."""

    @abstractmethod
    async def send(self, recipient: str, alert: FormattedAlert) -> bool:
        """Send a formatted alert.

        Returns:
            True if the provider accepted the message.

        Raises:
            ChannelError: On transport failures.
        """

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
