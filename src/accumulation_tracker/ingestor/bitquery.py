"""Bitquery GraphQL client for cross-token large transfers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from accumulation_tracker.ingestor.models import LargeTransfer

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://graphql.bitquery.io"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_LOOKBACK = timedelta(hours=1)

LARGE_TRANSFERS_QUERY = """
query GetAllLargeTransfers(
  $network: EthereumNetwork!
  $minAmountUSD: Float!
  $limit: Int!
  $fromTime: ISO8601DateTime
) {
  ethereum(network: $network) {
    transfers(
      amount: { gteq: $minAmountUSD }
      date: { since: $fromTime }
      options: { limit: $limit, desc: "block.timestamp.time" }
    ) {
      transaction { hash block { timestamp { time } number } }
      amount
      currency { address symbol name }
      receiver { address }
      sender { address }
    }
  }
}
"""


class BitqueryError(Exception):
    """Raised when a Bitquery request fails or returns GraphQL errors."""


class BitqueryClient:
    """Large transfer source backed by the Bitquery GraphQL API."""

    def __init__(
        self,
        api_key: str | None,
        *,
        url: str = DEFAULT_URL,
        lookback: timedelta = DEFAULT_LOOKBACK,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key or ""
        self._url = url
        self.lookback = lookback
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def large_transfers(
        self, network: str, min_usd: float, limit: int
    ) -> list[LargeTransfer]:
        """Fetch the most recent transfers worth at least `min_usd`.

        Raises:
            BitqueryError: On transport failures or GraphQL errors.
        """
        since = datetime.now(UTC) - self.lookback
        data = await self._query(
            LARGE_TRANSFERS_QUERY,
            {
                "network": network,
                "minAmountUSD": min_usd,
                "limit": limit,
                "fromTime": since.isoformat(),
            },
        )
        rows = ((data or {}).get("ethereum") or {}).get("transfers") or []
        logger.debug("Fetched %d large transfers from %s", len(rows), network)
        return [LargeTransfer.from_bitquery(row) for row in rows]

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured():
            raise BitqueryError("Bitquery API key not configured")

        client = self._get_client()
        try:
            response = await client.post(
                self._url,
                json={"query": query, "variables": variables},
                headers={"X-API-KEY": self._api_key},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BitqueryError(f"Bitquery request failed: {e}") from e

        errors = body.get("errors")
        if errors:
            messages = ", ".join(str(err.get("message", err)) for err in errors)
            raise BitqueryError(f"Bitquery GraphQL errors: {messages}")
        return body.get("data") or {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
