"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class LargeTransfer:
    """A high-value token transfer reported by a chain data provider.

    Addresses are lowercase. `amount` is the provider's USD value.
    """

    token_address: str | None
    token_symbol: str | None
    token_name: str | None
    sender: str | None
    receiver: str | None
    amount: float
    transaction_hash: str | None = None
    timestamp: str | None = None

    @classmethod
    def from_bitquery(cls, data: dict[str, Any]) -> LargeTransfer:
        """Create from one element of a Bitquery `transfers` result."""
        currency = data.get("currency") or {}
        transaction = data.get("transaction") or {}
        block = transaction.get("block") or {}
        timestamp = (block.get("timestamp") or {}).get("time")

        def _address(key: str) -> str | None:
            address = (data.get(key) or {}).get("address")
            return str(address).lower() if address else None

        token_address = currency.get("address")
        return cls(
            token_address=str(token_address).lower() if token_address else None,
            token_symbol=currency.get("symbol") or None,
            token_name=currency.get("name") or None,
            sender=_address("sender"),
            receiver=_address("receiver"),
            amount=float(data.get("amount") or 0.0),
            transaction_hash=transaction.get("hash"),
            timestamp=timestamp,
        )


class LargeTransferSource(Protocol):
    """Anything that can list recent large transfers on a network."""

    def is_configured(self) -> bool: ...

    async def large_transfers(
        self, network: str, min_usd: float, limit: int
    ) -> list[LargeTransfer]: ...
