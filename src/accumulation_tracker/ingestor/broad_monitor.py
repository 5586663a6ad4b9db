"""Broad whale monitoring across all tokens.

Large transfers reported by a chain data provider are classified by exchange
involvement and turned into whale and exchange flow event alerts:

- withdrawal from a known exchange: BUY by the receiver,
- deposit to a known exchange: SELL by the sender,
- wallet to wallet: BUY by the receiver,
- exchange to exchange: ignored.

Tokens not yet in the catalog are created on the fly.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from accumulation_tracker.alerter.models import (
    AlertType,
    ExchangeFlowPayload,
    WhaleTransferPayload,
)
from accumulation_tracker.config import KNOWN_EXCHANGE_WALLETS
from accumulation_tracker.storage.repos import TokenDTO, TokenRepository

if TYPE_CHECKING:
    from accumulation_tracker.alerter.factory import AlertFactory
    from accumulation_tracker.ingestor.models import LargeTransfer, LargeTransferSource
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

SOURCE_TAG = "broad_monitoring"
DEFAULT_NETWORKS = ("ethereum", "bsc", "matic")
DEFAULT_MIN_USD = 100_000.0
DEFAULT_LIMIT = 100

NETWORK_CHAINS: dict[str, str] = {
    "ethereum": "ethereum",
    "bsc": "bsc",
    "matic": "polygon",
}


def chain_for_network(network: str) -> str:
    return NETWORK_CHAINS.get(network, network)


class TransferSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class TransferClassification:
    side: TransferSide
    wallet: str
    exchange_address: str | None = None

    @property
    def is_exchange_flow(self) -> bool:
        return self.exchange_address is not None


@dataclass(frozen=True)
class BroadMonitorSummary:
    processed: int = 0
    alerts_created: int = 0
    new_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "alerts_created": self.alerts_created,
            "new_tokens": self.new_tokens,
        }


def classify_transfer(
    transfer: LargeTransfer, exchanges: Mapping[str, str] | frozenset[str]
) -> TransferClassification | None:
    """Decide the side and the relevant wallet of a transfer.

    Returns:
        None for exchange-internal transfers or when the relevant wallet is unknown.
    """
    sender = transfer.sender
    receiver = transfer.receiver
    from_exchange = sender is not None and sender in exchanges
    to_exchange = receiver is not None and receiver in exchanges

    if from_exchange and to_exchange:
        return None
    if from_exchange:
        if not receiver:
            return None
        return TransferClassification(TransferSide.BUY, receiver, exchange_address=sender)
    if to_exchange:
        if not sender:
            return None
        return TransferClassification(TransferSide.SELL, sender, exchange_address=receiver)
    if not receiver:
        return None
    return TransferClassification(TransferSide.BUY, receiver)


class BroadMonitor:
    """Turns large transfers on several networks into event alerts."""

    def __init__(
        self,
        db: DatabaseManager,
        source: LargeTransferSource | None,
        factory: AlertFactory,
        *,
        networks: tuple[str, ...] = DEFAULT_NETWORKS,
        min_usd: float = DEFAULT_MIN_USD,
        limit: int = DEFAULT_LIMIT,
        exchanges: Mapping[str, str] | None = None,
    ) -> None:
        self._db = db
        self._source = source
        self._factory = factory
        self.networks = networks
        self.min_usd = min_usd
        self.limit = limit
        self._exchanges = dict(exchanges if exchanges is not None else KNOWN_EXCHANGE_WALLETS)

    async def run(self) -> BroadMonitorSummary:
        if self._source is None or not self._source.is_configured():
            logger.warning("Large transfer source not configured, skipping broad monitoring")
            return BroadMonitorSummary()

        processed = 0
        alerts_created = 0
        new_tokens = 0
        for network in self.networks:
            try:
                transfers = await self._source.large_transfers(network, self.min_usd, self.limit)
            except Exception as e:
                logger.error("Failed to fetch large transfers for %s: %s", network, e)
                continue

            logger.info("Found %d large transfers on %s", len(transfers), network)
            for transfer in transfers:
                try:
                    outcome = await self.process_transfer(transfer, network)
                except Exception as e:
                    logger.error(
                        "Failed to process transfer %s: %s", transfer.transaction_hash, e
                    )
                    continue
                if outcome is None:
                    continue
                alerts, created_token = outcome
                processed += 1
                alerts_created += alerts
                new_tokens += int(created_token)

        summary = BroadMonitorSummary(
            processed=processed, alerts_created=alerts_created, new_tokens=new_tokens
        )
        logger.info("Broad monitoring completed: %s", summary.to_dict())
        return summary

    async def process_transfer(
        self, transfer: LargeTransfer, network: str
    ) -> tuple[int, bool] | None:
        """Handle one transfer.

        Returns:
            (alerts created, token created) or None when the transfer is skipped.
        """
        if not transfer.token_address or not transfer.token_symbol:
            return None

        classification = classify_transfer(transfer, self._exchanges)
        if classification is None:
            return None

        chain = chain_for_network(network)
        token, created_token = await self._ensure_token(transfer, chain)

        common = {
            "transaction_hash": transfer.transaction_hash,
            "timestamp": transfer.timestamp,
            "token_symbol": transfer.token_symbol,
            "chain": chain,
            "source": SOURCE_TAG,
        }
        extra = {"tokenName": transfer.token_name} if transfer.token_name else {}

        whale_type = (
            AlertType.WHALE_BUY
            if classification.side is TransferSide.BUY
            else AlertType.WHALE_SELL
        )
        alerts = await self._factory.create_event_alerts(
            token.id,
            whale_type,
            WhaleTransferPayload(
                wallet_address=classification.wallet,
                amount=transfer.amount,
                extra=extra,
                **common,
            ),
        )
        logger.info(
            "Whale %s on %s: $%s",
            classification.side.value,
            token.symbol,
            f"{transfer.amount:,.0f}",
        )

        if classification.exchange_address is not None:
            flow_type = (
                AlertType.EXCHANGE_DEPOSIT
                if classification.side is TransferSide.SELL
                else AlertType.EXCHANGE_WITHDRAWAL
            )
            exchange = self._exchanges.get(classification.exchange_address, "Unknown Exchange")
            alerts += await self._factory.create_event_alerts(
                token.id,
                flow_type,
                ExchangeFlowPayload(
                    exchange=exchange, amount=transfer.amount, extra=extra, **common
                ),
            )
            logger.info("%s on %s via %s", flow_type.value, token.symbol, exchange)

        return alerts, created_token

    async def _ensure_token(self, transfer: LargeTransfer, chain: str) -> tuple[TokenDTO, bool]:
        address = transfer.token_address or ""
        async with self._db.get_async_session() as session:
            tokens = TokenRepository(session)
            existing = await tokens.find_by_address(chain, address)
            if existing is not None:
                return existing, False

            symbol = transfer.token_symbol or address
            token, created = await tokens.ensure(
                TokenDTO(
                    id=str(uuid.uuid4()),
                    chain=chain,
                    contract_address=address,
                    symbol=symbol,
                    name=transfer.token_name or symbol,
                    decimals=18,
                    active=True,
                    metadata={"discoveredBy": SOURCE_TAG},
                )
            )
        if created:
            logger.info(
                "Discovered new token from whale activity: %s (%s) on %s",
                token.symbol,
                token.name,
                chain,
            )
        return token, created
