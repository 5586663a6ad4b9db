"""Token discovery from recently ingested transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from accumulation_tracker.storage.repos import TokenDTO, TokenRepository, TransactionRepository

if TYPE_CHECKING:
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=7)


@dataclass(frozen=True)
class DiscoverySummary:
    discovered: int
    added: int
    reactivated: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"discovered": self.discovered, "added": self.added}


class TokenDiscovery:
    """Makes every token seen in recent transactions an active catalog entry.

    Unknown tokens are created from the provider payload of their first
    transaction in the lookback window; inactive ones are re-activated.
    """

    def __init__(self, db: DatabaseManager, *, lookback: timedelta = DEFAULT_LOOKBACK) -> None:
        self._db = db
        self.lookback = lookback

    async def run(self, *, now: datetime | None = None) -> DiscoverySummary:
        now = now or datetime.now(UTC)
        since = now - self.lookback

        async with self._db.get_async_session() as session:
            samples = await TransactionRepository(session).list_recent_token_samples(since=since)

        added = 0
        reactivated = 0
        for sample in samples:
            try:
                created, activated = await self._discover_one(sample.token_id, sample.raw, now)
            except Exception as e:
                logger.warning("Failed to add discovered token %s: %s", sample.token_id, e)
                continue
            added += int(created)
            reactivated += int(activated)

        summary = DiscoverySummary(discovered=len(samples), added=added, reactivated=reactivated)
        logger.info(
            "Token discovery: %d tokens in last %s, %d added, %d re-activated",
            summary.discovered,
            self.lookback,
            summary.added,
            summary.reactivated,
        )
        return summary

    async def _discover_one(
        self, token_id: str, raw: dict[str, object], now: datetime
    ) -> tuple[bool, bool]:
        async with self._db.get_async_session() as session:
            tokens = TokenRepository(session)
            existing = await tokens.get(token_id)
            if existing is not None:
                if existing.active:
                    return False, False
                await tokens.activate(token_id)
                logger.info("Re-activated token %s (%s)", existing.symbol, token_id)
                return False, True

            token, created = await tokens.ensure(
                TokenDTO.from_raw_payload(
                    token_id,
                    raw,
                    metadata={"createdFromTransaction": True, "discoveredAt": now.isoformat()},
                )
            )
        if created:
            logger.info("Discovered token %s (%s)", token.symbol, token_id)
        return created, False
