"""Signal lifecycle: create, raise or ignore per token and window."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from accumulation_tracker.signals.publisher import SignalPublisher
from accumulation_tracker.storage.repos import (
    SignalDTO,
    SignalRepository,
    TokenDTO,
    TokenRepository,
    TransactionRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from accumulation_tracker.detector.models import SignalType, TimeWindow
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_TOLERANCE = timedelta(seconds=60)
_SCORE_QUANTUM = Decimal("0.01")


class UpsertOutcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"


@dataclass(frozen=True)
class UpsertResult:
    """Stored signal and what the upsert did to it."""

    signal: SignalDTO
    outcome: UpsertOutcome

    @property
    def changed(self) -> bool:
        return self.outcome is not UpsertOutcome.UNCHANGED


def quantize_score(score: float | Decimal) -> Decimal:
    return Decimal(str(score)).quantize(_SCORE_QUANTUM, rounding=ROUND_HALF_UP)


class SignalStore:
    """Creates or raises at most one signal per token and overlapping window.

    Two windows are the same when both their starts and their ends lie
    within `tolerance` of each other. An existing signal only ever moves
    up: a lower or equal score is a no-op.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        publisher: SignalPublisher | None = None,
        tolerance: timedelta = DEFAULT_WINDOW_TOLERANCE,
    ) -> None:
        self._db = db
        self._publisher = publisher or SignalPublisher(None)
        self._tolerance = tolerance

    async def upsert(
        self,
        token_id: str,
        score: float,
        signal_type: SignalType | str,
        window: TimeWindow,
        wallets_involved: Iterable[str],
        *,
        metadata: dict[str, Any] | None = None,
    ) -> UpsertResult | None:
        """Persist a candidate signal.

        Args:
            token_id: Token the signal belongs to.
            score: Aggregated score in [0, 100].
            signal_type: Classification of the score.
            window: Analysis window the score was computed over.
            wallets_involved: Senders and receivers active in the window.
            metadata: Extra metadata merged with the window label.

        Returns:
            UpsertResult, or None when the token is unknown and cannot be
            created from transaction data.
        """
        type_value = getattr(signal_type, "value", signal_type)
        stored_score = quantize_score(score)
        wallets = sorted(set(wallets_involved))
        now = datetime.now(UTC)

        async with self._db.get_async_session() as session:
            token = await self._ensure_token(session, token_id)
            if token is None:
                return None

            signals = SignalRepository(session)
            await signals.lock_token(token_id)

            existing = await signals.find_in_window(
                token_id,
                window_start=window.start,
                window_end=window.end,
                tolerance=self._tolerance,
            )

            if existing is None:
                created = await signals.insert(
                    SignalDTO(
                        token_id=token_id,
                        score=stored_score,
                        signal_type=type_value,
                        window_start=window.start,
                        window_end=window.end,
                        wallets_involved=wallets,
                        metadata={
                            **(metadata or {}),
                            "window": window.label,
                            "detectedAt": now.isoformat(),
                        },
                    )
                )
                result = UpsertResult(created, UpsertOutcome.CREATED)
            elif stored_score <= existing.score:
                logger.debug(
                    "Signal %s unchanged: score %s <= stored %s",
                    existing.id,
                    stored_score,
                    existing.score,
                )
                return UpsertResult(existing, UpsertOutcome.UNCHANGED)
            else:
                raised = await signals.raise_score(
                    existing.id,  # type: ignore[arg-type]
                    score=stored_score,
                    signal_type=type_value,
                    wallets_involved=wallets,
                    metadata={
                        **existing.metadata,
                        **(metadata or {}),
                        "window": window.label,
                        "updatedAt": now.isoformat(),
                    },
                )
                refreshed = await signals.get(existing.id)  # type: ignore[arg-type]
                if not raised or refreshed is None:
                    return UpsertResult(refreshed or existing, UpsertOutcome.UNCHANGED)
                result = UpsertResult(refreshed, UpsertOutcome.UPDATED)

        if result.outcome is UpsertOutcome.CREATED:
            logger.info(
                "Created accumulation signal %s for token %s (%s) with score %s",
                result.signal.id,
                token_id,
                window.label,
                stored_score,
            )
            await self._publisher.publish(result.signal, event="created")
        else:
            logger.info(
                "Raised signal %s for token %s to score %s",
                result.signal.id,
                token_id,
                stored_score,
            )
            await self._publisher.publish(result.signal, event="updated")
        return result

    async def _ensure_token(self, session: AsyncSession, token_id: str) -> TokenDTO | None:
        tokens = TokenRepository(session)
        token = await tokens.get(token_id)
        if token is not None:
            return token

        sample = await TransactionRepository(session).get_sample(token_id)
        if sample is None:
            logger.warning(
                "Dropping signal: token %s does not exist and has no transactions", token_id
            )
            return None

        candidate = TokenDTO.from_raw_payload(
            token_id,
            sample.raw,
            metadata={
                "createdFromSignal": True,
                "detectedAt": datetime.now(UTC).isoformat(),
            },
        )
        token, created = await tokens.ensure(candidate)
        if created:
            logger.info(
                "Created missing token %s (%s) from signal detection", token_id, token.symbol
            )
        if token.id != token_id:
            # Address already catalogued under another id.
            logger.warning(
                "Dropping signal: token %s collides with catalogued token %s", token_id, token.id
            )
            return None
        return token
