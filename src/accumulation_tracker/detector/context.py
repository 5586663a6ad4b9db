"""Assembly of read-only detection contexts from storage."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from accumulation_tracker.detector.models import DetectionContext, TimeWindow
from accumulation_tracker.storage.repos import (
    DexEventRepository,
    TokenDTO,
    TokenRepository,
    TransactionRepository,
    WalletPositionRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ContextBuilder:
    """Loads everything a rule may look at for one token and window."""

    def __init__(self, *, top_positions: int = 100, dex_events_enabled: bool = True) -> None:
        self.top_positions = top_positions
        self.dex_events_enabled = dex_events_enabled

    async def build(
        self,
        session: AsyncSession,
        token_id: str,
        window: TimeWindow,
        *,
        token: TokenDTO | None = None,
    ) -> DetectionContext:
        """Build the context.

        Args:
            session: Open session; the caller owns the transaction.
            token_id: Token to analyze.
            window: Analysis window.
            token: Already loaded token row, looked up when omitted.

        Returns:
            DetectionContext. DEX fields are None when DEX events are disabled.
        """
        if token is None:
            token = await TokenRepository(session).get(token_id)

        transactions = await TransactionRepository(session).list_in_window(
            token_id, start=window.start, end=window.end
        )
        positions = await WalletPositionRepository(session).top_positions(
            token_id, limit=self.top_positions
        )

        dex_swaps = None
        lp_mints = None
        if self.dex_events_enabled:
            dex = DexEventRepository(session)
            dex_swaps = await dex.list_buy_swaps(token_id, start=window.start, end=window.end)
            lp_mints = await dex.list_lp_mints(token_id, start=window.start, end=window.end)

        logger.debug(
            "Built context for token %s (%s): %d transactions, %d positions",
            token_id,
            window.label,
            len(transactions),
            len(positions),
        )
        return DetectionContext(
            token_id=token_id,
            token=token,
            transactions=transactions,
            positions=positions,
            window=window,
            dex_swaps=dex_swaps,
            lp_mints=lp_mints,
        )
