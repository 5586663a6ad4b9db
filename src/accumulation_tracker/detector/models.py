"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from accumulation_tracker.storage.repos import (
        DexSwapDTO,
        LpChangeDTO,
        TokenDTO,
        TransactionDTO,
        WalletPositionDTO,
    )


class SignalType(str, Enum):
    """Classification of a persisted accumulation signal."""

    WHALE_INFLOW = "WHALE_INFLOW"
    CONCENTRATED_BUYS = "CONCENTRATED_BUYS"


@dataclass(frozen=True)
class TimeWindow:
    """Closed `[start, end]` analysis window with a display label."""

    start: datetime
    end: datetime
    label: str

    @classmethod
    def trailing(cls, end: datetime, hours: int) -> TimeWindow:
        return cls(start=end - timedelta(hours=hours), end=end, label=f"{hours}h")


@dataclass(frozen=True)
class DetectionContext:
    """Read-only snapshot handed to every rule.

    Attributes:
        token: Token metadata, or None when the catalog row is missing.
        transactions: Transfers in the window, newest first.
        positions: Top wallet positions ordered by balance descending.
        window: The analysis window.
        dex_swaps: Buy swaps in the window, None when the source is absent.
        lp_mints: LP mint events in the window, None when the source is absent.
    """

    token_id: str
    token: TokenDTO | None
    transactions: list[TransactionDTO]
    positions: list[WalletPositionDTO]
    window: TimeWindow
    dex_swaps: list[DexSwapDTO] | None = None
    lp_mints: list[LpChangeDTO] | None = None

    @property
    def wallets_involved(self) -> set[str]:
        """Every non-empty sender and receiver in the window."""
        wallets: set[str] = set()
        for tx in self.transactions:
            if tx.to_address:
                wallets.add(tx.to_address)
            if tx.from_address:
                wallets.add(tx.from_address)
        return wallets


@dataclass(frozen=True)
class ScoreResult:
    """Aggregated accumulation score for one context.

    Attributes:
        score: Weighted score clamped to [0, 100].
        breakdown: Per-rule raw scores for rules that evaluated successfully.
        failed_rules: Names of rules that raised and were excluded.
    """

    score: float
    breakdown: dict[str, float]
    failed_rules: tuple[str, ...] = ()
    contributions: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "score": round(self.score, 2),
            "breakdown": self.breakdown,
            "contributions": self.contributions,
            "failed_rules": list(self.failed_rules),
        }
