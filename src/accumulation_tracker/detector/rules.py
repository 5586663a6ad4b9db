"""Accumulation scoring rules.

Each rule is a pure function of a `DetectionContext` returning a score in
[0, 100]. Rules are registered in a fixed table with their weight; band
thresholds live in `RuleBands` so they can be tuned without touching the
rule bodies.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from functools import partial

from accumulation_tracker.detector.models import DetectionContext

MAX_RULE_SCORE = 100.0


class RuleEvaluationError(Exception):
    """Raised when a rule cannot interpret its input."""


@dataclass(frozen=True)
class Band:
    """Add `points` once `value` reaches `threshold` (exceeds it when strict)."""

    threshold: float
    points: float
    strict: bool = False

    def hit(self, value: float) -> bool:
        return value > self.threshold if self.strict else value >= self.threshold


@dataclass(frozen=True)
class RuleBands:
    """Tunable thresholds for the built-in rules."""

    # Concentrated Buys
    concentrated_buyer_ratio: float = 0.10
    concentrated_buyers: tuple[Band, ...] = (Band(3, 40), Band(5, 30), Band(10, 30))

    # Large Wallet Inflows
    inflow_top_wallets: int = 20
    inflow_reference_amount: float = 1_000_000.0
    inflow_multiplier: float = 50.0

    # New Whale Addresses
    whale_known_holders: int = 50
    whale_min_received: float = 10_000.0
    new_whales: tuple[Band, ...] = (Band(5, 50), Band(10, 30), Band(20, 20))

    # Holding Pattern Increase
    holding_min_delta: float = 1_000.0
    holding_wallets: tuple[Band, ...] = (Band(10, 40), Band(20, 30), Band(50, 30))

    # Transaction Volume Spike
    volume_amount: tuple[Band, ...] = (
        Band(100_000, 30, strict=True),
        Band(500_000, 30, strict=True),
        Band(1_000_000, 40, strict=True),
    )
    volume_count: tuple[Band, ...] = (Band(50, 20, strict=True), Band(100, 20, strict=True))

    # DEX Liquidity Increase
    lp_usd: tuple[Band, ...] = (
        Band(50_000, 30, strict=True),
        Band(100_000, 30, strict=True),
        Band(500_000, 40, strict=True),
    )
    lp_count: tuple[Band, ...] = (Band(3, 20), Band(5, 20))

    # Repeated Large Swaps
    swap_min_value: float = 10_000.0
    swap_count: tuple[Band, ...] = (Band(3, 30), Band(5, 30), Band(10, 40))
    swap_wallets: tuple[Band, ...] = (Band(3, 20), Band(5, 20))


DEFAULT_BANDS = RuleBands()


@dataclass(frozen=True)
class Rule:
    """A named, weighted scoring function."""

    name: str
    weight: float
    evaluate: Callable[[DetectionContext], float]

    def __post_init__(self) -> None:
        if not 0.0 < self.weight <= 1.0:
            raise ValueError(f"Rule {self.name!r} weight must be in (0, 1], got {self.weight}")


def _as_float(value: Decimal | float | int | None, what: str) -> float:
    if value is None:
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise RuleEvaluationError(f"Invalid {what}: {value!r}") from e
    if not math.isfinite(result):
        raise RuleEvaluationError(f"Non-finite {what}: {value!r}")
    return result


def _band_score(value: float, bands: Iterable[Band]) -> float:
    return sum(b.points for b in bands if b.hit(value))


def _cap(score: float) -> float:
    return min(MAX_RULE_SCORE, max(0.0, score))


def concentrated_buys(
    ctx: DetectionContext,
    *,
    bands: RuleBands = DEFAULT_BANDS,
    exchange_addresses: frozenset[str] = frozenset(),
) -> float:
    """Count non-exchange receivers whose inflow is near the top buyer's."""
    inbound: dict[str, float] = defaultdict(float)
    for tx in ctx.transactions:
        if not tx.to_address:
            continue
        receiver = tx.to_address.lower()
        if receiver in exchange_addresses:
            continue
        inbound[receiver] += _as_float(tx.amount, "amount")

    if not inbound:
        return 0.0

    threshold = max(inbound.values()) * bands.concentrated_buyer_ratio
    large_buyers = sum(1 for amount in inbound.values() if amount >= threshold)
    return _cap(_band_score(large_buyers, bands.concentrated_buyers))


def large_wallet_inflows(ctx: DetectionContext, *, bands: RuleBands = DEFAULT_BANDS) -> float:
    """Average inflow into the largest holders, scaled to a reference size."""
    top_wallets = {p.wallet_address.lower() for p in ctx.positions[: bands.inflow_top_wallets]}
    total_inflow = sum(
        _as_float(tx.amount, "amount")
        for tx in ctx.transactions
        if tx.to_address and tx.to_address.lower() in top_wallets
    )
    if total_inflow <= 0:
        return 0.0

    avg = total_inflow / len(ctx.transactions)
    return _cap(avg / bands.inflow_reference_amount * bands.inflow_multiplier)


def new_whale_addresses(ctx: DetectionContext, *, bands: RuleBands = DEFAULT_BANDS) -> float:
    known = {p.wallet_address.lower() for p in ctx.positions[: bands.whale_known_holders]}
    received: dict[str, float] = defaultdict(float)
    for tx in ctx.transactions:
        if tx.to_address and tx.to_address.lower() not in known:
            received[tx.to_address.lower()] += _as_float(tx.amount, "amount")

    whales = sum(1 for amount in received.values() if amount > bands.whale_min_received)
    return _cap(_band_score(whales, bands.new_whales))


def holding_pattern_increase(
    ctx: DetectionContext, *, bands: RuleBands = DEFAULT_BANDS
) -> float:
    deltas: dict[str, float] = defaultdict(float)
    for tx in ctx.transactions:
        amount = _as_float(tx.amount, "amount")
        if tx.to_address:
            deltas[tx.to_address.lower()] += amount
        if tx.from_address:
            deltas[tx.from_address.lower()] -= amount

    increasing = sum(1 for delta in deltas.values() if delta > bands.holding_min_delta)
    return _cap(_band_score(increasing, bands.holding_wallets))


def transaction_volume_spike(
    ctx: DetectionContext, *, bands: RuleBands = DEFAULT_BANDS
) -> float:
    volume = sum(_as_float(tx.amount, "amount") for tx in ctx.transactions)
    score = _band_score(volume, bands.volume_amount)
    score += _band_score(len(ctx.transactions), bands.volume_count)
    return _cap(score)


def dex_liquidity_increase(ctx: DetectionContext, *, bands: RuleBands = DEFAULT_BANDS) -> float:
    """Liquidity added through LP mints; zero when no LP source is wired."""
    if not ctx.lp_mints:
        return 0.0
    total_usd = sum(_as_float(m.amount_usd, "amount_usd") for m in ctx.lp_mints)
    score = _band_score(total_usd, bands.lp_usd)
    score += _band_score(len(ctx.lp_mints), bands.lp_count)
    return _cap(score)


def repeated_large_swaps(ctx: DetectionContext, *, bands: RuleBands = DEFAULT_BANDS) -> float:
    """Large buy swaps and the number of distinct wallets making them."""
    if not ctx.dex_swaps:
        return 0.0
    large = [
        s
        for s in ctx.dex_swaps
        if max(_as_float(s.amount_in, "amount_in"), _as_float(s.amount_out, "amount_out"))
        > bands.swap_min_value
    ]
    if not large:
        return 0.0

    wallets = {s.wallet_address.lower() for s in large if s.wallet_address}
    score = _band_score(len(large), bands.swap_count)
    score += _band_score(len(wallets), bands.swap_wallets)
    return _cap(score)


def build_default_rules(
    bands: RuleBands = DEFAULT_BANDS,
    exchange_addresses: Iterable[str] = (),
) -> tuple[Rule, ...]:
    """Build the ordered rule table.

    Args:
        bands: Band thresholds shared by all rules.
        exchange_addresses: Wallets never counted as buyers.

    Returns:
        Tuple of rules; weights sum to 1.0.
    """
    exchanges = frozenset(a.lower() for a in exchange_addresses)
    return (
        Rule(
            "Concentrated Buys",
            0.25,
            partial(concentrated_buys, bands=bands, exchange_addresses=exchanges),
        ),
        Rule("Large Wallet Inflows", 0.20, partial(large_wallet_inflows, bands=bands)),
        Rule("New Whale Addresses", 0.15, partial(new_whale_addresses, bands=bands)),
        Rule("Holding Pattern Increase", 0.12, partial(holding_pattern_increase, bands=bands)),
        Rule("Transaction Volume Spike", 0.08, partial(transaction_volume_spike, bands=bands)),
        Rule("DEX Liquidity Increase", 0.10, partial(dex_liquidity_increase, bands=bands)),
        Rule("Repeated Large Swaps", 0.10, partial(repeated_large_swaps, bands=bands)),
    )
