"""Weighted accumulation scorer combining all rule outputs.

This module provides the AccumulationScorer class that evaluates every rule
against a detection context and aggregates the results into a single
0-100 score and a signal classification.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from accumulation_tracker.detector.models import DetectionContext, ScoreResult, SignalType
from accumulation_tracker.detector.rules import Rule, build_default_rules

logger = logging.getLogger(__name__)

# Default classification thresholds
DEFAULT_SIGNAL_THRESHOLD = 60.0
DEFAULT_WHALE_THRESHOLD = 80.0
DEFAULT_CONCENTRATED_THRESHOLD = 70.0


class AccumulationScorer:
    """Composite accumulation scorer.

    This scorer:
    - Invokes every rule against the same read-only context
    - Excludes rules that raise from both numerator and denominator
    - Normalizes the weighted sum by the weight of rules that succeeded
    - Classifies the final score into a signal type

    Scoring Formula:
        score = sum(rule_score * weight) / sum(weight of successful rules)
        score = clamp(score, 0, 100)   # 0 when every rule failed

    Example:
        ```python
        scorer = AccumulationScorer(build_default_rules())
        result = scorer.evaluate(context)
        signal_type = scorer.classify(result.score)
        ```
    """

    def __init__(
        self,
        rules: Sequence[Rule] | None = None,
        *,
        signal_threshold: float = DEFAULT_SIGNAL_THRESHOLD,
        whale_threshold: float = DEFAULT_WHALE_THRESHOLD,
        concentrated_threshold: float = DEFAULT_CONCENTRATED_THRESHOLD,
    ) -> None:
        """Initialize the scorer.

        Args:
            rules: Ordered rule table. Defaults to the built-in rules.
            signal_threshold: Minimum score worth persisting (default 60).
            whale_threshold: Score at or above which a signal is WHALE_INFLOW.
            concentrated_threshold: Score at or above which a signal is
                CONCENTRATED_BUYS.
        """
        self._rules = tuple(rules) if rules is not None else build_default_rules()
        self.signal_threshold = signal_threshold
        self.whale_threshold = whale_threshold
        self.concentrated_threshold = concentrated_threshold

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def evaluate(self, ctx: DetectionContext) -> ScoreResult:
        """Score a detection context.

        Args:
            ctx: Context assembled for one token and window.

        Returns:
            ScoreResult with the clamped score and per-rule breakdown.
        """
        breakdown: dict[str, float] = {}
        contributions: dict[str, float] = {}
        products: list[float] = []
        weights: list[float] = []
        failed: list[str] = []

        for rule in self._rules:
            try:
                rule_score = float(rule.evaluate(ctx))
            except Exception as e:
                logger.warning(
                    "Rule %s failed for token %s (%s): %s",
                    rule.name,
                    ctx.token_id,
                    ctx.window.label,
                    e,
                )
                failed.append(rule.name)
                continue

            rule_score = min(100.0, max(0.0, rule_score))
            breakdown[rule.name] = rule_score
            contributions[rule.name] = rule_score * rule.weight
            products.append(rule_score * rule.weight)
            weights.append(rule.weight)

        # fsum is exactly rounded, so the result does not depend on rule order.
        total_weight = math.fsum(weights)
        score = math.fsum(products) / total_weight if total_weight > 0 else 0.0
        score = min(100.0, max(0.0, score))

        return ScoreResult(
            score=score,
            breakdown=breakdown,
            failed_rules=tuple(failed),
            contributions=contributions,
        )

    def classify(self, score: float) -> SignalType | None:
        """Map a score to a signal type.

        Returns:
            None when the score is below the signal threshold. Scores between
            the signal and concentrated thresholds are CONCENTRATED_BUYS.
        """
        if score < self.signal_threshold:
            return None
        if score >= self.whale_threshold:
            return SignalType.WHALE_INFLOW
        return SignalType.CONCENTRATED_BUYS

    def get_weights(self) -> dict[str, float]:
        return {rule.name: rule.weight for rule in self._rules}
