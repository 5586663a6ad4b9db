"""Accumulation detection layer - Rule evaluation and scoring."""

from accumulation_tracker.detector.context import ContextBuilder
from accumulation_tracker.detector.models import (
    DetectionContext,
    ScoreResult,
    SignalType,
    TimeWindow,
)
from accumulation_tracker.detector.rules import (
    Band,
    Rule,
    RuleBands,
    RuleEvaluationError,
    build_default_rules,
)
from accumulation_tracker.detector.scorer import AccumulationScorer

__all__ = [
    "AccumulationScorer",
    "Band",
    "ContextBuilder",
    "DetectionContext",
    "Rule",
    "RuleBands",
    "RuleEvaluationError",
    "ScoreResult",
    "SignalType",
    "TimeWindow",
    "build_default_rules",
]
