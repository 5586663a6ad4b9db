"""Signal lifecycle - Persistence, deduplication and publishing."""

from accumulation_tracker.signals.publisher import SignalPublisher, signal_to_dict
from accumulation_tracker.signals.store import (
    SignalStore,
    UpsertOutcome,
    UpsertResult,
    quantize_score,
)

__all__ = [
    "SignalPublisher",
    "SignalStore",
    "UpsertOutcome",
    "UpsertResult",
    "quantize_score",
    "signal_to_dict",
]
