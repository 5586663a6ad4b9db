"""Alerting layer - Alert creation, formatting and delivery."""

from accumulation_tracker.alerter.dispatcher import AlertDispatcher, SweepSummary
from accumulation_tracker.alerter.factory import AlertFactory
from accumulation_tracker.alerter.formatter import AlertFormatter
from accumulation_tracker.alerter.models import (
    AlertChannels,
    AlertStatus,
    AlertType,
    BreakoutPayload,
    DispatchResult,
    ExchangeFlowPayload,
    FormattedAlert,
    SellWallPayload,
    SignalAlertPayload,
    WhaleTransferPayload,
)

__all__ = [
    "AlertChannels",
    "AlertDispatcher",
    "AlertFactory",
    "AlertFormatter",
    "AlertStatus",
    "AlertType",
    "BreakoutPayload",
    "DispatchResult",
    "ExchangeFlowPayload",
    "FormattedAlert",
    "SellWallPayload",
    "SignalAlertPayload",
    "SweepSummary",
    "WhaleTransferPayload",
]
