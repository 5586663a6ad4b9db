"""Notification channels."""

from accumulation_tracker.alerter.channels.base import AlertChannel, ChannelError
from accumulation_tracker.alerter.channels.mailer import EmailChannel
from accumulation_tracker.alerter.channels.telegram import TelegramChannel

__all__ = ["AlertChannel", "ChannelError", "EmailChannel", "TelegramChannel"]
