"""Alert delivery across channels with status bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from accumulation_tracker.alerter.formatter import AlertFormatter
from accumulation_tracker.alerter.models import (
    AlertChannels,
    AlertStatus,
    DispatchResult,
    FormattedAlert,
    payload_from_metadata,
)
from accumulation_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    SignalDTO,
    SignalRepository,
    TokenDTO,
    TokenRepository,
    UserDTO,
    UserRepository,
)

if TYPE_CHECKING:
    from accumulation_tracker.alerter.channels.base import AlertChannel
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_PENDING_BATCH_SIZE = 100
DEFAULT_PENDING_RETRY_DELAY = timedelta(seconds=120)

NO_CHANNELS_ERROR = "No delivery channels enabled"


@dataclass
class _DeliveryContext:
    user: UserDTO | None
    token: TokenDTO | None
    signal: SignalDTO | None


@dataclass(frozen=True)
class SweepSummary:
    """Result of one pending-alert sweep."""

    processed: int
    delivered: int
    failed: int
    errors: int

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "delivered": self.delivered,
            "failed": self.failed,
            "errors": self.errors,
        }


class AlertDispatcher:
    """Delivers PENDING alerts and records their terminal status.

    For each channel flagged on the alert:
    - an unconfigured channel is recorded as a soft error and skipped,
    - a recipient without an address on the channel is an error,
    - otherwise the channel is invoked and its success or failure recorded.

    A failing channel never prevents the next one from running. The alert is
    DELIVERED when at least one channel succeeded and FAILED otherwise; its row
    is updated once per attempt. In dry-run mode messages are formatted but
    nothing is sent and no row is touched.
    """

    def __init__(
        self,
        db: DatabaseManager,
        channels: Mapping[str, AlertChannel],
        *,
        formatter: AlertFormatter | None = None,
        dry_run: bool = False,
        batch_size: int = DEFAULT_PENDING_BATCH_SIZE,
        retry_delay: timedelta = DEFAULT_PENDING_RETRY_DELAY,
    ) -> None:
        self._db = db
        self._channels = dict(channels)
        self._formatter = formatter or AlertFormatter()
        self.dry_run = dry_run
        self.batch_size = batch_size
        self.retry_delay = retry_delay

    async def dispatch(self, alert: AlertDTO) -> DispatchResult:
        """Attempt delivery of one alert on all of its channels."""
        alert_id = alert.id or ""
        ctx = await self._load_context(alert)
        formatted = self._format(alert, ctx)
        flags = AlertChannels.from_dict(alert.channels)

        if self.dry_run:
            logger.info(
                "[DRY RUN] Would deliver alert %s via %s: %s",
                alert_id,
                ",".join(flags.enabled()) or "(none)",
                formatted.title,
            )
            return DispatchResult(alert_id=alert_id, status=AlertStatus.PENDING, dry_run=True)

        errors: list[str] = []
        results: dict[str, bool] = {}

        if not flags.enabled():
            logger.warning("Alert %s has no delivery channels enabled", alert_id)
            errors.append(NO_CHANNELS_ERROR)

        for name in flags.enabled():
            ok, error = await self._deliver(name, ctx.user, formatted)
            if ok is not None:
                results[name] = ok
            if error:
                errors.append(error)

        delivered = any(results.values())
        status = AlertStatus.DELIVERED if delivered else AlertStatus.FAILED
        await self._record(alert_id, status)

        if delivered:
            delivered_via = ",".join(k for k, v in results.items() if v)
            logger.info("Alert %s delivered via %s", alert_id, delivered_via)
        else:
            logger.warning("Alert %s marked as failed. Errors: %s", alert_id, ", ".join(errors))

        return DispatchResult(
            alert_id=alert_id,
            status=status,
            errors=tuple(errors),
            channel_results=results,
        )

    async def dispatch_alerts_for_signal(self, signal_id: str) -> list[DispatchResult]:
        """Dispatch every PENDING alert attached to a signal."""
        async with self._db.get_async_session() as session:
            alerts = await AlertRepository(session).list_pending_for_signal(signal_id)

        if not alerts:
            logger.debug("No pending alerts found for signal %s", signal_id)
            return []

        logger.info("Dispatching %d alerts for signal %s", len(alerts), signal_id)
        return await self._dispatch_each(alerts)

    async def process_pending_alerts(self) -> SweepSummary:
        """Retry a bounded batch of PENDING alerts older than the retry delay."""
        cutoff = datetime.now(UTC) - self.retry_delay
        async with self._db.get_async_session() as session:
            alerts = await AlertRepository(session).list_pending(
                limit=self.batch_size, created_before=cutoff
            )

        if not alerts:
            logger.debug("No pending alerts to process")
            return SweepSummary(processed=0, delivered=0, failed=0, errors=0)

        logger.info("Processing %d pending alerts", len(alerts))
        results = await self._dispatch_each(alerts)
        summary = SweepSummary(
            processed=len(alerts),
            delivered=sum(1 for r in results if r.status is AlertStatus.DELIVERED),
            failed=sum(1 for r in results if r.status is AlertStatus.FAILED),
            errors=len(alerts) - len(results),
        )
        logger.info("Pending alerts processed: %s", summary.to_dict())
        return summary

    async def _dispatch_each(self, alerts: list[AlertDTO]) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for alert in alerts:
            try:
                results.append(await self.dispatch(alert))
            except Exception as e:
                logger.error("Failed to dispatch alert %s: %s", alert.id, e, exc_info=True)
        return results

    async def _deliver(
        self, name: str, user: UserDTO | None, formatted: FormattedAlert
    ) -> tuple[bool | None, str | None]:
        """Run one channel.

        Returns:
            (result, error). result is None when the channel was not attempted.
        """
        label = name.capitalize()
        channel = self._channels.get(name)
        if channel is None or not channel.is_configured():
            logger.warning("%s channel not configured; skipping", label)
            return None, f"{label} not configured"
        if user is None:
            return False, "Recipient not found"

        recipient = channel.recipient_for(user)
        if not recipient:
            logger.warning("User %s has %s enabled but no address", user.id, label)
            return False, f"{label} recipient not configured"

        try:
            sent = await channel.send(recipient, formatted)
        except Exception as e:
            logger.warning("Failed to send %s alert to user %s: %s", label, user.id, e)
            return False, f"{label}: {e}"

        if not sent:
            return False, f"{label} delivery failed"
        return True, None

    async def _load_context(self, alert: AlertDTO) -> _DeliveryContext:
        async with self._db.get_async_session() as session:
            user = await UserRepository(session).get(alert.user_id)
            token = await TokenRepository(session).get(alert.token_id)
            signal = None
            if alert.signal_id:
                signal = await SignalRepository(session).get(alert.signal_id)
        return _DeliveryContext(user=user, token=token, signal=signal)

    def _format(self, alert: AlertDTO, ctx: _DeliveryContext) -> FormattedAlert:
        payload = payload_from_metadata(alert.alert_type, alert.metadata)
        return self._formatter.format(alert, payload, token=ctx.token, signal=ctx.signal)

    async def _record(self, alert_id: str, status: AlertStatus) -> None:
        delivered_at = datetime.now(UTC) if status is AlertStatus.DELIVERED else None
        async with self._db.get_async_session() as session:
            await AlertRepository(session).update_status(
                alert_id, status=status.value, delivered_at=delivered_at
            )
