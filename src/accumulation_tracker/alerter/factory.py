"""Creation of PENDING alerts for signals and market events."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

from accumulation_tracker.alerter.models import (
    DEFAULT_CHANNELS,
    AlertChannels,
    AlertPayload,
    AlertStatus,
    AlertType,
    SignalAlertPayload,
    check_payload,
)
from accumulation_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    SignalRepository,
    UserDTO,
    UserRepository,
)

if TYPE_CHECKING:
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_ALERT_MIN_SCORE = 75.0
DEFAULT_DEDUP_WINDOW = timedelta(minutes=5)

RecipientMode = Literal["paid_subscribers", "token_subscribers"]


class AlertFactory:
    """Fans a signal or event out into one PENDING alert per recipient.

    A recipient is skipped when it already has a PENDING alert of the same
    type for the same token created inside the dedup window. New alerts
    inherit the channel flags of the recipient's latest alert for the token.
    Each recipient is written in its own transaction so one failure does not
    affect the others.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        min_score: float = DEFAULT_ALERT_MIN_SCORE,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        recipient_mode: RecipientMode = "paid_subscribers",
        default_channels: AlertChannels = DEFAULT_CHANNELS,
    ) -> None:
        self._db = db
        self.min_score = min_score
        self.dedup_window = dedup_window
        self.recipient_mode = recipient_mode
        self.default_channels = default_channels

    async def create_alerts_for_signal(self, signal_id: str) -> int:
        """Create ACCUMULATION_SIGNAL alerts for a high-score signal.

        Returns:
            Number of alerts created.
        """
        async with self._db.get_async_session() as session:
            signal = await SignalRepository(session).get(signal_id)
            if signal is None:
                logger.warning("Signal %s not found; no alerts created", signal_id)
                return 0
            if float(signal.score) < self.min_score:
                logger.debug(
                    "Signal %s score %s below alert minimum %.2f",
                    signal_id,
                    signal.score,
                    self.min_score,
                )
                return 0

            token_filter = signal.token_id if self.recipient_mode == "token_subscribers" else None
            users = await UserRepository(session).eligible_users(token_filter)

        payload = SignalAlertPayload(
            signal_id=signal_id,
            score=float(signal.score),
            signal_type=signal.signal_type,
            window=signal.metadata.get("window"),
        )
        created = await self._create_for_users(
            users,
            alert_type=AlertType.ACCUMULATION_SIGNAL,
            token_id=signal.token_id,
            payload=payload,
            signal_id=signal_id,
        )
        logger.info(
            "Created %d alerts for signal %s (%d recipients)", created, signal_id, len(users)
        )
        return created

    async def create_event_alerts(
        self,
        token_id: str,
        alert_type: AlertType,
        payload: AlertPayload,
    ) -> int:
        """Create event alerts for users following the token.

        Raises:
            TypeError: If the payload variant does not match `alert_type`.
        """
        check_payload(alert_type, payload)
        async with self._db.get_async_session() as session:
            users = await UserRepository(session).eligible_users(token_id)

        created = await self._create_for_users(
            users,
            alert_type=alert_type,
            token_id=token_id,
            payload=payload,
        )
        logger.info(
            "Created %d %s alerts for token %s (%d recipients)",
            created,
            alert_type.value,
            token_id,
            len(users),
        )
        return created

    async def _create_for_users(
        self,
        users: list[UserDTO],
        *,
        alert_type: AlertType,
        token_id: str,
        payload: AlertPayload,
        signal_id: str | None = None,
    ) -> int:
        created = 0
        for user in users:
            try:
                if await self._create_one(
                    user,
                    alert_type=alert_type,
                    token_id=token_id,
                    payload=payload,
                    signal_id=signal_id,
                ):
                    created += 1
            except Exception as e:
                logger.warning(
                    "Failed to create %s alert for user %s: %s", alert_type.value, user.id, e
                )
        return created

    async def _create_one(
        self,
        user: UserDTO,
        *,
        alert_type: AlertType,
        token_id: str,
        payload: AlertPayload,
        signal_id: str | None,
    ) -> bool:
        now = datetime.now(UTC)
        async with self._db.get_async_session() as session:
            alerts = AlertRepository(session)

            if signal_id is not None and await alerts.exists_for_signal(
                user_id=user.id, signal_id=signal_id
            ):
                logger.debug("User %s already has an alert for signal %s", user.id, signal_id)
                return False

            duplicate = await alerts.find_recent_pending(
                user_id=user.id,
                alert_type=alert_type.value,
                token_id=token_id,
                since=now - self.dedup_window,
            )
            if duplicate is not None:
                logger.debug(
                    "Skipping %s alert for user %s, token %s: pending alert %s is recent",
                    alert_type.value,
                    user.id,
                    token_id,
                    duplicate.id,
                )
                return False

            latest = await alerts.latest_channels(user_id=user.id, token_id=token_id)
            channels = AlertChannels.from_dict(latest) if latest else self.default_channels

            await alerts.create(
                AlertDTO(
                    user_id=user.id,
                    token_id=token_id,
                    alert_type=alert_type.value,
                    channels=channels.to_dict(),
                    status=AlertStatus.PENDING.value,
                    signal_id=signal_id,
                    metadata=payload.to_metadata(),
                    created_at=now,
                )
            )
        logger.debug("Created %s alert for user %s, token %s", alert_type.value, user.id, token_id)
        return True
