"""Tests for alert delivery and status bookkeeping."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from accumulation_tracker.alerter.channels.base import AlertChannel, ChannelError
from accumulation_tracker.alerter.dispatcher import NO_CHANNELS_ERROR, AlertDispatcher
from accumulation_tracker.alerter.models import AlertStatus, FormattedAlert
from accumulation_tracker.storage.repos import AlertDTO, SignalDTO, SignalRepository, UserDTO


class FakeChannel(AlertChannel):
    """Records sends instead of calling a provider."""

    def __init__(
        self,
        name: str,
        *,
        configured: bool = True,
        result: bool = True,
        error: Exception | None = None,
    ) -> None:
        super().__init__()
        self.name = name
        self.configured = configured
        self.result = result
        self.error = error
        self.sent: list[tuple[str, FormattedAlert]] = []

    def is_configured(self) -> bool:
        return self.configured

    def recipient_for(self, user: UserDTO) -> str | None:
        return user.telegram_chat_id if self.name == "telegram" else user.email

    async def send(self, recipient: str, alert: FormattedAlert) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, alert))
        return self.result


@pytest.fixture
async def user(seed, sample_token) -> UserDTO:
    await seed.token(sample_token)
    return await seed.user("alice", telegram_chat_id="424242")


@pytest.fixture
def make_alert(seed, sample_token):
    async def _make(
        *,
        user_id: str = "alice",
        telegram: bool = False,
        email: bool = True,
        signal_id: str | None = None,
        alert_type: str = "WHALE_BUY",
        metadata: dict | None = None,
        age: timedelta = timedelta(minutes=5),
    ) -> AlertDTO:
        return await seed.alert(
            AlertDTO(
                user_id=user_id,
                token_id=sample_token.id,
                alert_type=alert_type,
                channels={"telegram": telegram, "email": email},
                signal_id=signal_id,
                metadata=metadata
                or {
                    "kind": "whale_transfer",
                    "wallet_address": "0x" + "1" * 40,
                    "amount": 250000.0,
                },
                created_at=datetime.now(UTC) - age,
            )
        )

    return _make


class TestDispatch:
    @pytest.mark.asyncio
    async def test_delivered_on_success(self, db, seed, user, make_alert) -> None:
        email = FakeChannel("email")
        alert = await make_alert()

        result = await AlertDispatcher(db, {"email": email}).dispatch(alert)

        assert result.status is AlertStatus.DELIVERED
        assert result.delivered
        assert result.errors == ()
        assert result.channel_results == {"email": True}
        recipient, formatted = email.sent[0]
        assert recipient == "alice@example.com"
        assert formatted.title == "🐋 Whale Buy: PEPE"

        stored = await seed.get_alert(alert.id)
        assert stored.status == "DELIVERED"
        assert stored.delivered_at is not None

    @pytest.mark.asyncio
    async def test_failed_when_provider_rejects(self, db, seed, user, make_alert) -> None:
        alert = await make_alert()

        result = await AlertDispatcher(db, {"email": FakeChannel("email", result=False)}).dispatch(
            alert
        )

        assert result.status is AlertStatus.FAILED
        assert result.errors == ("Email delivery failed",)
        stored = await seed.get_alert(alert.id)
        assert stored.status == "FAILED"
        assert stored.delivered_at is None

    @pytest.mark.asyncio
    async def test_channel_exception_is_recorded(self, db, user, make_alert) -> None:
        alert = await make_alert()
        email = FakeChannel("email", error=ChannelError("SMTP timeout"))

        result = await AlertDispatcher(db, {"email": email}).dispatch(alert)

        assert result.status is AlertStatus.FAILED
        assert result.errors == ("Email: SMTP timeout",)

    @pytest.mark.asyncio
    async def test_one_channel_success_is_enough(self, db, seed, make_alert, sample_token) -> None:
        await seed.token(sample_token)
        await seed.user("bob")
        alert = await make_alert(user_id="bob", telegram=True, email=True)
        channels = {"telegram": FakeChannel("telegram"), "email": FakeChannel("email")}

        result = await AlertDispatcher(db, channels).dispatch(alert)

        assert result.status is AlertStatus.DELIVERED
        assert result.channel_results == {"telegram": False, "email": True}
        assert result.errors == ("Telegram recipient not configured",)
        assert channels["telegram"].sent == []

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_the_next(self, db, user, make_alert) -> None:
        alert = await make_alert(telegram=True, email=True)
        telegram = FakeChannel("telegram", error=RuntimeError("boom"))
        email = FakeChannel("email")

        result = await AlertDispatcher(db, {"telegram": telegram, "email": email}).dispatch(alert)

        assert result.status is AlertStatus.DELIVERED
        assert result.errors == ("Telegram: boom",)
        assert len(email.sent) == 1

    @pytest.mark.asyncio
    async def test_unconfigured_channel_is_soft_error(self, db, seed, user, make_alert) -> None:
        alert = await make_alert(telegram=True, email=False)
        telegram = FakeChannel("telegram", configured=False)

        result = await AlertDispatcher(db, {"telegram": telegram}).dispatch(alert)

        assert result.status is AlertStatus.FAILED
        assert result.errors == ("Telegram not configured",)
        assert result.channel_results == {}
        assert telegram.sent == []

    @pytest.mark.asyncio
    async def test_missing_channel_is_soft_error(self, db, user, make_alert) -> None:
        alert = await make_alert(telegram=True, email=True)

        result = await AlertDispatcher(db, {"email": FakeChannel("email")}).dispatch(alert)

        assert result.status is AlertStatus.DELIVERED
        assert result.errors == ("Telegram not configured",)

    @pytest.mark.asyncio
    async def test_no_channels_enabled(self, db, seed, user, make_alert) -> None:
        alert = await make_alert(telegram=False, email=False)

        result = await AlertDispatcher(db, {"email": FakeChannel("email")}).dispatch(alert)

        assert result.status is AlertStatus.FAILED
        assert result.errors == (NO_CHANNELS_ERROR,)
        assert (await seed.get_alert(alert.id)).status == "FAILED"

    @pytest.mark.asyncio
    async def test_missing_recipient(self, db, seed, sample_token, make_alert) -> None:
        await seed.token(sample_token)
        alert = await make_alert(user_id="ghost")

        result = await AlertDispatcher(db, {"email": FakeChannel("email")}).dispatch(alert)

        assert result.status is AlertStatus.FAILED
        assert result.errors == ("Recipient not found",)

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, db, seed, user, make_alert) -> None:
        alert = await make_alert(telegram=True)
        telegram = FakeChannel("telegram")
        email = FakeChannel("email")

        result = await AlertDispatcher(
            db, {"telegram": telegram, "email": email}, dry_run=True
        ).dispatch(alert)

        assert result.dry_run
        assert result.status is AlertStatus.PENDING
        assert telegram.sent == [] and email.sent == []
        assert (await seed.get_alert(alert.id)).status == "PENDING"

    @pytest.mark.asyncio
    async def test_signal_alert_renders_signal(self, db, user, make_alert, sample_token) -> None:
        end = datetime.now(UTC)
        async with db.get_async_session() as session:
            signal = await SignalRepository(session).insert(
                SignalDTO(
                    token_id=sample_token.id,
                    score=Decimal("87.25"),
                    signal_type="WHALE_INFLOW",
                    window_start=end - timedelta(hours=6),
                    window_end=end,
                    wallets_involved=["0xaaa", "0xbbb"],
                    metadata={"window": "6h"},
                )
            )
        alert = await make_alert(
            alert_type="ACCUMULATION_SIGNAL",
            signal_id=signal.id,
            metadata={"kind": "signal", "signal_id": signal.id, "score": 87.25},
        )
        email = FakeChannel("email")

        await AlertDispatcher(db, {"email": email}).dispatch(alert)

        _, formatted = email.sent[0]
        assert formatted.subject == "🚨 Accumulation Signal: PEPE (Score: 87.25)"
        assert formatted.links["dashboard"].endswith(f"/signals/{signal.id}")

    @pytest.mark.asyncio
    async def test_signal_alert_without_signal_or_payload(self, db, user, make_alert) -> None:
        alert = await make_alert(alert_type="ACCUMULATION_SIGNAL", metadata={"kind": "signal"})
        email = FakeChannel("email")

        result = await AlertDispatcher(db, {"email": email}).dispatch(alert)

        assert result.status is AlertStatus.DELIVERED
        _, formatted = email.sent[0]
        assert formatted.subject == "Accumulation Signal: PEPE"


class TestBatchDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_alerts_for_signal(
        self, db, seed, user, make_alert, sample_token
    ) -> None:
        end = datetime.now(UTC)
        async with db.get_async_session() as session:
            signal = await SignalRepository(session).insert(
                SignalDTO(
                    token_id=sample_token.id,
                    score=Decimal("90"),
                    signal_type="WHALE_INFLOW",
                    window_start=end - timedelta(hours=1),
                    window_end=end,
                )
            )
        await seed.user("bob")
        metadata = {"kind": "signal", "signal_id": signal.id, "score": 90.0}
        for user_id in ("alice", "bob"):
            await make_alert(
                user_id=user_id,
                alert_type="ACCUMULATION_SIGNAL",
                signal_id=signal.id,
                metadata=metadata,
                age=timedelta(0),
            )
        await make_alert()
        email = FakeChannel("email")

        results = await AlertDispatcher(db, {"email": email}).dispatch_alerts_for_signal(signal.id)

        assert [r.status for r in results] == [AlertStatus.DELIVERED] * 2
        assert sorted(recipient for recipient, _ in email.sent) == [
            "alice@example.com",
            "bob@example.com",
        ]

    @pytest.mark.asyncio
    async def test_no_pending_alerts_for_signal(self, db) -> None:
        assert await AlertDispatcher(db, {}).dispatch_alerts_for_signal("sig") == []

    @pytest.mark.asyncio
    async def test_process_pending_respects_retry_delay(self, db, seed, user, make_alert) -> None:
        old = await make_alert(age=timedelta(minutes=5))
        fresh = await make_alert(age=timedelta(seconds=10))

        dispatcher = AlertDispatcher(db, {"email": FakeChannel("email")})
        summary = await dispatcher.process_pending_alerts()

        assert summary.to_dict() == {"processed": 1, "delivered": 1, "failed": 0, "errors": 0}
        assert (await seed.get_alert(old.id)).status == "DELIVERED"
        assert (await seed.get_alert(fresh.id)).status == "PENDING"

    @pytest.mark.asyncio
    async def test_process_pending_batch_size(self, db, user, make_alert) -> None:
        for minutes in range(5, 10):
            await make_alert(age=timedelta(minutes=minutes))

        dispatcher = AlertDispatcher(
            db, {"email": FakeChannel("email", result=False)}, batch_size=3
        )
        summary = await dispatcher.process_pending_alerts()

        assert summary.processed == 3
        assert summary.failed == 3

    @pytest.mark.asyncio
    async def test_process_pending_empty(self, db) -> None:
        summary = await AlertDispatcher(db, {}).process_pending_alerts()
        assert summary.processed == 0
