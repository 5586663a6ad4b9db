"""Tests for storage repositories."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from accumulation_tracker.storage.models import Base
from accumulation_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    DexEventRepository,
    DexSwapDTO,
    SignalDTO,
    SignalRepository,
    TokenDTO,
    TokenRepository,
    TransactionDTO,
    TransactionRepository,
    UserDTO,
    UserRepository,
    WalletPositionDTO,
    WalletPositionRepository,
)

NOW = datetime.now(UTC)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def token_dto() -> TokenDTO:
    """Create a sample token DTO."""
    return TokenDTO(
        id="tok-pepe",
        chain="ethereum",
        contract_address="0x6982508145454CE325DDBE47A25D4EC3D2311933",
        symbol="PEPE",
        name="Pepe",
    )


def transfer(token_id: str, tx_hash: str, minutes_ago: int, amount: str = "100") -> TransactionDTO:
    return TransactionDTO(
        token_id=token_id,
        tx_hash=tx_hash,
        from_address="0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",
        to_address="0x" + "b" * 40,
        amount=Decimal(amount),
        timestamp=NOW - timedelta(minutes=minutes_ago),
    )


def user(user_id: str, **kwargs) -> UserDTO:
    return UserDTO(id=user_id, email=f"{user_id}@example.com", **kwargs)


# ============================================================================
# TokenRepository Tests
# ============================================================================


class TestTokenRepository:
    """Tests for TokenRepository."""

    @pytest.mark.asyncio
    async def test_ensure_creates(self, async_session, token_dto) -> None:
        repo = TokenRepository(async_session)

        stored, created = await repo.ensure(token_dto)

        assert created
        assert stored.id == "tok-pepe"
        assert stored.contract_address == "0x6982508145454ce325ddbe47a25d4ec3d2311933"
        assert stored.active
        assert stored.created_at is not None

    @pytest.mark.asyncio
    async def test_ensure_existing_id_is_untouched(self, async_session, token_dto) -> None:
        repo = TokenRepository(async_session)
        await repo.ensure(token_dto)

        token_dto.symbol = "RENAMED"
        stored, created = await repo.ensure(token_dto)

        assert not created
        assert stored.symbol == "PEPE"

    @pytest.mark.asyncio
    async def test_ensure_address_conflict_returns_existing(
        self, async_session, token_dto
    ) -> None:
        repo = TokenRepository(async_session)
        await repo.ensure(token_dto)

        clash = TokenDTO(
            id="tok-other",
            chain="ethereum",
            contract_address=token_dto.contract_address.lower(),
            symbol="PEPE2",
            name="Pepe Again",
        )
        stored, created = await repo.ensure(clash)

        assert not created
        assert stored.id == "tok-pepe"
        assert await repo.get("tok-other") is None

    @pytest.mark.asyncio
    async def test_list_active_and_activate(self, async_session, token_dto) -> None:
        repo = TokenRepository(async_session)
        await repo.ensure(token_dto)
        await repo.ensure(
            TokenDTO(
                id="tok-dead",
                chain="bsc",
                contract_address="0x" + "d" * 40,
                symbol="DEAD",
                name="Dead",
                active=False,
            )
        )

        assert [t.id for t in await repo.list_active()] == ["tok-pepe"]

        await repo.activate("tok-dead")
        assert {t.id for t in await repo.list_active()} == {"tok-pepe", "tok-dead"}

    @pytest.mark.asyncio
    async def test_find_by_address_is_case_insensitive(self, async_session, token_dto) -> None:
        repo = TokenRepository(async_session)
        await repo.ensure(token_dto)

        found = await repo.find_by_address("ethereum", token_dto.contract_address)
        assert found is not None
        assert found.id == "tok-pepe"
        assert await repo.find_by_address("bsc", token_dto.contract_address) is None


# ============================================================================
# TransactionRepository Tests
# ============================================================================


class TestTransactionRepository:
    """Tests for TransactionRepository."""

    @pytest.mark.asyncio
    async def test_insert_lowercases_addresses(self, async_session) -> None:
        repo = TransactionRepository(async_session)

        dto = await repo.insert(transfer("tok-a", "0x1", 5))

        assert dto.id is not None
        sample = await repo.get_sample("tok-a")
        assert sample.from_address == "0x" + "a" * 40
        assert sample.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_list_in_window(self, async_session) -> None:
        repo = TransactionRepository(async_session)
        await repo.insert(transfer("tok-a", "0x1", 50))
        await repo.insert(transfer("tok-a", "0x2", 10))
        await repo.insert(transfer("tok-a", "0x3", 120))
        await repo.insert(transfer("tok-b", "0x4", 10))

        result = await repo.list_in_window(
            "tok-a", start=NOW - timedelta(hours=1), end=NOW
        )

        assert [tx.tx_hash for tx in result] == ["0x2", "0x1"]

    @pytest.mark.asyncio
    async def test_window_is_half_open(self, async_session) -> None:
        repo = TransactionRepository(async_session)
        await repo.insert(transfer("tok-a", "0xstart", 60))
        await repo.insert(transfer("tok-a", "0xinside", 30))
        await repo.insert(transfer("tok-a", "0xend", 10))

        result = await repo.list_in_window(
            "tok-a", start=NOW - timedelta(minutes=60), end=NOW - timedelta(minutes=10)
        )

        assert [tx.tx_hash for tx in result] == ["0xinside", "0xstart"]

    @pytest.mark.asyncio
    async def test_recent_token_samples(self, async_session) -> None:
        repo = TransactionRepository(async_session)
        await repo.insert(transfer("tok-a", "0x1", 10))
        await repo.insert(transfer("tok-a", "0x2", 5))
        await repo.insert(transfer("tok-b", "0x3", 10))
        await repo.insert(transfer("tok-c", "0x4", 60 * 24 * 10))

        samples = await repo.list_recent_token_samples(since=NOW - timedelta(days=7))

        assert {(s.token_id, s.tx_hash) for s in samples} == {("tok-a", "0x1"), ("tok-b", "0x3")}

    @pytest.mark.asyncio
    async def test_get_sample_missing(self, async_session) -> None:
        assert await TransactionRepository(async_session).get_sample("nope") is None


# ============================================================================
# WalletPositionRepository / DexEventRepository Tests
# ============================================================================


class TestWalletPositionRepository:
    """Tests for WalletPositionRepository."""

    @pytest.mark.asyncio
    async def test_upsert_updates_balance(self, async_session) -> None:
        repo = WalletPositionRepository(async_session)
        wallet = "0x" + "C" * 40
        await repo.upsert(WalletPositionDTO("tok-a", wallet, Decimal("100")))
        await repo.upsert(WalletPositionDTO("tok-a", wallet, Decimal("2500")))

        positions = await repo.top_positions("tok-a")

        assert len(positions) == 1
        assert positions[0].wallet_address == wallet.lower()
        assert positions[0].balance == Decimal("2500")

    @pytest.mark.asyncio
    async def test_top_positions_order_and_limit(self, async_session) -> None:
        repo = WalletPositionRepository(async_session)
        for i, balance in enumerate(("10", "3000", "700")):
            await repo.upsert(WalletPositionDTO("tok-a", f"0x{i:040x}", Decimal(balance)))

        positions = await repo.top_positions("tok-a", limit=2)

        assert [p.balance for p in positions] == [Decimal("3000"), Decimal("700")]


class TestDexEventRepository:
    """Tests for DexEventRepository."""

    @pytest.mark.asyncio
    async def test_list_buy_swaps(self, async_session) -> None:
        repo = DexEventRepository(async_session)
        for swap_type, minutes_ago in (("buy", 5), ("sell", 5), ("buy", 180)):
            await repo.add_swap(
                DexSwapDTO(
                    token_id="tok-a",
                    swap_type=swap_type,
                    wallet_address="0x" + "e" * 40,
                    amount_in=Decimal("1"),
                    amount_out=Decimal("15000"),
                    timestamp=NOW - timedelta(minutes=minutes_ago),
                )
            )

        swaps = await repo.list_buy_swaps("tok-a", start=NOW - timedelta(hours=1), end=NOW)

        assert len(swaps) == 1
        assert swaps[0].amount_out == Decimal("15000")

        at_end = await repo.list_buy_swaps(
            "tok-a", start=NOW - timedelta(hours=1), end=NOW - timedelta(minutes=5)
        )
        assert at_end == []


# ============================================================================
# SignalRepository Tests
# ============================================================================


class TestSignalRepository:
    """Tests for SignalRepository."""

    @pytest.fixture
    def signal_dto(self) -> SignalDTO:
        return SignalDTO(
            token_id="tok-a",
            score=Decimal("70.00"),
            signal_type="CONCENTRATED_BUYS",
            window_start=NOW - timedelta(hours=24),
            window_end=NOW,
            wallets_involved=["0xb", "0xa"],
            metadata={"window": "24h"},
        )

    @pytest.mark.asyncio
    async def test_insert_and_get(self, async_session, signal_dto) -> None:
        repo = SignalRepository(async_session)

        stored = await repo.insert(signal_dto)

        assert stored.id is not None
        fetched = await repo.get(stored.id)
        assert fetched.score == Decimal("70.00")
        assert fetched.wallets_involved == ["0xa", "0xb"]
        assert fetched.metadata == {"window": "24h"}

    @pytest.mark.asyncio
    async def test_find_in_window_tolerance(self, async_session, signal_dto) -> None:
        repo = SignalRepository(async_session)
        await repo.insert(signal_dto)
        tolerance = timedelta(seconds=60)

        near = await repo.find_in_window(
            "tok-a",
            window_start=signal_dto.window_start + timedelta(seconds=45),
            window_end=signal_dto.window_end + timedelta(seconds=45),
            tolerance=tolerance,
        )
        far = await repo.find_in_window(
            "tok-a",
            window_start=signal_dto.window_start + timedelta(seconds=90),
            window_end=signal_dto.window_end + timedelta(seconds=90),
            tolerance=tolerance,
        )

        assert near is not None
        assert far is None

    @pytest.mark.asyncio
    async def test_raise_score_only_when_higher(self, async_session, signal_dto) -> None:
        repo = SignalRepository(async_session)
        stored = await repo.insert(signal_dto)

        lower = await repo.raise_score(
            stored.id,
            score=Decimal("65.00"),
            signal_type="CONCENTRATED_BUYS",
            wallets_involved=[],
            metadata={},
        )
        higher = await repo.raise_score(
            stored.id,
            score=Decimal("85.00"),
            signal_type="WHALE_INFLOW",
            wallets_involved=["0xc"],
            metadata={"window": "24h", "updatedAt": "now"},
        )

        assert not lower
        assert higher
        fetched = await repo.get(stored.id)
        assert fetched.score == Decimal("85.00")
        assert fetched.signal_type == "WHALE_INFLOW"
        assert fetched.wallets_involved == ["0xc"]

    @pytest.mark.asyncio
    async def test_lock_token_is_noop_on_sqlite(self, async_session) -> None:
        await SignalRepository(async_session).lock_token("tok-a")


# ============================================================================
# AlertRepository Tests
# ============================================================================


class TestAlertRepository:
    """Tests for AlertRepository."""

    def alert(self, minutes_ago: int, **kwargs) -> AlertDTO:
        values = {
            "user_id": "alice",
            "token_id": "tok-a",
            "alert_type": "WHALE_BUY",
            "channels": {"telegram": False, "email": True},
            "created_at": NOW - timedelta(minutes=minutes_ago),
        }
        values.update(kwargs)
        return AlertDTO(**values)

    @pytest.mark.asyncio
    async def test_create_defaults_to_pending(self, async_session) -> None:
        repo = AlertRepository(async_session)

        stored = await repo.create(self.alert(0, metadata={"kind": "breakout"}))

        assert stored.id is not None
        assert stored.status == "PENDING"
        assert stored.metadata == {"kind": "breakout"}
        assert stored.delivered_at is None

    @pytest.mark.asyncio
    async def test_list_pending_created_before(self, async_session) -> None:
        repo = AlertRepository(async_session)
        old = await repo.create(self.alert(30))
        older = await repo.create(self.alert(60))
        await repo.create(self.alert(0))
        await repo.create(self.alert(90, status="DELIVERED"))

        pending = await repo.list_pending(created_before=NOW - timedelta(minutes=2))

        assert [a.id for a in pending] == [older.id, old.id]
        assert len(await repo.list_pending(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_update_status(self, async_session) -> None:
        repo = AlertRepository(async_session)
        stored = await repo.create(self.alert(5))

        await repo.update_status(stored.id, status="DELIVERED", delivered_at=NOW)

        fetched = await repo.get(stored.id)
        assert fetched.status == "DELIVERED"
        assert fetched.delivered_at is not None
        assert await repo.list_pending() == []

    @pytest.mark.asyncio
    async def test_find_recent_pending(self, async_session) -> None:
        repo = AlertRepository(async_session)
        await repo.create(self.alert(3))

        hit = await repo.find_recent_pending(
            user_id="alice",
            alert_type="WHALE_BUY",
            token_id="tok-a",
            since=NOW - timedelta(minutes=5),
        )
        other_type = await repo.find_recent_pending(
            user_id="alice",
            alert_type="WHALE_SELL",
            token_id="tok-a",
            since=NOW - timedelta(minutes=5),
        )

        assert hit is not None
        assert other_type is None

    @pytest.mark.asyncio
    async def test_latest_channels(self, async_session) -> None:
        repo = AlertRepository(async_session)
        await repo.create(self.alert(60, channels={"telegram": False, "email": True}))
        await repo.create(self.alert(10, channels={"telegram": True, "email": False}))

        channels = await repo.latest_channels(user_id="alice", token_id="tok-a")

        assert channels == {"telegram": True, "email": False}
        assert await repo.latest_channels(user_id="bob", token_id="tok-a") is None

    @pytest.mark.asyncio
    async def test_signal_lookups(self, async_session) -> None:
        repo = AlertRepository(async_session)
        await repo.create(self.alert(5, signal_id="sig-1"))
        await repo.create(self.alert(5, user_id="bob", signal_id="sig-1", status="FAILED"))

        assert await repo.exists_for_signal(user_id="alice", signal_id="sig-1")
        assert await repo.exists_for_signal(user_id="bob", signal_id="sig-1")
        assert not await repo.exists_for_signal(user_id="carol", signal_id="sig-1")
        assert [a.user_id for a in await repo.list_pending_for_signal("sig-1")] == ["alice"]


# ============================================================================
# UserRepository Tests
# ============================================================================


class TestUserRepository:
    """Tests for UserRepository."""

    @pytest.mark.parametrize(
        ("kwargs", "expected"),
        [
            ({"plan": "PRO", "subscription_status": "active"}, True),
            (
                {
                    "plan": "PRO",
                    "subscription_status": "trialing",
                    "subscription_ends_at": NOW + timedelta(days=1),
                },
                True,
            ),
            (
                {
                    "plan": "PRO",
                    "subscription_status": "trialing",
                    "subscription_ends_at": NOW - timedelta(days=1),
                },
                False,
            ),
            ({"plan": "PRO", "subscription_status": "trialing"}, False),
            ({"plan": "PRO", "subscription_status": "canceled"}, False),
            ({"plan": "FREE", "subscription_status": "active"}, False),
        ],
    )
    def test_has_active_subscription(self, kwargs, expected) -> None:
        assert user("u", **kwargs).has_active_subscription(NOW) is expected

    @pytest.mark.asyncio
    async def test_eligible_users_all_paid(self, async_session) -> None:
        repo = UserRepository(async_session)
        await repo.insert(user("active", plan="PRO", subscription_status="active"))
        await repo.insert(
            user(
                "trial",
                plan="PRO",
                subscription_status="trialing",
                subscription_ends_at=NOW + timedelta(days=3),
            )
        )
        await repo.insert(
            user(
                "expired",
                plan="PRO",
                subscription_status="trialing",
                subscription_ends_at=NOW - timedelta(days=3),
            )
        )
        await repo.insert(user("free"))

        eligible = await repo.eligible_users(now=NOW)

        assert {u.id for u in eligible} == {"active", "trial"}

    @pytest.mark.asyncio
    async def test_eligible_users_for_token(self, async_session) -> None:
        users = UserRepository(async_session)
        alerts = AlertRepository(async_session)
        for user_id in ("follower", "lapsed", "stranger"):
            await users.insert(user(user_id, plan="PRO", subscription_status="active"))
        await users.insert(user("free-follower"))
        channels = {"telegram": False, "email": True}
        await alerts.create(AlertDTO("follower", "tok-a", "WHALE_BUY", channels))
        await alerts.create(AlertDTO("lapsed", "tok-a", "WHALE_BUY", channels, status="FAILED"))
        await alerts.create(AlertDTO("stranger", "tok-b", "WHALE_BUY", channels))
        await alerts.create(AlertDTO("free-follower", "tok-a", "WHALE_BUY", channels))

        eligible = await users.eligible_users("tok-a", now=NOW)

        assert [u.id for u in eligible] == ["follower"]

    @pytest.mark.asyncio
    async def test_get_missing(self, async_session) -> None:
        assert await UserRepository(async_session).get("ghost") is None
