"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from accumulation_tracker.storage.database import DatabaseManager
from accumulation_tracker.storage.models import Base
from accumulation_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    TokenDTO,
    TokenRepository,
    TransactionDTO,
    TransactionRepository,
    UserDTO,
    UserRepository,
)

BINANCE_WALLET = "0x28c6c06298d514db089934071355e5743bf21d60"


class Seeder:
    """Writes fixture rows through the repositories."""

    exchange_wallet = BINANCE_WALLET

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def token(self, token: TokenDTO) -> TokenDTO:
        async with self.db.get_async_session() as session:
            stored, _ = await TokenRepository(session).ensure(token)
        return stored

    async def transactions(
        self,
        token_id: str,
        transfers: list[tuple[str | None, str | None, float]],
        *,
        at: datetime | None = None,
        raw: dict[str, Any] | None = None,
    ) -> None:
        """Insert (from, to, amount) transfers a few minutes before `at`."""
        at = at or datetime.now(UTC)
        async with self.db.get_async_session() as session:
            repo = TransactionRepository(session)
            for i, (sender, receiver, amount) in enumerate(transfers):
                await repo.insert(
                    TransactionDTO(
                        token_id=token_id,
                        tx_hash=f"0x{token_id}-{i}",
                        from_address=sender,
                        to_address=receiver,
                        amount=Decimal(str(amount)),
                        timestamp=at - timedelta(minutes=5 + i % 30),
                        raw=raw or {},
                    )
                )

    async def concentrated_buys(
        self, token_id: str, *, buyers: int = 12, amount: float = 50_000.0
    ) -> None:
        """Equal-sized exchange withdrawals to distinct buyers."""
        await self.transactions(
            token_id,
            [(self.exchange_wallet, f"0x{i:040x}", amount) for i in range(1, buyers + 1)],
        )

    async def user(
        self,
        user_id: str,
        *,
        plan: str = "PRO",
        status: str | None = "active",
        ends_at: datetime | None = None,
        telegram_chat_id: str | None = None,
    ) -> UserDTO:
        user = UserDTO(
            id=user_id,
            email=f"{user_id}@example.com",
            plan=plan,
            subscription_status=status,
            subscription_ends_at=ends_at,
            telegram_chat_id=telegram_chat_id,
        )
        async with self.db.get_async_session() as session:
            await UserRepository(session).insert(user)
        return user

    async def alert(self, dto: AlertDTO) -> AlertDTO:
        async with self.db.get_async_session() as session:
            return await AlertRepository(session).create(dto)

    async def get_alert(self, alert_id: str) -> AlertDTO | None:
        async with self.db.get_async_session() as session:
            return await AlertRepository(session).get(alert_id)


@pytest.fixture
async def db():
    """DatabaseManager over a shared in-memory SQLite connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield DatabaseManager.from_engine(engine)
    await engine.dispose()


@pytest.fixture
def seed(db: DatabaseManager) -> Seeder:
    return Seeder(db)


@pytest.fixture
def sample_token() -> TokenDTO:
    """Sample catalog token for testing."""
    return TokenDTO(
        id="tok-pepe",
        chain="ethereum",
        contract_address="0x6982508145454ce325ddbe47a25d4ec3d2311933",
        symbol="PEPE",
        name="Pepe",
    )
