"""Repository pattern implementations for data access.

This module provides clean data access abstractions for tokens, transfer
activity, wallet positions, accumulation signals, alerts and recipients.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from accumulation_tracker.storage.models import (
    AccumulationSignalModel,
    AlertModel,
    DexSwapEventModel,
    LpChangeEventModel,
    TokenModel,
    TransactionModel,
    UserModel,
    WalletPositionModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PENDING = "PENDING"
ACTIVE_ALERT_STATUSES = ("PENDING", "DELIVERED")


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; all stored timestamps are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _loads(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed JSON column value: %.80s", raw)
        return default


def _dialect_insert(session: AsyncSession) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


@dataclass
class TokenDTO:
    """Data transfer object for tracked tokens."""

    id: str
    chain: str
    contract_address: str
    symbol: str
    name: str
    decimals: int = 18
    active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenModel) -> TokenDTO:
        return cls(
            id=model.id,
            chain=model.chain,
            contract_address=model.contract_address,
            symbol=model.symbol,
            name=model.name,
            decimals=model.decimals,
            active=model.active,
            metadata=_loads(model.metadata_json, {}),
            created_at=_aware(model.created_at),
        )

    @classmethod
    def from_raw_payload(
        cls,
        token_id: str,
        raw: dict[str, Any],
        *,
        metadata: dict[str, Any] | None = None,
    ) -> TokenDTO:
        """Best-effort token row from a provider transfer payload."""
        try:
            decimals = int(raw.get("decimals") or 18)
        except (TypeError, ValueError):
            decimals = 18
        return cls(
            id=token_id,
            chain=str(raw.get("chain") or "ethereum"),
            contract_address=str(raw.get("contractAddress") or raw.get("address") or token_id),
            symbol=str(raw.get("tokenSymbol") or raw.get("symbol") or f"TOKEN_{token_id[:8]}"),
            name=str(raw.get("tokenName") or raw.get("name") or "Unknown Token"),
            decimals=decimals,
            active=True,
            metadata=metadata or {},
        )


@dataclass
class TransactionDTO:
    """Data transfer object for ingested transfers."""

    token_id: str
    tx_hash: str
    from_address: str | None
    to_address: str | None
    amount: Decimal
    timestamp: datetime
    raw: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionDTO:
        return cls(
            id=model.id,
            token_id=model.token_id,
            tx_hash=model.tx_hash,
            from_address=model.from_address,
            to_address=model.to_address,
            amount=model.amount,
            timestamp=_aware(model.timestamp),  # type: ignore[arg-type]
            raw=_loads(model.raw_json, {}),
        )


@dataclass
class WalletPositionDTO:
    """Data transfer object for wallet balances."""

    token_id: str
    wallet_address: str
    balance: Decimal

    @classmethod
    def from_model(cls, model: WalletPositionModel) -> WalletPositionDTO:
        return cls(
            token_id=model.token_id,
            wallet_address=model.wallet_address,
            balance=model.balance,
        )


@dataclass
class DexSwapDTO:
    token_id: str
    swap_type: str
    wallet_address: str | None
    amount_in: Decimal
    amount_out: Decimal
    timestamp: datetime

    @classmethod
    def from_model(cls, model: DexSwapEventModel) -> DexSwapDTO:
        return cls(
            token_id=model.token_id,
            swap_type=model.swap_type,
            wallet_address=model.wallet_address,
            amount_in=model.amount_in,
            amount_out=model.amount_out,
            timestamp=_aware(model.timestamp),  # type: ignore[arg-type]
        )


@dataclass
class LpChangeDTO:
    token_id: str
    change_type: str
    amount_usd: Decimal | None
    timestamp: datetime

    @classmethod
    def from_model(cls, model: LpChangeEventModel) -> LpChangeDTO:
        return cls(
            token_id=model.token_id,
            change_type=model.change_type,
            amount_usd=model.amount_usd,
            timestamp=_aware(model.timestamp),  # type: ignore[arg-type]
        )


@dataclass
class UserDTO:
    """Data transfer object for alert recipients."""

    id: str
    email: str
    plan: str = "FREE"
    subscription_status: str | None = None
    subscription_ends_at: datetime | None = None
    telegram_chat_id: str | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            id=model.id,
            email=model.email,
            plan=model.plan,
            subscription_status=model.subscription_status,
            subscription_ends_at=_aware(model.subscription_ends_at),
            telegram_chat_id=model.telegram_chat_id,
        )

    def has_active_subscription(self, now: datetime) -> bool:
        """PRO plan and either active or an unexpired trial."""
        if self.plan != "PRO":
            return False
        if self.subscription_status == "active":
            return True
        return (
            self.subscription_status == "trialing"
            and self.subscription_ends_at is not None
            and self.subscription_ends_at > now
        )


@dataclass
class SignalDTO:
    """Data transfer object for accumulation signals."""

    token_id: str
    score: Decimal
    signal_type: str
    window_start: datetime
    window_end: datetime
    wallets_involved: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AccumulationSignalModel) -> SignalDTO:
        return cls(
            id=model.id,
            token_id=model.token_id,
            score=model.score,
            signal_type=model.signal_type,
            window_start=_aware(model.window_start),  # type: ignore[arg-type]
            window_end=_aware(model.window_end),  # type: ignore[arg-type]
            wallets_involved=_loads(model.wallets_involved_json, []),
            metadata=_loads(model.metadata_json, {}),
            created_at=_aware(model.created_at),
        )


@dataclass
class AlertDTO:
    """Data transfer object for user alerts."""

    user_id: str
    token_id: str
    alert_type: str
    channels: dict[str, bool]
    status: str = PENDING
    signal_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    created_at: datetime | None = None
    delivered_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AlertModel) -> AlertDTO:
        return cls(
            id=model.id,
            user_id=model.user_id,
            signal_id=model.signal_id,
            token_id=model.token_id,
            alert_type=model.alert_type,
            channels=_loads(model.channels_json, {}),
            status=model.status,
            metadata=_loads(model.metadata_json, {}),
            created_at=_aware(model.created_at),
            delivered_at=_aware(model.delivered_at),
        )


class TokenRepository:
    """Repository for the token catalog."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, token_id: str) -> TokenDTO | None:
        result = await self.session.execute(select(TokenModel).where(TokenModel.id == token_id))
        model = result.scalar_one_or_none()
        return TokenDTO.from_model(model) if model else None

    async def find_by_address(self, chain: str, contract_address: str) -> TokenDTO | None:
        result = await self.session.execute(
            select(TokenModel).where(
                TokenModel.chain == chain,
                TokenModel.contract_address == contract_address.lower(),
            )
        )
        model = result.scalar_one_or_none()
        return TokenDTO.from_model(model) if model else None

    async def list_active(self) -> list[TokenDTO]:
        result = await self.session.execute(
            select(TokenModel).where(TokenModel.active.is_(True)).order_by(TokenModel.created_at)
        )
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    async def activate(self, token_id: str) -> None:
        await self.session.execute(
            update(TokenModel).where(TokenModel.id == token_id).values(active=True)
        )
        await self.session.flush()

    async def ensure(self, dto: TokenDTO) -> tuple[TokenDTO, bool]:
        """Insert the token unless it already exists.

        Conflicts on either the id or (chain, contract_address) leave the
        existing row untouched.

        Returns:
            Tuple of (stored token, created flag).
        """
        existing = await self.get(dto.id)
        if existing is not None:
            return existing, False

        insert = _dialect_insert(self.session)
        stmt = insert(TokenModel).values(
            id=dto.id,
            chain=dto.chain,
            contract_address=dto.contract_address.lower(),
            symbol=dto.symbol,
            name=dto.name,
            decimals=dto.decimals,
            active=dto.active,
            metadata_json=json.dumps(dto.metadata),
            created_at=datetime.now(UTC),
        )
        result = await self.session.execute(stmt.on_conflict_do_nothing())
        await self.session.flush()

        created = bool(result.rowcount)
        stored = await self.get(dto.id)
        if stored is None:
            stored = await self.find_by_address(dto.chain, dto.contract_address)
        if stored is None:
            raise RuntimeError(f"Token {dto.id} could not be created or loaded")
        return stored, created


class TransactionRepository:
    """Repository for ingested token transfers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: TransactionDTO) -> TransactionDTO:
        model = TransactionModel(
            token_id=dto.token_id,
            tx_hash=dto.tx_hash,
            from_address=dto.from_address.lower() if dto.from_address else None,
            to_address=dto.to_address.lower() if dto.to_address else None,
            amount=dto.amount,
            timestamp=dto.timestamp,
            raw_json=json.dumps(dto.raw),
        )
        self.session.add(model)
        await self.session.flush()
        dto.id = model.id
        return dto

    async def list_in_window(
        self, token_id: str, *, start: datetime, end: datetime
    ) -> list[TransactionDTO]:
        """Transfers in the half-open window [start, end), newest first."""
        result = await self.session.execute(
            select(TransactionModel)
            .where(
                TransactionModel.token_id == token_id,
                TransactionModel.timestamp >= start,
                TransactionModel.timestamp < end,
            )
            .order_by(TransactionModel.timestamp.desc())
        )
        return [TransactionDTO.from_model(m) for m in result.scalars().all()]

    async def list_recent_token_samples(self, *, since: datetime) -> list[TransactionDTO]:
        """Return one transaction per distinct token seen since `since`."""
        first_ids = (
            select(func.min(TransactionModel.id))
            .where(TransactionModel.timestamp >= since)
            .group_by(TransactionModel.token_id)
        )
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id.in_(first_ids))
        )
        return [TransactionDTO.from_model(m) for m in result.scalars().all()]

    async def get_sample(self, token_id: str) -> TransactionDTO | None:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.token_id == token_id)
            .order_by(TransactionModel.id)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return TransactionDTO.from_model(model) if model else None


class WalletPositionRepository:
    """Repository for per-token wallet balances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: WalletPositionDTO) -> WalletPositionDTO:
        insert = _dialect_insert(self.session)
        stmt = insert(WalletPositionModel).values(
            token_id=dto.token_id,
            wallet_address=dto.wallet_address.lower(),
            balance=dto.balance,
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["token_id", "wallet_address"],
            set_={"balance": stmt.excluded.balance, "updated_at": stmt.excluded.updated_at},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def top_positions(self, token_id: str, *, limit: int = 100) -> list[WalletPositionDTO]:
        result = await self.session.execute(
            select(WalletPositionModel)
            .where(WalletPositionModel.token_id == token_id)
            .order_by(WalletPositionModel.balance.desc())
            .limit(limit)
        )
        return [WalletPositionDTO.from_model(m) for m in result.scalars().all()]


class DexEventRepository:
    """Repository for auxiliary DEX swap and LP change tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_swap(self, dto: DexSwapDTO) -> None:
        self.session.add(
            DexSwapEventModel(
                token_id=dto.token_id,
                swap_type=dto.swap_type,
                wallet_address=dto.wallet_address,
                amount_in=dto.amount_in,
                amount_out=dto.amount_out,
                timestamp=dto.timestamp,
            )
        )
        await self.session.flush()

    async def add_lp_change(self, dto: LpChangeDTO) -> None:
        self.session.add(
            LpChangeEventModel(
                token_id=dto.token_id,
                change_type=dto.change_type,
                amount_usd=dto.amount_usd,
                timestamp=dto.timestamp,
            )
        )
        await self.session.flush()

    async def list_buy_swaps(
        self, token_id: str, *, start: datetime, end: datetime
    ) -> list[DexSwapDTO]:
        result = await self.session.execute(
            select(DexSwapEventModel).where(
                DexSwapEventModel.token_id == token_id,
                DexSwapEventModel.swap_type == "buy",
                DexSwapEventModel.timestamp >= start,
                DexSwapEventModel.timestamp < end,
            )
        )
        return [DexSwapDTO.from_model(m) for m in result.scalars().all()]

    async def list_lp_mints(
        self, token_id: str, *, start: datetime, end: datetime
    ) -> list[LpChangeDTO]:
        result = await self.session.execute(
            select(LpChangeEventModel).where(
                LpChangeEventModel.token_id == token_id,
                LpChangeEventModel.change_type == "mint",
                LpChangeEventModel.timestamp >= start,
                LpChangeEventModel.timestamp < end,
            )
        )
        return [LpChangeDTO.from_model(m) for m in result.scalars().all()]


class SignalRepository:
    """Repository for accumulation signals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, signal_id: str) -> SignalDTO | None:
        result = await self.session.execute(
            select(AccumulationSignalModel).where(AccumulationSignalModel.id == signal_id)
        )
        model = result.scalar_one_or_none()
        return SignalDTO.from_model(model) if model else None

    async def lock_token(self, token_id: str) -> None:
        """Serialize concurrent upserts for one token (PostgreSQL row lock)."""
        if self.session.get_bind().dialect.name != "postgresql":
            return
        await self.session.execute(
            select(TokenModel.id).where(TokenModel.id == token_id).with_for_update()
        )

    async def find_in_window(
        self,
        token_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
        tolerance: timedelta,
    ) -> SignalDTO | None:
        """Find a signal whose start and end both lie within `tolerance`."""
        result = await self.session.execute(
            select(AccumulationSignalModel)
            .where(
                AccumulationSignalModel.token_id == token_id,
                AccumulationSignalModel.window_start >= window_start - tolerance,
                AccumulationSignalModel.window_start <= window_start + tolerance,
                AccumulationSignalModel.window_end >= window_end - tolerance,
                AccumulationSignalModel.window_end <= window_end + tolerance,
            )
            .order_by(AccumulationSignalModel.score.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return SignalDTO.from_model(model) if model else None

    async def insert(self, dto: SignalDTO) -> SignalDTO:
        model = AccumulationSignalModel(
            token_id=dto.token_id,
            score=dto.score,
            signal_type=dto.signal_type,
            window_start=dto.window_start,
            window_end=dto.window_end,
            wallets_involved_json=json.dumps(sorted(dto.wallets_involved)),
            metadata_json=json.dumps(dto.metadata),
            created_at=datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return SignalDTO.from_model(model)

    async def raise_score(
        self,
        signal_id: str,
        *,
        score: Decimal,
        signal_type: str,
        wallets_involved: list[str],
        metadata: dict[str, Any],
    ) -> bool:
        """Update the signal only if `score` is strictly higher than stored.

        Returns:
            True if the row was updated.
        """
        result = await self.session.execute(
            update(AccumulationSignalModel)
            .where(
                AccumulationSignalModel.id == signal_id,
                AccumulationSignalModel.score < score,
            )
            .values(
                score=score,
                signal_type=signal_type,
                wallets_involved_json=json.dumps(sorted(wallets_involved)),
                metadata_json=json.dumps(metadata),
            )
        )
        await self.session.flush()
        return bool(result.rowcount)


class AlertRepository:
    """Repository for user alerts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, alert_id: str) -> AlertDTO | None:
        result = await self.session.execute(select(AlertModel).where(AlertModel.id == alert_id))
        model = result.scalar_one_or_none()
        return AlertDTO.from_model(model) if model else None

    async def create(self, dto: AlertDTO) -> AlertDTO:
        model = AlertModel(
            user_id=dto.user_id,
            signal_id=dto.signal_id,
            token_id=dto.token_id,
            alert_type=dto.alert_type,
            channels_json=json.dumps(dto.channels),
            status=dto.status,
            metadata_json=json.dumps(dto.metadata),
            created_at=dto.created_at or datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return AlertDTO.from_model(model)

    async def find_recent_pending(
        self,
        *,
        user_id: str,
        alert_type: str,
        token_id: str,
        since: datetime,
    ) -> AlertDTO | None:
        result = await self.session.execute(
            select(AlertModel)
            .where(
                AlertModel.user_id == user_id,
                AlertModel.alert_type == alert_type,
                AlertModel.token_id == token_id,
                AlertModel.status == PENDING,
                AlertModel.created_at >= since,
            )
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return AlertDTO.from_model(model) if model else None

    async def latest_channels(self, *, user_id: str, token_id: str) -> dict[str, bool] | None:
        """Channel preferences of the user's most recent alert for the token."""
        result = await self.session.execute(
            select(AlertModel.channels_json)
            .where(AlertModel.user_id == user_id, AlertModel.token_id == token_id)
            .order_by(AlertModel.created_at.desc())
            .limit(1)
        )
        raw = result.scalar_one_or_none()
        return _loads(raw, None) if raw else None

    async def update_status(
        self,
        alert_id: str,
        *,
        status: str,
        delivered_at: datetime | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": status}
        if delivered_at is not None:
            values["delivered_at"] = delivered_at
        await self.session.execute(
            update(AlertModel).where(AlertModel.id == alert_id).values(**values)
        )
        await self.session.flush()

    async def list_pending(
        self, *, limit: int = 100, created_before: datetime | None = None
    ) -> list[AlertDTO]:
        stmt = select(AlertModel).where(AlertModel.status == PENDING)
        if created_before is not None:
            stmt = stmt.where(AlertModel.created_at <= created_before)
        result = await self.session.execute(stmt.order_by(AlertModel.created_at).limit(limit))
        return [AlertDTO.from_model(m) for m in result.scalars().all()]

    async def list_pending_for_signal(self, signal_id: str) -> list[AlertDTO]:
        result = await self.session.execute(
            select(AlertModel)
            .where(AlertModel.signal_id == signal_id, AlertModel.status == PENDING)
            .order_by(AlertModel.created_at)
        )
        return [AlertDTO.from_model(m) for m in result.scalars().all()]

    async def exists_for_signal(self, *, user_id: str, signal_id: str) -> bool:
        result = await self.session.execute(
            select(AlertModel.id)
            .where(AlertModel.user_id == user_id, AlertModel.signal_id == signal_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


class UserRepository:
    """Read access to alert recipients and their subscriptions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: UserDTO) -> UserDTO:
        self.session.add(
            UserModel(
                id=dto.id,
                email=dto.email,
                plan=dto.plan,
                subscription_status=dto.subscription_status,
                subscription_ends_at=dto.subscription_ends_at,
                telegram_chat_id=dto.telegram_chat_id,
            )
        )
        await self.session.flush()
        return dto

    async def get(self, user_id: str) -> UserDTO | None:
        result = await self.session.execute(select(UserModel).where(UserModel.id == user_id))
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def paid_subscribers(self, *, now: datetime) -> list[UserDTO]:
        result = await self.session.execute(
            select(UserModel).where(
                UserModel.plan == "PRO",
                or_(
                    UserModel.subscription_status == "active",
                    and_(
                        UserModel.subscription_status == "trialing",
                        UserModel.subscription_ends_at > now,
                    ),
                ),
            )
        )
        return [UserDTO.from_model(m) for m in result.scalars().all()]

    async def token_subscribers(self, token_id: str, *, now: datetime) -> list[UserDTO]:
        """Paid users that already hold live alerts for the token."""
        user_ids = (
            select(AlertModel.user_id)
            .where(
                AlertModel.token_id == token_id,
                AlertModel.status.in_(ACTIVE_ALERT_STATUSES),
            )
            .distinct()
        )
        result = await self.session.execute(select(UserModel).where(UserModel.id.in_(user_ids)))
        users = [UserDTO.from_model(m) for m in result.scalars().all()]
        return [u for u in users if u.has_active_subscription(now)]

    async def eligible_users(
        self, token_id: str | None = None, *, now: datetime | None = None
    ) -> list[UserDTO]:
        """Alert recipients.

        Args:
            token_id: When given, only paid users already following the token;
                otherwise every active paid subscriber.
            now: Reference time for trial expiry (defaults to now).
        """
        now = now or datetime.now(UTC)
        if token_id is None:
            return await self.paid_subscribers(now=now)
        return await self.token_subscribers(token_id, now=now)
