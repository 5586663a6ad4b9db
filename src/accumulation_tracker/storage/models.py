"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked tokens, ingested
transfer activity, wallet positions, accumulation signals and user alerts.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TokenModel(Base):
    """Tracked token catalog entry."""

    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(String(80), primary_key=True, default=_new_id)
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    contract_address: Mapped[str] = mapped_column(String(80), nullable=False)
    symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=18)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("chain", "contract_address", name="uq_tokens_chain_address"),
        Index("idx_tokens_active", "active"),
    )


class TransactionModel(Base):
    """Ingested token transfer (durable truth for detection windows)."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    from_address: Mapped[str | None] = mapped_column(String(80), nullable=True)
    to_address: Mapped[str | None] = mapped_column(String(80), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(40, 10), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Provider payload as received (symbol/name/chain hints for lazy token creation).
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_transactions_token_ts", "token_id", "timestamp"),
        Index("idx_transactions_ts", "timestamp"),
    )


class WalletPositionModel(Base):
    """Latest known balance of a wallet for a token."""

    __tablename__ = "wallet_positions"

    token_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(80), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(40, 10), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("idx_wallet_positions_token_balance", "token_id", "balance"),)


class DexSwapEventModel(Base):
    """DEX swap events (auxiliary source, may be empty)."""

    __tablename__ = "dex_swap_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    swap_type: Mapped[str] = mapped_column(String(8), nullable=False)  # buy/sell
    wallet_address: Mapped[str | None] = mapped_column(String(80), nullable=True)
    amount_in: Mapped[Decimal] = mapped_column(Numeric(40, 10), nullable=False)
    amount_out: Mapped[Decimal] = mapped_column(Numeric(40, 10), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_dex_swaps_token_ts", "token_id", "timestamp"),)


class LpChangeEventModel(Base):
    """Liquidity pool mint/burn events (auxiliary source, may be empty)."""

    __tablename__ = "lp_change_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    change_type: Mapped[str] = mapped_column(String(8), nullable=False)  # mint/burn
    amount_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 2), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_lp_changes_token_ts", "token_id", "timestamp"),)


class UserModel(Base):
    """Alert recipient, read-only for the engine."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(80), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default="FREE")
    subscription_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    subscription_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class AccumulationSignalModel(Base):
    """Persisted, scored, time-windowed accumulation detection result."""

    __tablename__ = "accumulation_signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    token_id: Mapped[str] = mapped_column(
        String(80), ForeignKey("tokens.id"), nullable=False
    )
    score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    signal_type: Mapped[str] = mapped_column(String(40), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    wallets_involved_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_accumulation_signals_token_window", "token_id", "window_start", "window_end"),
        Index("idx_accumulation_signals_created_at", "created_at"),
    )


class AlertModel(Base):
    """Per-user notification record with channel and delivery status."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(80), ForeignKey("users.id"), nullable=False)
    signal_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accumulation_signals.id"), nullable=True
    )
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(40), nullable=False)
    channels_json: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # PENDING/DELIVERED/FAILED
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_alerts_status_created", "status", "created_at"),
        Index("idx_alerts_user_type_token", "user_id", "alert_type", "token_id"),
        Index("idx_alerts_signal", "signal_id"),
    )
