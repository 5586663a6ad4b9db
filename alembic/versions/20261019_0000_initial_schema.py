"""Initial schema for tokens, transfer activity, signals and alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tokens",
        sa.Column("id", sa.String(80), nullable=False),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("contract_address", sa.String(80), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chain", "contract_address", name="uq_tokens_chain_address"),
    )
    op.create_index("idx_tokens_active", "tokens", ["active"])

    # Transfers feeding the detection windows
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("tx_hash", sa.String(80), nullable=False),
        sa.Column("from_address", sa.String(80), nullable=True),
        sa.Column("to_address", sa.String(80), nullable=True),
        sa.Column("amount", sa.Numeric(40, 10), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_transactions_token_ts", "transactions", ["token_id", "timestamp"])
    op.create_index("idx_transactions_ts", "transactions", ["timestamp"])

    op.create_table(
        "wallet_positions",
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("wallet_address", sa.String(80), nullable=False),
        sa.Column("balance", sa.Numeric(40, 10), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("token_id", "wallet_address"),
    )
    op.create_index(
        "idx_wallet_positions_token_balance", "wallet_positions", ["token_id", "balance"]
    )

    # DEX sources (optional feeds)
    op.create_table(
        "dex_swap_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("swap_type", sa.String(8), nullable=False),
        sa.Column("wallet_address", sa.String(80), nullable=True),
        sa.Column("amount_in", sa.Numeric(40, 10), nullable=False),
        sa.Column("amount_out", sa.Numeric(40, 10), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_dex_swaps_token_ts", "dex_swap_events", ["token_id", "timestamp"])

    op.create_table(
        "lp_change_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("change_type", sa.String(8), nullable=False),
        sa.Column("amount_usd", sa.Numeric(30, 2), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_lp_changes_token_ts", "lp_change_events", ["token_id", "timestamp"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(80), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("plan", sa.String(16), nullable=False),
        sa.Column("subscription_status", sa.String(20), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("telegram_chat_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "accumulation_signals",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("score", sa.Numeric(5, 2), nullable=False),
        sa.Column("signal_type", sa.String(40), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("wallets_involved_json", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["token_id"], ["tokens.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_accumulation_signals_token_window",
        "accumulation_signals",
        ["token_id", "window_start", "window_end"],
    )
    op.create_index(
        "idx_accumulation_signals_created_at", "accumulation_signals", ["created_at"]
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(80), nullable=False),
        sa.Column("signal_id", sa.String(36), nullable=True),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("alert_type", sa.String(40), nullable=False),
        sa.Column("channels_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["signal_id"], ["accumulation_signals.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_alerts_status_created", "alerts", ["status", "created_at"])
    op.create_index(
        "idx_alerts_user_type_token", "alerts", ["user_id", "alert_type", "token_id"]
    )
    op.create_index("idx_alerts_signal", "alerts", ["signal_id"])


def downgrade() -> None:
    op.drop_index("idx_alerts_signal", table_name="alerts")
    op.drop_index("idx_alerts_user_type_token", table_name="alerts")
    op.drop_index("idx_alerts_status_created", table_name="alerts")
    op.drop_table("alerts")

    op.drop_index("idx_accumulation_signals_created_at", table_name="accumulation_signals")
    op.drop_index("idx_accumulation_signals_token_window", table_name="accumulation_signals")
    op.drop_table("accumulation_signals")

    op.drop_table("users")

    op.drop_index("idx_lp_changes_token_ts", table_name="lp_change_events")
    op.drop_table("lp_change_events")
    op.drop_index("idx_dex_swaps_token_ts", table_name="dex_swap_events")
    op.drop_table("dex_swap_events")

    op.drop_index("idx_wallet_positions_token_balance", table_name="wallet_positions")
    op.drop_table("wallet_positions")

    op.drop_index("idx_transactions_ts", table_name="transactions")
    op.drop_index("idx_transactions_token_ts", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("idx_tokens_active", table_name="tokens")
    op.drop_table("tokens")
