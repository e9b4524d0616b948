"""Initial schema: swaps, aggregation claims, position aggregations, wallets.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "swaps",
        sa.Column("transaction_id", sa.String(128), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("token_symbol", sa.String(32), nullable=False),
        sa.Column("amount_usd", sa.Float(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("swap_type", sa.String(8), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("transaction_id"),
    )
    op.create_index("idx_swaps_wallet_ts", "swaps", ["wallet_address", "ts"])
    op.create_index("idx_swaps_token_ts", "swaps", ["token_address", "ts"])
    op.create_index("idx_swaps_ts", "swaps", ["ts"])

    op.create_table(
        "aggregated_transactions",
        sa.Column("transaction_id", sa.String(128), nullable=False),
        sa.Column("aggregation_id", sa.String(40), nullable=False),
        sa.Column("suspicion_score", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("transaction_id"),
    )
    op.create_index(
        "idx_aggregated_transactions_aggregation",
        "aggregated_transactions",
        ["aggregation_id"],
    )

    op.create_table(
        "position_aggregations",
        sa.Column("aggregation_id", sa.String(40), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("token_symbol", sa.String(32), nullable=False),
        sa.Column("total_usd", sa.Float(), nullable=False),
        sa.Column("purchase_count", sa.Integer(), nullable=False),
        sa.Column("avg_purchase_size", sa.Float(), nullable=False),
        sa.Column("max_purchase_size", sa.Float(), nullable=False),
        sa.Column("min_purchase_size", sa.Float(), nullable=False),
        sa.Column("size_std_deviation", sa.Float(), nullable=False),
        sa.Column("size_coefficient_of_variation", sa.Float(), nullable=False),
        sa.Column("time_window_minutes", sa.Float(), nullable=False),
        sa.Column("first_buy_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_buy_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("suspicion_score", sa.Float(), nullable=False),
        sa.Column("risk_level", sa.String(8), nullable=False),
        sa.Column("purchases_json", sa.Text(), nullable=False),
        sa.Column("is_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("alert_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("aggregation_id"),
        sa.UniqueConstraint(
            "wallet_address",
            "token_address",
            "first_buy_time",
            name="uq_position_aggregations_key",
        ),
    )
    op.create_index("idx_position_aggregations_wallet", "position_aggregations", ["wallet_address"])
    op.create_index("idx_position_aggregations_processed", "position_aggregations", ["is_processed"])
    op.create_index("idx_position_aggregations_score", "position_aggregations", ["suspicion_score"])

    op.create_table(
        "wallets",
        sa.Column("address", sa.String(64), nullable=False),
        sa.Column("category", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total_pnl", sa.Float(), nullable=False),
        sa.Column("win_rate", sa.Float(), nullable=False),
        sa.Column("total_trades", sa.Integer(), nullable=False),
        sa.Column("avg_trade_size", sa.Float(), nullable=False),
        sa.Column("max_trade_size", sa.Float(), nullable=False),
        sa.Column("min_trade_size", sa.Float(), nullable=False),
        sa.Column("sharpe_ratio", sa.Float(), nullable=False),
        sa.Column("max_drawdown", sa.Float(), nullable=False),
        sa.Column("avg_hold_time_hours", sa.Float(), nullable=False),
        sa.Column("early_entry_rate", sa.Float(), nullable=False),
        sa.Column("performance_score", sa.Float(), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivation_reason", sa.Text(), nullable=True),
        sa.Column("last_evaluated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )
    op.create_index("idx_wallets_status", "wallets", ["status"])
    op.create_index("idx_wallets_category", "wallets", ["category"])


def downgrade() -> None:
    op.drop_index("idx_wallets_category", table_name="wallets")
    op.drop_index("idx_wallets_status", table_name="wallets")
    op.drop_table("wallets")

    op.drop_index("idx_position_aggregations_score", table_name="position_aggregations")
    op.drop_index("idx_position_aggregations_processed", table_name="position_aggregations")
    op.drop_index("idx_position_aggregations_wallet", table_name="position_aggregations")
    op.drop_table("position_aggregations")

    op.drop_index("idx_aggregated_transactions_aggregation", table_name="aggregated_transactions")
    op.drop_table("aggregated_transactions")

    op.drop_index("idx_swaps_ts", table_name="swaps")
    op.drop_index("idx_swaps_token_ts", table_name="swaps")
    op.drop_index("idx_swaps_wallet_ts", table_name="swaps")
    op.drop_table("swaps")
