"""SQLAlchemy models for persistent storage.

This module defines the database schema for normalized swaps, the claims
that link swaps to position aggregations, the aggregations themselves and
tracked wallet records.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from smart_money_tracker.storage.types import UTCDateTime


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class SwapModel(Base):
    """Normalized swap events (immutable facts)."""

    __tablename__ = "swaps"

    transaction_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    amount_usd: Mapped[float] = mapped_column(Float, nullable=False)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    swap_type: Mapped[str] = mapped_column(String(8), nullable=False)
    ts: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_swaps_wallet_ts", "wallet_address", "ts"),
        Index("idx_swaps_token_ts", "token_address", "ts"),
        Index("idx_swaps_ts", "ts"),
    )


class AggregatedTransactionModel(Base):
    """Claim of one swap by exactly one position aggregation."""

    __tablename__ = "aggregated_transactions"

    transaction_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    aggregation_id: Mapped[str] = mapped_column(String(40), nullable=False)
    suspicion_score: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_aggregated_transactions_aggregation", "aggregation_id"),)


class PositionAggregationModel(Base):
    """Detected position-splitting clusters."""

    __tablename__ = "position_aggregations"

    aggregation_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(32), nullable=False, default="")

    total_usd: Mapped[float] = mapped_column(Float, nullable=False)
    purchase_count: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_purchase_size: Mapped[float] = mapped_column(Float, nullable=False)
    max_purchase_size: Mapped[float] = mapped_column(Float, nullable=False)
    min_purchase_size: Mapped[float] = mapped_column(Float, nullable=False)
    size_std_deviation: Mapped[float] = mapped_column(Float, nullable=False)
    size_coefficient_of_variation: Mapped[float] = mapped_column(Float, nullable=False)
    time_window_minutes: Mapped[float] = mapped_column(Float, nullable=False)

    first_buy_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_buy_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    suspicion_score: Mapped[float] = mapped_column(Float, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(8), nullable=False)
    # Ordered list of {transaction_id, amount_usd, timestamp}.
    purchases_json: Mapped[str] = mapped_column(Text, nullable=False)

    is_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    alert_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    detected_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint(
            "wallet_address",
            "token_address",
            "first_buy_time",
            name="uq_position_aggregations_key",
        ),
        Index("idx_position_aggregations_wallet", "wallet_address"),
        Index("idx_position_aggregations_processed", "is_processed"),
        Index("idx_position_aggregations_score", "suspicion_score"),
    )


class WalletModel(Base):
    """Tracked wallets and their latest performance snapshot."""

    __tablename__ = "wallets"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    total_pnl: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    win_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_trade_size: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_trade_size: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    min_trade_size: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sharpe_ratio: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_drawdown: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_hold_time_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    early_entry_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    performance_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    last_active_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_evaluated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_wallets_status", "status"),
        Index("idx_wallets_category", "category"),
    )
