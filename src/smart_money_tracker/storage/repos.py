"""Repository pattern implementations for data access.

This module provides clean data access abstractions for swaps, position
aggregations (and the transaction claims that back them) and tracked
wallets.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, desc, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from smart_money_tracker.detector.models import (
    AggregationStats,
    PositionAggregation,
    PositionPurchase,
    RiskLevel,
)
from smart_money_tracker.ingestor.models import NormalizedSwap, SwapType
from smart_money_tracker.profiler.models import WalletCategory, WalletRecord, WalletStatus
from smart_money_tracker.storage.models import (
    AggregatedTransactionModel,
    PositionAggregationModel,
    SwapModel,
    WalletModel,
)
from smart_money_tracker.storage.errors import TransactionClaimConflictError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


@dataclass
class SwapDTO:
    """Data transfer object for swaps."""

    transaction_id: str
    wallet_address: str
    token_address: str
    token_symbol: str
    amount_usd: float
    swap_type: str
    ts: datetime
    price: float | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SwapModel) -> SwapDTO:
        return cls(
            transaction_id=model.transaction_id,
            wallet_address=model.wallet_address,
            token_address=model.token_address,
            token_symbol=model.token_symbol,
            amount_usd=model.amount_usd,
            swap_type=model.swap_type,
            ts=model.ts,
            price=model.price,
            created_at=model.created_at,
        )

    @classmethod
    def from_swap(cls, swap: NormalizedSwap) -> SwapDTO:
        return cls(
            transaction_id=swap.transaction_id,
            wallet_address=swap.wallet_address,
            token_address=swap.token_address,
            token_symbol=swap.token_symbol,
            amount_usd=float(swap.amount_usd),
            swap_type=swap.swap_type.value,
            ts=swap.timestamp,
            price=swap.price,
        )

    def to_swap(self) -> NormalizedSwap:
        return NormalizedSwap(
            transaction_id=self.transaction_id,
            wallet_address=self.wallet_address,
            token_address=self.token_address,
            token_symbol=self.token_symbol,
            amount_usd=self.amount_usd,
            timestamp=self.ts,
            swap_type=SwapType(self.swap_type),
            price=self.price,
        )


class SwapRepository:
    """Repository for normalized swaps."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, dto: SwapDTO) -> bool:
        """Insert a swap unless its transaction id already exists.

        Returns:
            True if a new row was written.
        """
        stmt = _insert(self.session, SwapModel).values(
            transaction_id=dto.transaction_id,
            wallet_address=dto.wallet_address,
            token_address=dto.token_address,
            token_symbol=dto.token_symbol,
            amount_usd=dto.amount_usd,
            price=dto.price,
            swap_type=dto.swap_type,
            ts=dto.ts,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["transaction_id"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def get_by_transaction_id(self, transaction_id: str) -> SwapDTO | None:
        result = await self.session.execute(
            select(SwapModel).where(SwapModel.transaction_id == transaction_id)
        )
        model = result.scalar_one_or_none()
        return SwapDTO.from_model(model) if model else None

    async def list_for_wallet(self, wallet_address: str, *, limit: int) -> list[SwapDTO]:
        """Most recent swaps of a wallet, newest first."""
        result = await self.session.execute(
            select(SwapModel)
            .where(SwapModel.wallet_address == wallet_address)
            .order_by(SwapModel.ts.desc(), SwapModel.transaction_id.desc())
            .limit(limit)
        )
        return [SwapDTO.from_model(m) for m in result.scalars().all()]

    async def first_seen_by_token(self, token_addresses: list[str]) -> dict[str, datetime]:
        if not token_addresses:
            return {}
        result = await self.session.execute(
            select(SwapModel.token_address, func.min(SwapModel.ts))
            .where(SwapModel.token_address.in_(sorted(set(token_addresses))))
            .group_by(SwapModel.token_address)
        )
        return {token: ts for token, ts in result.all() if ts is not None}

    async def list_candidate_wallets(
        self,
        *,
        since: datetime,
        min_volume_usd: float,
        min_trades: int,
        min_avg_trade_usd: float,
        min_unique_tokens: int,
        limit: int,
    ) -> list[str]:
        """Wallets with enough recent volume and breadth, by volume descending."""
        volume = func.sum(SwapModel.amount_usd)
        trades = func.count(SwapModel.transaction_id)
        result = await self.session.execute(
            select(SwapModel.wallet_address, volume.label("volume"))
            .where(SwapModel.ts >= since)
            .group_by(SwapModel.wallet_address)
            .having(volume >= min_volume_usd)
            .having(trades >= min_trades)
            .having(func.avg(SwapModel.amount_usd) >= min_avg_trade_usd)
            .having(func.count(func.distinct(SwapModel.token_address)) >= min_unique_tokens)
            .order_by(desc("volume"), SwapModel.wallet_address)
            .limit(limit)
        )
        return [row[0] for row in result.all()]

    async def list_unaggregated_buys(self, *, since: datetime) -> list[SwapDTO]:
        """Buys since a timestamp that no aggregation has claimed, oldest first."""
        result = await self.session.execute(
            select(SwapModel)
            .outerjoin(
                AggregatedTransactionModel,
                AggregatedTransactionModel.transaction_id == SwapModel.transaction_id,
            )
            .where(
                (SwapModel.ts >= since)
                & (SwapModel.swap_type == SwapType.BUY.value)
                & (AggregatedTransactionModel.transaction_id.is_(None))
            )
            .order_by(SwapModel.ts.asc(), SwapModel.transaction_id.asc())
        )
        return [SwapDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class PositionAggregationDTO:
    """Data transfer object for position aggregations."""

    aggregation_id: str
    wallet_address: str
    token_address: str
    token_symbol: str
    total_usd: float
    purchase_count: int
    avg_purchase_size: float
    max_purchase_size: float
    min_purchase_size: float
    size_std_deviation: float
    size_coefficient_of_variation: float
    time_window_minutes: float
    first_buy_time: datetime
    last_buy_time: datetime
    suspicion_score: float
    risk_level: str
    purchases_json: str
    is_processed: bool
    alert_sent: bool
    detected_at: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: PositionAggregationModel) -> PositionAggregationDTO:
        return cls(
            aggregation_id=model.aggregation_id,
            wallet_address=model.wallet_address,
            token_address=model.token_address,
            token_symbol=model.token_symbol,
            total_usd=model.total_usd,
            purchase_count=model.purchase_count,
            avg_purchase_size=model.avg_purchase_size,
            max_purchase_size=model.max_purchase_size,
            min_purchase_size=model.min_purchase_size,
            size_std_deviation=model.size_std_deviation,
            size_coefficient_of_variation=model.size_coefficient_of_variation,
            time_window_minutes=model.time_window_minutes,
            first_buy_time=model.first_buy_time,
            last_buy_time=model.last_buy_time,
            suspicion_score=model.suspicion_score,
            risk_level=model.risk_level,
            purchases_json=model.purchases_json,
            is_processed=model.is_processed,
            alert_sent=model.alert_sent,
            detected_at=model.detected_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @classmethod
    def from_aggregation(cls, agg: PositionAggregation) -> PositionAggregationDTO:
        return cls(
            aggregation_id=agg.aggregation_id,
            wallet_address=agg.wallet_address,
            token_address=agg.token_address,
            token_symbol=agg.token_symbol,
            total_usd=agg.total_usd,
            purchase_count=agg.purchase_count,
            avg_purchase_size=agg.avg_purchase_size,
            max_purchase_size=agg.max_purchase_size,
            min_purchase_size=agg.min_purchase_size,
            size_std_deviation=agg.size_std_deviation,
            size_coefficient_of_variation=agg.size_coefficient_of_variation,
            time_window_minutes=agg.time_window_minutes,
            first_buy_time=agg.first_buy_time,
            last_buy_time=agg.last_buy_time,
            suspicion_score=agg.suspicion_score,
            risk_level=agg.risk_level.value,
            purchases_json=json.dumps([p.to_dict() for p in agg.purchases]),
            is_processed=agg.is_processed,
            alert_sent=agg.alert_sent,
            detected_at=agg.detected_at,
        )

    def to_aggregation(self) -> PositionAggregation:
        purchases = tuple(PositionPurchase.from_dict(p) for p in json.loads(self.purchases_json))
        return PositionAggregation(
            aggregation_id=self.aggregation_id,
            wallet_address=self.wallet_address,
            token_address=self.token_address,
            token_symbol=self.token_symbol,
            total_usd=self.total_usd,
            purchase_count=self.purchase_count,
            avg_purchase_size=self.avg_purchase_size,
            max_purchase_size=self.max_purchase_size,
            min_purchase_size=self.min_purchase_size,
            size_std_deviation=self.size_std_deviation,
            size_coefficient_of_variation=self.size_coefficient_of_variation,
            time_window_minutes=self.time_window_minutes,
            first_buy_time=self.first_buy_time,
            last_buy_time=self.last_buy_time,
            suspicion_score=self.suspicion_score,
            risk_level=RiskLevel(self.risk_level),
            purchases=purchases,
            is_processed=self.is_processed,
            alert_sent=self.alert_sent,
            detected_at=self.detected_at,
        )


class PositionAggregationRepository:
    """Repository for position aggregations and their transaction claims."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: PositionAggregationDTO) -> None:
        """Insert or replace an aggregation by id.

        Processing flags, detection time and creation time of an existing
        row are left untouched.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, PositionAggregationModel).values(
            aggregation_id=dto.aggregation_id,
            wallet_address=dto.wallet_address,
            token_address=dto.token_address,
            token_symbol=dto.token_symbol,
            total_usd=dto.total_usd,
            purchase_count=dto.purchase_count,
            avg_purchase_size=dto.avg_purchase_size,
            max_purchase_size=dto.max_purchase_size,
            min_purchase_size=dto.min_purchase_size,
            size_std_deviation=dto.size_std_deviation,
            size_coefficient_of_variation=dto.size_coefficient_of_variation,
            time_window_minutes=dto.time_window_minutes,
            first_buy_time=dto.first_buy_time,
            last_buy_time=dto.last_buy_time,
            suspicion_score=dto.suspicion_score,
            risk_level=dto.risk_level,
            purchases_json=dto.purchases_json,
            is_processed=dto.is_processed,
            alert_sent=dto.alert_sent,
            detected_at=dto.detected_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["aggregation_id"],
            set_={
                "token_symbol": stmt.excluded.token_symbol,
                "total_usd": stmt.excluded.total_usd,
                "purchase_count": stmt.excluded.purchase_count,
                "avg_purchase_size": stmt.excluded.avg_purchase_size,
                "max_purchase_size": stmt.excluded.max_purchase_size,
                "min_purchase_size": stmt.excluded.min_purchase_size,
                "size_std_deviation": stmt.excluded.size_std_deviation,
                "size_coefficient_of_variation": stmt.excluded.size_coefficient_of_variation,
                "time_window_minutes": stmt.excluded.time_window_minutes,
                "first_buy_time": stmt.excluded.first_buy_time,
                "last_buy_time": stmt.excluded.last_buy_time,
                "suspicion_score": stmt.excluded.suspicion_score,
                "risk_level": stmt.excluded.risk_level,
                "purchases_json": stmt.excluded.purchases_json,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def claim_transactions(
        self,
        transaction_ids: list[str],
        *,
        aggregation_id: str,
        suspicion_score: float,
    ) -> None:
        """Link swaps to an aggregation, copying its current score.

        Re-claiming for the same aggregation refreshes the score. A swap
        already claimed by a different aggregation is never moved.

        Raises:
            TransactionClaimConflictError: If any swap belongs to another
                aggregation. Nothing is written in that case.
        """
        if not transaction_ids:
            return
        claims = AggregatedTransactionModel
        existing = await self.session.execute(
            select(claims.transaction_id, claims.aggregation_id).where(
                claims.transaction_id.in_(sorted(set(transaction_ids))),
                claims.aggregation_id != aggregation_id,
            )
        )
        conflicts = {tx: owner for tx, owner in existing.all()}
        if conflicts:
            raise TransactionClaimConflictError(aggregation_id, conflicts)

        now = datetime.now(UTC)
        rows = [
            {
                "transaction_id": tx,
                "aggregation_id": aggregation_id,
                "suspicion_score": suspicion_score,
                "created_at": now,
            }
            for tx in sorted(set(transaction_ids))
        ]
        stmt = _insert(self.session, AggregatedTransactionModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["transaction_id"],
            set_={"suspicion_score": stmt.excluded.suspicion_score},
            where=AggregatedTransactionModel.aggregation_id == stmt.excluded.aggregation_id,
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def is_transaction_claimed(self, transaction_id: str) -> bool:
        result = await self.session.execute(
            select(AggregatedTransactionModel.transaction_id).where(
                AggregatedTransactionModel.transaction_id == transaction_id
            )
        )
        return result.scalar_one_or_none() is not None

    async def get(self, aggregation_id: str) -> PositionAggregationDTO | None:
        result = await self.session.execute(
            select(PositionAggregationModel).where(
                PositionAggregationModel.aggregation_id == aggregation_id
            )
        )
        model = result.scalar_one_or_none()
        return PositionAggregationDTO.from_model(model) if model else None

    async def list_unprocessed(self, *, limit: int) -> list[PositionAggregationDTO]:
        result = await self.session.execute(
            select(PositionAggregationModel)
            .where(PositionAggregationModel.is_processed.is_(False))
            .order_by(
                PositionAggregationModel.detected_at.asc(),
                PositionAggregationModel.aggregation_id.asc(),
            )
            .limit(limit)
        )
        return [PositionAggregationDTO.from_model(m) for m in result.scalars().all()]

    async def mark_processed(self, aggregation_id: str, *, alert_sent: bool) -> bool:
        result = await self.session.execute(
            update(PositionAggregationModel)
            .where(PositionAggregationModel.aggregation_id == aggregation_id)
            .values(is_processed=True, alert_sent=alert_sent, updated_at=datetime.now(UTC))
        )
        await self.session.flush()
        return bool(result.rowcount)

    async def stats(self, *, high_suspicion_score: float = 75.0, top_n: int = 5) -> AggregationStats:
        m = PositionAggregationModel
        totals = (
            await self.session.execute(
                select(
                    func.count(m.aggregation_id),
                    func.coalesce(func.sum(m.total_usd), 0.0),
                    func.coalesce(func.avg(m.suspicion_score), 0.0),
                    func.coalesce(func.sum(case((m.suspicion_score >= high_suspicion_score, 1), else_=0)), 0),
                    func.coalesce(func.sum(case((m.is_processed.is_(False), 1), else_=0)), 0),
                    func.coalesce(func.sum(case((m.alert_sent.is_(True), 1), else_=0)), 0),
                )
            )
        ).one()

        risk_rows = await self.session.execute(
            select(m.risk_level, func.count(m.aggregation_id)).group_by(m.risk_level)
        )
        risk_distribution = {level.value: 0 for level in RiskLevel}
        for level, count in risk_rows.all():
            risk_distribution[str(level)] = int(count)

        positions = func.count(m.aggregation_id).label("positions")
        top_rows = await self.session.execute(
            select(m.wallet_address, positions)
            .group_by(m.wallet_address)
            .order_by(desc("positions"), m.wallet_address)
            .limit(top_n)
        )

        return AggregationStats(
            total_positions=int(totals[0]),
            high_suspicion_positions=int(totals[3]),
            total_value_usd=float(totals[1]),
            avg_suspicion_score=round(float(totals[2]), 2),
            unprocessed_positions=int(totals[4]),
            alerts_sent=int(totals[5]),
            risk_distribution=risk_distribution,
            top_wallets_by_positions=[(wallet, int(count)) for wallet, count in top_rows.all()],
        )


@dataclass
class WalletDTO:
    """Data transfer object for tracked wallets."""

    address: str
    category: str
    status: str
    total_pnl: float
    win_rate: float
    total_trades: int
    avg_trade_size: float
    max_trade_size: float
    min_trade_size: float
    sharpe_ratio: float
    max_drawdown: float
    avg_hold_time_hours: float
    early_entry_rate: float
    performance_score: float
    last_active_at: datetime | None = None
    deactivation_reason: str | None = None
    last_evaluated_at: datetime | None = None
    deactivated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WalletModel) -> WalletDTO:
        return cls(
            address=model.address,
            category=model.category,
            status=model.status,
            total_pnl=model.total_pnl,
            win_rate=model.win_rate,
            total_trades=model.total_trades,
            avg_trade_size=model.avg_trade_size,
            max_trade_size=model.max_trade_size,
            min_trade_size=model.min_trade_size,
            sharpe_ratio=model.sharpe_ratio,
            max_drawdown=model.max_drawdown,
            avg_hold_time_hours=model.avg_hold_time_hours,
            early_entry_rate=model.early_entry_rate,
            performance_score=model.performance_score,
            last_active_at=model.last_active_at,
            deactivation_reason=model.deactivation_reason,
            last_evaluated_at=model.last_evaluated_at,
            deactivated_at=model.deactivated_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @classmethod
    def from_record(cls, record: WalletRecord) -> WalletDTO:
        return cls(
            address=record.address,
            category=record.category.value,
            status=record.status.value,
            total_pnl=record.total_pnl,
            win_rate=record.win_rate,
            total_trades=record.total_trades,
            avg_trade_size=record.avg_trade_size,
            max_trade_size=record.max_trade_size,
            min_trade_size=record.min_trade_size,
            sharpe_ratio=record.sharpe_ratio,
            max_drawdown=record.max_drawdown,
            avg_hold_time_hours=record.avg_hold_time_hours,
            early_entry_rate=record.early_entry_rate,
            performance_score=record.performance_score,
            last_active_at=record.last_active_at,
            deactivation_reason=record.deactivation_reason,
            last_evaluated_at=record.last_evaluated_at,
            deactivated_at=record.deactivated_at,
            created_at=record.created_at,
        )

    def to_record(self) -> WalletRecord:
        record = WalletRecord(
            address=self.address,
            category=WalletCategory(self.category),
            status=WalletStatus(self.status),
            total_pnl=self.total_pnl,
            win_rate=self.win_rate,
            total_trades=self.total_trades,
            avg_trade_size=self.avg_trade_size,
            max_trade_size=self.max_trade_size,
            min_trade_size=self.min_trade_size,
            sharpe_ratio=self.sharpe_ratio,
            max_drawdown=self.max_drawdown,
            avg_hold_time_hours=self.avg_hold_time_hours,
            early_entry_rate=self.early_entry_rate,
            performance_score=self.performance_score,
            last_active_at=self.last_active_at,
            deactivation_reason=self.deactivation_reason,
            last_evaluated_at=self.last_evaluated_at,
            deactivated_at=self.deactivated_at,
        )
        if self.created_at is not None:
            record.created_at = self.created_at
        return record


class WalletRepository:
    """Repository for tracked wallet records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> WalletDTO | None:
        result = await self.session.execute(select(WalletModel).where(WalletModel.address == address))
        model = result.scalar_one_or_none()
        return WalletDTO.from_model(model) if model else None

    async def upsert(self, dto: WalletDTO) -> WalletDTO:
        now = datetime.now(UTC)
        values = {
            "address": dto.address,
            "category": dto.category,
            "status": dto.status,
            "total_pnl": dto.total_pnl,
            "win_rate": dto.win_rate,
            "total_trades": dto.total_trades,
            "avg_trade_size": dto.avg_trade_size,
            "max_trade_size": dto.max_trade_size,
            "min_trade_size": dto.min_trade_size,
            "sharpe_ratio": dto.sharpe_ratio,
            "max_drawdown": dto.max_drawdown,
            "avg_hold_time_hours": dto.avg_hold_time_hours,
            "early_entry_rate": dto.early_entry_rate,
            "performance_score": dto.performance_score,
            "last_active_at": dto.last_active_at,
            "deactivation_reason": dto.deactivation_reason,
            "last_evaluated_at": dto.last_evaluated_at,
            "deactivated_at": dto.deactivated_at,
        }
        stmt = _insert(self.session, WalletModel).values(
            **values,
            created_at=dto.created_at or now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["address"],
            set_={
                **{key: getattr(stmt.excluded, key) for key in values if key != "address"},
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def list_by_status(self, status: str) -> list[WalletDTO]:
        result = await self.session.execute(
            select(WalletModel)
            .where(WalletModel.status == status)
            .order_by(WalletModel.performance_score.desc(), WalletModel.address)
        )
        return [WalletDTO.from_model(m) for m in result.scalars().all()]

    async def deactivate(self, address: str, *, reason: str, at: datetime) -> bool:
        """Set status and reason of an active wallet in a single UPDATE.

        Returns:
            True if an active wallet was deactivated.
        """
        result = await self.session.execute(
            update(WalletModel)
            .where(
                (WalletModel.address == address)
                & (WalletModel.status == WalletStatus.ACTIVE.value)
            )
            .values(
                status=WalletStatus.DEACTIVATED.value,
                deactivation_reason=reason,
                deactivated_at=at,
                updated_at=datetime.now(UTC),
            )
        )
        await self.session.flush()
        return bool(result.rowcount)
