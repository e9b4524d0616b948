"""Store contract used by the detection core and its SQL implementation.

The aggregator, evaluator and lifecycle manager only talk to a `Store`.
`SqlStore` implements it on top of the repositories, one transaction per
call, and surfaces every database failure as a StorageError.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.exc import SQLAlchemyError

from smart_money_tracker.profiler.models import WalletStatus
from smart_money_tracker.storage.errors import StorageError
from smart_money_tracker.storage.repos import (
    PositionAggregationDTO,
    PositionAggregationRepository,
    SwapDTO,
    SwapRepository,
    WalletDTO,
    WalletRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from smart_money_tracker.detector.models import AggregationStats, PositionAggregation
    from smart_money_tracker.ingestor.models import NormalizedSwap
    from smart_money_tracker.profiler.models import WalletRecord
    from smart_money_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class Store(Protocol):
    """Durable persistence required by the detection core."""

    async def save_swap(self, swap: NormalizedSwap) -> bool: ...

    async def is_transaction_aggregated(self, transaction_id: str) -> bool: ...

    async def mark_aggregated(
        self, transaction_ids: list[str], aggregation_id: str, suspicion_score: float
    ) -> None: ...

    async def save_aggregation(self, aggregation: PositionAggregation) -> str: ...

    async def get_aggregation(self, aggregation_id: str) -> PositionAggregation | None: ...

    async def get_unprocessed_aggregations(self, limit: int = 100) -> list[PositionAggregation]: ...

    async def mark_aggregation_processed(self, aggregation_id: str, *, alert_sent: bool) -> bool: ...

    async def get_aggregation_stats(self) -> AggregationStats: ...

    async def get_wallet_history(self, address: str, limit: int) -> list[NormalizedSwap]: ...

    async def get_unaggregated_buys(self, *, since: datetime) -> list[NormalizedSwap]: ...

    async def get_token_first_seen(self, token_addresses: list[str]) -> dict[str, datetime]: ...

    async def get_candidate_wallets(
        self,
        *,
        since: datetime,
        min_volume_usd: float,
        min_trades: int,
        min_avg_trade_usd: float,
        min_unique_tokens: int,
        limit: int,
    ) -> list[str]: ...

    async def get_wallet(self, address: str) -> WalletRecord | None: ...

    async def upsert_wallet(self, record: WalletRecord) -> None: ...

    async def get_active_wallets(self) -> list[WalletRecord]: ...

    async def deactivate_wallet(self, address: str, reason: str, at: datetime) -> bool: ...


class SqlStore:
    """SQLAlchemy-backed Store."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._db.get_async_session() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store operation %s failed: %s", operation, e)
            raise StorageError(f"{operation} failed: {e}") from e

    async def save_swap(self, swap: NormalizedSwap) -> bool:
        """Persist a swap; re-saving the same transaction id is a no-op."""
        async with self._session("save_swap") as session:
            return await SwapRepository(session).insert_if_absent(SwapDTO.from_swap(swap))

    async def is_transaction_aggregated(self, transaction_id: str) -> bool:
        async with self._session("is_transaction_aggregated") as session:
            return await PositionAggregationRepository(session).is_transaction_claimed(transaction_id)

    async def mark_aggregated(
        self, transaction_ids: list[str], aggregation_id: str, suspicion_score: float
    ) -> None:
        async with self._session("mark_aggregated") as session:
            await PositionAggregationRepository(session).claim_transactions(
                transaction_ids,
                aggregation_id=aggregation_id,
                suspicion_score=suspicion_score,
            )

    async def save_aggregation(self, aggregation: PositionAggregation) -> str:
        """Upsert an aggregation and claim its transactions in one transaction."""
        async with self._session("save_aggregation") as session:
            repo = PositionAggregationRepository(session)
            await repo.upsert(PositionAggregationDTO.from_aggregation(aggregation))
            await repo.claim_transactions(
                aggregation.transaction_ids,
                aggregation_id=aggregation.aggregation_id,
                suspicion_score=aggregation.suspicion_score,
            )
        return aggregation.aggregation_id

    async def get_aggregation(self, aggregation_id: str) -> PositionAggregation | None:
        async with self._session("get_aggregation") as session:
            dto = await PositionAggregationRepository(session).get(aggregation_id)
        return dto.to_aggregation() if dto else None

    async def get_unprocessed_aggregations(self, limit: int = 100) -> list[PositionAggregation]:
        async with self._session("get_unprocessed_aggregations") as session:
            dtos = await PositionAggregationRepository(session).list_unprocessed(limit=limit)
        return [dto.to_aggregation() for dto in dtos]

    async def mark_aggregation_processed(self, aggregation_id: str, *, alert_sent: bool) -> bool:
        async with self._session("mark_aggregation_processed") as session:
            return await PositionAggregationRepository(session).mark_processed(
                aggregation_id, alert_sent=alert_sent
            )

    async def get_aggregation_stats(self) -> AggregationStats:
        async with self._session("get_aggregation_stats") as session:
            return await PositionAggregationRepository(session).stats()

    async def get_wallet_history(self, address: str, limit: int) -> list[NormalizedSwap]:
        """Most recent swaps of a wallet, newest first."""
        async with self._session("get_wallet_history") as session:
            dtos = await SwapRepository(session).list_for_wallet(address, limit=limit)
        return [dto.to_swap() for dto in dtos]

    async def get_unaggregated_buys(self, *, since: datetime) -> list[NormalizedSwap]:
        async with self._session("get_unaggregated_buys") as session:
            dtos = await SwapRepository(session).list_unaggregated_buys(since=since)
        return [dto.to_swap() for dto in dtos]

    async def get_token_first_seen(self, token_addresses: list[str]) -> dict[str, datetime]:
        async with self._session("get_token_first_seen") as session:
            return await SwapRepository(session).first_seen_by_token(token_addresses)

    async def get_candidate_wallets(
        self,
        *,
        since: datetime,
        min_volume_usd: float,
        min_trades: int,
        min_avg_trade_usd: float,
        min_unique_tokens: int,
        limit: int,
    ) -> list[str]:
        async with self._session("get_candidate_wallets") as session:
            return await SwapRepository(session).list_candidate_wallets(
                since=since,
                min_volume_usd=min_volume_usd,
                min_trades=min_trades,
                min_avg_trade_usd=min_avg_trade_usd,
                min_unique_tokens=min_unique_tokens,
                limit=limit,
            )

    async def get_wallet(self, address: str) -> WalletRecord | None:
        async with self._session("get_wallet") as session:
            dto = await WalletRepository(session).get(address)
        return dto.to_record() if dto else None

    async def upsert_wallet(self, record: WalletRecord) -> None:
        async with self._session("upsert_wallet") as session:
            await WalletRepository(session).upsert(WalletDTO.from_record(record))

    async def get_active_wallets(self) -> list[WalletRecord]:
        async with self._session("get_active_wallets") as session:
            dtos = await WalletRepository(session).list_by_status(WalletStatus.ACTIVE.value)
        return [dto.to_record() for dto in dtos]

    async def deactivate_wallet(self, address: str, reason: str, at: datetime) -> bool:
        """Atomically move an active wallet to deactivated with its reason."""
        async with self._session("deactivate_wallet") as session:
            return await WalletRepository(session).deactivate(address, reason=reason, at=at)
