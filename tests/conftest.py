"""Pytest configuration and fixtures."""

from __future__ import annotations

import dataclasses
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from smart_money_tracker.detector.models import AggregationStats, PositionAggregation
from smart_money_tracker.ingestor.models import NormalizedSwap, SwapType
from smart_money_tracker.profiler.models import WalletRecord, WalletStatus
from smart_money_tracker.storage.database import DatabaseManager
from smart_money_tracker.storage.errors import StorageError, TransactionClaimConflictError

BASE_TIME = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


class InMemoryStore:
    """Store double backed by dictionaries.

    Records handed out are copies, like rows loaded from a database. Set
    `fail_writes` to make every write raise StorageError.
    """

    def __init__(self) -> None:
        self.swaps: dict[str, NormalizedSwap] = {}
        self.aggregations: dict[str, PositionAggregation] = {}
        self.claims: dict[str, str] = {}
        self.wallets: dict[str, WalletRecord] = {}
        self.first_seen: dict[str, datetime] = {}
        self.candidates: list[str] = []
        self.fail_writes = False
        self.save_aggregation_calls = 0

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise StorageError("store unavailable")

    async def save_swap(self, swap: NormalizedSwap) -> bool:
        self._check_writable()
        if swap.transaction_id in self.swaps:
            return False
        self.swaps[swap.transaction_id] = swap
        return True

    async def is_transaction_aggregated(self, transaction_id: str) -> bool:
        return transaction_id in self.claims

    async def mark_aggregated(
        self, transaction_ids: list[str], aggregation_id: str, suspicion_score: float
    ) -> None:
        self._check_writable()
        self._check_claims(transaction_ids, aggregation_id)
        for transaction_id in transaction_ids:
            self.claims[transaction_id] = aggregation_id

    def _check_claims(self, transaction_ids: list[str], aggregation_id: str) -> None:
        conflicts = {
            tx: self.claims[tx]
            for tx in transaction_ids
            if tx in self.claims and self.claims[tx] != aggregation_id
        }
        if conflicts:
            raise TransactionClaimConflictError(aggregation_id, conflicts)

    async def save_aggregation(self, aggregation: PositionAggregation) -> str:
        self.save_aggregation_calls += 1
        self._check_writable()
        self._check_claims(aggregation.transaction_ids, aggregation.aggregation_id)
        existing = self.aggregations.get(aggregation.aggregation_id)
        if existing is not None:
            aggregation = dataclasses.replace(
                aggregation,
                is_processed=existing.is_processed,
                alert_sent=existing.alert_sent,
                detected_at=existing.detected_at,
            )
        self.aggregations[aggregation.aggregation_id] = aggregation
        await self.mark_aggregated(
            aggregation.transaction_ids, aggregation.aggregation_id, aggregation.suspicion_score
        )
        return aggregation.aggregation_id

    async def get_aggregation(self, aggregation_id: str) -> PositionAggregation | None:
        return self.aggregations.get(aggregation_id)

    async def get_unprocessed_aggregations(self, limit: int = 100) -> list[PositionAggregation]:
        return [a for a in self.aggregations.values() if not a.is_processed][:limit]

    async def mark_aggregation_processed(self, aggregation_id: str, *, alert_sent: bool) -> bool:
        self._check_writable()
        existing = self.aggregations.get(aggregation_id)
        if existing is None:
            return False
        self.aggregations[aggregation_id] = dataclasses.replace(
            existing, is_processed=True, alert_sent=alert_sent
        )
        return True

    async def get_aggregation_stats(self) -> AggregationStats:
        rows = list(self.aggregations.values())
        if not rows:
            return AggregationStats()
        return AggregationStats(
            total_positions=len(rows),
            high_suspicion_positions=sum(1 for a in rows if a.suspicion_score >= 75),
            total_value_usd=sum(a.total_usd for a in rows),
            avg_suspicion_score=sum(a.suspicion_score for a in rows) / len(rows),
            unprocessed_positions=sum(1 for a in rows if not a.is_processed),
            alerts_sent=sum(1 for a in rows if a.alert_sent),
            risk_distribution=dict(Counter(a.risk_level.value for a in rows)),
            top_wallets_by_positions=Counter(a.wallet_address for a in rows).most_common(5),
        )

    async def get_wallet_history(self, address: str, limit: int) -> list[NormalizedSwap]:
        history = [s for s in self.swaps.values() if s.wallet_address == address]
        history.sort(key=lambda s: s.timestamp, reverse=True)
        return history[:limit]

    async def get_unaggregated_buys(self, *, since: datetime) -> list[NormalizedSwap]:
        return [
            s
            for s in self.swaps.values()
            if s.is_buy and s.timestamp >= since and s.transaction_id not in self.claims
        ]

    async def get_token_first_seen(self, token_addresses: list[str]) -> dict[str, datetime]:
        result: dict[str, datetime] = {}
        for token in token_addresses:
            if token in self.first_seen:
                result[token] = self.first_seen[token]
                continue
            times = [s.timestamp for s in self.swaps.values() if s.token_address == token]
            if times:
                result[token] = min(times)
        return result

    async def get_candidate_wallets(self, **kwargs: object) -> list[str]:
        return list(self.candidates)

    async def get_wallet(self, address: str) -> WalletRecord | None:
        record = self.wallets.get(address)
        return dataclasses.replace(record) if record else None

    async def upsert_wallet(self, record: WalletRecord) -> None:
        self._check_writable()
        self.wallets[record.address] = dataclasses.replace(record)

    async def get_active_wallets(self) -> list[WalletRecord]:
        return [dataclasses.replace(r) for r in self.wallets.values() if r.status == WalletStatus.ACTIVE]

    async def deactivate_wallet(self, address: str, reason: str, at: datetime) -> bool:
        self._check_writable()
        record = self.wallets.get(address)
        if record is None or record.status != WalletStatus.ACTIVE:
            return False
        record.status = WalletStatus.DEACTIVATED
        record.deactivation_reason = reason
        record.deactivated_at = at
        return True


@pytest.fixture
def memory_store() -> InMemoryStore:
    """In-memory Store implementation."""
    return InMemoryStore()


@pytest.fixture
def base_time() -> datetime:
    """Fixed reference time for deterministic tests."""
    return BASE_TIME


@pytest.fixture
def make_swap() -> Callable[..., NormalizedSwap]:
    """Factory for normalized swaps with sensible defaults."""
    counter = {"n": 0}

    def _make(
        amount_usd: float = 4_000.0,
        *,
        minutes: float = 0.0,
        swap_type: SwapType = SwapType.BUY,
        wallet: str = "WalletA",
        token: str = "TokenX",
        transaction_id: str | None = None,
        at: datetime | None = None,
    ) -> NormalizedSwap:
        counter["n"] += 1
        return NormalizedSwap(
            transaction_id=transaction_id or f"tx-{counter['n']:04d}",
            wallet_address=wallet,
            token_address=token,
            token_symbol="TKX",
            amount_usd=amount_usd,
            timestamp=at or BASE_TIME + timedelta(minutes=minutes),
            swap_type=swap_type,
        )

    return _make


@pytest.fixture
async def db_manager():
    """DatabaseManager on a fresh in-memory SQLite schema."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()
