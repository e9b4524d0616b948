"""Position-splitting detector.

Clusters a wallet's buys of one token into windows of similarly-sized
purchases. A window that accumulates enough buys and enough total value is
emitted as a PositionAggregation with a suspicion score, persisted together
with the transaction claims that link each buy to it.

Each (wallet, token) key keeps at most two windows in memory: the open one
and the one it superseded, so that slightly late buys can still land in the
correct cluster without two persisted clusters overlapping in time.
"""

from __future__ import annotations

import asyncio
import bisect
import hashlib
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import numpy as np

from smart_money_tracker.detector.models import PositionAggregation, PositionPurchase, RiskLevel
from smart_money_tracker.storage.errors import StorageError

if TYPE_CHECKING:
    from smart_money_tracker.ingestor.models import NormalizedSwap
    from smart_money_tracker.storage.store import Store

logger = logging.getLogger(__name__)

# Caps of the independent score components; their sum is 100.
DEFAULT_SCORE_WEIGHTS: dict[str, float] = {
    "count": 30.0,
    "size": 25.0,
    "uniformity": 30.0,
    "timing": 15.0,
}

POINTS_PER_PURCHASE = 6.0
SIZE_POINTS_PER_DECADE = 10.0
SIZE_REFERENCE_USD = 1_000.0


@dataclass(frozen=True)
class AggregationConfig:
    time_window: timedelta = timedelta(minutes=90)
    size_tolerance: float = 0.5
    min_purchase_count: int = 3
    min_total_usd: float = 10_000.0
    max_individual_usd: float | None = None
    reorder_tolerance: timedelta = timedelta(minutes=5)
    score_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SCORE_WEIGHTS))
    high_risk_score: float = 75.0
    medium_risk_score: float = 50.0


def coefficient_of_variation(amounts: list[float]) -> float:
    """Population std / mean of purchase sizes (0.0 for fewer than two)."""
    if len(amounts) < 2:
        return 0.0
    arr = np.asarray(amounts, dtype=float)
    mean = float(arr.mean())
    if mean <= 0:
        return math.inf
    return float(arr.std()) / mean


def _deterministic_aggregation_id(wallet_address: str, token_address: str, first_buy_time: datetime) -> str:
    material = f"{wallet_address}|{token_address}|{first_buy_time.astimezone(UTC).isoformat()}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"agg_{digest[:24]}"


@dataclass
class _Window:
    token_symbol: str
    purchases: list[PositionPurchase] = field(default_factory=list)
    aggregation_id: str | None = None
    detected_at: datetime | None = None
    pending: bool = False
    disqualified: bool = False

    @property
    def first_time(self) -> datetime:
        return self.purchases[0].timestamp

    @property
    def last_time(self) -> datetime:
        return self.purchases[-1].timestamp

    @property
    def amounts(self) -> list[float]:
        return [p.amount_usd for p in self.purchases]

    @property
    def total_usd(self) -> float:
        return float(sum(self.amounts))

    def contains(self, transaction_id: str) -> bool:
        return any(p.transaction_id == transaction_id for p in self.purchases)

    def add(self, purchase: PositionPurchase) -> None:
        bisect.insort(self.purchases, purchase, key=lambda p: (p.timestamp, p.transaction_id))


@dataclass
class _KeyState:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    open: _Window | None = None
    previous: _Window | None = None
    latest_seen: datetime | None = None
    floor: datetime | None = None
    retired: bool = False

    def windows(self) -> list[_Window]:
        return [w for w in (self.previous, self.open) if w is not None]

    def find(self, transaction_id: str) -> _Window | None:
        for window in self.windows():
            if window.contains(transaction_id):
                return window
        return None


@dataclass
class AggregatorStats:
    buys_seen: int = 0
    duplicates_skipped: int = 0
    stale_dropped: int = 0
    oversized_buys: int = 0
    aggregations_emitted: int = 0
    windows_evicted: int = 0


class PositionAggregator:
    """Detect position splitting in a stream of normalized swaps.

    Ingestion is serialized per (wallet, token) key with an asyncio.Lock;
    different keys are processed concurrently. Buys may arrive slightly out
    of order: a late buy within `reorder_tolerance` of the newest buy seen
    for its key is placed into the open window or the window just before it.

    Example:
        ```python
        aggregator = PositionAggregator(store)
        aggregation = await aggregator.ingest(swap)
        if aggregation is not None:
            print(aggregation.suspicion_score, aggregation.risk_level)
        ```
    """

    def __init__(self, store: Store, *, config: AggregationConfig | None = None) -> None:
        self._store = store
        self._cfg = config or AggregationConfig()
        self._states: dict[tuple[str, str], _KeyState] = {}
        self._watermark: datetime | None = None
        self.stats = AggregatorStats()

    @property
    def config(self) -> AggregationConfig:
        return self._cfg

    def _state_for(self, key: tuple[str, str]) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = _KeyState()
            self._states[key] = state
        return state

    async def ingest(self, swap: NormalizedSwap) -> PositionAggregation | None:
        """Feed one swap into its (wallet, token) window.

        Returns:
            The aggregation emitted or updated by this buy, or None.

        Raises:
            InvalidSwapError: If the swap is malformed.
            StorageError: If the aggregation could not be persisted. The
                buy stays in its window and persistence is retried on the
                next ingest of the same key.
        """
        swap.validate()
        if not swap.is_buy:
            return None

        key = (swap.wallet_address, swap.token_address)
        while True:
            state = self._state_for(key)
            async with state.lock:
                if state.retired:
                    continue
                return await self._ingest_locked(key, state, swap)

    async def _ingest_locked(
        self,
        key: tuple[str, str],
        state: _KeyState,
        swap: NormalizedSwap,
    ) -> PositionAggregation | None:
        self.stats.buys_seen += 1

        held = state.find(swap.transaction_id)
        if held is not None:
            self.stats.duplicates_skipped += 1
            if held.pending:
                return await self._emit(key, held)
            return None

        if await self._store.is_transaction_aggregated(swap.transaction_id):
            self.stats.duplicates_skipped += 1
            return None

        ts = swap.timestamp
        if self._is_stale(state, ts):
            self.stats.stale_dropped += 1
            logger.debug("Dropping stale buy %s for %s/%s at %s", swap.transaction_id, key[0], key[1], ts)
            return None

        purchase = PositionPurchase(
            transaction_id=swap.transaction_id,
            amount_usd=float(swap.amount_usd),
            timestamp=ts,
        )
        oversized = self._is_oversized(purchase)
        if oversized:
            self.stats.oversized_buys += 1

        for window in self._candidates(state, ts):
            if oversized and window.aggregation_id is not None:
                continue
            if self._fits(window, purchase):
                window.add(purchase)
                window.disqualified = window.disqualified or oversized
                state.latest_seen = max(state.latest_seen or ts, ts)
                if self._is_eligible(window):
                    window.pending = True
                    return await self._emit(key, window)
                return None

        if state.open is not None and ts <= state.open.last_time:
            # A new window must start strictly after the open one so that
            # first buy times, and with them aggregation ids, stay unique.
            self.stats.stale_dropped += 1
            logger.debug("Discarding late buy %s that fits no window", swap.transaction_id)
            return None

        for window in state.windows():
            if window.pending:
                await self._emit(key, window)

        if state.previous is not None:
            state.floor = max(state.floor or state.previous.last_time, state.previous.last_time)
        state.previous = state.open
        state.open = _Window(token_symbol=swap.token_symbol, purchases=[purchase], disqualified=oversized)
        state.latest_seen = max(state.latest_seen or ts, ts)
        return None

    def _is_stale(self, state: _KeyState, ts: datetime) -> bool:
        if self._watermark is not None and ts < self._watermark:
            return True
        if state.floor is not None and ts <= state.floor:
            return True
        if state.latest_seen is not None and ts < state.latest_seen - self._cfg.reorder_tolerance:
            return True
        return False

    def _candidates(self, state: _KeyState, ts: datetime) -> list[_Window]:
        if state.open is None:
            return []
        if ts >= state.open.first_time or state.previous is None:
            return [state.open]
        if ts <= state.previous.last_time:
            return [state.previous]
        return [state.open, state.previous]

    def _fits(self, window: _Window, purchase: PositionPurchase) -> bool:
        first = min(window.first_time, purchase.timestamp)
        last = max(window.last_time, purchase.timestamp)
        if last - first > self._cfg.time_window:
            return False
        cv = coefficient_of_variation([*window.amounts, purchase.amount_usd])
        return cv <= self._cfg.size_tolerance

    def _is_oversized(self, purchase: PositionPurchase) -> bool:
        cap = self._cfg.max_individual_usd
        return cap is not None and purchase.amount_usd > cap

    def _is_eligible(self, window: _Window) -> bool:
        return (
            not window.disqualified
            and len(window.purchases) >= self._cfg.min_purchase_count
            and window.total_usd >= self._cfg.min_total_usd
        )

    def suspicion_score(
        self,
        *,
        purchase_count: int,
        total_usd: float,
        size_cv: float,
        span_minutes: float,
    ) -> float:
        """Score a cluster from 0 to 100.

        Independent, individually capped components: purchase count, log
        scaled total size, size uniformity (lower coefficient of variation
        scores higher) and time concentration (less time per purchase
        relative to the window scores higher).
        """
        weights = self._cfg.score_weights
        count_part = min(weights["count"], POINTS_PER_PURCHASE * purchase_count)

        size_part = 0.0
        if total_usd > SIZE_REFERENCE_USD:
            size_part = min(weights["size"], SIZE_POINTS_PER_DECADE * math.log10(total_usd / SIZE_REFERENCE_USD))

        uniformity_part = weights["uniformity"] * max(0.0, 1.0 - size_cv / self._cfg.size_tolerance)

        window_minutes = self._cfg.time_window.total_seconds() / 60.0
        reference = window_minutes / max(1, self._cfg.min_purchase_count)
        per_purchase = max(0.0, span_minutes) / max(1, purchase_count)
        timing_part = 0.0
        if reference > 0:
            timing_part = weights["timing"] * max(0.0, 1.0 - per_purchase / reference)

        score = count_part + size_part + uniformity_part + timing_part
        return round(min(100.0, max(0.0, score)), 2)

    def _build(self, key: tuple[str, str], window: _Window) -> PositionAggregation:
        amounts = np.asarray(window.amounts, dtype=float)
        total = float(amounts.sum())
        mean = float(amounts.mean())
        std = float(amounts.std())
        cv = std / mean if mean > 0 else 0.0
        span_minutes = (window.last_time - window.first_time).total_seconds() / 60.0
        score = self.suspicion_score(
            purchase_count=len(window.purchases),
            total_usd=total,
            size_cv=cv,
            span_minutes=span_minutes,
        )
        aggregation_id = window.aggregation_id or _deterministic_aggregation_id(
            key[0], key[1], window.first_time
        )
        return PositionAggregation(
            aggregation_id=aggregation_id,
            wallet_address=key[0],
            token_address=key[1],
            token_symbol=window.token_symbol,
            total_usd=total,
            purchase_count=len(window.purchases),
            avg_purchase_size=mean,
            max_purchase_size=float(amounts.max()),
            min_purchase_size=float(amounts.min()),
            size_std_deviation=std,
            size_coefficient_of_variation=cv,
            time_window_minutes=round(span_minutes, 4),
            first_buy_time=window.first_time,
            last_buy_time=window.last_time,
            suspicion_score=score,
            risk_level=RiskLevel.from_score(
                score,
                high=self._cfg.high_risk_score,
                medium=self._cfg.medium_risk_score,
            ),
            purchases=tuple(window.purchases),
            detected_at=window.detected_at or datetime.now(UTC),
        )

    async def _emit(self, key: tuple[str, str], window: _Window) -> PositionAggregation:
        aggregation = self._build(key, window)
        await self._store.save_aggregation(aggregation)
        first_emit = window.aggregation_id is None
        window.aggregation_id = aggregation.aggregation_id
        window.detected_at = aggregation.detected_at
        window.pending = False
        self.stats.aggregations_emitted += 1
        logger.info(
            "%s position aggregation %s: wallet=%s token=%s buys=%d total=%.2f score=%.2f risk=%s",
            "Detected" if first_emit else "Updated",
            aggregation.aggregation_id,
            aggregation.wallet_address,
            aggregation.token_symbol or aggregation.token_address,
            aggregation.purchase_count,
            aggregation.total_usd,
            aggregation.suspicion_score,
            aggregation.risk_level.value,
        )
        return aggregation

    async def flush_expired(self, now: datetime | None = None) -> int:
        """Evict windows that can no longer grow.

        `now` is in event time. Buys older than the resulting watermark are
        rejected afterwards. Windows whose persistence previously failed are
        retried first and kept if the retry fails again.

        Returns:
            Number of windows evicted.
        """
        now = now or datetime.now(UTC)
        horizon = self._cfg.time_window + self._cfg.reorder_tolerance
        watermark = now - horizon
        evicted = 0

        for key, state in list(self._states.items()):
            async with state.lock:
                if state.retired:
                    continue
                for attr in ("previous", "open"):
                    window: _Window | None = getattr(state, attr)
                    if window is None or window.first_time >= watermark:
                        continue
                    if window.pending:
                        try:
                            await self._emit(key, window)
                        except StorageError as e:
                            logger.warning("Retry of pending aggregation for %s/%s failed: %s", key[0], key[1], e)
                            continue
                    state.floor = max(state.floor or window.last_time, window.last_time)
                    setattr(state, attr, None)
                    evicted += 1

                if (
                    state.open is None
                    and state.previous is None
                    and (state.latest_seen is None or state.latest_seen < watermark)
                ):
                    state.retired = True
                    self._states.pop(key, None)

        if self._watermark is None or watermark > self._watermark:
            self._watermark = watermark
        self.stats.windows_evicted += evicted
        if evicted:
            logger.info("Evicted %d expired aggregation windows (%d keys open)", evicted, len(self._states))
        return evicted

    async def warm_start(self, now: datetime | None = None) -> int:
        """Rebuild in-memory windows from buys the store has not yet claimed.

        Replaying is idempotent: buys already held in a window or already
        aggregated are skipped.

        Returns:
            Number of buys replayed.
        """
        now = now or datetime.now(UTC)
        since = now - (self._cfg.time_window + self._cfg.reorder_tolerance)
        buys = await self._store.get_unaggregated_buys(since=since)
        buys.sort(key=lambda s: (s.timestamp, s.transaction_id))
        for swap in buys:
            await self.ingest(swap)
        if buys:
            logger.info("Replayed %d unaggregated buys since %s", len(buys), since.isoformat())
        return len(buys)

    def active_windows(self) -> list[dict[str, object]]:
        """Summaries of the windows currently held in memory."""
        rows: list[dict[str, object]] = []
        for (wallet, token), state in self._states.items():
            for window in state.windows():
                rows.append(
                    {
                        "wallet_address": wallet,
                        "token_address": token,
                        "purchase_count": len(window.purchases),
                        "total_usd": window.total_usd,
                        "first_buy_time": window.first_time.isoformat(),
                        "last_buy_time": window.last_time.isoformat(),
                        "aggregation_id": window.aggregation_id,
                        "pending": window.pending,
                        "disqualified": window.disqualified,
                    }
                )
        return rows
