"""Tests for the position-splitting aggregator."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from smart_money_tracker.detector.models import RiskLevel
from smart_money_tracker.detector.position_aggregator import (
    AggregationConfig,
    PositionAggregator,
    coefficient_of_variation,
)
from smart_money_tracker.ingestor.models import InvalidSwapError, NormalizedSwap, SwapType
from smart_money_tracker.storage.errors import StorageError

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def aggregator(memory_store) -> PositionAggregator:
    return PositionAggregator(memory_store)


async def _feed(aggregator: PositionAggregator, swaps: list[NormalizedSwap]):
    results = []
    for swap in swaps:
        results.append(await aggregator.ingest(swap))
    return results


def _assert_store_consistent(store) -> None:
    """Claims point at aggregations that list them; clusters of a key never overlap."""
    for transaction_id, aggregation_id in store.claims.items():
        assert transaction_id in store.aggregations[aggregation_id].transaction_ids
    for aggregation in store.aggregations.values():
        for transaction_id in aggregation.transaction_ids:
            assert store.claims[transaction_id] == aggregation.aggregation_id

    by_key: dict[tuple[str, str], list] = {}
    for aggregation in store.aggregations.values():
        by_key.setdefault((aggregation.wallet_address, aggregation.token_address), []).append(aggregation)
    for clusters in by_key.values():
        clusters.sort(key=lambda a: a.first_buy_time)
        for earlier, later in zip(clusters, clusters[1:]):
            assert earlier.last_buy_time < later.first_buy_time


# ============================================================================
# Clustering
# ============================================================================


class TestClustering:
    async def test_three_similar_buys_emit_one_aggregation(self, aggregator, memory_store, make_swap) -> None:
        swaps = [
            make_swap(4_000, minutes=0),
            make_swap(4_200, minutes=10),
            make_swap(3_900, minutes=20),
        ]

        results = await _feed(aggregator, swaps)

        assert results[0] is None
        assert results[1] is None
        aggregation = results[2]
        assert aggregation is not None
        assert aggregation.purchase_count == 3
        assert aggregation.total_usd == pytest.approx(12_100.0)
        assert aggregation.min_purchase_size == 3_900.0
        assert aggregation.max_purchase_size == 4_200.0
        assert aggregation.avg_purchase_size == pytest.approx(12_100.0 / 3)
        assert aggregation.time_window_minutes == pytest.approx(20.0)
        assert aggregation.first_buy_time == swaps[0].timestamp
        assert aggregation.last_buy_time == swaps[2].timestamp
        assert aggregation.transaction_ids == [s.transaction_id for s in swaps]
        assert aggregation.risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH)
        assert 0.0 <= aggregation.suspicion_score <= 100.0

        assert list(memory_store.aggregations) == [aggregation.aggregation_id]
        assert set(memory_store.claims) == {s.transaction_id for s in swaps}

    async def test_below_total_threshold_not_emitted(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(aggregator, [make_swap(1_000, minutes=m) for m in (0, 5, 10)])

        assert results == [None, None, None]
        assert memory_store.aggregations == {}

    async def test_two_buys_not_emitted(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(aggregator, [make_swap(8_000, minutes=0), make_swap(8_000, minutes=5)])

        assert results == [None, None]
        assert memory_store.aggregations == {}

    async def test_growing_cluster_updates_same_aggregation(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(aggregator, [make_swap(4_000, minutes=m) for m in (0, 5, 10, 15)])

        third, fourth = results[2], results[3]
        assert third is not None and fourth is not None
        assert fourth.aggregation_id == third.aggregation_id
        assert fourth.purchase_count == 4
        assert len(memory_store.aggregations) == 1
        assert memory_store.aggregations[third.aggregation_id].purchase_count == 4

    async def test_dissimilar_buy_does_not_join(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(
            aggregator,
            [
                make_swap(4_000, minutes=0),
                make_swap(4_200, minutes=5),
                make_swap(3_900, minutes=10),
                make_swap(40_000, minutes=15),
            ],
        )

        assert results[3] is None
        (stored,) = memory_store.aggregations.values()
        assert stored.purchase_count == 3

    async def test_buys_spread_beyond_window_not_clustered(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(aggregator, [make_swap(5_000, minutes=m) for m in (0, 50, 100)])

        assert results == [None, None, None]
        assert memory_store.aggregations == {}

    async def test_sells_are_ignored(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(
            aggregator,
            [make_swap(4_000, minutes=m, swap_type=SwapType.SELL) for m in (0, 5, 10)],
        )

        assert results == [None, None, None]
        assert aggregator.active_windows() == []

    async def test_keys_are_independent(self, aggregator, memory_store, make_swap) -> None:
        swaps = []
        for m in (0, 5, 10):
            swaps.append(make_swap(4_000, minutes=m, token="TokenX"))
            swaps.append(make_swap(4_000, minutes=m, token="TokenY"))

        await _feed(aggregator, swaps)

        tokens = sorted(a.token_address for a in memory_store.aggregations.values())
        assert tokens == ["TokenX", "TokenY"]

    async def test_invalid_swap_rejected(self, aggregator, make_swap) -> None:
        swap = make_swap(4_000)
        bad = NormalizedSwap(
            transaction_id=swap.transaction_id,
            wallet_address=swap.wallet_address,
            token_address="",
            token_symbol="",
            amount_usd=swap.amount_usd,
            timestamp=swap.timestamp,
            swap_type=SwapType.BUY,
        )
        with pytest.raises(InvalidSwapError):
            await aggregator.ingest(bad)

    async def test_individual_cap_rejects_cluster_with_oversized_buy(self, memory_store, make_swap) -> None:
        aggregator = PositionAggregator(memory_store, config=AggregationConfig(max_individual_usd=5_000.0))
        swaps = [
            make_swap(4_000, minutes=0),
            make_swap(4_500, minutes=5),
            make_swap(5_500, minutes=10),
            make_swap(4_000, minutes=15),
        ]

        results = await _feed(aggregator, swaps)

        assert results == [None, None, None, None]
        assert memory_store.aggregations == {}
        assert memory_store.claims == {}
        assert aggregator.stats.oversized_buys == 1
        (window,) = aggregator.active_windows()
        assert window["purchase_count"] == 4
        assert window["disqualified"] is True

    async def test_same_buys_emit_without_cap(self, aggregator, memory_store, make_swap) -> None:
        results = await _feed(
            aggregator,
            [make_swap(4_000, minutes=0), make_swap(4_500, minutes=5), make_swap(5_500, minutes=10)],
        )

        assert results[2] is not None
        assert aggregator.stats.oversized_buys == 0

    async def test_oversized_buy_does_not_join_emitted_cluster(self, memory_store, make_swap) -> None:
        aggregator = PositionAggregator(memory_store, config=AggregationConfig(max_individual_usd=5_000.0))
        emitted = await _feed(aggregator, [make_swap(4_000, minutes=m) for m in (0, 5, 10)])

        assert await aggregator.ingest(make_swap(5_500, minutes=15)) is None

        (stored,) = memory_store.aggregations.values()
        assert stored.aggregation_id == emitted[2].aggregation_id
        assert stored.purchase_count == 3
        assert [w["disqualified"] for w in aggregator.active_windows()] == [False, True]


# ============================================================================
# Idempotency and ordering
# ============================================================================


class TestIdempotency:
    async def test_reingesting_same_transaction_is_noop(self, aggregator, memory_store, make_swap) -> None:
        swaps = [make_swap(4_000, minutes=m) for m in (0, 5, 10)]
        await _feed(aggregator, swaps)
        calls = memory_store.save_aggregation_calls

        again = await aggregator.ingest(swaps[2])

        assert again is None
        assert memory_store.save_aggregation_calls == calls
        (stored,) = memory_store.aggregations.values()
        assert stored.purchase_count == 3

    async def test_duplicate_inside_open_window_counts_once(self, aggregator, memory_store, make_swap) -> None:
        first = make_swap(4_000, minutes=0)
        await _feed(aggregator, [first, first, make_swap(4_000, minutes=5)])

        assert memory_store.aggregations == {}
        (window,) = aggregator.active_windows()
        assert window["purchase_count"] == 2

    async def test_already_aggregated_transaction_skipped(self, aggregator, memory_store, make_swap) -> None:
        swap = make_swap(4_000)
        memory_store.claims[swap.transaction_id] = "agg_existing"

        assert await aggregator.ingest(swap) is None
        assert aggregator.active_windows() == []
        assert aggregator.stats.duplicates_skipped == 1


class TestOrdering:
    async def test_late_buy_within_tolerance_is_placed_in_order(self, aggregator, make_swap) -> None:
        a = make_swap(4_000, minutes=0)
        b = make_swap(4_000, minutes=10)
        late = make_swap(4_000, minutes=8)

        results = await _feed(aggregator, [a, b, late])

        aggregation = results[2]
        assert aggregation is not None
        assert aggregation.transaction_ids == [a.transaction_id, late.transaction_id, b.transaction_id]

    async def test_buy_older_than_tolerance_dropped(self, aggregator, make_swap) -> None:
        await _feed(aggregator, [make_swap(4_000, minutes=0), make_swap(4_000, minutes=30)])

        assert await aggregator.ingest(make_swap(4_000, minutes=10)) is None
        assert aggregator.stats.stale_dropped == 1

    async def test_dissimilar_buy_at_open_window_end_is_discarded(
        self, aggregator, memory_store, make_swap, base_time
    ) -> None:
        burst = [make_swap(4_000, at=base_time) for _ in range(3)]
        first = (await _feed(aggregator, burst))[2]
        assert first is not None

        same_instant = make_swap(20_000, at=base_time)
        assert await aggregator.ingest(same_instant) is None
        assert aggregator.stats.stale_dropped == 1

        follow_up = [make_swap(20_000, at=base_time + timedelta(seconds=s)) for s in (1, 2, 3)]
        second = (await _feed(aggregator, follow_up))[2]

        assert second is not None
        assert second.aggregation_id != first.aggregation_id
        assert memory_store.aggregations[first.aggregation_id].transaction_ids == [
            s.transaction_id for s in burst
        ]
        assert second.transaction_ids == [s.transaction_id for s in follow_up]
        assert same_instant.transaction_id not in memory_store.claims
        _assert_store_consistent(memory_store)

    async def test_late_buy_joins_previous_cluster_under_same_id(
        self, aggregator, memory_store, make_swap
    ) -> None:
        first = (await _feed(aggregator, [make_swap(4_000, minutes=m) for m in (0, 5, 10)]))[2]
        assert await aggregator.ingest(make_swap(20_000, minutes=12)) is None

        late = make_swap(4_000, minutes=11)
        updated = await aggregator.ingest(late)

        assert updated is not None
        assert updated.aggregation_id == first.aggregation_id
        assert updated.purchase_count == 4
        assert updated.last_buy_time == late.timestamp
        assert list(memory_store.aggregations) == [first.aggregation_id]
        _assert_store_consistent(memory_store)

    async def test_late_dissimilar_buy_is_discarded(self, aggregator, memory_store, make_swap) -> None:
        await _feed(aggregator, [make_swap(4_000, minutes=m) for m in (0, 5, 10)])

        late = make_swap(40_000, minutes=8)

        assert await aggregator.ingest(late) is None
        assert aggregator.stats.stale_dropped == 1
        assert len(aggregator.active_windows()) == 1
        (stored,) = memory_store.aggregations.values()
        assert late.transaction_id not in stored.transaction_ids

    async def test_buy_behind_superseded_windows_rejected(self, memory_store, make_swap) -> None:
        aggregator = PositionAggregator(
            memory_store, config=AggregationConfig(reorder_tolerance=timedelta(minutes=60))
        )
        first = (await _feed(aggregator, [make_swap(4_000, minutes=m) for m in (0, 5, 10)]))[2]
        await _feed(aggregator, [make_swap(20_000, minutes=20), make_swap(100_000, minutes=30)])

        assert await aggregator.ingest(make_swap(4_000, minutes=10)) is None
        assert await aggregator.ingest(make_swap(4_000, minutes=9)) is None

        assert aggregator.stats.stale_dropped == 2
        assert memory_store.aggregations[first.aggregation_id].purchase_count == 3
        _assert_store_consistent(memory_store)

    async def test_shuffled_burst_never_overlaps(self, aggregator, memory_store, make_swap) -> None:
        small = [make_swap(4_000, minutes=m) for m in (0, 2, 4, 6)]
        large = [make_swap(25_000, minutes=m) for m in (7, 8, 9)]
        arrival = [small[0], small[2], small[1], large[0], small[3], large[2], large[1]]

        await _feed(aggregator, arrival)

        assert len(memory_store.aggregations) == 2
        _assert_store_consistent(memory_store)

    async def test_concurrent_ingest_same_key(self, aggregator, memory_store, make_swap) -> None:
        swaps = [make_swap(4_000, minutes=m) for m in range(5)]

        await asyncio.gather(*(aggregator.ingest(s) for s in swaps))

        (stored,) = memory_store.aggregations.values()
        assert stored.purchase_count == 5
        assert len(set(stored.transaction_ids)) == 5


# ============================================================================
# Scoring
# ============================================================================


class TestSuspicionScore:
    def test_non_decreasing_in_purchase_count(self, aggregator) -> None:
        scores = [
            aggregator.suspicion_score(purchase_count=n, total_usd=20_000, size_cv=0.1, span_minutes=30)
            for n in range(3, 10)
        ]
        assert scores == sorted(scores)

    def test_non_increasing_in_size_variation(self, aggregator) -> None:
        scores = [
            aggregator.suspicion_score(purchase_count=4, total_usd=20_000, size_cv=cv, span_minutes=30)
            for cv in (0.0, 0.1, 0.2, 0.3, 0.4, 0.5)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_bounded(self, aggregator) -> None:
        high = aggregator.suspicion_score(purchase_count=50, total_usd=1e9, size_cv=0.0, span_minutes=0)
        low = aggregator.suspicion_score(purchase_count=1, total_usd=100, size_cv=5.0, span_minutes=1000)
        assert high == 100.0
        assert low >= 0.0

    def test_coefficient_of_variation(self) -> None:
        assert coefficient_of_variation([5.0]) == 0.0
        assert coefficient_of_variation([10.0, 10.0]) == 0.0
        assert coefficient_of_variation([1.0, 3.0]) == pytest.approx(0.5)


# ============================================================================
# Persistence failures, expiry and warm start
# ============================================================================


class TestStorageFailure:
    async def test_failed_write_keeps_window_and_retries_on_duplicate(
        self, aggregator, memory_store, make_swap
    ) -> None:
        swaps = [make_swap(4_000, minutes=m) for m in (0, 5, 10)]
        await _feed(aggregator, swaps[:2])

        memory_store.fail_writes = True
        with pytest.raises(StorageError):
            await aggregator.ingest(swaps[2])
        assert memory_store.aggregations == {}

        memory_store.fail_writes = False
        retried = await aggregator.ingest(swaps[2])

        assert retried is not None
        assert retried.purchase_count == 3

    async def test_flush_retries_pending_window(self, aggregator, memory_store, make_swap, base_time) -> None:
        swaps = [make_swap(4_000, minutes=m) for m in (0, 5, 10)]
        await _feed(aggregator, swaps[:2])
        memory_store.fail_writes = True
        with pytest.raises(StorageError):
            await aggregator.ingest(swaps[2])

        later = base_time + timedelta(hours=4)
        assert await aggregator.flush_expired(later) == 0
        assert len(aggregator.active_windows()) == 1

        memory_store.fail_writes = False
        assert await aggregator.flush_expired(later) == 1
        (stored,) = memory_store.aggregations.values()
        assert stored.purchase_count == 3


class TestExpiry:
    async def test_flush_evicts_old_windows(self, aggregator, make_swap, base_time) -> None:
        await aggregator.ingest(make_swap(4_000, minutes=0))

        evicted = await aggregator.flush_expired(base_time + timedelta(hours=4))

        assert evicted == 1
        assert aggregator.active_windows() == []

    async def test_buys_behind_watermark_rejected(self, aggregator, make_swap, base_time) -> None:
        await aggregator.flush_expired(base_time + timedelta(hours=4))

        assert await aggregator.ingest(make_swap(4_000, minutes=10)) is None
        assert aggregator.stats.stale_dropped == 1

    async def test_recent_windows_survive_flush(self, aggregator, make_swap, base_time) -> None:
        await aggregator.ingest(make_swap(4_000, minutes=0))

        assert await aggregator.flush_expired(base_time + timedelta(minutes=30)) == 0
        assert len(aggregator.active_windows()) == 1


class TestWarmStart:
    async def test_replays_unaggregated_buys(self, aggregator, memory_store, make_swap, base_time) -> None:
        for m in (0, 5, 10):
            await memory_store.save_swap(make_swap(4_000, minutes=m))

        replayed = await aggregator.warm_start(base_time + timedelta(minutes=30))

        assert replayed == 3
        (stored,) = memory_store.aggregations.values()
        assert stored.purchase_count == 3

    async def test_replay_is_idempotent(self, aggregator, memory_store, make_swap, base_time) -> None:
        for m in (0, 5, 10):
            await memory_store.save_swap(make_swap(4_000, minutes=m))
        now = base_time + timedelta(minutes=30)

        await aggregator.warm_start(now)
        again = await aggregator.warm_start(now)

        assert again == 0
        assert len(memory_store.aggregations) == 1
