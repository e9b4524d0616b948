"""Tests for event payloads and the Redis stream publisher."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from smart_money_tracker.alerter.events import AggregationDetected, WalletDeactivated, WalletQualified
from smart_money_tracker.alerter.publisher import DEFAULT_STREAM_KEY, RedisStreamPublisher
from smart_money_tracker.profiler.models import PerformanceMetrics, WalletCategory

EMITTED = datetime(2026, 10, 19, 9, 30, tzinfo=UTC)


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.xadd = AsyncMock(return_value=b"1-0")
    return redis


@pytest.fixture
def metrics() -> PerformanceMetrics:
    return PerformanceMetrics(
        total_pnl=20_000.0,
        win_rate=100.0,
        total_trades=40,
        avg_trade_size=4_500.0,
        max_trade_size=5_000.0,
        min_trade_size=4_000.0,
        sharpe_ratio=0.22,
        max_drawdown=0.0,
        avg_hold_time_hours=2.0,
        early_entry_rate=0.0,
        recent_activity=EMITTED,
        completed_positions=20,
    )


class TestEvents:
    def test_wallet_deactivated_payload(self) -> None:
        event = WalletDeactivated(address="Idle", reason="inactive for 31 days", emitted_at=EMITTED)

        assert event.to_dict() == {
            "event_type": "wallet_deactivated",
            "emitted_at": "2026-10-19T09:30:00+00:00",
            "address": "Idle",
            "reason": "inactive for 31 days",
        }

    def test_wallet_qualified_payload_is_json_safe(self, metrics) -> None:
        event = WalletQualified(
            address="Smart1",
            category=WalletCategory.HUNTER,
            metrics=metrics,
            performance_score=77.5,
            emitted_at=EMITTED,
        )

        data = json.loads(json.dumps(event.to_dict()))

        assert data["event_type"] == "wallet_qualified"
        assert data["category"] == "hunter"
        assert data["metrics"]["win_rate"] == 100.0
        assert data["metrics"]["total_trades"] == 40
        assert data["metrics"]["recent_activity"] == "2026-10-19T09:30:00+00:00"

    async def test_aggregation_payload(self, memory_store, make_swap) -> None:
        from smart_money_tracker.detector.position_aggregator import PositionAggregator

        aggregator = PositionAggregator(memory_store)
        aggregation = None
        for m in (0, 5, 10):
            aggregation = await aggregator.ingest(make_swap(4_000, minutes=m))
        assert aggregation is not None

        data = AggregationDetected(aggregation=aggregation).to_dict()

        assert data["event_type"] == "aggregation_detected"
        assert data["aggregation"]["aggregation_id"] == aggregation.aggregation_id
        assert len(data["aggregation"]["purchases"]) == 3
        json.dumps(data)


class TestRedisStreamPublisher:
    async def test_publish_appends_to_stream(self, mock_redis) -> None:
        publisher = RedisStreamPublisher(mock_redis, maxlen=500)
        event = WalletDeactivated(address="Idle", reason="win rate dropped", emitted_at=EMITTED)

        await publisher.publish(event)

        mock_redis.xadd.assert_awaited_once()
        args, kwargs = mock_redis.xadd.call_args
        assert args[0] == DEFAULT_STREAM_KEY
        assert args[1]["event_type"] == "wallet_deactivated"
        assert json.loads(args[1]["payload"]) == event.to_dict()
        assert kwargs == {"maxlen": 500, "approximate": True}
        assert publisher.published_count == 1

    async def test_custom_stream_key(self, mock_redis) -> None:
        publisher = RedisStreamPublisher(mock_redis, "alerts:test")

        await publisher.publish(WalletDeactivated(address="Idle", reason="win rate dropped"))

        assert mock_redis.xadd.call_args.args[0] == "alerts:test"

    async def test_dry_run_only_logs(self, mock_redis, caplog) -> None:
        publisher = RedisStreamPublisher(mock_redis, dry_run=True)

        with caplog.at_level(logging.INFO, logger="smart_money_tracker.alerter.publisher"):
            await publisher.publish(WalletDeactivated(address="Idle", reason="win rate dropped"))

        mock_redis.xadd.assert_not_awaited()
        assert publisher.published_count == 1
        assert "[DRY RUN] Would publish wallet_deactivated" in caplog.text

    def test_requires_redis_unless_dry_run(self) -> None:
        with pytest.raises(ValueError, match="Redis client is required"):
            RedisStreamPublisher(None)

        assert RedisStreamPublisher(None, dry_run=True).published_count == 0

    async def test_redis_errors_propagate(self, mock_redis) -> None:
        mock_redis.xadd.side_effect = ConnectionError("connection refused")
        publisher = RedisStreamPublisher(mock_redis)

        with pytest.raises(ConnectionError):
            await publisher.publish(WalletDeactivated(address="Idle", reason="win rate dropped"))

        assert publisher.published_count == 0
