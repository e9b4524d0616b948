"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from smart_money_tracker.alerter.publisher import RedisStreamPublisher
from smart_money_tracker.config import Settings, clear_settings_cache
from smart_money_tracker.ingestor.models import InvalidSwapError, NormalizedSwap, SwapType
from smart_money_tracker.pipeline import Pipeline, PipelineState

T0 = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch):
    """Real settings on an in-memory SQLite database."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("DRY_RUN", "true")
    clear_settings_cache()
    yield Settings()
    clear_settings_cache()


@pytest.fixture
def publisher() -> AsyncMock:
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=None)
    return mock


@pytest.fixture
async def running_pipeline(settings, publisher):
    pipeline = Pipeline(settings, init_schema=True, publisher=publisher)
    await pipeline.start()
    yield pipeline
    await pipeline.stop()


def _raw_swap(tx: str, amount: float, minutes: int, swap_type: str = "buy") -> dict[str, object]:
    return {
        "transaction_id": tx,
        "wallet_address": "WalletA",
        "token_address": "TokenX",
        "token_symbol": "TKX",
        "amount_usd": amount,
        "timestamp": (T0 + timedelta(minutes=minutes)).isoformat(),
        "swap_type": swap_type,
    }


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, settings):
        pipeline = Pipeline(settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running

    def test_is_running_property(self, settings):
        pipeline = Pipeline(settings)
        pipeline._state = PipelineState.RUNNING
        assert pipeline.is_running

        pipeline._state = PipelineState.STOPPING
        assert not pipeline.is_running


class TestPipelineStats:
    """Tests for pipeline statistics."""

    def test_initial_stats(self, settings):
        stats = Pipeline(settings).stats

        assert stats.started_at is None
        assert stats.swaps_processed == 0
        assert stats.swaps_rejected == 0
        assert stats.aggregations_emitted == 0
        assert stats.alerts_published == 0
        assert stats.errors == 0
        assert stats.last_error is None


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_dry_run_from_settings(self, settings):
        assert Pipeline(settings)._dry_run is True

    def test_dry_run_override(self, settings):
        assert Pipeline(settings, dry_run=False)._dry_run is False

    def test_uses_get_settings_when_none_provided(self):
        with patch("smart_money_tracker.pipeline.get_settings") as mock_get:
            mock_get.return_value = MagicMock(spec=Settings)
            mock_get.return_value.dry_run = False
            Pipeline()
            mock_get.assert_called_once()

    async def test_dry_run_builds_publisher_without_redis(self, settings):
        pipeline = Pipeline(settings, init_schema=True)
        await pipeline.start()
        try:
            assert pipeline._redis is None
            assert isinstance(pipeline._publisher, RedisStreamPublisher)
        finally:
            await pipeline.stop()


class TestIngest:
    """Tests for swap ingestion."""

    async def test_ingest_persists_and_aggregates(self, running_pipeline):
        swaps = [
            NormalizedSwap.from_dict(_raw_swap(f"tx-{i}", 4_000.0, minutes=5 * i)) for i in range(3)
        ]

        results = [await running_pipeline.ingest(swap) for swap in swaps]

        assert results[:2] == [None, None]
        assert results[2] is not None
        assert results[2].purchase_count == 3
        stats = running_pipeline.stats
        assert stats.swaps_processed == 3
        assert stats.aggregations_emitted == 1
        assert stats.last_swap_time == swaps[-1].timestamp

        history = await running_pipeline._store.get_wallet_history("WalletA", 10)
        assert len(history) == 3

    async def test_ingest_batch_skips_malformed_items(self, running_pipeline):
        batch = [
            _raw_swap("tx-1", 4_000.0, 0),
            {"transaction_id": "broken"},
            _raw_swap("tx-2", 4_100.0, 5),
            _raw_swap("tx-3", -10.0, 7),
            _raw_swap("tx-4", 3_900.0, 10),
        ]

        emitted = await running_pipeline.ingest_batch(batch)

        assert len(emitted) == 1
        assert emitted[0].transaction_ids == ["tx-1", "tx-2", "tx-4"]
        assert running_pipeline.stats.swaps_rejected == 2
        assert running_pipeline.stats.swaps_processed == 3

    async def test_invalid_swap_rejected(self, running_pipeline):
        swap = NormalizedSwap(
            transaction_id="",
            wallet_address="WalletA",
            token_address="TokenX",
            token_symbol="TKX",
            amount_usd=100.0,
            timestamp=T0,
            swap_type=SwapType.BUY,
        )

        with pytest.raises(InvalidSwapError):
            await running_pipeline.ingest(swap)

    async def test_ingest_before_start_raises(self, settings):
        pipeline = Pipeline(settings)
        swap = NormalizedSwap.from_dict(_raw_swap("tx-1", 4_000.0, 0))

        with pytest.raises(RuntimeError, match="Cannot ingest"):
            await pipeline.ingest(swap)

    async def test_alert_tick_publishes_pending_aggregations(self, running_pipeline, publisher):
        await running_pipeline.ingest_batch([_raw_swap(f"tx-{i}", 4_000.0, 5 * i) for i in range(3)])

        await running_pipeline._alerts_tick()

        publisher.publish.assert_awaited_once()
        assert running_pipeline.stats.alerts_published == 1


class TestPipelineLifecycle:
    """Tests for pipeline start/stop lifecycle."""

    async def test_start_and_stop(self, settings, publisher):
        pipeline = Pipeline(settings, init_schema=True, publisher=publisher)

        await pipeline.start()
        assert pipeline.state == PipelineState.RUNNING
        assert pipeline.stats.started_at is not None
        assert len(pipeline._tasks) == 5

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED
        assert pipeline._tasks == []
        assert pipeline._db_manager is None

    async def test_cannot_start_when_not_stopped(self, settings):
        pipeline = Pipeline(settings)
        pipeline._state = PipelineState.RUNNING

        with pytest.raises(RuntimeError, match="Cannot start pipeline"):
            await pipeline.start()

    async def test_stop_when_already_stopped(self, settings):
        pipeline = Pipeline(settings)
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    async def test_failed_start_sets_error_state(self, settings, publisher):
        pipeline = Pipeline(settings, publisher=publisher)

        with (
            patch.object(Pipeline, "_warm_start", AsyncMock(side_effect=RuntimeError("boom"))),
            pytest.raises(RuntimeError, match="boom"),
        ):
            await pipeline.start()

        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.last_error == "boom"

    async def test_async_context_manager(self, settings, publisher):
        async with Pipeline(settings, init_schema=True, publisher=publisher) as pipeline:
            assert pipeline.is_running
        assert pipeline.state == PipelineState.STOPPED
