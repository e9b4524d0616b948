"""Main pipeline orchestrator for Smart Money Tracker.

This module provides the Pipeline class that wires together storage, the
position aggregator, the wallet evaluator and classifier, the lifecycle
manager and the event publisher, and runs the periodic sweeps.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from smart_money_tracker.alerter.publisher import EventPublisher, RedisStreamPublisher
from smart_money_tracker.config import Settings, get_settings
from smart_money_tracker.detector.position_aggregator import PositionAggregator
from smart_money_tracker.ingestor.models import InvalidSwapError, NormalizedSwap
from smart_money_tracker.lifecycle.manager import WalletLifecycleManager
from smart_money_tracker.profiler.classifier import SmartMoneyClassifier
from smart_money_tracker.profiler.evaluator import WalletPerformanceEvaluator
from smart_money_tracker.storage.database import DatabaseManager
from smart_money_tracker.storage.store import SqlStore

if TYPE_CHECKING:
    from smart_money_tracker.detector.models import PositionAggregation
    from smart_money_tracker.storage.store import Store

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    swaps_processed: int = 0
    swaps_rejected: int = 0
    aggregations_emitted: int = 0
    alerts_published: int = 0
    wallets_activated: int = 0
    wallets_deactivated: int = 0
    errors: int = 0
    last_swap_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for the Smart Money Tracker.

    Pipeline flow:
        Normalized swaps → Store → Position Aggregator → Store
        Store → Evaluator → Classifier → Lifecycle Manager → Event Stream

    Ingestion keeps working while a sweep is running; the sweeps run in
    background tasks on their own intervals.

    Example:
        ```python
        from smart_money_tracker.config import get_settings
        from smart_money_tracker.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        await pipeline.ingest_batch(webhook_payload["swaps"])
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        init_schema: bool = False,
        publisher: EventPublisher | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log events instead of publishing them. Overrides
                settings.dry_run.
            init_schema: Create missing tables on start (local SQLite runs).
            publisher: Event publisher to use instead of the Redis stream.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._init_schema = init_schema
        self._custom_publisher = publisher

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Built in start()
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._store: Store | None = None
        self._publisher: EventPublisher | None = None
        self._aggregator: PositionAggregator | None = None
        self._lifecycle: WalletLifecycleManager | None = None

        self._stop_event: asyncio.Event | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def aggregator(self) -> PositionAggregator | None:
        return self._aggregator

    @property
    def lifecycle(self) -> WalletLifecycleManager | None:
        return self._lifecycle

    async def start(self) -> None:
        """Connect to storage and start the background sweeps.

        Open aggregation windows are rebuilt from unclaimed buys before any
        new swap is accepted.

        Raises:
            RuntimeError: If the pipeline is not stopped.
            StorageError: If the warm start cannot read the store.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._warm_start()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Cancel the sweeps and release the database and Redis connections.

        A sweep cancelled mid-way keeps whatever it already committed.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        settings = self._settings

        self._db_manager = DatabaseManager(settings.database.url, echo=settings.database.echo)
        await self._db_manager.check_connection_async()
        if self._init_schema:
            await self._db_manager.init_schema_async()
        self._store = SqlStore(self._db_manager)

        if self._custom_publisher is not None:
            self._publisher = self._custom_publisher
        else:
            if not self._dry_run:
                logger.debug("Initializing Redis connection...")
                self._redis = Redis.from_url(settings.redis.url)
            self._publisher = RedisStreamPublisher(
                self._redis,
                settings.redis.events_stream,
                maxlen=settings.redis.events_maxlen,
                dry_run=self._dry_run,
            )

        logger.debug("Initializing position aggregator...")
        self._aggregator = PositionAggregator(self._store, config=settings.aggregation.to_config())

        logger.debug("Initializing wallet lifecycle manager...")
        self._lifecycle = WalletLifecycleManager(
            self._store,
            WalletPerformanceEvaluator(settings.evaluation.to_config()),
            SmartMoneyClassifier(
                categories=settings.category.to_config(),
                qualification=settings.qualification.to_config(),
                deactivation=settings.deactivation.to_config(),
            ),
            self._publisher,
            discovery=settings.discovery.to_config(),
            external_timeout_seconds=settings.external_call_timeout_seconds,
        )

        if self._dry_run:
            logger.info("DRY RUN mode enabled - events will be logged but not published")

    async def _warm_start(self) -> None:
        if self._aggregator is None:
            return
        replayed = await self._aggregator.warm_start()
        if replayed:
            logger.info("Warm start replayed %d buys", replayed)

    async def _start_background_services(self) -> None:
        schedule = self._settings.schedule
        loops: list[tuple[str, Callable[[], Awaitable[Any]], int, int]] = [
            (
                "discovery",
                self._discovery_tick,
                schedule.discovery_interval_seconds,
                schedule.discovery_initial_delay_seconds,
            ),
            (
                "deactivation",
                self._deactivation_tick,
                schedule.deactivation_interval_seconds,
                schedule.deactivation_interval_seconds,
            ),
            ("alerts", self._alerts_tick, schedule.alert_interval_seconds, schedule.alert_interval_seconds),
            (
                "window-flush",
                self._flush_tick,
                schedule.window_flush_interval_seconds,
                schedule.window_flush_interval_seconds,
            ),
            (
                "report",
                self._report_tick,
                schedule.report_interval_seconds,
                schedule.report_interval_seconds,
            ),
        ]
        for name, tick, interval, initial_delay in loops:
            logger.debug("Starting %s loop (every %ds)...", name, interval)
            self._tasks.append(
                asyncio.create_task(
                    self._run_periodic(name, tick, interval=interval, initial_delay=initial_delay),
                    name=f"smart-money-{name}",
                )
            )

    async def _run_periodic(
        self,
        name: str,
        tick: Callable[[], Awaitable[Any]],
        *,
        interval: int,
        initial_delay: int,
    ) -> None:
        if not self._stop_event:
            return

        delay = initial_delay
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except TimeoutError:
                    pass
                delay = interval
                await tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("%s loop error: %s", name, e)

    async def _discovery_tick(self) -> None:
        if self._lifecycle is None:
            return
        result = await self._lifecycle.run_discovery()
        if result is not None:
            self._stats.wallets_activated += result.accepted_count

    async def _deactivation_tick(self) -> None:
        if self._lifecycle is None:
            return
        result = await self._lifecycle.run_deactivation()
        self._stats.wallets_deactivated += result.deactivated_count

    async def _alerts_tick(self) -> None:
        if self._lifecycle is None:
            return
        self._stats.alerts_published += await self._lifecycle.process_pending_aggregations()

    async def _flush_tick(self) -> None:
        if self._aggregator is None:
            return
        await self._aggregator.flush_expired()

    async def _report_tick(self) -> None:
        if self._lifecycle is None:
            return
        await self._lifecycle.aggregation_report()

    async def _stop_background_services(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []

    async def _cleanup(self) -> None:
        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None
        self._store = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def ingest(self, swap: NormalizedSwap) -> PositionAggregation | None:
        """Persist one normalized swap and feed it to the aggregator.

        Returns:
            The aggregation emitted or updated by this swap, or None.

        Raises:
            RuntimeError: If the pipeline is not running.
            InvalidSwapError: If the swap is malformed.
            StorageError: If the store rejects a write.
        """
        if self._store is None or self._aggregator is None or not self.is_running:
            raise RuntimeError(f"Cannot ingest in state {self._state}")

        swap.validate()
        try:
            await self._store.save_swap(swap)
            aggregation = await self._aggregator.ingest(swap)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise

        self._stats.swaps_processed += 1
        self._stats.last_swap_time = swap.timestamp
        if aggregation is not None:
            self._stats.aggregations_emitted += 1
        return aggregation

    async def ingest_batch(self, raw_items: Iterable[dict[str, Any]]) -> list[PositionAggregation]:
        """Parse and ingest a batch of raw swap dictionaries.

        Malformed items are logged and skipped; the rest of the batch is
        still processed.

        Returns:
            Aggregations emitted or updated by the batch.
        """
        emitted: list[PositionAggregation] = []
        for index, raw in enumerate(raw_items):
            try:
                swap = NormalizedSwap.from_dict(raw)
            except InvalidSwapError as e:
                self._stats.swaps_rejected += 1
                logger.warning("Skipping malformed swap #%d: %s", index, e)
                continue
            aggregation = await self.ingest(swap)
            if aggregation is not None:
                emitted.append(aggregation)
        return emitted

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
