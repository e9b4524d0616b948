"""Wallet lifecycle manager.

Drives the periodic sweeps over tracked wallets:

- discovery: evaluate high-volume candidate wallets and promote the best
  qualifying ones to Active, at most `max_new_wallets` per sweep
- deactivation: re-check Active wallets against the deactivation rules
- aggregation alerts: publish unprocessed position aggregations

Every store write is a single step, so a sweep cancelled half-way leaves
only complete, valid records behind.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from smart_money_tracker.alerter.events import (
    AggregationDetected,
    WalletDeactivated,
    WalletQualified,
)
from smart_money_tracker.lifecycle.guard import SweepGuard
from smart_money_tracker.lifecycle.states import transition
from smart_money_tracker.profiler.models import (
    ClassificationResult,
    PerformanceMetrics,
    WalletRecord,
    WalletStatus,
)
from smart_money_tracker.storage.errors import StorageError

if TYPE_CHECKING:
    from smart_money_tracker.alerter.events import Event
    from smart_money_tracker.alerter.publisher import EventPublisher
    from smart_money_tracker.detector.models import AggregationStats
    from smart_money_tracker.ingestor.models import NormalizedSwap
    from smart_money_tracker.profiler.classifier import SmartMoneyClassifier
    from smart_money_tracker.profiler.evaluator import WalletPerformanceEvaluator
    from smart_money_tracker.storage.store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryConfig:
    """Candidate selection and per-sweep cap for discovery."""

    max_new_wallets: int = 10
    lookback: timedelta = timedelta(days=14)
    min_volume_usd: float = 50_000.0
    min_trades: int = 10
    min_avg_trade_usd: float = 2_000.0
    min_unique_tokens: int = 3
    max_candidates: int = 300
    history_limit: int = 100


@dataclass
class DiscoveryResult:
    """Outcome of one discovery sweep."""

    started_at: datetime
    finished_at: datetime | None = None
    candidates_found: int = 0
    skipped_active: int = 0
    evaluated: int = 0
    qualified: int = 0
    failed: int = 0
    accepted: list[str] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    def to_dict(self) -> dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "candidates_found": self.candidates_found,
            "skipped_active": self.skipped_active,
            "evaluated": self.evaluated,
            "qualified": self.qualified,
            "failed": self.failed,
            "accepted": list(self.accepted),
        }


@dataclass
class DeactivationResult:
    """Outcome of one deactivation sweep."""

    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    # address -> reason
    deactivated: dict[str, str] = field(default_factory=dict)

    @property
    def deactivated_count(self) -> int:
        return len(self.deactivated)

    def to_dict(self) -> dict[str, object]:
        return {
            "checked": self.checked,
            "refreshed": self.refreshed,
            "failed": self.failed,
            "deactivated": dict(self.deactivated),
        }


@dataclass(frozen=True)
class _Qualified:
    address: str
    existing: WalletRecord | None
    metrics: PerformanceMetrics
    verdict: ClassificationResult


class WalletLifecycleManager:
    """Move wallets through Candidate -> Active -> Deactivated.

    Discovery is single in-flight: a second call while one is running
    returns None immediately. Lookups of token first-seen times and event
    publishing are bounded by `external_timeout_seconds`; a timed-out
    lookup degrades to no early-entry data and a timed-out publish is
    logged and reported as not delivered.
    """

    def __init__(
        self,
        store: Store,
        evaluator: WalletPerformanceEvaluator,
        classifier: SmartMoneyClassifier,
        publisher: EventPublisher,
        *,
        discovery: DiscoveryConfig | None = None,
        external_timeout_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._evaluator = evaluator
        self._classifier = classifier
        self._publisher = publisher
        self._discovery = discovery or DiscoveryConfig()
        self._timeout = external_timeout_seconds
        self._discovery_guard = SweepGuard("discovery")
        self._deactivation_guard = SweepGuard("deactivation")

    @property
    def discovery_guard(self) -> SweepGuard:
        return self._discovery_guard

    @property
    def deactivation_guard(self) -> SweepGuard:
        return self._deactivation_guard

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _token_first_seen(self, history: list[NormalizedSwap]) -> dict[str, datetime]:
        tokens = sorted({swap.token_address for swap in history})
        if not tokens:
            return {}
        try:
            return await asyncio.wait_for(self._store.get_token_first_seen(tokens), timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "Token first-seen lookup timed out after %.1fs (%d tokens); early entries not counted",
                self._timeout,
                len(tokens),
            )
            return {}

    async def _publish(self, event: Event) -> bool:
        try:
            await asyncio.wait_for(self._publisher.publish(event), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Publishing %s timed out after %.1fs", event.event_type, self._timeout)
            return False
        except Exception as e:
            logger.warning("Publishing %s failed: %s", event.event_type, e)
            return False
        return True

    async def evaluate_wallet(
        self, address: str, *, now: datetime | None = None
    ) -> tuple[PerformanceMetrics, ClassificationResult]:
        """Evaluate and classify a single wallet from its stored history."""
        now = now or datetime.now(UTC)
        history = await self._store.get_wallet_history(address, self._discovery.history_limit)
        first_seen = await self._token_first_seen(history)
        metrics = self._evaluator.evaluate(history, token_first_seen=first_seen, now=now)
        return metrics, self._classifier.classify(metrics, now=now)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def run_discovery(self, now: datetime | None = None) -> DiscoveryResult | None:
        """Run one discovery sweep.

        Returns:
            DiscoveryResult, or None when a sweep is already running.

        Raises:
            StorageError: If the candidate list cannot be loaded.
        """
        async with self._discovery_guard.try_run() as acquired:
            if not acquired:
                return None
            return await self._discover(now or datetime.now(UTC))

    async def _discover(self, now: datetime) -> DiscoveryResult:
        cfg = self._discovery
        result = DiscoveryResult(started_at=now)

        candidates = await self._store.get_candidate_wallets(
            since=now - cfg.lookback,
            min_volume_usd=cfg.min_volume_usd,
            min_trades=cfg.min_trades,
            min_avg_trade_usd=cfg.min_avg_trade_usd,
            min_unique_tokens=cfg.min_unique_tokens,
            limit=cfg.max_candidates,
        )
        result.candidates_found = len(candidates)
        logger.info("Discovery: %d candidate wallets", len(candidates))

        qualified: list[_Qualified] = []
        for address in candidates:
            try:
                existing = await self._store.get_wallet(address)
                if existing is not None and existing.status == WalletStatus.ACTIVE:
                    result.skipped_active += 1
                    continue
                metrics, verdict = await self.evaluate_wallet(address, now=now)
                result.evaluated += 1
            except Exception:
                result.failed += 1
                logger.exception("Discovery: failed to evaluate %s", address)
                continue

            if verdict.qualifies:
                qualified.append(_Qualified(address, existing, metrics, verdict))
            else:
                logger.debug("Discovery: %s not qualified (%s)", address, "; ".join(verdict.reasons))

        result.qualified = len(qualified)
        qualified.sort(key=lambda q: (-q.verdict.performance_score, q.address))
        for item in qualified[: cfg.max_new_wallets]:
            try:
                record = await self._activate(item, now)
            except Exception:
                result.failed += 1
                logger.exception("Discovery: failed to activate %s", item.address)
                continue
            result.accepted.append(record.address)
            await self._publish(
                WalletQualified(
                    address=record.address,
                    category=record.category,
                    metrics=item.metrics,
                    performance_score=record.performance_score,
                )
            )

        result.finished_at = datetime.now(UTC)
        logger.info(
            "Discovery complete: %d candidates, %d evaluated, %d qualified, %d accepted, %d failed",
            result.candidates_found,
            result.evaluated,
            result.qualified,
            result.accepted_count,
            result.failed,
        )
        return result

    async def _activate(self, item: _Qualified, now: datetime) -> WalletRecord:
        record = item.existing or WalletRecord(address=item.address, created_at=now)
        if record.status == WalletStatus.DEACTIVATED:
            transition(record, WalletStatus.CANDIDATE, now=now)
        record.apply_metrics(
            item.metrics,
            evaluated_at=now,
            performance_score=item.verdict.performance_score,
            category=item.verdict.category,
        )
        transition(record, WalletStatus.ACTIVE, now=now)
        await self._store.upsert_wallet(record)
        logger.info(
            "Wallet %s now active (%s, score %.2f)",
            record.address,
            record.category.value,
            record.performance_score,
        )
        return record

    # ------------------------------------------------------------------
    # Deactivation
    # ------------------------------------------------------------------

    async def run_deactivation(self, now: datetime | None = None) -> DeactivationResult:
        """Re-check every active wallet and deactivate the failing ones.

        Raises:
            SweepInProgressError: If a deactivation sweep is already running.
            StorageError: If the active wallets cannot be loaded.
        """
        async with self._deactivation_guard.run():
            return await self._deactivate(now or datetime.now(UTC))

    async def _deactivate(self, now: datetime) -> DeactivationResult:
        result = DeactivationResult()
        wallets = await self._store.get_active_wallets()

        for record in wallets:
            result.checked += 1
            try:
                if await self._refresh_snapshot(record, now):
                    result.refreshed += 1
                reason = self._classifier.deactivation_reason(record, now=now)
                if reason is None:
                    continue
                transition(record, WalletStatus.DEACTIVATED, reason=reason, now=now)
                if not await self._store.deactivate_wallet(record.address, reason, now):
                    logger.warning("Wallet %s was no longer active", record.address)
                    continue
            except Exception:
                result.failed += 1
                logger.exception("Deactivation: failed to check %s", record.address)
                continue

            result.deactivated[record.address] = reason
            logger.info("Wallet %s deactivated: %s", record.address, reason)
            await self._publish(WalletDeactivated(address=record.address, reason=reason))

        logger.info(
            "Deactivation complete: %d checked, %d refreshed, %d deactivated, %d failed",
            result.checked,
            result.refreshed,
            result.deactivated_count,
            result.failed,
        )
        return result

    async def _refresh_snapshot(self, record: WalletRecord, now: datetime) -> bool:
        """Recompute the wallet's metrics when enough history exists."""
        metrics, verdict = await self.evaluate_wallet(record.address, now=now)
        if metrics.insufficient_data or not metrics.is_valid:
            return False
        record.apply_metrics(
            metrics,
            evaluated_at=now,
            performance_score=verdict.performance_score,
            category=verdict.category,
        )
        await self._store.upsert_wallet(record)
        return True

    # ------------------------------------------------------------------
    # Aggregations
    # ------------------------------------------------------------------

    async def process_pending_aggregations(self, limit: int = 100) -> int:
        """Publish unprocessed aggregations and mark them processed.

        An aggregation whose event could not be delivered stays unprocessed
        and is retried on the next call.

        Returns:
            Number of aggregations published and marked.
        """
        pending = await self._store.get_unprocessed_aggregations(limit)
        sent = 0
        for aggregation in pending:
            if not await self._publish(AggregationDetected(aggregation=aggregation)):
                continue
            try:
                await self._store.mark_aggregation_processed(aggregation.aggregation_id, alert_sent=True)
            except StorageError:
                logger.exception("Failed to mark aggregation %s processed", aggregation.aggregation_id)
                continue
            sent += 1

        if pending:
            logger.info("Published %d/%d pending aggregations", sent, len(pending))
        return sent

    async def aggregation_report(self) -> AggregationStats:
        stats = await self._store.get_aggregation_stats()
        logger.info(
            "Aggregations: %d total, %d high suspicion, $%.2f total value, avg score %.2f, %d unprocessed",
            stats.total_positions,
            stats.high_suspicion_positions,
            stats.total_value_usd,
            stats.avg_suspicion_score,
            stats.unprocessed_positions,
        )
        return stats
