"""Smart-money classification, qualification and deactivation rules."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from smart_money_tracker.profiler.models import (
    ClassificationResult,
    PerformanceMetrics,
    WalletCategory,
    WalletRecord,
)

logger = logging.getLogger(__name__)

# Performance score component caps (sum to 100).
SCORE_CAPS: dict[str, float] = {
    "win_rate": 30.0,
    "pnl": 25.0,
    "trades": 15.0,
    "trade_size": 15.0,
    "sharpe": 15.0,
}

REASON_INVALID_METRICS = "invalid metrics"
REASON_INSUFFICIENT_HISTORY = "insufficient transaction history"


@dataclass(frozen=True)
class CategoryConfig:
    """Category cut-offs. Rules are evaluated sniper, hunter, trader."""

    sniper_min_early_entry_rate: float = 35.0
    sniper_max_hold_hours: float = 8.0
    hunter_min_hold_hours: float = 1.0
    hunter_max_hold_hours: float = 48.0
    trader_min_hold_hours: float = 48.0
    trader_min_avg_trade_size: float = 10_000.0


@dataclass(frozen=True)
class QualificationConfig:
    min_win_rate: float = 60.0
    min_total_pnl: float = 20_000.0
    min_avg_trade_size: float = 1_500.0
    min_total_trades: int = 30
    min_max_trade_size: float = 5_000.0
    max_inactive_days: int = 7


@dataclass(frozen=True)
class DeactivationConfig:
    min_win_rate: float = 60.0
    max_inactive_days: int = 30
    min_total_pnl: float = -5_000.0
    min_avg_trade_size: float = 2_000.0


def _days_since(then: datetime, now: datetime) -> int:
    return max(0, math.floor((now - then).total_seconds() / 86_400))


class SmartMoneyClassifier:
    """Classify wallets and decide qualification and deactivation.

    `classify` is a pure function of its inputs: identical metrics and
    reference time always give the same category, verdict and reasons.
    Every failed qualification condition is reported, not only the first.
    """

    def __init__(
        self,
        *,
        categories: CategoryConfig | None = None,
        qualification: QualificationConfig | None = None,
        deactivation: DeactivationConfig | None = None,
    ) -> None:
        self._categories = categories or CategoryConfig()
        self._qualification = qualification or QualificationConfig()
        self._deactivation = deactivation or DeactivationConfig()

    def categorize(self, metrics: PerformanceMetrics) -> WalletCategory:
        cfg = self._categories
        hold = metrics.avg_hold_time_hours
        if metrics.early_entry_rate > cfg.sniper_min_early_entry_rate and hold < cfg.sniper_max_hold_hours:
            return WalletCategory.SNIPER
        if cfg.hunter_min_hold_hours < hold < cfg.hunter_max_hold_hours:
            return WalletCategory.HUNTER
        if hold >= cfg.trader_min_hold_hours and metrics.avg_trade_size > cfg.trader_min_avg_trade_size:
            return WalletCategory.TRADER
        return WalletCategory.UNCLASSIFIED

    def performance_score(self, metrics: PerformanceMetrics) -> float:
        """Weighted, individually capped ranking score in [0, 100]."""
        win_part = min(metrics.win_rate * 0.5, SCORE_CAPS["win_rate"])
        pnl_part = min(math.log10(max(metrics.total_pnl, 1.0)) * 5.0, SCORE_CAPS["pnl"])
        trades_part = min(metrics.total_trades * 0.3, SCORE_CAPS["trades"])
        size_part = min(math.log10(max(metrics.avg_trade_size, 1.0)) * 3.0, SCORE_CAPS["trade_size"])
        sharpe_part = min(max(metrics.sharpe_ratio * 7.5, 0.0), SCORE_CAPS["sharpe"])
        total = max(0.0, win_part) + pnl_part + trades_part + size_part + sharpe_part
        return round(min(100.0, total), 2)

    def classify(self, metrics: PerformanceMetrics, *, now: datetime | None = None) -> ClassificationResult:
        """Assign a category and decide whether the wallet qualifies.

        Args:
            metrics: Metrics computed by the evaluator.
            now: Reference time for the inactivity check.

        Returns:
            ClassificationResult with every failing condition in `reasons`.
        """
        if not metrics.is_valid:
            return ClassificationResult(
                category=WalletCategory.UNCLASSIFIED,
                qualifies=False,
                reasons=(REASON_INVALID_METRICS,),
                performance_score=0.0,
            )
        if metrics.insufficient_data:
            return ClassificationResult(
                category=WalletCategory.UNCLASSIFIED,
                qualifies=False,
                reasons=(REASON_INSUFFICIENT_HISTORY,),
                performance_score=0.0,
            )

        now = now or datetime.now(UTC)
        cfg = self._qualification
        reasons: list[str] = []
        if metrics.win_rate < cfg.min_win_rate:
            reasons.append("win rate too low")
        if metrics.total_pnl < cfg.min_total_pnl:
            reasons.append("total PnL too low")
        if metrics.avg_trade_size < cfg.min_avg_trade_size:
            reasons.append("average trade size too low")
        if metrics.total_trades < cfg.min_total_trades:
            reasons.append("insufficient trades")
        if metrics.max_trade_size < cfg.min_max_trade_size:
            reasons.append("max trade size too low")
        if now - metrics.recent_activity > timedelta(days=cfg.max_inactive_days):
            reasons.append(f"inactive for {_days_since(metrics.recent_activity, now)} days")

        return ClassificationResult(
            category=self.categorize(metrics),
            qualifies=not reasons,
            reasons=tuple(reasons),
            performance_score=self.performance_score(metrics),
        )

    def deactivation_reason(self, record: WalletRecord, *, now: datetime | None = None) -> str | None:
        """First deactivation condition an active wallet meets, or None.

        Checked in order: win rate, inactivity, PnL, average trade size.
        """
        now = now or datetime.now(UTC)
        cfg = self._deactivation
        metrics = record.snapshot()
        if metrics.win_rate < cfg.min_win_rate:
            return "win rate dropped"
        if now - metrics.recent_activity > timedelta(days=cfg.max_inactive_days):
            return f"inactive for {_days_since(metrics.recent_activity, now)} days"
        if metrics.total_pnl < cfg.min_total_pnl:
            return "PnL went negative"
        if metrics.avg_trade_size < cfg.min_avg_trade_size:
            return "average trade size too small"
        return None
