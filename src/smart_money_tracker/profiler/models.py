"""Data models for the profiler module."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class WalletCategory(str, Enum):
    """Behavioral category of a wallet."""

    SNIPER = "sniper"
    HUNTER = "hunter"
    TRADER = "trader"
    UNCLASSIFIED = "unclassified"


class WalletStatus(str, Enum):
    """Lifecycle status of a tracked wallet."""

    CANDIDATE = "candidate"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


@dataclass(frozen=True)
class PerformanceMetrics:
    """Trading performance computed from a wallet's recent history.

    Attributes:
        total_pnl: Realized PnL over completed positions (USD).
        win_rate: Percent of completed positions with positive PnL.
        total_trades: Number of transactions considered.
        avg_trade_size: Mean buy/sell amount (USD).
        max_trade_size: Largest buy/sell amount (USD).
        min_trade_size: Smallest buy/sell amount (USD).
        sharpe_ratio: PnL per buy divided by mean trade size. A smoothness
            proxy, not a statistical Sharpe ratio.
        max_drawdown: Largest peak-to-trough drop of cumulative realized
            PnL (USD).
        avg_hold_time_hours: Mean time from first buy to first sell over
            completed positions.
        early_entry_rate: Percent of buys made shortly after the token
            first traded.
        recent_activity: Timestamp of the newest transaction.
        completed_positions: Token positions with at least one sell.
        insufficient_data: True when history was too short to evaluate.
    """

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
    recent_activity: datetime
    completed_positions: int = 0
    insufficient_data: bool = False

    @classmethod
    def insufficient(cls, now: datetime | None = None) -> PerformanceMetrics:
        """All-zero metrics flagged as insufficient data."""
        return cls(
            total_pnl=0.0,
            win_rate=0.0,
            total_trades=0,
            avg_trade_size=0.0,
            max_trade_size=0.0,
            min_trade_size=0.0,
            sharpe_ratio=0.0,
            max_drawdown=0.0,
            avg_hold_time_hours=0.0,
            early_entry_rate=0.0,
            recent_activity=now or datetime.now(UTC),
            insufficient_data=True,
        )

    def numeric_values(self) -> dict[str, float]:
        return {
            "total_pnl": self.total_pnl,
            "win_rate": self.win_rate,
            "total_trades": float(self.total_trades),
            "avg_trade_size": self.avg_trade_size,
            "max_trade_size": self.max_trade_size,
            "min_trade_size": self.min_trade_size,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "avg_hold_time_hours": self.avg_hold_time_hours,
            "early_entry_rate": self.early_entry_rate,
        }

    @property
    def is_valid(self) -> bool:
        """Return True if every numeric field is a finite number."""
        try:
            return all(math.isfinite(float(v)) for v in self.numeric_values().values()) and isinstance(
                self.recent_activity, datetime
            )
        except (TypeError, ValueError):
            return False

    def to_dict(self) -> dict[str, object]:
        return {
            **self.numeric_values(),
            "total_trades": self.total_trades,
            "recent_activity": self.recent_activity.isoformat(),
            "completed_positions": self.completed_positions,
            "insufficient_data": self.insufficient_data,
        }


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one wallet's metrics."""

    category: WalletCategory
    qualifies: bool
    reasons: tuple[str, ...]
    performance_score: float

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "qualifies": self.qualifies,
            "reasons": list(self.reasons),
            "performance_score": self.performance_score,
        }


@dataclass
class WalletRecord:
    """A tracked wallet and its latest metrics snapshot.

    The status field only changes through lifecycle transitions.
    """

    address: str
    category: WalletCategory = WalletCategory.UNCLASSIFIED
    status: WalletStatus = WalletStatus.CANDIDATE
    total_pnl: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    avg_trade_size: float = 0.0
    max_trade_size: float = 0.0
    min_trade_size: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    avg_hold_time_hours: float = 0.0
    early_entry_rate: float = 0.0
    performance_score: float = 0.0
    last_active_at: datetime | None = None
    deactivation_reason: str | None = None
    last_evaluated_at: datetime | None = None
    deactivated_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def apply_metrics(
        self,
        metrics: PerformanceMetrics,
        *,
        evaluated_at: datetime,
        performance_score: float | None = None,
        category: WalletCategory | None = None,
    ) -> None:
        """Overwrite the snapshot with freshly computed metrics."""
        self.total_pnl = metrics.total_pnl
        self.win_rate = metrics.win_rate
        self.total_trades = metrics.total_trades
        self.avg_trade_size = metrics.avg_trade_size
        self.max_trade_size = metrics.max_trade_size
        self.min_trade_size = metrics.min_trade_size
        self.sharpe_ratio = metrics.sharpe_ratio
        self.max_drawdown = metrics.max_drawdown
        self.avg_hold_time_hours = metrics.avg_hold_time_hours
        self.early_entry_rate = metrics.early_entry_rate
        self.last_active_at = metrics.recent_activity
        self.last_evaluated_at = evaluated_at
        if performance_score is not None:
            self.performance_score = performance_score
        if category is not None:
            self.category = category

    def snapshot(self) -> PerformanceMetrics:
        """The stored snapshot as a metrics value."""
        return PerformanceMetrics(
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
            recent_activity=self.last_active_at or self.created_at,
        )
