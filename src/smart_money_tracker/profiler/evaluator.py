"""Wallet performance evaluation from swap history."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import numpy as np

from smart_money_tracker.ingestor.models import NormalizedSwap, SwapType
from smart_money_tracker.profiler.models import PerformanceMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationConfig:
    min_transactions: int = 30
    max_history: int = 100
    early_entry_window: timedelta = timedelta(minutes=30)


@dataclass
class _TokenPosition:
    bought_usd: float = 0.0
    sold_usd: float = 0.0
    sell_count: int = 0
    first_buy: datetime | None = None
    first_sell: datetime | None = None
    buy_times: list[datetime] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.sell_count > 0

    @property
    def realized_pnl(self) -> float:
        return self.sold_usd - self.bought_usd


def _safe_amount(value: float) -> float | None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount) or amount < 0:
        return None
    return amount


def _clamp_rate(value: float) -> float:
    return min(100.0, max(0.0, value))


class WalletPerformanceEvaluator:
    """Compute PerformanceMetrics for a wallet's recent trading history.

    Evaluation is a pure function of the history and the token first-seen
    map: no randomness and no I/O. Short histories yield metrics flagged
    `insufficient_data` instead of an error.
    """

    def __init__(self, config: EvaluationConfig | None = None) -> None:
        self._cfg = config or EvaluationConfig()

    @property
    def config(self) -> EvaluationConfig:
        return self._cfg

    def evaluate(
        self,
        history: Sequence[NormalizedSwap],
        *,
        token_first_seen: Mapping[str, datetime] | None = None,
        now: datetime | None = None,
    ) -> PerformanceMetrics:
        """Evaluate a wallet.

        Args:
            history: Transactions ordered most recent first.
            token_first_seen: First trade timestamp per token address, used
                for the early-entry rate. Tokens missing from the map never
                count as early entries.
            now: Reference time for the insufficient-data marker.

        Returns:
            PerformanceMetrics for at most `max_history` recent transactions.
        """
        now = now or datetime.now(UTC)
        if len(history) < self._cfg.min_transactions:
            return PerformanceMetrics.insufficient(now)

        recent = list(history[: self._cfg.max_history])
        first_seen = token_first_seen or {}

        positions: dict[str, _TokenPosition] = {}
        sizes: list[float] = []
        rejected = 0
        for swap in sorted(recent, key=lambda s: s.timestamp):
            amount = _safe_amount(swap.amount_usd)
            if amount is None:
                rejected += 1
                amount = 0.0
            else:
                sizes.append(amount)

            pos = positions.setdefault(swap.token_address, _TokenPosition())
            if swap.swap_type == SwapType.BUY:
                pos.bought_usd += amount
                pos.buy_times.append(swap.timestamp)
                if pos.first_buy is None:
                    pos.first_buy = swap.timestamp
            else:
                pos.sold_usd += amount
                pos.sell_count += 1
                if pos.first_sell is None:
                    pos.first_sell = swap.timestamp

        if rejected:
            logger.warning("Ignored %d transactions with invalid amounts during evaluation", rejected)

        completed = [p for p in positions.values() if p.is_completed]
        wins = sum(1 for p in completed if p.realized_pnl > 0)
        total_pnl = float(sum(p.realized_pnl for p in completed))
        win_rate = (wins / len(completed) * 100.0) if completed else 0.0

        if sizes:
            arr = np.asarray(sizes, dtype=float)
            avg_trade_size = float(arr.mean())
            max_trade_size = float(arr.max())
            min_trade_size = float(arr.min())
        else:
            avg_trade_size = max_trade_size = min_trade_size = 0.0

        hold_hours = [
            (p.first_sell - p.first_buy).total_seconds() / 3600.0
            for p in completed
            if p.first_buy is not None and p.first_sell is not None and p.first_sell >= p.first_buy
        ]
        avg_hold_time_hours = float(np.mean(hold_hours)) if hold_hours else 0.0

        buy_count = sum(len(p.buy_times) for p in positions.values())
        early = 0
        for token, pos in positions.items():
            seen_at = first_seen.get(token)
            if seen_at is None:
                continue
            for ts in pos.buy_times:
                delta = ts - seen_at
                if timedelta(0) <= delta <= self._cfg.early_entry_window:
                    early += 1
        early_entry_rate = (early / buy_count * 100.0) if buy_count else 0.0

        sharpe_ratio = 0.0
        if buy_count > 0 and avg_trade_size > 0:
            sharpe_ratio = (total_pnl / buy_count) / avg_trade_size

        return PerformanceMetrics(
            total_pnl=total_pnl,
            win_rate=_clamp_rate(win_rate),
            total_trades=len(recent),
            avg_trade_size=avg_trade_size,
            max_trade_size=max_trade_size,
            min_trade_size=min_trade_size,
            sharpe_ratio=sharpe_ratio,
            max_drawdown=self._max_drawdown(completed),
            avg_hold_time_hours=avg_hold_time_hours,
            early_entry_rate=_clamp_rate(early_entry_rate),
            recent_activity=max(s.timestamp for s in recent),
            completed_positions=len(completed),
        )

    @staticmethod
    def _max_drawdown(completed: list[_TokenPosition]) -> float:
        ordered = sorted(completed, key=lambda p: p.first_sell or datetime.min.replace(tzinfo=UTC))
        cumulative = 0.0
        peak = 0.0
        drawdown = 0.0
        for pos in ordered:
            cumulative += pos.realized_pnl
            peak = max(peak, cumulative)
            drawdown = max(drawdown, peak - cumulative)
        return drawdown
