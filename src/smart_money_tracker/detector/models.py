"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class RiskLevel(str, Enum):
    """Coarse risk bucket derived from a suspicion score."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_score(cls, score: float, *, high: float = 75.0, medium: float = 50.0) -> RiskLevel:
        if score >= high:
            return cls.HIGH
        if score >= medium:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class PositionPurchase:
    """One buy referenced by a position aggregation."""

    transaction_id: str
    amount_usd: float
    timestamp: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "transaction_id": self.transaction_id,
            "amount_usd": self.amount_usd,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> PositionPurchase:
        return cls(
            transaction_id=str(data["transaction_id"]),
            amount_usd=float(data["amount_usd"]),  # type: ignore[arg-type]
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
        )


@dataclass(frozen=True)
class PositionAggregation:
    """A cluster of similarly-sized buys of one token by one wallet.

    Emitted when a wallet appears to split one large purchase into several
    smaller ones. Identified by (wallet_address, token_address,
    first_buy_time); `aggregation_id` is a stable digest of that key.

    Attributes:
        aggregation_id: Stable identifier of the cluster.
        purchases: Buys in the cluster, ordered by timestamp.
        suspicion_score: Heuristic 0-100 rating of how mechanical the
            buying pattern looks.
        risk_level: Bucket derived from suspicion_score.
        is_processed: Set once a downstream consumer handled the record.
        alert_sent: Set once the aggregation was announced.
        detected_at: When the aggregation was first emitted.
    """

    aggregation_id: str
    wallet_address: str
    token_address: str
    token_symbol: str
    total_usd: float
    purchase_count: int
    avg_purchase_size: float
    max_purchase_size: float
    min_purchase_size: float
    size_std_deviation: float
    size_coefficient_of_variation: float
    time_window_minutes: float
    first_buy_time: datetime
    last_buy_time: datetime
    suspicion_score: float
    risk_level: RiskLevel
    purchases: tuple[PositionPurchase, ...]
    is_processed: bool = False
    alert_sent: bool = False
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def transaction_ids(self) -> list[str]:
        return [p.transaction_id for p in self.purchases]

    @property
    def is_high_risk(self) -> bool:
        """Return True if the cluster falls in the HIGH bucket."""
        return self.risk_level == RiskLevel.HIGH

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for Redis stream publishing."""
        return {
            "aggregation_id": self.aggregation_id,
            "wallet_address": self.wallet_address,
            "token_address": self.token_address,
            "token_symbol": self.token_symbol,
            "total_usd": self.total_usd,
            "purchase_count": self.purchase_count,
            "avg_purchase_size": self.avg_purchase_size,
            "max_purchase_size": self.max_purchase_size,
            "min_purchase_size": self.min_purchase_size,
            "size_std_deviation": self.size_std_deviation,
            "size_coefficient_of_variation": self.size_coefficient_of_variation,
            "time_window_minutes": self.time_window_minutes,
            "first_buy_time": self.first_buy_time.isoformat(),
            "last_buy_time": self.last_buy_time.isoformat(),
            "suspicion_score": self.suspicion_score,
            "risk_level": self.risk_level.value,
            "purchases": [p.to_dict() for p in self.purchases],
            "is_processed": self.is_processed,
            "alert_sent": self.alert_sent,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class AggregationStats:
    """Summary of persisted aggregations for periodic reporting."""

    total_positions: int = 0
    high_suspicion_positions: int = 0
    total_value_usd: float = 0.0
    avg_suspicion_score: float = 0.0
    unprocessed_positions: int = 0
    alerts_sent: int = 0
    risk_distribution: dict[str, int] = field(default_factory=dict)
    top_wallets_by_positions: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_positions": self.total_positions,
            "high_suspicion_positions": self.high_suspicion_positions,
            "total_value_usd": self.total_value_usd,
            "avg_suspicion_score": self.avg_suspicion_score,
            "unprocessed_positions": self.unprocessed_positions,
            "alerts_sent": self.alerts_sent,
            "risk_distribution": dict(self.risk_distribution),
            "top_wallets_by_positions": [
                {"wallet_address": wallet, "positions": count}
                for wallet, count in self.top_wallets_by_positions
            ],
        }
