"""Structured events emitted by the detection core.

Formatting and delivery to chat channels happen outside this package; the
events only carry the facts as plain, JSON-safe dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar

from smart_money_tracker.detector.models import PositionAggregation
from smart_money_tracker.profiler.models import PerformanceMetrics, WalletCategory


@dataclass(frozen=True)
class AggregationDetected:
    """A position-splitting cluster was detected."""

    event_type: ClassVar[str] = "aggregation_detected"

    aggregation: PositionAggregation
    emitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "event_type": self.event_type,
            "emitted_at": self.emitted_at.isoformat(),
            "aggregation": self.aggregation.to_dict(),
        }


@dataclass(frozen=True)
class WalletQualified:
    """A candidate wallet passed qualification and is now tracked."""

    event_type: ClassVar[str] = "wallet_qualified"

    address: str
    category: WalletCategory
    metrics: PerformanceMetrics
    performance_score: float
    emitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "event_type": self.event_type,
            "emitted_at": self.emitted_at.isoformat(),
            "address": self.address,
            "category": self.category.value,
            "performance_score": self.performance_score,
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class WalletDeactivated:
    """An active wallet stopped meeting the tracking thresholds."""

    event_type: ClassVar[str] = "wallet_deactivated"

    address: str
    reason: str
    emitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "event_type": self.event_type,
            "emitted_at": self.emitted_at.isoformat(),
            "address": self.address,
            "reason": self.reason,
        }


Event = AggregationDetected | WalletQualified | WalletDeactivated
