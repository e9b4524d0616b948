"""Anomaly detection layer - Position-splitting identification."""

from smart_money_tracker.detector.models import (
    AggregationStats,
    PositionAggregation,
    PositionPurchase,
    RiskLevel,
)
from smart_money_tracker.detector.position_aggregator import AggregationConfig, PositionAggregator

__all__ = [
    "AggregationConfig",
    "AggregationStats",
    "PositionAggregation",
    "PositionAggregator",
    "PositionPurchase",
    "RiskLevel",
]
