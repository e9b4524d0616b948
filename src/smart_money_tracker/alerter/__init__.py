"""Alerter module - Structured events and their publication."""

from smart_money_tracker.alerter.events import (
    AggregationDetected,
    Event,
    WalletDeactivated,
    WalletQualified,
)
from smart_money_tracker.alerter.publisher import EventPublisher, RedisStreamPublisher

__all__ = [
    "AggregationDetected",
    "Event",
    "EventPublisher",
    "RedisStreamPublisher",
    "WalletDeactivated",
    "WalletQualified",
]
