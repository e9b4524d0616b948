"""Ingestion layer - Normalized swap events consumed by the core."""

from smart_money_tracker.ingestor.models import InvalidSwapError, NormalizedSwap, SwapType

__all__ = [
    "InvalidSwapError",
    "NormalizedSwap",
    "SwapType",
]
