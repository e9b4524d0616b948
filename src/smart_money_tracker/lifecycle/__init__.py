"""Lifecycle module - Wallet status transitions and periodic sweeps."""

from smart_money_tracker.lifecycle.guard import GuardState, SweepGuard, SweepInProgressError
from smart_money_tracker.lifecycle.manager import (
    DeactivationResult,
    DiscoveryConfig,
    DiscoveryResult,
    WalletLifecycleManager,
)
from smart_money_tracker.lifecycle.states import InvalidTransitionError, transition

__all__ = [
    "DeactivationResult",
    "DiscoveryConfig",
    "DiscoveryResult",
    "GuardState",
    "InvalidTransitionError",
    "SweepGuard",
    "SweepInProgressError",
    "WalletLifecycleManager",
    "transition",
]
