"""Wallet lifecycle transitions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from smart_money_tracker.profiler.models import WalletRecord, WalletStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[WalletStatus, frozenset[WalletStatus]] = {
    WalletStatus.CANDIDATE: frozenset({WalletStatus.ACTIVE}),
    WalletStatus.ACTIVE: frozenset({WalletStatus.DEACTIVATED}),
    # Deactivated addresses may come back through discovery.
    WalletStatus.DEACTIVATED: frozenset({WalletStatus.CANDIDATE}),
}


class InvalidTransitionError(Exception):
    """Raised when a wallet is moved to a status it cannot reach."""

    def __init__(self, address: str, current: WalletStatus, target: WalletStatus) -> None:
        super().__init__(f"Wallet {address}: cannot move from {current.value} to {target.value}")
        self.address = address
        self.current = current
        self.target = target


def can_transition(current: WalletStatus, target: WalletStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(
    record: WalletRecord,
    target: WalletStatus,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> WalletRecord:
    """Move a wallet record to `target` in place.

    Deactivation stores the reason and time. Re-entering as a candidate
    clears them.

    Raises:
        InvalidTransitionError: If the move is not allowed.
    """
    if not can_transition(record.status, target):
        raise InvalidTransitionError(record.address, record.status, target)

    now = now or datetime.now(UTC)
    previous = record.status
    record.status = target
    if target == WalletStatus.DEACTIVATED:
        record.deactivation_reason = reason
        record.deactivated_at = now
    elif target == WalletStatus.CANDIDATE:
        record.deactivation_reason = None
        record.deactivated_at = None

    logger.debug("Wallet %s: %s -> %s", record.address, previous.value, target.value)
    return record
