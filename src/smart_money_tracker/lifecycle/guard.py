"""Single in-flight guard for expensive sweeps."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)


class GuardState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SweepInProgressError(RuntimeError):
    """Raised when a guarded sweep is requested while one is running."""


class SweepGuard:
    """Run token that lets at most one sweep run at a time.

    The token is taken without waiting and released on every exit path,
    including errors and task cancellation, so a failed sweep never leaves
    the guard stuck in RUNNING.

    Example:
        ```python
        guard = SweepGuard("discovery")
        async with guard.run():
            await sweep()
        ```
    """

    def __init__(self, name: str = "sweep") -> None:
        self._name = name
        self._lock = asyncio.Lock()
        self._state = GuardState.IDLE
        self._current: str | None = None
        self._started_at: datetime | None = None

    @property
    def state(self) -> GuardState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == GuardState.RUNNING

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    def _acquire(self, run_name: str) -> bool:
        # Check-and-set without an await in between.
        if self._lock.locked() or self._state == GuardState.RUNNING:
            return False
        self._state = GuardState.RUNNING
        self._current = run_name
        self._started_at = datetime.now(UTC)
        return True

    def _release(self) -> None:
        self._state = GuardState.IDLE
        self._current = None
        self._started_at = None

    @asynccontextmanager
    async def run(self, run_name: str | None = None) -> AsyncIterator[None]:
        """Hold the run token for the duration of the block.

        Raises:
            SweepInProgressError: If another sweep holds the token.
        """
        run_name = run_name or self._name
        if not self._acquire(run_name):
            raise SweepInProgressError(f"{self._name} already running ({self._current})")
        try:
            async with self._lock:
                yield
        finally:
            self._release()
            logger.debug("%s guard released", self._name)

    @asynccontextmanager
    async def try_run(self, run_name: str | None = None) -> AsyncIterator[bool]:
        """Like `run`, but yields False instead of raising when busy."""
        run_name = run_name or self._name
        if not self._acquire(run_name):
            logger.info("%s already running, skipping", self._name)
            yield False
            return
        try:
            async with self._lock:
                yield True
        finally:
            self._release()
            logger.debug("%s guard released", self._name)
