"""Event publishing to a Redis stream."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from smart_money_tracker.alerter.events import Event

logger = logging.getLogger(__name__)

DEFAULT_STREAM_KEY = "smart_money:events"
DEFAULT_STREAM_MAXLEN = 100_000


class EventPublisher(Protocol):
    """Anything that can deliver a structured event."""

    async def publish(self, event: Event) -> None: ...


class RedisStreamPublisher:
    """Append events to a Redis stream with XADD.

    Each entry carries the event type and the JSON-encoded payload. The
    stream is trimmed approximately to `maxlen` entries. In dry-run mode
    events are only logged.
    """

    def __init__(
        self,
        redis: Redis | None,
        stream_key: str = DEFAULT_STREAM_KEY,
        *,
        maxlen: int = DEFAULT_STREAM_MAXLEN,
        dry_run: bool = False,
    ) -> None:
        if redis is None and not dry_run:
            raise ValueError("A Redis client is required unless dry_run is enabled")
        self._redis = redis
        self._stream_key = stream_key
        self._maxlen = maxlen
        self._dry_run = dry_run
        self._published = 0

    @property
    def published_count(self) -> int:
        return self._published

    async def publish(self, event: Event) -> None:
        payload = json.dumps(event.to_dict(), sort_keys=True)
        if self._dry_run or self._redis is None:
            logger.info("[DRY RUN] Would publish %s: %s", event.event_type, payload)
            self._published += 1
            return

        await self._redis.xadd(
            self._stream_key,
            {"event_type": event.event_type, "payload": payload},
            maxlen=self._maxlen,
            approximate=True,
        )
        self._published += 1
        logger.debug("Published %s to %s", event.event_type, self._stream_key)
