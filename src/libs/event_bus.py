"""Event bus implementations the repository publishes committed events to.

``InMemoryEventBus`` keeps a history and calls local subscribers, which is
what tests and single-process deployments use. ``RedisEventBus`` publishes
each event as JSON on a Redis pub/sub channel named ``<prefix>:<event type>``.
"""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Awaitable, Callable

import redis.asyncio as aioredis
import structlog
from src.core.config import Settings, get_settings
from src.domain.events import DomainEvent

logger = structlog.get_logger()

EventHandler = Callable[[DomainEvent], Awaitable[None]]

WILDCARD = "*"


class InMemoryEventBus:
    """Process-local bus. Handlers run in subscription order on publish."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self._history.append(event)
        for handler in [*self._handlers.get(event.type, []), *self._handlers.get(WILDCARD, [])]:
            try:
                await handler(event)
            except Exception as exc:
                logger.error(
                    "event_handler_failed",
                    event_type=event.type,
                    event_id=event.event_id,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(exc),
                )

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register ``handler`` for ``event_type``, or for every type with ``"*"``."""
        self._handlers[event_type].append(handler)

    def get_history(self, event_type: str | None = None) -> list[DomainEvent]:
        if event_type is None:
            return list(self._history)
        return [event for event in self._history if event.type == event_type]

    def clear_history(self) -> None:
        self._history.clear()

    async def close(self) -> None:
        self._handlers.clear()


class RedisEventBus:
    """Publishes events to Redis pub/sub. Delivery to subscribers is Redis's job."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        channel_prefix: str = "events",
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._channel_prefix = channel_prefix
        self._redis = client

    def channel_for(self, event_type: str) -> str:
        return f"{self._channel_prefix}:{event_type}"

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def publish(self, event: DomainEvent) -> None:
        channel = self.channel_for(event.type)
        receivers = await self._client().publish(channel, json.dumps(event.to_dict(), default=str))
        logger.debug("event_published_redis", channel=channel, receivers=receivers)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_event_bus(settings: Settings | None = None) -> InMemoryEventBus | RedisEventBus:
    """Build the bus selected by ``EVENT_BUS_BACKEND``.

    - ``memory``: InMemoryEventBus (tests, single process)
    - ``redis``: RedisEventBus on ``REDIS_URL``
    """
    settings = settings or get_settings()
    backend = settings.event_bus_backend.lower()
    if backend == "memory":
        return InMemoryEventBus()
    if backend == "redis":
        return RedisEventBus(
            redis_url=settings.redis_url,
            channel_prefix=settings.event_channel_prefix,
        )
    raise ValueError(f"Unsupported event bus backend: {settings.event_bus_backend}")
