"""Shared library helpers."""

from src.libs.event_bus import (
    InMemoryEventBus,
    RedisEventBus,
    create_event_bus,
)

__all__ = [
    "InMemoryEventBus",
    "RedisEventBus",
    "create_event_bus",
]
