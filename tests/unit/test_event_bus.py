from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from src.core.config import Settings
from src.domain.events import DomainEvent, EventTypes
from src.libs.event_bus import InMemoryEventBus, RedisEventBus, create_event_bus


def _event(event_type: EventTypes = EventTypes.EVALUATION_CREATED) -> DomainEvent:
    return DomainEvent.create(event_type, {"evaluation_id": "e-1", "score": 82})


class TestInMemoryEventBus:
    @pytest.mark.asyncio
    async def test_history_is_kept_per_type(self) -> None:
        bus = InMemoryEventBus()

        await bus.publish(_event())
        await bus.publish(_event(EventTypes.EVALUATION_DELETED))

        assert len(bus.get_history()) == 2
        assert [e.type for e in bus.get_history("evaluation.deleted")] == ["evaluation.deleted"]

        bus.clear_history()
        assert bus.get_history() == []

    @pytest.mark.asyncio
    async def test_handlers_receive_matching_and_wildcard_events(self) -> None:
        bus = InMemoryEventBus()
        created = AsyncMock()
        everything = AsyncMock()
        bus.subscribe("evaluation.created", created)
        bus.subscribe("*", everything)

        await bus.publish(_event())
        await bus.publish(_event(EventTypes.EVALUATION_UPDATED))

        assert created.await_count == 1
        assert everything.await_count == 2

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_the_others(self) -> None:
        bus = InMemoryEventBus()
        broken = AsyncMock(side_effect=RuntimeError("handler crashed"))
        healthy = AsyncMock()
        bus.subscribe("evaluation.created", broken)
        bus.subscribe("evaluation.created", healthy)

        await bus.publish(_event())

        healthy.assert_awaited_once()
        assert len(bus.get_history()) == 1


class TestRedisEventBus:
    @pytest.mark.asyncio
    async def test_publishes_json_on_prefixed_channel(self) -> None:
        client = AsyncMock()
        client.publish.return_value = 1
        bus = RedisEventBus(channel_prefix="evaluations", client=client)
        event = _event()

        await bus.publish(event)

        channel, body = client.publish.await_args.args
        assert channel == "evaluations:evaluation.created"
        decoded = json.loads(body)
        assert decoded["event_id"] == event.event_id
        assert decoded["type"] == "evaluation.created"
        assert decoded["payload"] == {"evaluation_id": "e-1", "score": 82}

    @pytest.mark.asyncio
    async def test_close_releases_the_client(self) -> None:
        client = AsyncMock()
        bus = RedisEventBus(client=client)

        await bus.close()
        await bus.close()

        client.aclose.assert_awaited_once()


class TestCreateEventBus:
    def test_memory_backend(self) -> None:
        bus = create_event_bus(Settings(EVENT_BUS_BACKEND="memory"))

        assert isinstance(bus, InMemoryEventBus)

    def test_redis_backend(self) -> None:
        bus = create_event_bus(
            Settings(EVENT_BUS_BACKEND="redis", EVENT_CHANNEL_PREFIX="evaluation-core")
        )

        assert isinstance(bus, RedisEventBus)
        assert bus.channel_for("evaluation.updated") == "evaluation-core:evaluation.updated"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            create_event_bus(Settings(EVENT_BUS_BACKEND="kafka"))
