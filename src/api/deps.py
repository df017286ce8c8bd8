from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.domain.events import EventBusProtocol
from src.infrastructure.db.session import get_session_factory
from src.infrastructure.repositories.evaluations import EvaluationRepository
from src.libs.event_bus import InMemoryEventBus, RedisEventBus, create_event_bus


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for components that open their own transactions."""
    return get_session_factory()


@lru_cache
def get_event_bus() -> InMemoryEventBus | RedisEventBus:
    """Process-wide event bus selected by settings."""
    return create_event_bus()


def get_evaluation_repository(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),  # noqa: B008
    event_bus: EventBusProtocol = Depends(get_event_bus),  # noqa: B008
) -> EvaluationRepository:
    return EvaluationRepository(session_factory, event_bus)
