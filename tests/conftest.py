from __future__ import annotations

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from src.api.deps import get_db_session_factory, get_event_bus
from src.api.main import app
from src.core.config import Settings
from src.infrastructure.db.base import Base
from src.infrastructure.repositories.evaluations import EvaluationRepository
from src.libs.event_bus import InMemoryEventBus

from tests.utils import RecordingEventBus


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        REPOSITORY_MAX_RETRIES=3,
        REPOSITORY_RETRY_DELAY_SECONDS=0,
        REPOSITORY_VALIDATE_UUIDS=False,
        EVENT_BUS_BACKEND="memory",
    )


@pytest.fixture()
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture()
def repository(
    session_factory: async_sessionmaker[AsyncSession],
    event_bus: RecordingEventBus,
    settings: Settings,
) -> EvaluationRepository:
    return EvaluationRepository(session_factory, event_bus, settings=settings)


@pytest.fixture()
def mock_session() -> AsyncMock:
    """AsyncSession double; ``add`` is sync on the real session."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.__aenter__.return_value = session
    return session


@pytest.fixture()
def mock_session_factory(mock_session: AsyncMock) -> MagicMock:
    return MagicMock(return_value=mock_session)


@pytest.fixture()
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the in-memory database and an in-memory bus."""
    bus = InMemoryEventBus()
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_event_bus] = lambda: bus
    transport = ASGITransport(app=app)  # type: ignore
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.event_bus = bus  # type: ignore
        yield client
    app.dependency_overrides.pop(get_db_session_factory, None)
    app.dependency_overrides.pop(get_event_bus, None)
