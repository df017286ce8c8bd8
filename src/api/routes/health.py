from __future__ import annotations

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.api.deps import get_db_session_factory
from src.core.config import get_settings

router = APIRouter(tags=["Observability"])
logger = structlog.get_logger()


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> dict:
    """Check the evaluation store connection."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            return {"status": "ok"}
    except Exception as e:
        return {"status": "error", "message": str(e)[:100]}


async def check_event_bus() -> dict:
    """Check the event bus backend. The in-memory bus is always available."""
    settings = get_settings()
    if settings.event_bus_backend.lower() != "redis":
        return {"status": "ok", "backend": settings.event_bus_backend}
    try:
        import redis.asyncio as aioredis

        client = aioredis.from_url(settings.redis_url)
        await client.ping()
        await client.aclose()
        return {"status": "ok", "backend": "redis"}
    except Exception as e:
        return {"status": "error", "backend": "redis", "message": str(e)[:100]}


@router.get("/health", summary="Service health probe")
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),  # noqa: B008
) -> dict:
    """Return basic service, datastore and event bus status."""
    settings = get_settings()

    database_status = await check_database(session_factory)
    event_bus_status = await check_event_bus()

    overall_status = "ok"
    if database_status.get("status") != "ok" or event_bus_status.get("status") != "ok":
        overall_status = "degraded"

    payload = {
        "service": settings.app_name,
        "version": settings.version,
        "status": overall_status,
        "timestamp": datetime.now(UTC).isoformat(),
        "datastores": {
            "database": database_status,
            "event_bus": event_bus_status,
        },
    }
    logger.info("health_probe", **payload)
    return payload
