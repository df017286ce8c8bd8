from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from src.api.deps import get_event_bus
from src.api.routes import register_routes
from src.core.config import get_settings
from src.core.logging import setup_logging
from src.domain.errors import AppError
from src.infrastructure.db.session import dispose_engine
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger()


def create_app() -> FastAPI:
    """Application factory for the evaluation API."""
    setup_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "service_startup",
            service=settings.app_name,
            environment=settings.environment,
            version=settings.version,
            event_bus_backend=settings.event_bus_backend,
        )
        yield
        await get_event_bus().close()
        await dispose_engine()
        logger.info("service_shutdown", service=settings.app_name)

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    register_routes(app)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.info(
            "request_failed",
            error_code=exc.error_code,
            status_code=exc.status_code,
            detail=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid4()))
        bind_contextvars(
            request_id=request_id,
            path=str(request.url.path),
            method=request.method,
        )
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_contextvars()

    return app


app = create_app()
