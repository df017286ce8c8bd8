from __future__ import annotations

from collections.abc import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.domain.events import DomainEvent, EventBusProtocol

logger = structlog.get_logger()


class UnitOfWork:
    """One session, one transaction, and the events that describe its effect.

    Events staged during the unit are published only after ``commit`` has
    returned. A failed body or a failed commit rolls back and discards them.
    Publication failures are logged and never undo the committed write.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        event_bus: EventBusProtocol | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._session: AsyncSession | None = None
        self._staged: list[DomainEvent] = []
        self.published: list[DomainEvent] = []

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("UnitOfWork session accessed outside of 'async with'")
        return self._session

    @property
    def staged_events(self) -> tuple[DomainEvent, ...]:
        return tuple(self._staged)

    def stage(self, event: DomainEvent) -> None:
        self._staged.append(event)

    async def __aenter__(self) -> UnitOfWork:
        self._session = self._session_factory()
        logger.debug("uow_enter")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        session = self.session
        try:
            if exc_type is not None:
                await self.rollback()
                return
            try:
                await self.commit()
            except Exception:
                await self.rollback()
                raise
        finally:
            await session.close()
            self._session = None
            logger.debug("uow_exit", exc_type=str(exc_type) if exc_type else None)

        await self.publish_staged()

    async def commit(self) -> None:
        await self.session.commit()
        logger.debug("uow_commit", staged_events=len(self._staged))

    async def rollback(self) -> None:
        dropped = len(self._staged)
        self._staged = []
        try:
            await self.session.rollback()
        except Exception as exc:
            logger.error("uow_rollback_failed", error=str(exc))
            return
        logger.debug("uow_rollback", dropped_events=dropped)

    async def publish_staged(self) -> list[DomainEvent]:
        """Publish staged events in order. Only called once the commit is durable."""
        events, self._staged = self._staged, []
        if self._event_bus is None:
            if events:
                logger.debug("uow_no_event_bus", dropped_events=len(events))
            return []

        published: list[DomainEvent] = []
        for event in events:
            try:
                await self._event_bus.publish(event)
            except Exception as exc:
                logger.warning(
                    "event_publish_failed",
                    event_type=event.type,
                    event_id=event.event_id,
                    error=str(exc),
                )
                continue
            published.append(event)
            logger.debug("event_published", event_type=event.type, event_id=event.event_id)

        self.published.extend(published)
        return published
