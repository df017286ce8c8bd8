"""
Composable wrappers for repository operations.

Stack them in this order, outermost first::

    @with_error_mapping("get_evaluation_by_id")
    @with_validation(require_ids("evaluation_id"))
    @with_retry
    async def get_evaluation_by_id(self, evaluation_id): ...

``with_transaction`` goes on the private write helpers so that validation
always finishes before a session is opened.
"""

from __future__ import annotations

import asyncio
import functools
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from src.domain.errors import (
    AppError,
    DatabaseError,
    EntityNotFoundError,
    ValidationError,
    is_transient_error,
)

logger = structlog.get_logger()

T = TypeVar("T")
Operation = Callable[..., Awaitable[T]]

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def with_error_mapping(operation: str) -> Callable[[Operation], Operation]:
    """Translate anything raised by the operation through ``self.error_mapper``."""

    def decorator(func: Operation) -> Operation:
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except Exception as exc:
                mapped = self.error_mapper(exc, {"operation": operation})
                log = (
                    logger.warning
                    if isinstance(mapped, (ValidationError, EntityNotFoundError))
                    else logger.error
                )
                log(
                    "repository_operation_failed",
                    operation=operation,
                    entity_type=self.entity_type,
                    error_code=mapped.error_code,
                    error=str(exc),
                )
                if mapped is exc:
                    raise
                raise mapped from exc

        return wrapper

    return decorator


def with_validation(check: Callable[..., None]) -> Callable[[Operation], Operation]:
    """Run ``check(self, *args, **kwargs)`` before the operation does any I/O."""

    def decorator(func: Operation) -> Operation:
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            check(self, *args, **kwargs)
            return await func(self, *args, **kwargs)

        return wrapper

    return decorator


def with_retry(func: Operation) -> Operation:
    """Retry on transient storage faults, up to ``self.max_retries`` attempts in total.

    Domain errors such as not-found are raised at once. Any other failure that
    survives the retries leaves as a ``DatabaseError`` carrying the cause.
    """

    @functools.wraps(func)
    async def wrapper(self, *args: Any, **kwargs: Any) -> Any:
        attempts = max(1, self.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return await func(self, *args, **kwargs)
            except AppError:
                raise
            except Exception as exc:
                if not is_transient_error(exc):
                    raise DatabaseError(
                        f"{func.__name__} failed permanently: {exc}",
                        cause=exc,
                        operation=func.__name__,
                        entity_type=self.entity_type,
                    ) from exc
                if attempt == attempts:
                    raise DatabaseError(
                        f"{func.__name__} failed after {attempts} attempts: {exc}",
                        cause=exc,
                        operation=func.__name__,
                        entity_type=self.entity_type,
                    ) from exc
                logger.warning(
                    "repository_transient_failure",
                    operation=func.__name__,
                    attempt=attempt,
                    max_retries=attempts,
                    error=str(exc),
                )
                await asyncio.sleep(self.retry_delay)
        raise AssertionError("unreachable")

    return wrapper


def with_transaction(func: Operation) -> Operation:
    """Run the operation inside ``self.unit_of_work()``, passing the unit as first argument.

    The unit commits when the operation returns and publishes its staged events
    afterwards; the result is handed back only after both have happened.
    """

    @functools.wraps(func)
    async def wrapper(self, *args: Any, **kwargs: Any) -> Any:
        async with self.unit_of_work() as uow:
            result = await func(self, uow, *args, **kwargs)
        return result

    return wrapper


def require_ids(*names: str) -> Callable[..., None]:
    """Build a validation check for positional id arguments, in declaration order."""

    def check(self, *args: Any, **kwargs: Any) -> None:
        for position, name in enumerate(names):
            if name in kwargs:
                value = kwargs[name]
            else:
                value = args[position] if position < len(args) else None
            validate_id(value, name, entity_type=self.entity_type, strict_uuid=self.validate_uuids)

    return check


def validate_id(
    value: Any,
    name: str = "id",
    *,
    entity_type: str = "unknown",
    strict_uuid: bool = False,
) -> None:
    if value is None or value == "":
        raise ValidationError(
            f"{name} is required",
            entity_type=entity_type,
            validation_errors={name: "Required parameter is missing"},
        )
    if not isinstance(value, str):
        raise ValidationError(
            f"{name} must be a string",
            entity_type=entity_type,
            validation_errors={name: f"Expected string, got {type(value).__name__}"},
        )
    if strict_uuid and not UUID_PATTERN.match(value):
        raise ValidationError(
            f"Invalid {name} format: {value}",
            entity_type=entity_type,
            validation_errors={name: "Invalid UUID format"},
        )
