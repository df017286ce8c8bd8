"""
Error taxonomy for the evaluation domain.

Base kinds (``ValidationError``, ``EntityNotFoundError``, ``RepositoryError``)
are raised by generic repository plumbing. The ``ErrorMapper`` translates them,
and raw storage faults, into evaluation-specific errors before they leave the
repository.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

TRANSIENT_ERROR_MARKERS = (
    "connection",
    "timeout",
    "deadlock",
    "too many connections",
    "database is busy",
    "database is locked",
    "lock wait timeout",
    "server closed",
    "rate limit",
    "temporarily unavailable",
)


class AppError(Exception):
    """Base application error carrying an HTTP-ish status and structured context."""

    status_code = 500
    default_error_code = "APP_ERROR"

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        error_code: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.error_code = error_code or self.default_error_code
        self.metadata: dict[str, Any] = dict(metadata or {})
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "detail": self.message,
            "metadata": self.metadata,
        }


class ValidationError(AppError):
    """Malformed or out-of-range input, detected before any I/O."""

    status_code = 400
    default_error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        validation_errors: Any = None,
        entity_type: str = "unknown",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", f"{entity_type.upper()}_VALIDATION_ERROR")
        super().__init__(message, **kwargs)
        self.validation_errors = validation_errors
        self.entity_type = entity_type
        self.metadata.setdefault("entity_type", entity_type)
        if validation_errors is not None:
            self.metadata.setdefault("validation_errors", validation_errors)


class EntityNotFoundError(AppError):
    """Operation targets an id that does not exist."""

    status_code = 404
    default_error_code = "NOT_FOUND"

    def __init__(
        self,
        message: str,
        *,
        entity_id: str | None = None,
        entity_type: str = "unknown",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", f"{entity_type.upper()}_NOT_FOUND")
        super().__init__(message, **kwargs)
        self.entity_id = entity_id
        self.entity_type = entity_type
        self.metadata.setdefault("entity_id", entity_id)
        self.metadata.setdefault("entity_type", entity_type)


class RepositoryError(AppError):
    """Wraps a lower-level storage fault together with operation metadata."""

    status_code = 500
    default_error_code = "REPOSITORY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        entity_type: str = "unknown",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", f"{entity_type.upper()}_REPOSITORY_ERROR")
        super().__init__(message, **kwargs)
        self.operation = operation
        self.entity_type = entity_type
        self.metadata.setdefault("operation", operation)
        self.metadata.setdefault("entity_type", entity_type)


class DatabaseError(RepositoryError):
    """Raised by repository code when the storage engine reports a failure."""

    default_error_code = "DATABASE_ERROR"


# Evaluation domain


class EvaluationError(AppError):
    """Catch-all evaluation error, used when no more specific kind applies."""

    default_error_code = "EVALUATION_ERROR"


class EvaluationValidationError(EvaluationError, ValidationError):
    """Evaluation payload failed validation."""


class EvaluationNotFoundError(EvaluationError, EntityNotFoundError):
    """Evaluation does not exist."""


class EvaluationRepositoryError(EvaluationError, RepositoryError):
    """Evaluation storage operation failed."""


def is_transient_error(error: BaseException) -> bool:
    """Return True for storage faults worth retrying (connection drops, timeouts, locks)."""
    if isinstance(error, AppError):
        cause = error.cause
        return cause is not None and is_transient_error(cause)
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    if isinstance(error, (OperationalError, PoolTimeoutError, ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


class ErrorMapper:
    """Translate arbitrary failures into one domain's error classes.

    ``mappings`` pairs a base kind with its domain counterpart; the first
    matching ``isinstance`` check wins, so list subclasses before their bases.
    """

    def __init__(
        self,
        mappings: list[tuple[type[AppError], type[AppError]]],
        default: type[AppError],
        *,
        storage_error: type[AppError] | None = None,
        entity_type: str = "unknown",
    ) -> None:
        self.mappings = mappings
        self.default = default
        self.storage_error = storage_error or default
        self.entity_type = entity_type

    def __call__(self, error: BaseException, context: Mapping[str, Any] | None = None) -> AppError:
        if isinstance(error, self.default):
            return error
        context = dict(context or {})
        operation = context.pop("operation", None)

        for base_cls, domain_cls in self.mappings:
            if isinstance(error, base_cls):
                return self._rebuild(domain_cls, error, operation, context)

        if isinstance(error, SQLAlchemyError):
            return self._build(
                self.storage_error,
                f"Storage failure during {operation or 'operation'}: {error}",
                cause=error,
                operation=operation,
                metadata=context,
            )

        return self._build(
            self.default,
            str(error) or "An error occurred",
            cause=error,
            operation=operation,
            metadata=context,
        )

    def _rebuild(
        self,
        domain_cls: type[AppError],
        error: AppError,
        operation: str | None,
        context: dict[str, Any],
    ) -> AppError:
        metadata = {**context, **error.metadata}
        extra: dict[str, Any] = {}
        if isinstance(error, ValidationError):
            extra["validation_errors"] = error.validation_errors
        if isinstance(error, EntityNotFoundError):
            extra["entity_id"] = error.entity_id
        if isinstance(error, RepositoryError):
            operation = error.operation or operation
        return self._build(
            domain_cls,
            error.message,
            cause=error.cause or error,
            operation=operation,
            metadata=metadata,
            **extra,
        )

    def _build(
        self,
        domain_cls: type[AppError],
        message: str,
        *,
        cause: BaseException | None,
        operation: str | None,
        metadata: Mapping[str, Any],
        **extra: Any,
    ) -> AppError:
        kwargs: dict[str, Any] = {"cause": cause, "metadata": metadata, **extra}
        if issubclass(domain_cls, (ValidationError, EntityNotFoundError, RepositoryError)):
            kwargs["entity_type"] = self.entity_type
        if issubclass(domain_cls, RepositoryError):
            kwargs["operation"] = operation
        elif operation is not None:
            kwargs["metadata"] = {**metadata, "operation": operation}
        return domain_cls(message, **kwargs)


evaluation_error_mapper = ErrorMapper(
    [
        (ValidationError, EvaluationValidationError),
        (EntityNotFoundError, EvaluationNotFoundError),
        (RepositoryError, EvaluationRepositoryError),
    ],
    EvaluationError,
    storage_error=EvaluationRepositoryError,
    entity_type="evaluation",
)


__all__ = [
    "AppError",
    "DatabaseError",
    "EntityNotFoundError",
    "ErrorMapper",
    "EvaluationError",
    "EvaluationNotFoundError",
    "EvaluationRepositoryError",
    "EvaluationValidationError",
    "RepositoryError",
    "ValidationError",
    "evaluation_error_mapper",
    "is_transient_error",
]
