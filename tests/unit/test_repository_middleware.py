"""
Unit tests for the repository middleware decorators.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from src.domain.errors import (
    EntityNotFoundError,
    EvaluationError,
    EvaluationNotFoundError,
    EvaluationRepositoryError,
    EvaluationValidationError,
    ValidationError,
    evaluation_error_mapper,
)
from src.infrastructure.repositories.middleware import (
    require_ids,
    validate_id,
    with_error_mapping,
    with_retry,
    with_validation,
)


def _transient() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection reset"))


class FakeRepository:
    entity_type = "evaluation"
    error_mapper = evaluation_error_mapper

    def __init__(
        self, operation: AsyncMock, *, max_retries: int = 3, retry_delay: float = 0
    ) -> None:
        self.operation = operation
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.validate_uuids = False

    @with_error_mapping("fetch")
    @with_validation(require_ids("item_id"))
    @with_retry
    async def fetch(self, item_id: str) -> str:
        return await self.operation(item_id)


@pytest.fixture
def no_sleep():
    with patch("src.infrastructure.repositories.middleware.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_retries_transient_failures_then_succeeds(self, no_sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=[_transient(), _transient(), "ok"])
        repository = FakeRepository(operation, retry_delay=0.25)

        assert await repository.fetch("item-1") == "ok"
        assert operation.await_count == 3
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(0.25)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        operation = AsyncMock(side_effect=_transient())
        repository = FakeRepository(operation, max_retries=3)

        with pytest.raises(EvaluationRepositoryError) as exc_info:
            await repository.fetch("item-1")

        assert operation.await_count == 3
        assert "failed after 3 attempts" in exc_info.value.message
        assert isinstance(exc_info.value.cause, OperationalError)

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self) -> None:
        operation = AsyncMock(side_effect=ValueError("bad column"))
        repository = FakeRepository(operation)

        with pytest.raises(EvaluationRepositoryError):
            await repository.fetch("item-1")

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self) -> None:
        operation = AsyncMock(
            side_effect=EntityNotFoundError("missing", entity_id="item-1", entity_type="evaluation")
        )
        repository = FakeRepository(operation)

        with pytest.raises(EvaluationNotFoundError):
            await repository.fetch("item-1")

        assert operation.await_count == 1


class TestWithValidation:
    @pytest.mark.asyncio
    async def test_missing_id_fails_before_the_operation(self) -> None:
        operation = AsyncMock(return_value="ok")
        repository = FakeRepository(operation)

        with pytest.raises(EvaluationValidationError) as exc_info:
            await repository.fetch("")

        operation.assert_not_awaited()
        assert exc_info.value.validation_errors == {"item_id": "Required parameter is missing"}

    @pytest.mark.asyncio
    async def test_keyword_arguments_are_checked(self) -> None:
        operation = AsyncMock(return_value="ok")
        repository = FakeRepository(operation)

        with pytest.raises(EvaluationValidationError):
            await repository.fetch(item_id=42)  # type: ignore[arg-type]

    def test_uuid_format_is_enforced_when_enabled(self) -> None:
        validate_id("0b8a8d32-5b1e-4c3e-9f7a-2d7c1f0e9a11", strict_uuid=True)
        with pytest.raises(ValidationError) as exc_info:
            validate_id("not-a-uuid", "evaluation_id", entity_type="evaluation", strict_uuid=True)

        assert exc_info.value.validation_errors == {"evaluation_id": "Invalid UUID format"}


class TestWithErrorMapping:
    @pytest.mark.asyncio
    async def test_unexpected_errors_become_domain_errors(self) -> None:
        class Broken(FakeRepository):
            @with_error_mapping("explode")
            async def explode(self) -> None:
                raise RuntimeError("unexpected")

        with pytest.raises(EvaluationError) as exc_info:
            await Broken(AsyncMock()).explode()

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.metadata["operation"] == "explode"
