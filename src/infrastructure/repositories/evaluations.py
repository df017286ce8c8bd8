from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.config import Settings, get_settings
from src.core.logging import get_component_logger
from src.domain.errors import (
    EntityNotFoundError,
    ErrorMapper,
    ValidationError,
    evaluation_error_mapper,
)
from src.domain.events import DomainEvent, EventBusProtocol, EventTypes, evaluation_event_payload
from src.domain.models import Evaluation
from src.domain.validation import (
    EvaluationInput,
    EvaluationSearchOptions,
    EvaluationValidator,
    EvaluationValidatorProtocol,
    ValidationResult,
    field_errors,
)
from src.infrastructure.db.models import EVALUATION_FIELD_MAP, RECORD_FIELD_MAP, EvaluationRecord
from src.infrastructure.repositories.middleware import (
    require_ids,
    with_error_mapping,
    with_retry,
    with_transaction,
    with_validation,
)
from src.infrastructure.repositories.unit_of_work import UnitOfWork

logger = get_component_logger("repository:evaluation")

IMMUTABLE_COLUMNS = frozenset({"id", "user_id", "challenge_id", "created_at"})
SORT_COLUMNS = {
    "created_at": EvaluationRecord.created_at,
    "updated_at": EvaluationRecord.updated_at,
    "score": EvaluationRecord.score,
}


def to_record_values(evaluation: Evaluation) -> dict[str, Any]:
    """Column values for ``evaluation``. Unset (None) fields are left out."""
    values: dict[str, Any] = {}
    for name, attribute in EVALUATION_FIELD_MAP.items():
        value = getattr(evaluation, name)
        if value is None:
            continue
        values[attribute] = copy.deepcopy(value)
    return values


def to_entity(record: EvaluationRecord) -> Evaluation:
    """Rebuild a persisted evaluation from its row. Metrics are recomputed."""
    data = {
        name: copy.deepcopy(getattr(record, attribute))
        for attribute, name in RECORD_FIELD_MAP.items()
    }
    evaluation = Evaluation(**{name: value for name, value in data.items() if value is not None})
    evaluation.mark_persisted()
    return evaluation


def _check_save(repository: EvaluationRepository, evaluation: Any) -> None:
    if not isinstance(evaluation, Evaluation):
        raise ValidationError(
            "Object must be an Evaluation instance",
            entity_type=repository.entity_type,
            validation_errors={"evaluation": f"Got {type(evaluation).__name__}"},
        )
    if not evaluation.is_valid():
        raise ValidationError(
            "Invalid evaluation instance",
            entity_type=repository.entity_type,
            validation_errors={"evaluation": "Failed structural check"},
        )


class EvaluationRepository:
    """Persistence for the Evaluation aggregate.

    Reads are retried on transient faults. Writes run in a ``UnitOfWork`` and
    their domain events reach the event bus only after the commit. Every error
    leaves as an evaluation-domain error.
    """

    entity_type = "evaluation"

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        event_bus: EventBusProtocol | None = None,
        *,
        validator: EvaluationValidatorProtocol | None = None,
        error_mapper: ErrorMapper = evaluation_error_mapper,
        settings: Settings | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        validate_uuids: bool | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.validator = validator or EvaluationValidator()
        self.error_mapper = error_mapper
        self.max_retries = settings.repository_max_retries if max_retries is None else max_retries
        self.retry_delay = (
            settings.repository_retry_delay_seconds if retry_delay is None else retry_delay
        )
        self.validate_uuids = (
            settings.repository_validate_uuids if validate_uuids is None else validate_uuids
        )

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory, self.event_bus)

    def _raise_if_invalid(self, result: ValidationResult, message: str) -> None:
        if not result.success:
            raise ValidationError(
                message,
                entity_type=self.entity_type,
                validation_errors=result.errors,
            )

    def _event(self, event_type: EventTypes, evaluation: Evaluation, **extra: Any) -> DomainEvent:
        timestamp = (
            evaluation.created_at
            if event_type is EventTypes.EVALUATION_CREATED
            else evaluation.updated_at
        )
        return DomainEvent.create(
            event_type,
            evaluation_event_payload(
                evaluation_id=evaluation.id,
                user_id=evaluation.user_id,
                challenge_id=evaluation.challenge_id,
                timestamp=timestamp,
                **extra,
            ),
        )

    # Writes

    @with_error_mapping("create_evaluation")
    async def create_evaluation(self, data: Mapping[str, Any] | EvaluationInput) -> Evaluation:
        """Validate, insert, commit, then publish ``evaluation.created``."""
        if isinstance(data, EvaluationInput):
            data = data.model_dump(exclude_none=True)
        result = self.validator.validate_create(data)
        self._raise_if_invalid(result, "Evaluation validation failed")
        evaluation = Evaluation.from_input(result.data)

        created = await self._insert(evaluation, [])
        logger.info(
            "evaluation_created",
            evaluation_id=created.id,
            user_id=created.user_id,
            challenge_id=created.challenge_id,
            score=created.score,
        )
        return created

    @with_error_mapping("update_evaluation")
    @with_validation(require_ids("evaluation_id"))
    async def update_evaluation(
        self, evaluation_id: str, update_data: Mapping[str, Any]
    ) -> Evaluation:
        if not update_data:
            raise ValidationError(
                "Update data is required",
                entity_type=self.entity_type,
                validation_errors={"update_data": "Required"},
            )
        result = self.validator.validate_update(update_data)
        self._raise_if_invalid(result, "Evaluation update validation failed")
        changes = result.data.model_dump(exclude_unset=True, exclude_none=True)

        updated = await self._apply_update(evaluation_id, changes)
        logger.info("evaluation_updated", evaluation_id=evaluation_id, fields=sorted(changes))
        return updated

    @with_error_mapping("delete_evaluation")
    @with_validation(require_ids("evaluation_id"))
    async def delete_evaluation(self, evaluation_id: str) -> bool:
        await self._delete(evaluation_id)
        logger.info("evaluation_deleted", evaluation_id=evaluation_id)
        return True

    @with_error_mapping("save_evaluation")
    @with_validation(_check_save)
    async def save_evaluation(self, evaluation: Evaluation) -> Evaluation:
        """Insert a new evaluation or update a persisted one.

        The entity's pending events are drained before the transaction opens and
        published together with the save event once it commits.
        """
        snapshot = {
            name: getattr(evaluation, name)
            for name in EVALUATION_FIELD_MAP
            if name != "updated_at" and getattr(evaluation, name) is not None
        }
        result = self.validator.validate_create(snapshot)
        self._raise_if_invalid(result, "Evaluation validation failed during save")

        pending = evaluation.pull_domain_events()
        logger.debug(
            "evaluation_save",
            evaluation_id=evaluation.id,
            is_new=evaluation.is_new,
            pending_events=len(pending),
        )
        if evaluation.is_new:
            saved = await self._insert(evaluation, pending)
        else:
            saved = await self._update_existing(evaluation, pending)
        evaluation.mark_persisted()
        return saved

    save = save_evaluation
    delete = delete_evaluation

    @with_transaction
    async def _insert(
        self, uow: UnitOfWork, evaluation: Evaluation, pending: Sequence[DomainEvent]
    ) -> Evaluation:
        record = EvaluationRecord(**to_record_values(evaluation))
        uow.session.add(record)
        await uow.session.flush()
        created = to_entity(record)

        uow.stage(self._event(EventTypes.EVALUATION_CREATED, created, score=created.score))
        for event in pending:
            uow.stage(event)
        return created

    @with_transaction
    async def _apply_update(
        self, uow: UnitOfWork, evaluation_id: str, changes: Mapping[str, Any]
    ) -> Evaluation:
        record = await self._get_for_write(uow, evaluation_id)
        evaluation = to_entity(record)
        evaluation.update(changes)
        self._write_values(record, evaluation)
        await uow.session.flush()

        uow.stage(self._event(EventTypes.EVALUATION_UPDATED, evaluation, score=evaluation.score))
        return evaluation

    @with_transaction
    async def _update_existing(
        self, uow: UnitOfWork, evaluation: Evaluation, pending: Sequence[DomainEvent]
    ) -> Evaluation:
        record = await self._get_for_write(uow, evaluation.id)
        evaluation.touch()
        self._write_values(record, evaluation)
        await uow.session.flush()
        saved = to_entity(record)

        uow.stage(self._event(EventTypes.EVALUATION_UPDATED, saved, score=saved.score))
        for event in pending:
            uow.stage(event)
        return saved

    @with_transaction
    async def _delete(self, uow: UnitOfWork, evaluation_id: str) -> None:
        record = await self._get_for_write(uow, evaluation_id)
        deleted = to_entity(record)
        await uow.session.delete(record)
        await uow.session.flush()
        uow.stage(self._event(EventTypes.EVALUATION_DELETED, deleted))

    async def _get_for_write(self, uow: UnitOfWork, evaluation_id: str) -> EvaluationRecord:
        record = await uow.session.get(EvaluationRecord, evaluation_id)
        if record is None:
            raise EntityNotFoundError(
                f"Evaluation with ID {evaluation_id} not found",
                entity_id=evaluation_id,
                entity_type=self.entity_type,
            )
        return record

    @staticmethod
    def _write_values(record: EvaluationRecord, evaluation: Evaluation) -> None:
        for attribute, value in to_record_values(evaluation).items():
            if attribute in IMMUTABLE_COLUMNS:
                continue
            setattr(record, attribute, value)

    # Reads

    @with_error_mapping("get_evaluation_by_id")
    @with_validation(require_ids("evaluation_id"))
    async def get_evaluation_by_id(
        self, evaluation_id: str, throw_if_not_found: bool = False
    ) -> Evaluation | None:
        record = await self._fetch_one(evaluation_id)
        if record is None:
            if throw_if_not_found:
                raise EntityNotFoundError(
                    f"Evaluation with ID {evaluation_id} not found",
                    entity_id=evaluation_id,
                    entity_type=self.entity_type,
                )
            return None
        return to_entity(record)

    find_by_id = get_evaluation_by_id

    @with_error_mapping("find_evaluations_for_user")
    @with_validation(require_ids("user_id"))
    async def find_evaluations_for_user(
        self, user_id: str, options: Mapping[str, Any] | None = None
    ) -> list[Evaluation]:
        """Newest first by default; ``options`` accepts the ``EvaluationSearchOptions`` keys."""
        try:
            search = EvaluationSearchOptions.model_validate(dict(options or {}))
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid search options",
                entity_type=self.entity_type,
                validation_errors=field_errors(exc),
            ) from exc

        column = SORT_COLUMNS[search.sort_by]
        statement = (
            select(EvaluationRecord)
            .where(EvaluationRecord.user_id == user_id)
            .order_by(column.desc() if search.order == "desc" else column.asc())
            .offset(search.offset)
            .limit(search.limit)
        )
        if search.challenge_id:
            statement = statement.where(EvaluationRecord.challenge_id == search.challenge_id)

        records = await self._fetch_all(statement)
        logger.debug("evaluations_found_for_user", user_id=user_id, count=len(records))
        return [to_entity(record) for record in records]

    find_by_user_id = find_evaluations_for_user

    @with_error_mapping("find_evaluations_for_challenge")
    @with_validation(require_ids("challenge_id"))
    async def find_evaluations_for_challenge(
        self, challenge_id: str, user_id: str | None = None
    ) -> list[Evaluation]:
        statement = (
            select(EvaluationRecord)
            .where(EvaluationRecord.challenge_id == challenge_id)
            .order_by(EvaluationRecord.created_at.desc())
        )
        if user_id:
            statement = statement.where(EvaluationRecord.user_id == user_id)

        records = await self._fetch_all(statement)
        return [to_entity(record) for record in records]

    @with_error_mapping("find_by_user_and_challenge")
    @with_validation(require_ids("user_id", "challenge_id"))
    async def find_by_user_and_challenge(
        self, user_id: str, challenge_id: str
    ) -> Evaluation | None:
        """Most recent evaluation of ``challenge_id`` by ``user_id``, if any."""
        evaluations = await self.find_evaluations_for_challenge(challenge_id, user_id)
        return evaluations[0] if evaluations else None

    @with_error_mapping("count_evaluations_for_challenge")
    @with_validation(require_ids("challenge_id"))
    async def count_evaluations_for_challenge(self, challenge_id: str) -> int:
        statement = (
            select(func.count())
            .select_from(EvaluationRecord)
            .where(EvaluationRecord.challenge_id == challenge_id)
        )
        count = await self._fetch_scalar(statement)
        logger.debug("evaluations_counted", challenge_id=challenge_id, count=count)
        return count

    @with_retry
    async def _fetch_one(self, evaluation_id: str) -> EvaluationRecord | None:
        async with self.session_factory() as session:
            return await session.get(EvaluationRecord, evaluation_id)

    @with_retry
    async def _fetch_all(self, statement: Select) -> Sequence[EvaluationRecord]:
        async with self.session_factory() as session:
            return (await session.execute(statement)).scalars().all()

    @with_retry
    async def _fetch_scalar(self, statement: Select) -> int:
        async with self.session_factory() as session:
            return (await session.execute(statement)).scalar_one()
