"""
Schema validation for evaluation payloads.

The repository calls an ``EvaluationValidator`` on raw create/update input
before anything touches storage. Field-level problems come back as a list of
``{"field", "message"}`` dicts so they can be attached to a ``ValidationError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

IDENTITY_FIELDS = ("id", "user_id", "challenge_id", "created_at")

# Numbers only; strict mode still accepts ints but refuses bools and numeric strings
ScoreValue = Annotated[float, Field(strict=True)]


class _EvaluationContent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    overall_feedback: str | None = None
    strengths: list[str] | None = None
    strength_analysis: list[dict[str, Any]] | None = None
    areas_for_improvement: list[str] | None = None
    improvement_plans: list[dict[str, Any]] | None = None
    next_steps: str | None = None
    recommended_resources: list[dict[str, Any]] | None = None
    recommended_challenges: list[dict[str, Any]] | None = None
    user_context: dict[str, Any] | None = None
    challenge_context: dict[str, Any] | None = None
    growth_metrics: dict[str, Any] | None = None
    relevant_categories: list[str] | None = None
    response_id: str | None = None
    thread_id: str | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("category_scores", check_fields=False)
    @classmethod
    def _category_scores_in_range(cls, value: dict[str, float] | None) -> dict[str, float] | None:
        if value is None:
            return value
        if not value:
            raise ValueError("At least one category score is required")
        for category, score in value.items():
            if not category:
                raise ValueError("Category names must be non-empty")
            if not 0 <= score <= 100:
                raise ValueError(f"Category score for '{category}' must be between 0 and 100")
        return value


class EvaluationInput(_EvaluationContent):
    """Validated payload for creating an evaluation."""

    id: str | None = None
    user_id: str = Field(min_length=1)
    challenge_id: str = Field(min_length=1)
    score: ScoreValue = Field(ge=0, le=100)
    category_scores: dict[str, ScoreValue]
    created_at: datetime | None = None


class EvaluationUpdateInput(_EvaluationContent):
    """Validated partial update. Identity fields are refused outright."""

    score: ScoreValue | None = Field(default=None, ge=0, le=100)
    category_scores: dict[str, ScoreValue] | None = None


class EvaluationSearchOptions(BaseModel):
    """Paging and ordering for per-user listings."""

    model_config = ConfigDict(extra="forbid")

    challenge_id: str | None = None
    limit: int = Field(default=10, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    sort_by: Literal["created_at", "updated_at", "score"] = "created_at"
    order: Literal["asc", "desc"] = "desc"


@dataclass(slots=True)
class ValidationResult:
    success: bool
    errors: list[dict[str, str]] = field(default_factory=list)
    data: BaseModel | None = None


class EvaluationValidatorProtocol(Protocol):
    def validate_create(self, data: Mapping[str, Any]) -> ValidationResult: ...

    def validate_update(self, data: Mapping[str, Any]) -> ValidationResult: ...


def field_errors(exc: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]) or "__root__",
            "message": error["msg"],
        }
        for error in exc.errors()
    ]


class EvaluationValidator:
    """Default pydantic-backed validator."""

    def validate_create(self, data: Mapping[str, Any]) -> ValidationResult:
        if not isinstance(data, Mapping):
            return ValidationResult(
                success=False,
                errors=[{"field": "__root__", "message": "Evaluation data must be an object"}],
            )
        try:
            model = EvaluationInput.model_validate(dict(data))
        except PydanticValidationError as exc:
            return ValidationResult(success=False, errors=field_errors(exc))
        return ValidationResult(success=True, data=model)

    def validate_update(self, data: Mapping[str, Any]) -> ValidationResult:
        if not isinstance(data, Mapping):
            return ValidationResult(
                success=False,
                errors=[{"field": "__root__", "message": "Update data must be an object"}],
            )
        identity_errors = [
            {"field": name, "message": "Field cannot be updated"}
            for name in IDENTITY_FIELDS
            if name in data
        ]
        payload = {key: value for key, value in data.items() if key not in IDENTITY_FIELDS}
        try:
            model = EvaluationUpdateInput.model_validate(payload)
        except PydanticValidationError as exc:
            return ValidationResult(success=False, errors=identity_errors + field_errors(exc))
        if identity_errors:
            return ValidationResult(success=False, errors=identity_errors)
        return ValidationResult(success=True, data=model)
