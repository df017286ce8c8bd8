from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime, timedelta
from numbers import Real
from typing import TYPE_CHECKING, Any

from src.domain import metrics as metrics_engine
from src.domain.errors import EvaluationValidationError
from src.domain.events import DomainEvent

if TYPE_CHECKING:
    from src.domain.validation import EvaluationInput

PROTECTED_FIELDS = frozenset({"id", "user_id", "challenge_id", "created_at"})
DERIVED_FIELDS = frozenset({"metrics", "score_percent", "relevant_scores", "updated_at"})
METRICS_INPUT_FIELDS = frozenset(
    {
        "score",
        "category_scores",
        "strengths",
        "strength_analysis",
        "areas_for_improvement",
        "improvement_plans",
        "recommended_resources",
        "recommended_challenges",
        "user_context",
        "challenge_context",
        "metadata",
        "relevant_categories",
    }
)

# Accepted value types for updatable fields; None resets a context to its defaults
UPDATE_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "score": (Real,),
    "category_scores": (Mapping,),
    "overall_feedback": (str,),
    "next_steps": (str,),
    "strengths": (list, tuple),
    "strength_analysis": (list, tuple),
    "areas_for_improvement": (list, tuple),
    "improvement_plans": (list, tuple),
    "recommended_resources": (list, tuple),
    "recommended_challenges": (list, tuple),
    "relevant_categories": (list, tuple),
    "user_context": (Mapping, type(None)),
    "challenge_context": (Mapping, type(None)),
    "growth_metrics": (Mapping,),
    "metadata": (Mapping,),
    "response_id": (str, type(None)),
    "thread_id": (str, type(None)),
}


def new_evaluation_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def default_user_context() -> dict[str, Any]:
    return {
        "skill_level": "unknown",
        "focus_areas": [],
        "learning_goals": [],
        "previous_scores": {},
        "completed_challenge_count": 0,
    }


def default_challenge_context() -> dict[str, Any]:
    return {
        "title": "",
        "type": "",
        "focus_area": "",
        "difficulty": "intermediate",
        "category_weights": {},
    }


def default_growth_metrics() -> dict[str, Any]:
    return {
        "score_change": 0,
        "category_score_changes": {},
        "improvement_rate": 0,
        "consistent_strengths": [],
        "persistent_weaknesses": [],
        "last_evaluation_id": None,
    }


def default_metadata() -> dict[str, Any]:
    return {
        "version": "2.0",
        "evaluation_type": "enhanced",
        "evaluation_timestamp": utcnow().isoformat(),
    }


def _is_score(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and 0 <= value <= 100


def _as_utc(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _validate_category_scores(category_scores: Any) -> None:
    if not isinstance(category_scores, Mapping) or not category_scores:
        raise EvaluationValidationError(
            "Category scores are required for evaluation",
            entity_type="evaluation",
            validation_errors={"category_scores": "At least one category score is required"},
        )
    invalid = {
        str(category): "Category score must be a number between 0 and 100"
        for category, value in category_scores.items()
        if not isinstance(category, str) or not category or not _is_score(value)
    }
    if invalid:
        raise EvaluationValidationError(
            "Category scores must be numbers between 0 and 100",
            entity_type="evaluation",
            validation_errors={"category_scores": invalid},
        )


def _validate_score(score: Any) -> None:
    if not _is_score(score):
        raise EvaluationValidationError(
            "Valid score (0-100) is required for evaluation",
            entity_type="evaluation",
            validation_errors={"score": "Must be a number between 0 and 100"},
        )


@dataclass(slots=True, eq=False)
class Evaluation:
    """Aggregate root for the assessment of one user's challenge response.

    ``metrics``, ``score_percent`` and ``relevant_scores`` are derived and
    recomputed by every mutation that touches a metrics input. Mutate only
    through the named methods so the derived state never goes stale.
    """

    user_id: str | None = None
    challenge_id: str | None = None
    score: float | None = None
    category_scores: dict[str, float] | None = None
    id: str | None = None
    overall_feedback: str = ""
    strengths: list[str] = field(default_factory=list)
    strength_analysis: list[dict[str, Any]] = field(default_factory=list)
    areas_for_improvement: list[str] = field(default_factory=list)
    improvement_plans: list[dict[str, Any]] = field(default_factory=list)
    next_steps: str = ""
    recommended_resources: list[dict[str, Any]] = field(default_factory=list)
    recommended_challenges: list[dict[str, Any]] = field(default_factory=list)
    user_context: dict[str, Any] | None = None
    challenge_context: dict[str, Any] | None = None
    growth_metrics: dict[str, Any] | None = None
    relevant_categories: list[str] = field(default_factory=list)
    response_id: str | None = None
    thread_id: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    metrics: dict[str, Any] = field(init=False, default_factory=dict)
    score_percent: int = field(init=False, default=0)
    relevant_scores: dict[str, float] = field(init=False, default_factory=dict)
    _domain_events: list[DomainEvent] = field(init=False, default_factory=list, repr=False)
    _persisted: bool = field(init=False, default=False, repr=False)

    def __post_init__(self) -> None:
        if not self.user_id:
            raise EvaluationValidationError(
                "User ID is required for evaluation",
                entity_type="evaluation",
                validation_errors={"user_id": "Required"},
            )
        if not self.challenge_id:
            raise EvaluationValidationError(
                "Challenge ID is required for evaluation",
                entity_type="evaluation",
                validation_errors={"challenge_id": "Required"},
            )
        _validate_score(self.score)
        _validate_category_scores(self.category_scores)

        self.id = self.id or new_evaluation_id()
        self.category_scores = dict(self.category_scores)
        self.user_context = {**default_user_context(), **(self.user_context or {})}
        self.challenge_context = {**default_challenge_context(), **(self.challenge_context or {})}
        if self.growth_metrics is None:
            self.growth_metrics = default_growth_metrics()
        if self.metadata is None:
            self.metadata = default_metadata()
        self.relevant_categories = list(self.relevant_categories or [])

        self.created_at = _as_utc(self.created_at) or utcnow()
        self.updated_at = _as_utc(self.updated_at) or self.created_at
        self._recalculate_metrics()

    @classmethod
    def from_input(cls, data: EvaluationInput) -> Evaluation:
        """Build a new evaluation from an already validated input model."""
        return cls(**data.model_dump(exclude_none=True))

    # Metrics

    def calculate_metrics(self) -> dict[str, Any]:
        """Compute metrics for the current state without storing them."""
        return metrics_engine.compute_metrics(
            **{name: getattr(self, name) for name in METRICS_INPUT_FIELDS}
        )

    def _apply_metrics(self, metrics: dict[str, Any]) -> None:
        self.metrics = metrics
        self.score_percent = metrics["score_percent"]
        self.relevant_scores = dict(metrics["relevant_scores"])

    def _recalculate_metrics(self) -> None:
        self._apply_metrics(self.calculate_metrics())

    def _touch(self) -> None:
        now = utcnow()
        if self.updated_at is not None and now <= self.updated_at:
            now = self.updated_at + timedelta(microseconds=1)
        self.updated_at = now

    def touch(self) -> None:
        """Advance ``updated_at`` without changing anything else."""
        self._touch()

    @property
    def normalized_score(self) -> float:
        return self.metrics["normalized_score"]

    @property
    def performance_level(self) -> str:
        return self.metrics["performance_level"]

    @property
    def weighted_score(self) -> float:
        """Weighted score, or the raw score when no category weights apply."""
        weighted = self.metrics.get("weighted_score")
        return self.score if weighted is None else weighted

    def get_category_performance_level(self, category: str) -> str:
        return self.metrics["category_performance_levels"].get(category, "not rated")

    def get_strength_analysis(self, strength: str) -> dict[str, Any] | None:
        return next((item for item in self.strength_analysis if item.get("strength") == strength), None)

    def get_improvement_plan(self, area: str) -> dict[str, Any] | None:
        return next((plan for plan in self.improvement_plans if plan.get("area") == area), None)

    def get_personalized_feedback(self) -> dict[str, str]:
        level = self.performance_level
        feedback = {
            "feedback": self.overall_feedback,
            "performance_level": level,
            "skill_level_feedback": "",
            "focus_area_relevance": "",
            "growth_insights": "",
        }

        skill_level = self.user_context.get("skill_level")
        if skill_level == "beginner":
            notable = ""
            if self.strengths:
                notable = (
                    f"Your strengths in {' and '.join(self.strengths[:2])} "
                    "are particularly notable."
                )
            feedback["skill_level_feedback"] = (
                f"As a beginner, you're showing good progress. {notable}"
            )
        elif skill_level == "intermediate":
            verdict = "impressive work" if level == "excellent" else "solid progress"
            feedback["skill_level_feedback"] = (
                f"At your intermediate skill level, this is {verdict}. "
                "Consider focusing on deeper analysis in future responses."
            )
        elif skill_level == "advanced":
            verdict = (
                "meets high standards"
                if level == "excellent"
                else "has room for the nuance I know you can achieve"
            )
            feedback["skill_level_feedback"] = f"For your advanced level, this response {verdict}."
        else:
            feedback["skill_level_feedback"] = (
                f"Your response demonstrates {level} performance overall."
            )

        focus_areas = self.user_context.get("focus_areas") or []
        if focus_areas:
            average = self.metrics["focus_area_average"]
            closing = (
                "This shows particular strength in your areas of interest."
                if average > 80
                else "These are areas you may want to concentrate on developing further."
            )
            feedback["focus_area_relevance"] = (
                f"In your focus areas ({', '.join(focus_areas)}), "
                f"you scored {average}/100. {closing}"
            )

        message = metrics_engine.growth_insight_message(
            self.score, self.user_context.get("previous_scores")
        )
        if message is not None:
            feedback["growth_insights"] = message
        return feedback

    # Mutations

    def update(self, updates: Mapping[str, Any]) -> Evaluation:
        """Apply a partial update.

        Identity fields and derived fields are silently ignored so partial
        payloads are always safe to pass through. The change set is checked and
        the new metrics are computed before anything is assigned, so a rejected
        update leaves the evaluation untouched.
        """
        if not isinstance(updates, Mapping):
            raise EvaluationValidationError(
                "Update data must be a mapping", entity_type="evaluation"
            )
        changes = {
            key: value
            for key, value in updates.items()
            if key in _UPDATABLE_FIELDS
        }
        _check_update_types(changes)
        if "score" in changes:
            _validate_score(changes["score"])
        if "category_scores" in changes:
            _validate_category_scores(changes["category_scores"])
        for key, value in changes.items():
            expected = UPDATE_FIELD_TYPES.get(key, ())
            if isinstance(value, tuple) and list in expected:
                changes[key] = list(value)
            elif isinstance(value, Mapping):
                changes[key] = dict(value)
        for context_field, defaults in (
            ("user_context", default_user_context),
            ("challenge_context", default_challenge_context),
        ):
            if context_field in changes:
                changes[context_field] = {**defaults(), **(changes[context_field] or {})}

        metrics = None
        if METRICS_INPUT_FIELDS.intersection(changes):
            inputs = {
                name: changes.get(name, getattr(self, name)) for name in METRICS_INPUT_FIELDS
            }
            try:
                metrics = metrics_engine.compute_metrics(**inputs)
            except (TypeError, ValueError, AttributeError) as exc:
                raise EvaluationValidationError(
                    f"Update data cannot be scored: {exc}",
                    entity_type="evaluation",
                    validation_errors={"update": str(exc)},
                ) from exc

        for key, value in changes.items():
            setattr(self, key, value)
        if metrics is not None:
            self._apply_metrics(metrics)
        self._touch()
        return self

    def add_category_score(self, category: str, score: float) -> Evaluation:
        if not isinstance(category, str) or not category:
            raise EvaluationValidationError(
                "Category must be a non-empty string",
                entity_type="evaluation",
                validation_errors={"category": "Required"},
            )
        if not _is_score(score):
            raise EvaluationValidationError(
                "Score must be a number between 0 and 100",
                entity_type="evaluation",
                validation_errors={"score": "Must be a number between 0 and 100"},
            )
        self.category_scores[category] = score
        self._recalculate_metrics()
        self._touch()
        return self

    def add_improvement_plan(self, plan: Mapping[str, Any]) -> Evaluation:
        """Insert or replace the plan for ``plan['area']``."""
        if not isinstance(plan, Mapping):
            raise EvaluationValidationError("Plan must be a mapping", entity_type="evaluation")
        area = plan.get("area")
        if not isinstance(area, str) or not area:
            raise EvaluationValidationError(
                "Plan must include an area string",
                entity_type="evaluation",
                validation_errors={"area": "Required"},
            )

        plan = dict(plan)
        for index, existing in enumerate(self.improvement_plans):
            if existing.get("area") == area:
                self.improvement_plans[index] = plan
                break
        else:
            self.improvement_plans.append(plan)

        if area not in self.areas_for_improvement:
            self.areas_for_improvement.append(area)

        self._recalculate_metrics()
        self._touch()
        return self

    def add_user_context(self, user_context: Mapping[str, Any]) -> Evaluation:
        if not isinstance(user_context, Mapping):
            raise EvaluationValidationError(
                "User context must be a mapping", entity_type="evaluation"
            )
        self.user_context = {**self.user_context, **user_context}
        self._recalculate_metrics()
        self._touch()
        return self

    def add_challenge_context(self, challenge_context: Mapping[str, Any]) -> Evaluation:
        if not isinstance(challenge_context, Mapping):
            raise EvaluationValidationError(
                "Challenge context must be a mapping", entity_type="evaluation"
            )
        self.challenge_context = {**self.challenge_context, **challenge_context}
        self._recalculate_metrics()
        self._touch()
        return self

    def set_relevant_categories(self, categories: Sequence[str]) -> Evaluation:
        """Store categories mapped from the user's focus areas by an external service."""
        if isinstance(categories, str) or not isinstance(categories, Sequence):
            raise EvaluationValidationError(
                "Categories must be a list", entity_type="evaluation"
            )
        if not all(isinstance(category, str) for category in categories):
            raise EvaluationValidationError(
                "Categories must be strings", entity_type="evaluation"
            )
        self.relevant_categories = list(categories)
        self._recalculate_metrics()
        self._touch()
        return self

    def add_recommended_resource(self, resource: Mapping[str, Any]) -> Evaluation:
        self.recommended_resources.append(_titled_item(resource, "Resource"))
        self._recalculate_metrics()
        self._touch()
        return self

    def add_recommended_challenge(self, challenge: Mapping[str, Any]) -> Evaluation:
        self.recommended_challenges.append(_titled_item(challenge, "Challenge"))
        self._recalculate_metrics()
        self._touch()
        return self

    def is_valid(self) -> bool:
        """Cheap structural check used as a pre-persistence gate."""
        return bool(
            self.id
            and self.user_id
            and self.challenge_id
            and self.score is not None
            and self.score >= 0
        )

    # Persistence state

    @property
    def is_new(self) -> bool:
        """True until the evaluation has been written to or loaded from storage."""
        return not self._persisted

    def mark_persisted(self) -> None:
        self._persisted = True

    # Domain events

    def add_domain_event(self, event_type: str, payload: Mapping[str, Any]) -> DomainEvent:
        if not event_type:
            raise EvaluationValidationError("Event type is required", entity_type="evaluation")
        event = DomainEvent.create(event_type, dict(payload))
        self._domain_events.append(event)
        return event

    def get_domain_events(self) -> tuple[DomainEvent, ...]:
        return tuple(self._domain_events)

    def clear_domain_events(self) -> None:
        self._domain_events = []

    def pull_domain_events(self) -> list[DomainEvent]:
        """Read and clear the pending events in one step."""
        events, self._domain_events = self._domain_events, []
        return events

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "challenge_id": self.challenge_id,
            "score": self.score,
            "score_percent": self.score_percent,
            "category_scores": dict(self.category_scores),
            "relevant_scores": dict(self.relevant_scores),
            "overall_feedback": self.overall_feedback,
            "strengths": list(self.strengths),
            "strength_analysis": list(self.strength_analysis),
            "areas_for_improvement": list(self.areas_for_improvement),
            "improvement_plans": list(self.improvement_plans),
            "next_steps": self.next_steps,
            "recommended_resources": list(self.recommended_resources),
            "recommended_challenges": list(self.recommended_challenges),
            "user_context": dict(self.user_context),
            "challenge_context": dict(self.challenge_context),
            "growth_metrics": dict(self.growth_metrics),
            "relevant_categories": list(self.relevant_categories),
            "response_id": self.response_id,
            "thread_id": self.thread_id,
            "metadata": dict(self.metadata),
            "metrics": dict(self.metrics),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _titled_item(item: Mapping[str, Any], label: str) -> dict[str, Any]:
    if not isinstance(item, Mapping):
        raise EvaluationValidationError(f"{label} must be a mapping", entity_type="evaluation")
    title = item.get("title")
    if not isinstance(title, str) or not title:
        raise EvaluationValidationError(
            f"{label} must include a title",
            entity_type="evaluation",
            validation_errors={"title": "Required"},
        )
    return dict(item)


_UPDATABLE_FIELDS = frozenset(
    f.name
    for f in fields(Evaluation)
    if f.init and f.name not in PROTECTED_FIELDS and f.name not in DERIVED_FIELDS
)


def _check_update_types(changes: Mapping[str, Any]) -> None:
    invalid = {
        key: f"Expected {' or '.join(t.__name__ for t in UPDATE_FIELD_TYPES[key])}"
        for key, value in changes.items()
        if key in UPDATE_FIELD_TYPES
        and (not isinstance(value, UPDATE_FIELD_TYPES[key]) or isinstance(value, bool))
    }
    if invalid:
        raise EvaluationValidationError(
            "Update data has values of the wrong type",
            entity_type="evaluation",
            validation_errors=invalid,
        )
