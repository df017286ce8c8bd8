from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class EvaluationRecord(Base):
    """Stored row for one evaluation. Maps and arrays live in JSON columns."""

    __tablename__ = "evaluations"
    __table_args__ = (
        Index("ix_evaluations_challenge_user", "challenge_id", "user_id"),
        Index("ix_evaluations_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    challenge_id: Mapped[str] = mapped_column(String(64), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    category_scores: Mapped[dict] = mapped_column(JSON, nullable=False)
    overall_feedback: Mapped[str | None] = mapped_column(Text)
    strengths: Mapped[list | None] = mapped_column(JSON)
    strength_analysis: Mapped[list | None] = mapped_column(JSON)
    areas_for_improvement: Mapped[list | None] = mapped_column(JSON)
    improvement_plans: Mapped[list | None] = mapped_column(JSON)
    next_steps: Mapped[str | None] = mapped_column(Text)
    recommended_resources: Mapped[list | None] = mapped_column(JSON)
    recommended_challenges: Mapped[list | None] = mapped_column(JSON)
    user_context: Mapped[dict | None] = mapped_column(JSON)
    challenge_context: Mapped[dict | None] = mapped_column(JSON)
    growth_metrics: Mapped[dict | None] = mapped_column(JSON)
    relevant_categories: Mapped[list | None] = mapped_column(JSON)
    response_id: Mapped[str | None] = mapped_column(String(128))
    thread_id: Mapped[str | None] = mapped_column(String(128))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<EvaluationRecord(id={self.id}, user_id={self.user_id}, "
            f"challenge_id={self.challenge_id}, score={self.score})>"
        )


# Entity field name -> ORM attribute name. Every persisted entity field is listed.
EVALUATION_FIELD_MAP: dict[str, str] = {
    "id": "id",
    "user_id": "user_id",
    "challenge_id": "challenge_id",
    "score": "score",
    "category_scores": "category_scores",
    "overall_feedback": "overall_feedback",
    "strengths": "strengths",
    "strength_analysis": "strength_analysis",
    "areas_for_improvement": "areas_for_improvement",
    "improvement_plans": "improvement_plans",
    "next_steps": "next_steps",
    "recommended_resources": "recommended_resources",
    "recommended_challenges": "recommended_challenges",
    "user_context": "user_context",
    "challenge_context": "challenge_context",
    "growth_metrics": "growth_metrics",
    "relevant_categories": "relevant_categories",
    "response_id": "response_id",
    "thread_id": "thread_id",
    "metadata": "metadata_",
    "created_at": "created_at",
    "updated_at": "updated_at",
}
RECORD_FIELD_MAP: dict[str, str] = {column: name for name, column in EVALUATION_FIELD_MAP.items()}
