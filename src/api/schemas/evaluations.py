from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EvaluationResponse(BaseModel):
    id: str
    user_id: str
    challenge_id: str
    score: float
    score_percent: int
    category_scores: dict[str, float]
    relevant_scores: dict[str, float] = Field(default_factory=dict)
    overall_feedback: str = ""
    strengths: list[str] = Field(default_factory=list)
    strength_analysis: list[dict[str, Any]] = Field(default_factory=list)
    areas_for_improvement: list[str] = Field(default_factory=list)
    improvement_plans: list[dict[str, Any]] = Field(default_factory=list)
    next_steps: str = ""
    recommended_resources: list[dict[str, Any]] = Field(default_factory=list)
    recommended_challenges: list[dict[str, Any]] = Field(default_factory=list)
    user_context: dict[str, Any] = Field(default_factory=dict)
    challenge_context: dict[str, Any] = Field(default_factory=dict)
    growth_metrics: dict[str, Any] = Field(default_factory=dict)
    relevant_categories: list[str] = Field(default_factory=list)
    response_id: str | None = None
    thread_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class EvaluationListResponse(BaseModel):
    evaluations: list[EvaluationResponse]
    count: int


class ErrorResponse(BaseModel):
    error_code: str
    detail: str
    metadata: dict[str, Any] = Field(default_factory=dict)
