"""
Evaluation metrics engine.

Pure functions that turn an evaluation's scores and context into derived
analytics. The ``Evaluation`` entity calls ``compute_metrics`` after every
mutation that touches a metrics input.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

# (threshold, label), checked from the top down
PERFORMANCE_LEVELS: tuple[tuple[float, str], ...] = (
    (95, "exceptional"),
    (85, "excellent"),
    (75, "very good"),
    (65, "good"),
    (55, "satisfactory"),
    (45, "average"),
    (35, "needs improvement"),
    (25, "below average"),
)
LOWEST_PERFORMANCE_LEVEL = "poor"

CATEGORY_STRENGTH_THRESHOLD = 80
CATEGORY_WEAKNESS_THRESHOLD = 50
SIGNIFICANT_IMPROVEMENT_POINTS = 5


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (``round()`` would use banker's rounding)."""
    return math.floor(value + 0.5)


def normalize_score(score: float) -> float:
    """Scores up to 10 are on a 0-10 scale and get scaled to 0-100."""
    if score <= 10:
        return round_half_up(score * 10)
    return score


def performance_level(score: float) -> str:
    for threshold, label in PERFORMANCE_LEVELS:
        if score >= threshold:
            return label
    return LOWEST_PERFORMANCE_LEVEL


def resolve_category_weights(
    metadata: Mapping[str, Any] | None,
    challenge_context: Mapping[str, Any] | None,
) -> Mapping[str, float]:
    """Weights from evaluation metadata win over the challenge context's."""
    weights = (metadata or {}).get("category_weights")
    if not weights:
        weights = (challenge_context or {}).get("category_weights")
    return weights or {}


def weighted_score(
    category_scores: Mapping[str, float],
    weights: Mapping[str, float],
) -> int | None:
    if not category_scores or not weights:
        return None
    total = 0.0
    weight_sum = 0.0
    for category, score in category_scores.items():
        weight = weights.get(category)
        if weight:
            total += score * weight
            weight_sum += weight
    if weight_sum <= 0:
        return None
    return round_half_up(total / weight_sum)


def restrict_to_categories(
    category_scores: Mapping[str, float],
    categories: Sequence[str],
) -> dict[str, float]:
    """Scores for the given categories, in the order the categories are listed."""
    return {
        category: category_scores[category]
        for category in dict.fromkeys(categories)
        if category in category_scores
    }


def improvement_metrics(
    score: float,
    category_scores: Mapping[str, float],
    previous_scores: Mapping[str, float] | None,
) -> dict[str, Any]:
    """Overall and per-category deltas against a user's previous scores.

    ``previous_scores`` holds an optional ``overall`` key plus per-category
    keys. Ties for most/least improved keep the first category seen, walking
    ``category_scores`` in insertion order.
    """
    previous_scores = previous_scores or {}
    metrics: dict[str, Any] = {
        "overall_improvement": 0,
        "category_improvements": {},
        "most_improved_category": None,
        "most_improved_value": 0,
        "least_improved_category": None,
        "least_improved_value": 0,
        "has_improved": False,
    }

    if previous_scores.get("overall") is not None:
        metrics["overall_improvement"] = score - previous_scores["overall"]
        metrics["has_improved"] = metrics["overall_improvement"] > 0

    for category, current in category_scores.items():
        if previous_scores.get(category) is None:
            continue
        delta = current - previous_scores[category]
        metrics["category_improvements"][category] = delta
        if metrics["most_improved_category"] is None or delta > metrics["most_improved_value"]:
            metrics["most_improved_category"] = category
            metrics["most_improved_value"] = delta
        if metrics["least_improved_category"] is None or delta < metrics["least_improved_value"]:
            metrics["least_improved_category"] = category
            metrics["least_improved_value"] = delta

    return metrics


def _format_points(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def growth_insight_message(score: float, previous_scores: Mapping[str, float] | None) -> str | None:
    """Banner text comparing ``score`` with the previous overall score.

    Returns None when there is no history at all. A missing ``overall`` key
    counts as a previous score of 0.
    """
    if not previous_scores:
        return None
    improvement = score - (previous_scores.get("overall") or 0)
    if improvement > SIGNIFICANT_IMPROVEMENT_POINTS:
        return (
            f"You've shown significant improvement (+{_format_points(improvement)} points) "
            "from your previous evaluations. Keep building on this progress!"
        )
    if improvement > 0:
        return (
            f"You're showing steady improvement (+{_format_points(improvement)} points) "
            "from previous work."
        )
    if improvement == 0:
        return (
            "You are maintaining a consistent performance level. "
            "Consider trying new approaches to continue growing."
        )
    return (
        "This score is slightly lower than your previous work. "
        "Review the improvement suggestions to identify opportunities."
    )


def score_percent(score: float, category_scores: Mapping[str, float]) -> int:
    if not category_scores:
        return 0
    return round_half_up(score / 100 * 100)


def compute_metrics(
    *,
    score: float,
    category_scores: Mapping[str, float],
    user_context: Mapping[str, Any] | None = None,
    challenge_context: Mapping[str, Any] | None = None,
    metadata: Mapping[str, Any] | None = None,
    relevant_categories: Sequence[str] = (),
    strengths: Sequence[Any] = (),
    strength_analysis: Sequence[Any] = (),
    areas_for_improvement: Sequence[Any] = (),
    improvement_plans: Sequence[Any] = (),
    recommended_resources: Sequence[Any] = (),
    recommended_challenges: Sequence[Any] = (),
) -> dict[str, Any]:
    """Compute the full metrics snapshot for one evaluation state.

    Identical inputs always produce an identical dict.
    """
    user_context = user_context or {}
    normalized = normalize_score(score)

    category_levels: dict[str, str] = {}
    category_strengths: list[str] = []
    category_weaknesses: list[str] = []
    for category, value in category_scores.items():
        category_levels[category] = performance_level(value)
        if value >= CATEGORY_STRENGTH_THRESHOLD:
            category_strengths.append(category)
        if value <= CATEGORY_WEAKNESS_THRESHOLD:
            category_weaknesses.append(category)

    focus_scores = restrict_to_categories(category_scores, relevant_categories)
    focus_average = (
        round_half_up(sum(focus_scores.values()) / len(focus_scores)) if focus_scores else 0
    )

    previous_scores = user_context.get("previous_scores") or {}
    growth_message = growth_insight_message(score, previous_scores)

    metrics: dict[str, Any] = {
        "normalized_score": normalized,
        "performance_level": performance_level(normalized),
        "category_performance_levels": category_levels,
        "category_strengths": category_strengths,
        "category_weaknesses": category_weaknesses,
        "weighted_score": weighted_score(
            category_scores, resolve_category_weights(metadata, challenge_context)
        ),
        "focus_area_scores": focus_scores,
        "focus_area_average": focus_average,
        "relevant_scores": dict(focus_scores),
        "score_percent": score_percent(score, category_scores),
        "strengths_count": len(strengths),
        "strength_analysis_count": len(strength_analysis),
        "improvement_areas_count": len(areas_for_improvement),
        "improvement_plans_count": len(improvement_plans),
        "recommendations_count": len(recommended_resources) + len(recommended_challenges),
        "has_detailed_analysis": len(strength_analysis) > 0,
        "growth_insights": {"message": growth_message} if growth_message is not None else {},
    }
    metrics.update(improvement_metrics(score, category_scores, previous_scores))
    return metrics
