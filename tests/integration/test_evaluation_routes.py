from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.core.config import Settings
from src.domain.models import Evaluation
from src.infrastructure.repositories.evaluations import EvaluationRepository

from tests.utils import build_evaluation_data


@pytest.fixture()
def seed_repository(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> EvaluationRepository:
    return EvaluationRepository(session_factory, settings=settings)


async def _seed(repository: EvaluationRepository, **overrides) -> Evaluation:
    return await repository.create_evaluation(build_evaluation_data(**overrides))


@pytest.mark.asyncio
async def test_get_evaluation(
    async_client: AsyncClient, seed_repository: EvaluationRepository
) -> None:
    evaluation = await _seed(seed_repository)

    response = await async_client.get(f"/evaluations/{evaluation.id}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == evaluation.id
    assert body["score"] == 82
    assert body["score_percent"] == 82
    assert body["metrics"]["performance_level"] == "very good"
    assert body["metrics"]["category_strengths"] == ["clarity"]


@pytest.mark.asyncio
async def test_get_missing_evaluation_returns_error_body(async_client: AsyncClient) -> None:
    response = await async_client.get("/evaluations/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {
        "error_code": "EVALUATION_NOT_FOUND",
        "detail": "Evaluation with ID does-not-exist not found",
        "metadata": {
            "entity_id": "does-not-exist",
            "entity_type": "evaluation",
            "operation": "get_evaluation_by_id",
        },
    }


@pytest.mark.asyncio
async def test_list_for_user_with_challenge_filter(
    async_client: AsyncClient, seed_repository: EvaluationRepository
) -> None:
    base = datetime(2026, 5, 1, tzinfo=UTC)
    older = await _seed(seed_repository, challenge_id="c-1", created_at=base)
    newer = await _seed(
        seed_repository, challenge_id="c-1", created_at=base + timedelta(hours=1)
    )
    await _seed(seed_repository, challenge_id="c-2")

    response = await async_client.get("/evaluations/user/user-1", params={"challenge_id": "c-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [item["id"] for item in body["evaluations"]] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_list_for_user_rejects_bad_limit(async_client: AsyncClient) -> None:
    response = await async_client.get("/evaluations/user/user-1", params={"limit": 0})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_for_challenge(
    async_client: AsyncClient, seed_repository: EvaluationRepository
) -> None:
    await _seed(seed_repository, challenge_id="c-7")
    await _seed(seed_repository, challenge_id="c-7", user_id="user-2")

    everyone = await async_client.get("/evaluations/challenge/c-7")
    one_user = await async_client.get("/evaluations/challenge/c-7", params={"user_id": "user-2"})

    assert everyone.json()["count"] == 2
    assert [item["user_id"] for item in one_user.json()["evaluations"]] == ["user-2"]


@pytest.mark.asyncio
async def test_personalized_feedback(
    async_client: AsyncClient, seed_repository: EvaluationRepository
) -> None:
    evaluation = await _seed(
        seed_repository,
        user_context={"skill_level": "intermediate", "previous_scores": {"overall": 70}},
    )

    response = await async_client.get(f"/evaluations/{evaluation.id}/feedback")

    assert response.status_code == 200
    body = response.json()
    assert body["performance_level"] == "very good"
    assert body["skill_level_feedback"].startswith(
        "At your intermediate skill level, this is solid progress."
    )
    assert body["growth_insights"].startswith("You've shown significant improvement (+12 points)")


@pytest.mark.asyncio
async def test_delete_evaluation(
    async_client: AsyncClient, seed_repository: EvaluationRepository
) -> None:
    evaluation = await _seed(seed_repository)

    deleted = await async_client.delete(f"/evaluations/{evaluation.id}")
    again = await async_client.get(f"/evaluations/{evaluation.id}")

    assert deleted.status_code == 204
    assert again.status_code == 404
    history = async_client.event_bus.get_history("evaluation.deleted")  # type: ignore[attr-defined]
    assert [event.payload["evaluation_id"] for event in history] == [evaluation.id]
