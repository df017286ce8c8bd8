from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status
from src.api.deps import get_evaluation_repository
from src.api.schemas.evaluations import (
    ErrorResponse,
    EvaluationListResponse,
    EvaluationResponse,
)
from src.domain.models import Evaluation
from src.infrastructure.repositories.evaluations import EvaluationRepository

router = APIRouter(
    prefix="/evaluations",
    tags=["Evaluations"],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
)
logger = structlog.get_logger()


def _to_response(evaluation: Evaluation) -> EvaluationResponse:
    return EvaluationResponse.model_validate(evaluation.to_dict())


def _to_list_response(evaluations: list[Evaluation]) -> EvaluationListResponse:
    return EvaluationListResponse(
        evaluations=[_to_response(evaluation) for evaluation in evaluations],
        count=len(evaluations),
    )


@router.get("/user/{user_id}", response_model=EvaluationListResponse)
async def list_user_evaluations(
    user_id: str,
    challenge_id: str | None = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    repository: EvaluationRepository = Depends(get_evaluation_repository),  # noqa: B008
) -> EvaluationListResponse:
    """Evaluations for one user, newest first."""
    evaluations = await repository.find_evaluations_for_user(
        user_id,
        {"challenge_id": challenge_id, "limit": limit, "offset": offset},
    )
    return _to_list_response(evaluations)


@router.get("/challenge/{challenge_id}", response_model=EvaluationListResponse)
async def list_challenge_evaluations(
    challenge_id: str,
    user_id: str | None = None,
    repository: EvaluationRepository = Depends(get_evaluation_repository),  # noqa: B008
) -> EvaluationListResponse:
    """Evaluations for one challenge, optionally narrowed to a user."""
    evaluations = await repository.find_evaluations_for_challenge(challenge_id, user_id)
    return _to_list_response(evaluations)


@router.get("/{evaluation_id}", response_model=EvaluationResponse)
async def get_evaluation(
    evaluation_id: str,
    repository: EvaluationRepository = Depends(get_evaluation_repository),  # noqa: B008
) -> EvaluationResponse:
    evaluation = await repository.get_evaluation_by_id(evaluation_id, throw_if_not_found=True)
    return _to_response(evaluation)


@router.get("/{evaluation_id}/feedback")
async def get_personalized_feedback(
    evaluation_id: str,
    repository: EvaluationRepository = Depends(get_evaluation_repository),  # noqa: B008
) -> dict[str, str]:
    """Feedback text tailored to the user's skill level, focus areas and history."""
    evaluation = await repository.get_evaluation_by_id(evaluation_id, throw_if_not_found=True)
    return evaluation.get_personalized_feedback()


@router.delete("/{evaluation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_evaluation(
    evaluation_id: str,
    repository: EvaluationRepository = Depends(get_evaluation_repository),  # noqa: B008
) -> None:
    await repository.delete_evaluation(evaluation_id)
    logger.info("evaluation_delete_requested", evaluation_id=evaluation_id)
