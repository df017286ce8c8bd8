from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from src.domain.events import DomainEvent


def build_evaluation_data(**overrides: Any) -> dict[str, Any]:
    """Minimal valid create payload; keyword overrides replace top-level keys."""
    data: dict[str, Any] = {
        "user_id": "user-1",
        "challenge_id": "challenge-1",
        "score": 82,
        "category_scores": {"clarity": 85, "reasoning": 78, "creativity": 60},
        "overall_feedback": "Well structured response.",
        "strengths": ["clarity"],
        "areas_for_improvement": ["creativity"],
    }
    data.update(overrides)
    return data


def new_uuid() -> str:
    return str(uuid.uuid4())


class RecordingEventBus:
    """Event bus double that records publications and can be told to fail."""

    def __init__(
        self,
        *,
        fail_with: Exception | None = None,
        on_publish: Callable[[DomainEvent], None] | None = None,
    ) -> None:
        self.events: list[DomainEvent] = []
        self.fail_with = fail_with
        self.on_publish = on_publish

    async def publish(self, event: DomainEvent) -> None:
        if self.on_publish is not None:
            self.on_publish(event)
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]
