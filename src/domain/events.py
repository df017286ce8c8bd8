from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol


class EventTypes(str, enum.Enum):
    """Domain event types published by the evaluation core."""

    EVALUATION_CREATED = "evaluation.created"
    EVALUATION_UPDATED = "evaluation.updated"
    EVALUATION_DELETED = "evaluation.deleted"


@dataclass(slots=True, frozen=True)
class DomainEvent:
    """A fact about a committed state change."""

    type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(cls, event_type: str | EventTypes, payload: dict[str, Any]) -> DomainEvent:
        if not event_type:
            raise ValueError("Event type is required")
        type_value = event_type.value if isinstance(event_type, EventTypes) else str(event_type)
        return cls(type=type_value, payload=dict(payload))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.type,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class EventBusProtocol(Protocol):
    """Publish entry point of the externally owned event bus."""

    async def publish(self, event: DomainEvent) -> None:
        """Deliver one event to subscribers."""
        ...


def evaluation_event_payload(
    *,
    evaluation_id: str,
    user_id: str,
    challenge_id: str,
    timestamp: datetime,
    score: float | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "evaluation_id": evaluation_id,
        "user_id": user_id,
        "challenge_id": challenge_id,
        "timestamp": timestamp.isoformat(),
    }
    if score is not None:
        payload["score"] = score
    return payload
