from src.domain.events import DomainEvent, EventTypes
from src.domain.models import Evaluation

__all__ = ["DomainEvent", "Evaluation", "EventTypes"]
