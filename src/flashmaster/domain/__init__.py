# Domain Package
from .errors import (
    ConflictError,
    FlashmasterError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .models import Card, Deck, Grade, Review, SchedulingState
from .ports import Repository

__all__ = [
    "Card",
    "Deck",
    "Grade",
    "Review",
    "SchedulingState",
    "Repository",
    "FlashmasterError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "StorageError",
]
