"""
Domain models for review statistics.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

from ..models import Grade


@dataclass(frozen=True)
class DateRange:
    """
    Half-open window ``[start, end)`` over review timestamps.

    Either bound may be None to leave that side open.
    """

    start: datetime | None = None
    end: datetime | None = None

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment >= self.end:
            return False
        return True


@dataclass
class GradeTotals:
    """Review counts broken down by grade."""

    total: int = 0
    hard: int = 0
    medium: int = 0
    easy: int = 0

    def record(self, grade: Grade) -> None:
        self.total += 1
        if grade is Grade.HARD:
            self.hard += 1
        elif grade is Grade.MEDIUM:
            self.medium += 1
        else:
            self.easy += 1

    @property
    def correct(self) -> int:
        return self.medium + self.easy

    @property
    def accuracy(self) -> float | None:
        """Fraction graded Medium or Easy; None when there is no data."""
        if self.total == 0:
            return None
        return self.correct / self.total


@dataclass
class DeckStats:
    """
    Per-deck aggregate.

    Attributes:
        reviews: Grade breakdown of the deck's reviews in scope.
        due: Non-suspended, already-reviewed cards due at the evaluation time.
        new: Non-suspended cards never reviewed.
        lapsed: Non-suspended cards whose most recent review was Hard.
    """

    deck_id: str
    reviews: GradeTotals = field(default_factory=GradeTotals)
    due: int = 0
    new: int = 0
    lapsed: int = 0

    @property
    def total_reviews(self) -> int:
        return self.reviews.total

    @property
    def accuracy(self) -> float | None:
        return self.reviews.accuracy


@dataclass
class StatsReport:
    """Result of a single aggregation pass."""

    totals: GradeTotals
    daily_totals: dict[date, int]
    per_deck: dict[str, DeckStats]
    skipped_reviews: int = 0

    @property
    def accuracy(self) -> float | None:
        return self.totals.accuracy
