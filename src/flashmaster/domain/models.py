"""
Domain models for decks, cards and reviews.

These are pure data structures with no I/O or external dependencies.
Entities are frozen; updates go through ``dataclasses.replace`` or the
helpers on ``Card``.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from .constants import EF_DEFAULT, EF_MAX, EF_MIN, TAG_FORBIDDEN_CHARS
from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Grade(str, Enum):
    """Answer quality. The score is the only numeric bridge to the scheduler."""

    HARD = "hard"
    MEDIUM = "medium"
    EASY = "easy"

    @property
    def score(self) -> int:
        return _GRADE_SCORES[self]

    @property
    def is_success(self) -> bool:
        return self is not Grade.HARD

    @classmethod
    def from_score(cls, score: int) -> "Grade":
        for grade, value in _GRADE_SCORES.items():
            if value == score:
                return grade
        raise ValidationError(f"grade score out of range: {score}")

    @classmethod
    def parse(cls, raw: "str | int | Grade") -> "Grade":
        """Parse ``1/h/hard``, ``2/m/med/medium`` or ``3/e/easy``."""
        if isinstance(raw, Grade):
            return raw
        if isinstance(raw, int) and not isinstance(raw, bool):
            return cls.from_score(raw)
        key = str(raw).strip().lower()
        try:
            return _GRADE_ALIASES[key]
        except KeyError:
            raise ValidationError(f"invalid grade: {raw!r}") from None


_GRADE_SCORES = {Grade.HARD: 1, Grade.MEDIUM: 2, Grade.EASY: 3}

_GRADE_ALIASES = {
    "1": Grade.HARD,
    "h": Grade.HARD,
    "hard": Grade.HARD,
    "2": Grade.MEDIUM,
    "m": Grade.MEDIUM,
    "med": Grade.MEDIUM,
    "medium": Grade.MEDIUM,
    "3": Grade.EASY,
    "e": Grade.EASY,
    "easy": Grade.EASY,
}


def validate_deck_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("deck name must not be empty")
    return cleaned


def normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    """
    Strip tags and collapse duplicates, keeping first-seen order.

    Raises:
        ValidationError: for empty tags or tags containing whitespace,
            ``,`` or ``;``.
    """
    if isinstance(tags, str):
        raise ValidationError("tags must be a collection of strings, not a string")
    seen: dict[str, None] = {}
    for raw in tags:
        if not isinstance(raw, str):
            raise ValidationError(f"malformed tag: {raw!r}")
        tag = raw.strip()
        if not tag:
            raise ValidationError("tags must not be empty")
        if any(ch.isspace() for ch in tag) or any(ch in tag for ch in TAG_FORBIDDEN_CHARS):
            raise ValidationError(f"malformed tag: {raw!r}")
        seen.setdefault(tag, None)
    return tuple(seen)


@dataclass(frozen=True)
class Deck:
    id: str
    name: str
    created_at: datetime

    def __post_init__(self):
        object.__setattr__(self, "name", validate_deck_name(self.name))


@dataclass(frozen=True)
class SchedulingState:
    """
    The part of a card owned by the scheduler.

    Attributes:
        reps: Consecutive successful repetitions (0 after a lapse).
        interval_days: Current interval in days.
        ef: Ease factor, always within [EF_MIN, EF_MAX].
        due_at: When the card is next due.
        last_grade: Grade of the most recent review, if any.
        last_reviewed_at: Timestamp of the most recent review, if any.
    """

    reps: int
    interval_days: int
    ef: float
    due_at: datetime
    last_grade: Grade | None = None
    last_reviewed_at: datetime | None = None

    def __post_init__(self):
        _check_scheduling(self.reps, self.interval_days, self.ef)


@dataclass(frozen=True)
class Card:
    id: str
    deck_id: str
    front: str
    back: str
    due_at: datetime
    created_at: datetime
    hint: str | None = None
    tags: tuple[str, ...] = ()
    reps: int = 0
    interval_days: int = 0
    ef: float = EF_DEFAULT
    last_grade: Grade | None = None
    last_reviewed_at: datetime | None = None
    suspended: bool = False

    def __post_init__(self):
        object.__setattr__(self, "tags", normalize_tags(self.tags))
        if self.hint is not None and not self.hint.strip():
            object.__setattr__(self, "hint", None)
        _check_scheduling(self.reps, self.interval_days, self.ef)

    @classmethod
    def new(
        cls,
        id: str,
        deck_id: str,
        front: str,
        back: str,
        created_at: datetime,
        hint: str | None = None,
        tags: Iterable[str] = (),
    ) -> "Card":
        """A never-reviewed card, due immediately."""
        return cls(
            id=id,
            deck_id=deck_id,
            front=front,
            back=back,
            hint=hint,
            tags=tuple(tags),
            due_at=created_at,
            created_at=created_at,
        )

    @property
    def is_new(self) -> bool:
        return self.reps == 0 and self.last_reviewed_at is None

    @property
    def is_lapsed(self) -> bool:
        return self.last_grade is Grade.HARD

    @property
    def scheduling(self) -> SchedulingState:
        return SchedulingState(
            reps=self.reps,
            interval_days=self.interval_days,
            ef=self.ef,
            due_at=self.due_at,
            last_grade=self.last_grade,
            last_reviewed_at=self.last_reviewed_at,
        )

    def with_scheduling(self, state: SchedulingState) -> "Card":
        return replace(
            self,
            reps=state.reps,
            interval_days=state.interval_days,
            ef=state.ef,
            due_at=state.due_at,
            last_grade=state.last_grade,
            last_reviewed_at=state.last_reviewed_at,
        )


@dataclass(frozen=True)
class Review:
    """
    A single, append-only review log entry.

    Attributes:
        card_id: The card that was reviewed.
        grade: Grade given.
        reviewed_at: When the review happened.
        interval_applied: Interval (days) scheduled by this review.
        ef_after: Ease factor after this review.
    """

    id: str
    card_id: str
    grade: Grade
    reviewed_at: datetime
    interval_applied: int
    ef_after: float


@dataclass
class CardDraft:
    """Content fields for a card that does not exist yet (imports, API)."""

    front: str
    back: str
    hint: str | None = None
    tags: list[str] = field(default_factory=list)
    suspended: bool = False


def _check_scheduling(reps: int, interval_days: int, ef: float) -> None:
    if reps < 0:
        raise ValidationError(f"repetition count must be >= 0, got {reps}")
    if interval_days < 0:
        raise ValidationError(f"interval must be >= 0, got {interval_days}")
    if not EF_MIN <= ef <= EF_MAX:
        raise ValidationError(f"ease factor {ef} outside [{EF_MIN}, {EF_MAX}]")
