"""
SM-2-lite scheduler.

Maps a card's scheduling state and a grade to the next state. This is a
pure computation module with no I/O and no hidden clock: callers pass ``now``.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from flashmaster.application.id_service import generate_id
from flashmaster.domain.constants import (
    EF_MAX,
    EF_MIN,
    FIRST_INTERVAL,
    LAPSE_INTERVAL,
    MIN_INTERVAL,
    SECOND_INTERVAL,
)
from flashmaster.domain.models import Card, Grade, Review, SchedulingState


@dataclass(frozen=True)
class ScheduleOutcome:
    """Updated card plus the review record that explains the update."""

    card: Card
    review: Review


def clamp_ef(value: float) -> float:
    return min(max(value, EF_MIN), EF_MAX)


def ef_delta(grade: Grade) -> float:
    """
    Ease-factor adjustment for a grade.

    Hard -0.14, Medium 0.0, Easy +0.10.
    """
    miss = 3 - grade.score
    return 0.1 - miss * (0.08 + miss * 0.02)


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def apply(state: SchedulingState, grade: Grade, now: datetime) -> tuple[SchedulingState, int]:
    """
    Compute the next scheduling state.

    Args:
        state: Current scheduling state of the card.
        grade: Grade given in this review.
        now: Review timestamp.

    Returns:
        (new_state, applied_interval_days). The interval is always >= 1.
    """
    new_ef = clamp_ef(state.ef + ef_delta(grade))

    if grade is Grade.HARD:
        reps = 0
        interval = LAPSE_INTERVAL
    else:
        reps = state.reps + 1
        if reps == 1:
            interval = FIRST_INTERVAL
        elif reps == 2:
            interval = SECOND_INTERVAL
        else:
            base = max(state.interval_days, MIN_INTERVAL)
            interval = max(round_half_away(base * new_ef), MIN_INTERVAL)

    new_state = SchedulingState(
        reps=reps,
        interval_days=interval,
        ef=new_ef,
        due_at=now + timedelta(days=interval),
        last_grade=grade,
        last_reviewed_at=now,
    )
    return new_state, interval


def apply_grade(card: Card, grade: Grade, now: datetime) -> ScheduleOutcome:
    """Apply a grade to a card and emit the matching Review record."""
    new_state, interval = apply(card.scheduling, grade, now)
    review = Review(
        id=generate_id(),
        card_id=card.id,
        grade=grade,
        reviewed_at=now,
        interval_applied=interval,
        ef_after=new_state.ef,
    )
    return ScheduleOutcome(card=card.with_scheduling(new_state), review=review)
