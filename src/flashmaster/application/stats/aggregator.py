"""
Aggregation of review history into daily and per-deck summaries.

This is a pure computation module with no I/O.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta, timezone

from flashmaster.domain.models import Card, Review
from flashmaster.domain.stats.models import DateRange, DeckStats, GradeTotals, StatsReport

logger = logging.getLogger(__name__)


def aggregate(
    reviews: Iterable[Review],
    cards_by_id: Mapping[str, Card],
    range: DateRange | None = None,
    now: datetime | None = None,
) -> StatsReport:
    """
    Summarize reviews in a single pass.

    Every review in range counts towards the totals and daily counts. Reviews
    whose card is missing from ``cards_by_id`` (history may reference deleted
    cards) are left out of the per-deck breakdown and counted in
    ``skipped_reviews``.

    Args:
        reviews: Review records, any order.
        cards_by_id: Known cards keyed by id; also the source of the
            current due/new/lapsed counts.
        range: Optional half-open window over review timestamps.
        now: Evaluation time for due counts. Defaults to the current time.

    Returns:
        StatsReport with totals, ordered daily counts and per-deck stats.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    totals = GradeTotals()
    daily: dict[date, int] = {}
    per_deck: dict[str, DeckStats] = {}
    skipped = 0

    for card in cards_by_id.values():
        deck = per_deck.setdefault(card.deck_id, DeckStats(deck_id=card.deck_id))
        _count_card(deck, card, now)

    for review in reviews:
        if range is not None and not range.contains(review.reviewed_at):
            continue
        totals.record(review.grade)
        day = review.reviewed_at.date()
        daily[day] = daily.get(day, 0) + 1
        card = cards_by_id.get(review.card_id)
        if card is None:
            skipped += 1
            continue
        per_deck[card.deck_id].reviews.record(review.grade)

    if skipped:
        logger.debug(f"Left {skipped} reviews of unknown cards out of the per-deck breakdown")

    return StatsReport(
        totals=totals,
        daily_totals=dict(sorted(daily.items())),
        per_deck=per_deck,
        skipped_reviews=skipped,
    )


def daily_streak(reviews: Iterable[Review], today: date) -> int:
    """
    Count consecutive days with at least one review, ending at ``today``.

    Returns 0 when nothing was reviewed today.
    """
    days = {review.reviewed_at.date() for review in reviews}
    streak = 0
    day = today
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def _count_card(deck: DeckStats, card: Card, now: datetime) -> None:
    if card.suspended:
        return
    if card.is_new:
        deck.new += 1
        return
    if card.is_lapsed:
        deck.lapsed += 1
    if card.due_at <= now:
        deck.due += 1
