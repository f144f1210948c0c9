from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from flashmaster.application.stats import aggregate, daily_streak
from flashmaster.domain.models import Card, Grade, Review
from flashmaster.domain.stats.models import DateRange

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_card(card_id: str, deck_id: str = "d1", **overrides) -> Card:
    card = Card.new(
        id=card_id, deck_id=deck_id, front="q", back="a", created_at=NOW - timedelta(days=20)
    )
    return replace(card, **overrides)


def review(card_id: str, grade: Grade, at: datetime, rid: str | None = None) -> Review:
    return Review(
        id=rid or f"r-{card_id}-{at.isoformat()}-{grade.value}",
        card_id=card_id,
        grade=grade,
        reviewed_at=at,
        interval_applied=1,
        ef_after=2.5,
    )


@pytest.fixture
def cards():
    return {"c1": make_card("c1"), "c2": make_card("c2", deck_id="d2")}


def test_no_reviews_yields_no_accuracy(cards):
    report = aggregate([], cards, now=NOW)
    assert report.accuracy is None
    assert report.totals.total == 0
    assert report.daily_totals == {}
    assert report.per_deck["d1"].accuracy is None


def test_accuracy_counts_medium_and_easy(cards):
    reviews = [
        review("c1", Grade.EASY, NOW - timedelta(hours=3)),
        review("c1", Grade.HARD, NOW - timedelta(hours=2)),
        review("c1", Grade.MEDIUM, NOW - timedelta(hours=1)),
    ]
    report = aggregate(reviews, cards, now=NOW)
    assert report.accuracy == pytest.approx(2 / 3)
    assert (report.totals.hard, report.totals.medium, report.totals.easy) == (1, 1, 1)


def test_unknown_cards_count_in_totals_but_not_per_deck(cards):
    reviews = [
        review("c1", Grade.EASY, NOW),
        review("deleted", Grade.HARD, NOW),
        review("deleted", Grade.MEDIUM, NOW - timedelta(days=1)),
    ]
    report = aggregate(reviews, cards, now=NOW)
    assert report.totals.total == 3
    assert report.accuracy == pytest.approx(2 / 3)
    assert report.daily_totals == {(NOW - timedelta(days=1)).date(): 1, NOW.date(): 2}
    assert report.skipped_reviews == 2
    assert report.per_deck["d1"].total_reviews == 1
    assert report.per_deck["d2"].total_reviews == 0


def test_only_unknown_cards():
    reviews = [
        review("gone", Grade.EASY, NOW),
        review("gone", Grade.HARD, NOW),
        review("gone", Grade.MEDIUM, NOW),
    ]
    report = aggregate(reviews, {}, now=NOW)
    assert report.accuracy == pytest.approx(2 / 3)
    assert report.daily_totals == {NOW.date(): 3}
    assert report.skipped_reviews == 3
    assert report.per_deck == {}


def test_daily_totals_are_ordered_by_date(cards):
    reviews = [
        review("c1", Grade.EASY, datetime(2025, 3, 9, 8, tzinfo=timezone.utc)),
        review("c1", Grade.EASY, datetime(2025, 3, 7, 8, tzinfo=timezone.utc)),
        review("c2", Grade.HARD, datetime(2025, 3, 9, 20, tzinfo=timezone.utc)),
    ]
    report = aggregate(reviews, cards, now=NOW)
    assert list(report.daily_totals.items()) == [(date(2025, 3, 7), 1), (date(2025, 3, 9), 2)]


def test_per_deck_breakdown(cards):
    reviews = [
        review("c1", Grade.EASY, NOW - timedelta(days=1)),
        review("c2", Grade.HARD, NOW - timedelta(days=1)),
        review("c2", Grade.MEDIUM, NOW - timedelta(hours=1)),
    ]
    report = aggregate(reviews, cards, now=NOW)
    assert report.per_deck["d1"].total_reviews == 1
    assert report.per_deck["d1"].accuracy == 1.0
    assert report.per_deck["d2"].total_reviews == 2
    assert report.per_deck["d2"].accuracy == pytest.approx(0.5)


def test_current_counts_skip_suspended():
    reviewed = dict(reps=1, interval_days=1, last_grade=Grade.EASY, last_reviewed_at=NOW)
    cards = {
        "new": make_card("new"),
        "due": make_card("due", due_at=NOW - timedelta(hours=1), **reviewed),
        "future": make_card("future", due_at=NOW + timedelta(days=1), **reviewed),
        "lapsed": make_card(
            "lapsed",
            reps=0,
            interval_days=1,
            last_grade=Grade.HARD,
            last_reviewed_at=NOW,
            due_at=NOW + timedelta(days=1),
        ),
        "hidden": make_card("hidden", suspended=True),
    }
    deck = aggregate([], cards, now=NOW).per_deck["d1"]
    assert (deck.new, deck.due, deck.lapsed) == (1, 1, 1)


def test_range_is_half_open(cards):
    start = datetime(2025, 3, 1, tzinfo=timezone.utc)
    end = datetime(2025, 3, 2, tzinfo=timezone.utc)
    reviews = [
        review("c1", Grade.EASY, start - timedelta(seconds=1)),
        review("c1", Grade.EASY, start),
        review("c1", Grade.EASY, end - timedelta(seconds=1)),
        review("c1", Grade.EASY, end),
    ]
    report = aggregate(reviews, cards, range=DateRange(start=start, end=end), now=NOW)
    assert report.totals.total == 2


def test_inputs_are_not_mutated(cards):
    reviews = [review("c1", Grade.EASY, NOW)]
    snapshot = (list(reviews), dict(cards))
    aggregate(reviews, cards, now=NOW)
    assert (reviews, cards) == snapshot


class TestDailyStreak:
    def test_consecutive_days_ending_today(self):
        today = date(2025, 3, 10)
        reviews = [
            review("c1", Grade.EASY, datetime(2025, 3, d, 9, tzinfo=timezone.utc))
            for d in (7, 8, 9, 10)
        ]
        reviews.append(review("c1", Grade.EASY, datetime(2025, 3, 5, 9, tzinfo=timezone.utc)))
        assert daily_streak(reviews, today) == 4

    def test_zero_without_review_today(self):
        reviews = [review("c1", Grade.EASY, datetime(2025, 3, 9, 9, tzinfo=timezone.utc))]
        assert daily_streak(reviews, date(2025, 3, 10)) == 0
