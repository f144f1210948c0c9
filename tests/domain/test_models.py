from dataclasses import replace
from datetime import datetime, timezone

import pytest

from flashmaster.domain.constants import EF_DEFAULT
from flashmaster.domain.errors import NotFoundError, StorageError, ValidationError
from flashmaster.domain.models import Card, Deck, Grade, SchedulingState, normalize_tags

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_card(**overrides) -> Card:
    card = Card.new(id="c1", deck_id="d1", front="Q", back="A", created_at=NOW)
    return replace(card, **overrides)


class TestGrade:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("1", Grade.HARD),
            ("h", Grade.HARD),
            ("Hard", Grade.HARD),
            (" 2 ", Grade.MEDIUM),
            ("m", Grade.MEDIUM),
            ("med", Grade.MEDIUM),
            ("MEDIUM", Grade.MEDIUM),
            ("3", Grade.EASY),
            ("e", Grade.EASY),
            ("easy", Grade.EASY),
            (2, Grade.MEDIUM),
            (Grade.EASY, Grade.EASY),
        ],
    )
    def test_parse_accepts_aliases(self, raw, expected):
        assert Grade.parse(raw) is expected

    @pytest.mark.parametrize("raw", ["0", "4", "x", "", "good", 7, True])
    def test_parse_rejects_unknown(self, raw):
        with pytest.raises(ValidationError):
            Grade.parse(raw)

    def test_scores_are_ordinal(self):
        assert [g.score for g in (Grade.HARD, Grade.MEDIUM, Grade.EASY)] == [1, 2, 3]
        assert Grade.from_score(3) is Grade.EASY

    def test_success(self):
        assert not Grade.HARD.is_success
        assert Grade.MEDIUM.is_success
        assert Grade.EASY.is_success


class TestDeck:
    def test_name_is_stripped(self):
        assert Deck(id="d1", name="  Spanish ", created_at=NOW).name == "Spanish"

    @pytest.mark.parametrize("name", ["", "   ", "\t\n"])
    def test_empty_name_rejected(self, name):
        with pytest.raises(ValidationError):
            Deck(id="d1", name=name, created_at=NOW)


class TestTags:
    def test_duplicates_collapse_in_first_seen_order(self):
        assert normalize_tags(["verb", "noun", "verb", " noun "]) == ("verb", "noun")

    @pytest.mark.parametrize("tag", ["", " ", "two words", "a,b", "a;b"])
    def test_malformed_tags_rejected(self, tag):
        with pytest.raises(ValidationError):
            normalize_tags([tag])

    def test_bare_string_rejected(self):
        with pytest.raises(ValidationError):
            normalize_tags("verb")


class TestCard:
    def test_new_card_is_due_at_creation(self):
        card = make_card()
        assert card.due_at == NOW
        assert card.reps == 0
        assert card.interval_days == 0
        assert card.ef == EF_DEFAULT
        assert card.is_new
        assert not card.is_lapsed

    def test_blank_hint_becomes_none(self):
        assert make_card(hint="   ").hint is None

    def test_lapsed_card_is_not_new(self):
        card = make_card(last_grade=Grade.HARD, last_reviewed_at=NOW, interval_days=1)
        assert card.reps == 0
        assert not card.is_new
        assert card.is_lapsed

    @pytest.mark.parametrize(
        "field,value", [("reps", -1), ("interval_days", -1), ("ef", 1.2), ("ef", 2.9)]
    )
    def test_scheduling_bounds_enforced(self, field, value):
        with pytest.raises(ValidationError):
            make_card(**{field: value})

    def test_with_scheduling_keeps_content(self):
        card = make_card(tags=("verb",), hint="think")
        state = SchedulingState(
            reps=1,
            interval_days=1,
            ef=2.6,
            due_at=NOW,
            last_grade=Grade.EASY,
            last_reviewed_at=NOW,
        )
        updated = card.with_scheduling(state)
        assert updated.scheduling == state
        assert (updated.front, updated.back, updated.hint, updated.tags) == (
            "Q",
            "A",
            "think",
            ("verb",),
        )


class TestErrors:
    def test_not_found_message(self):
        err = NotFoundError("card", "abc")
        assert str(err) == "card not found: abc"
        assert err.kind == "card"

    def test_storage_error_defaults_to_transient(self):
        assert StorageError("disk full").transient
        assert not StorageError("corrupt", transient=False).transient
