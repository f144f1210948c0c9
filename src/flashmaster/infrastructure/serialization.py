"""
Dict codecs for the persisted layout.

Shared by the JSON store and the import/export module. Decoders raise
KeyError, TypeError or ValueError on malformed input; callers translate
those into the error category that fits their context.
"""

from datetime import datetime, timezone
from typing import Any

from flashmaster.domain.models import Card, Deck, Grade, Review


def dt_to_str(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def dt_from_str(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _opt_dt_from_str(value: str | None) -> datetime | None:
    return dt_from_str(value) if value else None


def deck_to_dict(deck: Deck) -> dict[str, Any]:
    return {"id": deck.id, "name": deck.name, "created_at": dt_to_str(deck.created_at)}


def deck_from_dict(data: dict[str, Any]) -> Deck:
    return Deck(id=data["id"], name=data["name"], created_at=dt_from_str(data["created_at"]))


def card_to_dict(card: Card) -> dict[str, Any]:
    return {
        "id": card.id,
        "deck_id": card.deck_id,
        "front": card.front,
        "back": card.back,
        "hint": card.hint,
        "tags": list(card.tags),
        "reps": card.reps,
        "interval_days": card.interval_days,
        "ef": card.ef,
        "due_at": dt_to_str(card.due_at),
        "last_grade": card.last_grade.value if card.last_grade else None,
        "last_reviewed_at": dt_to_str(card.last_reviewed_at) if card.last_reviewed_at else None,
        "suspended": card.suspended,
        "created_at": dt_to_str(card.created_at),
    }


def card_from_dict(data: dict[str, Any]) -> Card:
    last_grade = data.get("last_grade")
    return Card(
        id=data["id"],
        deck_id=data["deck_id"],
        front=data["front"],
        back=data["back"],
        hint=data.get("hint"),
        tags=tuple(data.get("tags") or ()),
        reps=int(data["reps"]),
        interval_days=int(data["interval_days"]),
        ef=float(data["ef"]),
        due_at=dt_from_str(data["due_at"]),
        last_grade=Grade.parse(last_grade) if last_grade is not None else None,
        last_reviewed_at=_opt_dt_from_str(data.get("last_reviewed_at")),
        suspended=bool(data.get("suspended", False)),
        created_at=dt_from_str(data["created_at"]),
    )


def review_to_dict(review: Review) -> dict[str, Any]:
    return {
        "id": review.id,
        "card_id": review.card_id,
        "grade": review.grade.value,
        "reviewed_at": dt_to_str(review.reviewed_at),
        "interval_applied": review.interval_applied,
        "ef_after": review.ef_after,
    }


def review_from_dict(data: dict[str, Any]) -> Review:
    return Review(
        id=data["id"],
        card_id=data["card_id"],
        grade=Grade.parse(data["grade"]),
        reviewed_at=dt_from_str(data["reviewed_at"]),
        interval_applied=int(data["interval_applied"]),
        ef_after=float(data["ef_after"]),
    )
