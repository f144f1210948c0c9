"""
Filter engine for building review queues and searching the catalog.

A card enters the due set when:
1. It is not suspended
2. It is new and new cards were requested, or
3. It has been reviewed, its due time has passed, and it is either not
   lapsed or lapsed cards were requested

The due set is then narrowed by tag/text filters, ordered by due time,
and truncated. Pure functions; inputs are never mutated.
"""

import builtins
from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from flashmaster.domain.models import Card


class DueStatus(str, Enum):
    SUSPENDED = "suspended"
    NEW = "new"
    LAPSED = "lapsed"
    DUE = "due"
    FUTURE = "future"


def classify(card: Card, now: datetime) -> DueStatus:
    """Single display status for a card at ``now``."""
    if card.suspended:
        return DueStatus.SUSPENDED
    if card.is_new:
        return DueStatus.NEW
    if card.due_at > now:
        return DueStatus.FUTURE
    if card.is_lapsed:
        return DueStatus.LAPSED
    return DueStatus.DUE


def matches_tag(card: Card, tag: str | None) -> bool:
    if tag is None or not tag.strip():
        return True
    return tag.strip() in card.tags


def matches_text(card: Card, text: str | None) -> bool:
    if text is None:
        return True
    needle = text.strip().casefold()
    if not needle:
        return True
    return needle in card.front.casefold() or needle in card.back.casefold()


def in_due_set(card: Card, now: datetime, include_new: bool, include_lapsed: bool) -> bool:
    if card.suspended:
        return False
    if card.is_new:
        return include_new
    if card.due_at > now:
        return False
    if card.is_lapsed:
        return include_lapsed
    return True


def queue_order(card: Card) -> tuple:
    return (card.due_at, card.created_at, card.id)


def select_due(
    cards: Iterable[Card],
    now: datetime,
    include_new: bool = False,
    include_lapsed: bool = False,
    tag: str | None = None,
    text: str | None = None,
    max: int | None = None,
) -> list[Card]:
    """
    Select and order the cards to review at ``now``.

    Args:
        cards: Candidate cards (any order).
        now: Evaluation time.
        include_new: Include never-reviewed cards regardless of due time.
        include_lapsed: Include due cards whose last grade was Hard.
        tag: Keep only cards carrying this exact tag.
        text: Keep only cards whose front or back contains this text
            (case-insensitive).
        max: Truncate the ordered result to this many cards.

    Returns:
        Cards ordered by due time, then creation time.
    """
    selected = [
        card
        for card in cards
        if in_due_set(card, now, include_new, include_lapsed)
        and matches_tag(card, tag)
        and matches_text(card, text)
    ]
    selected.sort(key=queue_order)
    if max is not None:
        selected = selected[: builtins.max(max, 0)]
    return selected


def search(
    cards: Iterable[Card],
    text: str | None = None,
    tag: str | None = None,
) -> list[Card]:
    """Tag/text search over the full catalog, oldest cards first."""
    found = [card for card in cards if matches_tag(card, tag) and matches_text(card, text)]
    found.sort(key=lambda c: (c.created_at, c.id))
    return found
