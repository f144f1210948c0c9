"""
Review Service: application layer orchestrator for study sessions.

Builds due queues, grades cards through the scheduler and persists each
outcome atomically via ``Repository.apply_review``.
"""

import asyncio
import logging
import weakref
from datetime import datetime

from flashmaster.domain.errors import NotFoundError
from flashmaster.domain.models import Card, Deck, Grade, utcnow
from flashmaster.domain.ports import Repository

from .filters import search
from .id_service import looks_like_id
from .scheduler import ScheduleOutcome, apply_grade

logger = logging.getLogger(__name__)


class ReviewService:
    """
    Orchestrates review sessions over a Repository.

    Grading the same card twice concurrently is serialized with a per-card
    lock, so the read-modify-write of one card never interleaves. Different
    cards are graded independently.
    """

    def __init__(self, repo: Repository, clock=utcnow):
        self._repo = repo
        self._clock = clock
        # Held only while a grade of that card is running or waiting.
        self._card_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def repo(self) -> Repository:
        return self._repo

    async def resolve_deck(self, selector: str) -> Deck:
        """Find a deck by id, falling back to an exact name match."""
        if looks_like_id(selector):
            try:
                return await self._repo.get_deck(selector)
            except NotFoundError:
                pass
        name = selector.strip()
        for deck in await self._repo.list_decks():
            if deck.name == name:
                return deck
        raise NotFoundError("deck", selector)

    async def due_queue(
        self,
        deck_id: str | None = None,
        include_new: bool = False,
        include_lapsed: bool = False,
        tag: str | None = None,
        text: str | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[Card]:
        now = now or self._clock()
        return await self._repo.query_due(
            now,
            include_new=include_new,
            include_lapsed=include_lapsed,
            deck_id=deck_id,
            tag=tag,
            text=text,
            limit=limit,
        )

    async def grade_card(
        self, card_id: str, grade: Grade | str | int, now: datetime | None = None
    ) -> ScheduleOutcome:
        """
        Apply a grade to one card and persist the result.

        Args:
            card_id: Card to grade.
            grade: A Grade or anything ``Grade.parse`` accepts.
            now: Review time; defaults to the service clock.

        Returns:
            The updated card and the review that was recorded.
        """
        grade = Grade.parse(grade)
        lock = self._card_lock(card_id)
        async with lock:
            card = await self._repo.get_card(card_id)
            outcome = apply_grade(card, grade, now or self._clock())
            await self._repo.apply_review(outcome.card, outcome.review)

        logger.info(
            f"Graded {card_id} {grade.value}: next due {outcome.card.due_at:%Y-%m-%d} "
            f"(interval {outcome.review.interval_applied}d, ef {outcome.card.ef:.2f})"
        )
        return outcome

    def _card_lock(self, card_id: str) -> asyncio.Lock:
        lock = self._card_locks.get(card_id)
        if lock is None:
            lock = asyncio.Lock()
            self._card_locks[card_id] = lock
        return lock

    async def search(
        self,
        text: str | None = None,
        tag: str | None = None,
        deck_id: str | None = None,
    ) -> list[Card]:
        return search(await self._repo.list_cards(deck_id), text=text, tag=tag)
