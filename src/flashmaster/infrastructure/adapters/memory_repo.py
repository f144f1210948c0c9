"""
In-memory repository.

Also the base of ``JsonStore``: every mutation runs copy-on-write under a
single writer lock (copy state, apply the change, persist, swap), so readers
always see a fully committed snapshot and a failed change leaves the
previous snapshot in place.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TypeVar

from flashmaster.application.filters import select_due
from flashmaster.application.id_service import generate_id
from flashmaster.domain.errors import ConflictError, NotFoundError, ValidationError
from flashmaster.domain.models import Card, Deck, Review, utcnow, validate_deck_name
from flashmaster.domain.ports import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


@dataclass
class StoreState:
    """Complete repository contents. Copied before every mutation."""

    created_at: datetime
    updated_at: datetime
    decks: dict[str, Deck] = field(default_factory=dict)
    cards: dict[str, Card] = field(default_factory=dict)
    reviews: dict[str, list[Review]] = field(default_factory=dict)

    @classmethod
    def empty(cls, now: datetime) -> "StoreState":
        return cls(created_at=now, updated_at=now)

    def copy(self) -> "StoreState":
        return StoreState(
            created_at=self.created_at,
            updated_at=self.updated_at,
            decks=dict(self.decks),
            cards=dict(self.cards),
            reviews={cid: list(items) for cid, items in self.reviews.items()},
        )

    def require_deck(self, deck_id: str) -> Deck:
        try:
            return self.decks[deck_id]
        except KeyError:
            raise NotFoundError("deck", deck_id) from None

    def require_card(self, card_id: str) -> Card:
        try:
            return self.cards[card_id]
        except KeyError:
            raise NotFoundError("card", card_id) from None

    def check_name_free(self, name: str, exclude: str | None = None) -> None:
        for deck in self.decks.values():
            if deck.name == name and deck.id != exclude:
                raise ConflictError(f"deck name already exists: {name}")

    def put_card(self, card: Card) -> None:
        self.require_deck(card.deck_id)
        self.cards[card.id] = card

    def add_review(self, review: Review) -> None:
        self.require_card(review.card_id)
        self.reviews.setdefault(review.card_id, []).append(review)

    def remove_card(self, card_id: str) -> None:
        self.require_card(card_id)
        del self.cards[card_id]
        self.reviews.pop(card_id, None)

    def remove_deck(self, deck_id: str) -> int:
        self.require_deck(deck_id)
        del self.decks[deck_id]
        owned = [cid for cid, card in self.cards.items() if card.deck_id == deck_id]
        for cid in owned:
            self.remove_card(cid)
        return len(owned)


class MemoryRepository(Repository):
    """Process-local repository, mainly for tests and throwaway sessions."""

    def __init__(self, clock: Clock = utcnow, state: StoreState | None = None):
        self._clock = clock
        self._state = state or StoreState.empty(clock())
        self._write_lock = threading.Lock()

    # ----- Write discipline -----

    async def _mutate(self, change: Callable[[StoreState], T]) -> T:
        return self._apply(change)

    def _apply(self, change: Callable[[StoreState], T]) -> T:
        with self._write_lock:
            working = self._state.copy()
            result = change(working)
            working.updated_at = self._clock()
            self._persist(working)
            self._state = working
            return result

    def _persist(self, state: StoreState) -> None:
        """Hook for durable backends. Raise to abort the change."""

    # ----- Decks -----

    async def create_deck(self, name: str) -> Deck:
        name = validate_deck_name(name)

        def change(state: StoreState) -> Deck:
            state.check_name_free(name)
            deck = Deck(id=generate_id(), name=name, created_at=self._clock())
            state.decks[deck.id] = deck
            return deck

        deck = await self._mutate(change)
        logger.info(f"Created deck {deck.name!r} ({deck.id})")
        return deck

    async def get_deck(self, deck_id: str) -> Deck:
        return self._state.require_deck(deck_id)

    async def list_decks(self) -> list[Deck]:
        return sorted(self._state.decks.values(), key=lambda d: (d.created_at, d.id))

    async def rename_deck(self, deck_id: str, name: str) -> Deck:
        name = validate_deck_name(name)

        def change(state: StoreState) -> Deck:
            deck = state.require_deck(deck_id)
            state.check_name_free(name, exclude=deck_id)
            renamed = replace(deck, name=name)
            state.decks[deck_id] = renamed
            return renamed

        return await self._mutate(change)

    async def delete_deck(self, deck_id: str) -> None:
        removed = await self._mutate(lambda state: state.remove_deck(deck_id))
        logger.info(f"Deleted deck {deck_id} with {removed} cards")

    # ----- Cards -----

    async def add_card(
        self,
        deck_id: str,
        front: str,
        back: str,
        hint: str | None = None,
        tags: Iterable[str] = (),
    ) -> Card:
        card = Card.new(
            id=generate_id(),
            deck_id=deck_id,
            front=front,
            back=back,
            hint=hint,
            tags=tags,
            created_at=self._clock(),
        )

        def change(state: StoreState) -> Card:
            state.put_card(card)
            return card

        return await self._mutate(change)

    async def get_card(self, card_id: str) -> Card:
        return self._state.require_card(card_id)

    async def list_cards(self, deck_id: str | None = None) -> list[Card]:
        cards = self._state.cards.values()
        if deck_id is not None:
            cards = [c for c in cards if c.deck_id == deck_id]
        return sorted(cards, key=lambda c: (c.created_at, c.id))

    async def update_card(self, card: Card) -> Card:
        def change(state: StoreState) -> Card:
            state.require_card(card.id)
            state.put_card(card)
            return card

        return await self._mutate(change)

    async def set_suspended(self, card_id: str, suspended: bool) -> Card:
        def change(state: StoreState) -> Card:
            updated = replace(state.require_card(card_id), suspended=suspended)
            state.put_card(updated)
            return updated

        return await self._mutate(change)

    async def delete_card(self, card_id: str) -> None:
        await self._mutate(lambda state: state.remove_card(card_id))
        logger.info(f"Deleted card {card_id}")

    # ----- Reviews -----

    async def append_review(self, review: Review) -> Review:
        def change(state: StoreState) -> Review:
            state.add_review(review)
            return review

        return await self._mutate(change)

    async def list_reviews(
        self,
        card_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Review]:
        if card_id is not None:
            pool = list(self._state.reviews.get(card_id, []))
        else:
            pool = [r for items in self._state.reviews.values() for r in items]
        if since is not None:
            pool = [r for r in pool if r.reviewed_at >= since]
        if until is not None:
            pool = [r for r in pool if r.reviewed_at < until]
        return sorted(pool, key=lambda r: (r.reviewed_at, r.id))

    async def apply_review(self, card: Card, review: Review) -> Card:
        if review.card_id != card.id:
            raise ValidationError("review does not belong to the updated card")

        def change(state: StoreState) -> Card:
            state.require_card(card.id)
            state.put_card(card)
            state.add_review(review)
            return card

        updated = await self._mutate(change)
        logger.debug(
            f"Applied {review.grade.value} review to {card.id}; next in {review.interval_applied}d"
        )
        return updated

    # ----- Queries -----

    async def query_due(
        self,
        now: datetime,
        include_new: bool = False,
        include_lapsed: bool = False,
        deck_id: str | None = None,
        tag: str | None = None,
        text: str | None = None,
        limit: int | None = None,
    ) -> list[Card]:
        cards = await self.list_cards(deck_id)
        return select_due(cards, now, include_new, include_lapsed, tag=tag, text=text, max=limit)
