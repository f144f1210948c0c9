"""
Ports (interfaces) for persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from .models import Card, Deck, Review


class Repository(ABC):
    """
    Port for storing decks, cards and reviews.

    Every backend must give identical semantics:

    - deck names are unique (ConflictError, never a silent overwrite);
    - deleting a deck deletes its cards and their reviews, deleting a card
      deletes its reviews;
    - ``apply_review`` persists the card update and the review as one unit;
    - ``query_due`` returns exactly what ``filters.select_due`` would return
      over the same cards.

    Implementations:
        - MemoryRepository: process-local dictionaries.
        - JsonStore: single JSON file with atomic writes and rotating backups.
        - SqlRepository: SQLAlchemy Core over SQLite or PostgreSQL.
    """

    # ----- Decks -----

    @abstractmethod
    async def create_deck(self, name: str) -> Deck:
        """
        Create a deck.

        Raises:
            ValidationError: if the name is empty.
            ConflictError: if a deck with the same name exists.
        """

    @abstractmethod
    async def get_deck(self, deck_id: str) -> Deck:
        """Raises NotFoundError if the deck does not exist."""

    @abstractmethod
    async def list_decks(self) -> list[Deck]:
        """All decks, oldest first."""

    @abstractmethod
    async def rename_deck(self, deck_id: str, name: str) -> Deck:
        """Raises NotFoundError, ValidationError or ConflictError."""

    @abstractmethod
    async def delete_deck(self, deck_id: str) -> None:
        """Delete a deck with its cards and their reviews."""

    # ----- Cards -----

    @abstractmethod
    async def add_card(
        self,
        deck_id: str,
        front: str,
        back: str,
        hint: str | None = None,
        tags: Iterable[str] = (),
    ) -> Card:
        """Create a new card, due immediately. Raises NotFoundError for a missing deck."""

    @abstractmethod
    async def get_card(self, card_id: str) -> Card:
        """Raises NotFoundError if the card does not exist."""

    @abstractmethod
    async def list_cards(self, deck_id: str | None = None) -> list[Card]:
        """Cards, oldest first, optionally restricted to one deck."""

    @abstractmethod
    async def update_card(self, card: Card) -> Card:
        """Replace a stored card. Raises NotFoundError for a missing card or deck."""

    @abstractmethod
    async def set_suspended(self, card_id: str, suspended: bool) -> Card:
        """Toggle the suspended flag."""

    @abstractmethod
    async def delete_card(self, card_id: str) -> None:
        """Delete a card and its reviews."""

    # ----- Reviews -----

    @abstractmethod
    async def append_review(self, review: Review) -> Review:
        """Append a review. Raises NotFoundError for an unknown card."""

    @abstractmethod
    async def list_reviews(
        self,
        card_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Review]:
        """Reviews ordered by time, optionally for one card and within ``[since, until)``."""

    @abstractmethod
    async def apply_review(self, card: Card, review: Review) -> Card:
        """
        Persist an updated card together with the review that produced it.

        Either both are stored or neither is.
        """

    # ----- Queries -----

    @abstractmethod
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
        """Due set for ``now``, equivalent to ``filters.select_due``."""

    # ----- Lifecycle -----

    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self) -> "Repository":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
