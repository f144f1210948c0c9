"""
SQL Repository: infrastructure adapter for relational databases.

Implements Repository with SQLAlchemy Core, so the same adapter serves an
embedded SQLite file and a networked PostgreSQL server. Every mutation is a
single transaction executed in a worker thread.
"""

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    SmallInteger,
    String,
    Table,
    Text,
    and_,
    create_engine,
    delete,
    event,
    insert,
    not_,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from flashmaster.application.filters import select_due
from flashmaster.application.id_service import generate_id
from flashmaster.domain.errors import (
    ConflictError,
    FlashmasterError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from flashmaster.domain.models import Card, Deck, Grade, Review, utcnow, validate_deck_name
from flashmaster.domain.ports import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")

metadata = MetaData()

decks = Table(
    "decks",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", Text, nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

cards = Table(
    "cards",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("deck_id", String(32), ForeignKey("decks.id", ondelete="CASCADE"), nullable=False),
    Column("front", Text, nullable=False),
    Column("back", Text, nullable=False),
    Column("hint", Text),
    Column("tags", Text, nullable=False, default="[]"),
    Column("reps", Integer, nullable=False, default=0),
    Column("interval_days", Integer, nullable=False, default=0),
    Column("ef", Float, nullable=False, default=2.5),
    Column("due_at", DateTime(timezone=True), nullable=False),
    Column("last_grade", SmallInteger),
    Column("last_reviewed_at", DateTime(timezone=True)),
    Column("suspended", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("idx_cards_deck_due", "deck_id", "due_at"),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("card_id", String(32), ForeignKey("cards.id", ondelete="CASCADE"), nullable=False),
    Column("grade", SmallInteger, nullable=False),
    Column("reviewed_at", DateTime(timezone=True), nullable=False),
    Column("interval_applied", Integer, nullable=False),
    Column("ef_after", Float, nullable=False),
    Index("idx_reviews_card_time", "card_id", "reviewed_at"),
)


def _to_db(value: datetime | None) -> datetime | None:
    return value.astimezone(timezone.utc) if value is not None else None


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops the offset; everything is stored as UTC.
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _deck_from_row(row: Row) -> Deck:
    return Deck(id=row.id, name=row.name, created_at=_from_db(row.created_at))


def _card_from_row(row: Row) -> Card:
    return Card(
        id=row.id,
        deck_id=row.deck_id,
        front=row.front,
        back=row.back,
        hint=row.hint,
        tags=tuple(json.loads(row.tags or "[]")),
        reps=row.reps,
        interval_days=row.interval_days,
        ef=row.ef,
        due_at=_from_db(row.due_at),
        last_grade=Grade.from_score(row.last_grade) if row.last_grade is not None else None,
        last_reviewed_at=_from_db(row.last_reviewed_at),
        suspended=bool(row.suspended),
        created_at=_from_db(row.created_at),
    )


def _card_values(card: Card) -> dict[str, Any]:
    return {
        "id": card.id,
        "deck_id": card.deck_id,
        "front": card.front,
        "back": card.back,
        "hint": card.hint,
        "tags": json.dumps(list(card.tags)),
        "reps": card.reps,
        "interval_days": card.interval_days,
        "ef": card.ef,
        "due_at": _to_db(card.due_at),
        "last_grade": card.last_grade.score if card.last_grade else None,
        "last_reviewed_at": _to_db(card.last_reviewed_at),
        "suspended": card.suspended,
        "created_at": _to_db(card.created_at),
    }


def _review_from_row(row: Row) -> Review:
    return Review(
        id=row.id,
        card_id=row.card_id,
        grade=Grade.from_score(row.grade),
        reviewed_at=_from_db(row.reviewed_at),
        interval_applied=row.interval_applied,
        ef_after=row.ef_after,
    )


def _review_values(review: Review) -> dict[str, Any]:
    return {
        "id": review.id,
        "card_id": review.card_id,
        "grade": review.grade.score,
        "reviewed_at": _to_db(review.reviewed_at),
        "interval_applied": review.interval_applied,
        "ef_after": review.ef_after,
    }


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


class SqlRepository(Repository):
    """
    Repository over any SQLAlchemy-supported database.

    Use ``SqlRepository.open(url)``; ``sqlite:///path`` for an embedded file,
    ``sqlite://`` for a private in-memory database, or a
    ``postgresql+psycopg://`` URL for a server.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._clock = clock

    @classmethod
    async def open(cls, url: str, clock: Callable[[], datetime] = utcnow) -> "SqlRepository":
        engine = _build_engine(url)
        repo = cls(engine, clock=clock)
        await repo._run(repo._ensure_schema)
        logger.info(f"Opened SQL store at {engine.url.render_as_string(hide_password=True)}")
        return repo

    def _ensure_schema(self) -> None:
        metadata.create_all(self.engine)

    # ----- Plumbing -----

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._guard, fn, *args)

    def _guard(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except FlashmasterError:
            raise
        except IntegrityError as e:
            raise ConflictError(f"constraint violated: {e.orig}") from e
        except OperationalError as e:
            logger.error(f"Database operation failed: {e}")
            raise StorageError(f"database unavailable: {e.orig}", transient=True) from e
        except (DBAPIError, SQLAlchemyError) as e:
            logger.error(f"Database error: {e}")
            raise StorageError(f"database error: {e}", transient=False) from e

    def _write(self, fn: Callable[[Connection], T]) -> T:
        with self.engine.begin() as conn:
            return fn(conn)

    def _read(self, fn: Callable[[Connection], T]) -> T:
        with self.engine.connect() as conn:
            return fn(conn)

    @staticmethod
    def _require_deck(conn: Connection, deck_id: str) -> Deck:
        row = conn.execute(select(decks).where(decks.c.id == deck_id)).first()
        if row is None:
            raise NotFoundError("deck", deck_id)
        return _deck_from_row(row)

    @staticmethod
    def _require_card(conn: Connection, card_id: str) -> Card:
        row = conn.execute(select(cards).where(cards.c.id == card_id)).first()
        if row is None:
            raise NotFoundError("card", card_id)
        return _card_from_row(row)

    @staticmethod
    def _check_name_free(conn: Connection, name: str, exclude: str | None = None) -> None:
        stmt = select(decks.c.id).where(decks.c.name == name)
        if exclude is not None:
            stmt = stmt.where(decks.c.id != exclude)
        if conn.execute(stmt).first() is not None:
            raise ConflictError(f"deck name already exists: {name}")

    @staticmethod
    def _update_card_row(conn: Connection, card: Card) -> None:
        values = _card_values(card)
        del values["id"], values["created_at"]
        conn.execute(update(cards).where(cards.c.id == card.id).values(**values))

    @staticmethod
    def _insert_review(conn: Connection, review: Review) -> None:
        conn.execute(insert(reviews).values(**_review_values(review)))

    # ----- Decks -----

    async def create_deck(self, name: str) -> Deck:
        name = validate_deck_name(name)
        deck = Deck(id=generate_id(), name=name, created_at=self._clock())

        def txn(conn: Connection) -> Deck:
            self._check_name_free(conn, name)
            conn.execute(
                insert(decks).values(id=deck.id, name=deck.name, created_at=_to_db(deck.created_at))
            )
            return deck

        result = await self._run(self._write, txn)
        logger.info(f"Created deck {result.name!r} ({result.id})")
        return result

    async def get_deck(self, deck_id: str) -> Deck:
        return await self._run(self._read, lambda conn: self._require_deck(conn, deck_id))

    async def list_decks(self) -> list[Deck]:
        def query(conn: Connection) -> list[Deck]:
            rows = conn.execute(select(decks).order_by(decks.c.created_at, decks.c.id))
            return [_deck_from_row(row) for row in rows]

        return await self._run(self._read, query)

    async def rename_deck(self, deck_id: str, name: str) -> Deck:
        name = validate_deck_name(name)

        def txn(conn: Connection) -> Deck:
            deck = self._require_deck(conn, deck_id)
            self._check_name_free(conn, name, exclude=deck_id)
            conn.execute(update(decks).where(decks.c.id == deck_id).values(name=name))
            return replace(deck, name=name)

        return await self._run(self._write, txn)

    async def delete_deck(self, deck_id: str) -> None:
        def txn(conn: Connection) -> int:
            self._require_deck(conn, deck_id)
            owned = select(cards.c.id).where(cards.c.deck_id == deck_id)
            conn.execute(delete(reviews).where(reviews.c.card_id.in_(owned)))
            removed = conn.execute(delete(cards).where(cards.c.deck_id == deck_id)).rowcount
            conn.execute(delete(decks).where(decks.c.id == deck_id))
            return removed

        removed = await self._run(self._write, txn)
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

        def txn(conn: Connection) -> Card:
            self._require_deck(conn, deck_id)
            conn.execute(insert(cards).values(**_card_values(card)))
            return card

        return await self._run(self._write, txn)

    async def get_card(self, card_id: str) -> Card:
        return await self._run(self._read, lambda conn: self._require_card(conn, card_id))

    async def list_cards(self, deck_id: str | None = None) -> list[Card]:
        def query(conn: Connection) -> list[Card]:
            stmt = select(cards).order_by(cards.c.created_at, cards.c.id)
            if deck_id is not None:
                stmt = stmt.where(cards.c.deck_id == deck_id)
            return [_card_from_row(row) for row in conn.execute(stmt)]

        return await self._run(self._read, query)

    async def update_card(self, card: Card) -> Card:
        def txn(conn: Connection) -> Card:
            self._require_card(conn, card.id)
            self._require_deck(conn, card.deck_id)
            self._update_card_row(conn, card)
            return card

        return await self._run(self._write, txn)

    async def set_suspended(self, card_id: str, suspended: bool) -> Card:
        def txn(conn: Connection) -> Card:
            card = replace(self._require_card(conn, card_id), suspended=suspended)
            conn.execute(update(cards).where(cards.c.id == card_id).values(suspended=suspended))
            return card

        return await self._run(self._write, txn)

    async def delete_card(self, card_id: str) -> None:
        def txn(conn: Connection) -> None:
            self._require_card(conn, card_id)
            conn.execute(delete(reviews).where(reviews.c.card_id == card_id))
            conn.execute(delete(cards).where(cards.c.id == card_id))

        await self._run(self._write, txn)
        logger.info(f"Deleted card {card_id}")

    # ----- Reviews -----

    async def append_review(self, review: Review) -> Review:
        def txn(conn: Connection) -> Review:
            self._require_card(conn, review.card_id)
            self._insert_review(conn, review)
            return review

        return await self._run(self._write, txn)

    async def list_reviews(
        self,
        card_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Review]:
        def query(conn: Connection) -> list[Review]:
            stmt = select(reviews).order_by(reviews.c.reviewed_at, reviews.c.id)
            if card_id is not None:
                stmt = stmt.where(reviews.c.card_id == card_id)
            if since is not None:
                stmt = stmt.where(reviews.c.reviewed_at >= _to_db(since))
            if until is not None:
                stmt = stmt.where(reviews.c.reviewed_at < _to_db(until))
            return [_review_from_row(row) for row in conn.execute(stmt)]

        return await self._run(self._read, query)

    async def apply_review(self, card: Card, review: Review) -> Card:
        if review.card_id != card.id:
            raise ValidationError("review does not belong to the updated card")

        def txn(conn: Connection) -> Card:
            self._require_card(conn, card.id)
            self._update_card_row(conn, card)
            self._insert_review(conn, review)
            return card

        updated = await self._run(self._write, txn)
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
        """
        Push the suspended/new/due/lapsed gate and ordering into SQL, then run
        the tag/text filters and truncation through ``select_due``.
        """

        def query(conn: Connection) -> list[Card]:
            is_new = and_(cards.c.reps == 0, cards.c.last_reviewed_at.is_(None))
            due = and_(not_(is_new), cards.c.due_at <= _to_db(now))
            if not include_lapsed:
                due = and_(
                    due,
                    or_(cards.c.last_grade.is_(None), cards.c.last_grade != Grade.HARD.score),
                )
            gate = or_(due, is_new) if include_new else due

            stmt = (
                select(cards)
                .where(not_(cards.c.suspended), gate)
                .order_by(cards.c.due_at, cards.c.created_at, cards.c.id)
            )
            if deck_id is not None:
                stmt = stmt.where(cards.c.deck_id == deck_id)
            return [_card_from_row(row) for row in conn.execute(stmt)]

        candidates = await self._run(self._read, query)
        return select_due(
            candidates, now, include_new, include_lapsed, tag=tag, text=text, max=limit
        )

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each worker thread sees its own empty database.
            options["poolclass"] = StaticPool
        engine = create_engine(url, **options)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True)
