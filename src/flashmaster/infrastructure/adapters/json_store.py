"""
JSON file repository: the reference backend.

Keeps the whole collection in memory and rewrites one JSON file per
mutation. Writes go through ``atomic_write`` (temp file, fsync, backup of
the previous version, rename), so the primary file is never half-written.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from flashmaster.domain.constants import DEFAULT_MAX_BACKUPS, STORE_FILE_VERSION
from flashmaster.domain.errors import FlashmasterError, NotFoundError, StorageError
from flashmaster.domain.models import utcnow
from flashmaster.infrastructure.serialization import (
    card_from_dict,
    card_to_dict,
    deck_from_dict,
    deck_to_dict,
    dt_from_str,
    dt_to_str,
    review_from_dict,
    review_to_dict,
)
from flashmaster.infrastructure.utils.atomic import atomic_write, list_backups

from .memory_repo import Clock, MemoryRepository, StoreState

logger = logging.getLogger(__name__)

T = TypeVar("T")


def state_to_image(state: StoreState) -> dict[str, Any]:
    return {
        "version": STORE_FILE_VERSION,
        "created_at": dt_to_str(state.created_at),
        "updated_at": dt_to_str(state.updated_at),
        "decks": [deck_to_dict(d) for d in state.decks.values()],
        "cards": [card_to_dict(c) for c in state.cards.values()],
        "reviews": [review_to_dict(r) for items in state.reviews.values() for r in items],
    }


def state_from_image(image: dict[str, Any]) -> StoreState:
    """
    Rebuild state from a decoded file image.

    Raises:
        StorageError: (structural) for unsupported versions or malformed records.
    """
    version = image.get("version") if isinstance(image, dict) else None
    if version != STORE_FILE_VERSION:
        raise StorageError(f"unsupported store version: {version!r}", transient=False)

    try:
        state = StoreState(
            created_at=dt_from_str(image["created_at"]),
            updated_at=dt_from_str(image["updated_at"]),
        )
        for raw in image.get("decks", []):
            deck = deck_from_dict(raw)
            state.decks[deck.id] = deck
        for raw in image.get("cards", []):
            card = card_from_dict(raw)
            state.cards[card.id] = card
        for raw in image.get("reviews", []):
            review = review_from_dict(raw)
            state.reviews.setdefault(review.card_id, []).append(review)
    except (KeyError, TypeError, ValueError, FlashmasterError) as e:
        raise StorageError(f"malformed store record: {e}", transient=False) from e

    for items in state.reviews.values():
        items.sort(key=lambda r: (r.reviewed_at, r.id))
    return state


class JsonStore(MemoryRepository):
    """
    Repository persisted to a single JSON file.

    Args:
        path: Primary store file.
        backups_dir: Directory for timestamped copies of previous versions.
        max_backups: Number of backups to keep (at least 1).
        clock: Source of the current time.
    """

    def __init__(
        self,
        path: Path,
        backups_dir: Path,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Clock = utcnow,
        state: StoreState | None = None,
    ):
        super().__init__(clock=clock, state=state)
        self.path = path
        self.backups_dir = backups_dir
        self.max_backups = max(1, max_backups)

    @classmethod
    async def open(
        cls,
        path: Path,
        backups_dir: Path | None = None,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Clock = utcnow,
    ) -> "JsonStore":
        """Load ``path``, creating an empty store file if it does not exist."""
        backups_dir = backups_dir or path.parent / "backups"
        store = cls(path, backups_dir, max_backups=max_backups, clock=clock)
        await asyncio.to_thread(store._load_or_init)
        return store

    def _load_or_init(self) -> None:
        if self.path.exists():
            self._state = self._read(self.path)
            logger.info(
                f"Loaded {len(self._state.decks)} decks and {len(self._state.cards)} cards "
                f"from {self.path}"
            )
        else:
            logger.info(f"Initializing new store at {self.path}")
            self._persist(self._state)

    @staticmethod
    def _read(path: Path) -> StoreState:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"cannot read {path}: {e}") from e
        try:
            image = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"corrupt store file {path}: {e}", transient=False) from e
        return state_from_image(image)

    # ----- Write discipline -----

    async def _mutate(self, change: Callable[[StoreState], T]) -> T:
        # Runs to completion in a worker thread even if the caller is cancelled.
        return await asyncio.to_thread(self._apply, change)

    def _persist(self, state: StoreState) -> None:
        data = json.dumps(state_to_image(state), indent=2, ensure_ascii=False)
        try:
            backup = atomic_write(
                self.path,
                data,
                backups_dir=self.backups_dir,
                keep=self.max_backups,
                moment=self._clock(),
            )
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            raise StorageError(f"cannot write {self.path}: {e}") from e
        if backup is not None:
            logger.debug(f"Backed up previous version to {backup.name}")

    # ----- Backups -----

    def list_backups(self) -> list[Path]:
        """Available backups, oldest first."""
        return list_backups(self.path, self.backups_dir)

    async def restore_backup(self, backup: Path | None = None) -> Path:
        """
        Replace the current contents with a backup (the newest by default).

        The current version is itself backed up first, so a restore can be undone.
        """
        backups = self.list_backups()
        if backup is None:
            if not backups:
                raise NotFoundError("backup", str(self.backups_dir))
            backup = backups[-1]
        elif not backup.exists():
            raise NotFoundError("backup", str(backup))

        restored = await asyncio.to_thread(self._read, backup)
        await self._mutate(lambda working: _overwrite(working, restored))
        logger.info(f"Restored {self.path} from {backup.name}")
        return backup


def _overwrite(working: StoreState, source: StoreState) -> None:
    working.created_at = source.created_at
    working.decks = dict(source.decks)
    working.cards = dict(source.cards)
    working.reviews = {cid: list(items) for cid, items in source.reviews.items()}
