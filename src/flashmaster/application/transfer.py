"""
Import and export of card collections.

Two formats:
- JSON bundle: ``{"version": 1, "decks": [...], "cards": [...]}`` using the
  persisted layout for each record.
- CSV: one row per card with columns ``deck,front,back,hint,tags,suspended``;
  tags joined with ``;`` and suspended written as ``1``/``0``.

Imports create missing decks by name and add every card fresh: scheduling
starts over, only content and the suspended flag carry across.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from flashmaster.domain.constants import CSV_TAG_SEPARATOR, STORE_FILE_VERSION
from flashmaster.domain.errors import ConflictError, NotFoundError, StorageError, ValidationError
from flashmaster.domain.models import CardDraft, Deck
from flashmaster.domain.ports import Repository
from flashmaster.infrastructure.serialization import card_to_dict, deck_to_dict
from flashmaster.infrastructure.utils.atomic import atomic_write

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("deck", "front", "back", "hint", "tags", "suspended")


@dataclass
class ImportSummary:
    decks_created: int = 0
    cards_added: int = 0


# ----- Export -----


async def build_bundle(repo: Repository) -> dict[str, Any]:
    decks = await repo.list_decks()
    cards = await repo.list_cards()
    return {
        "version": STORE_FILE_VERSION,
        "decks": [deck_to_dict(d) for d in decks],
        "cards": [card_to_dict(c) for c in cards],
    }


async def export_json(repo: Repository, path: Path) -> int:
    """Write every deck and card to ``path``. Returns the number of cards."""
    bundle = await build_bundle(repo)
    _write_export(path, json.dumps(bundle, indent=2, ensure_ascii=False))
    logger.info(f"Exported {len(bundle['cards'])} cards to {path}")
    return len(bundle["cards"])


async def render_csv(repo: Repository, deck_id: str | None = None) -> tuple[str, int]:
    """CSV text for the cards plus the number of rows written."""
    names = {deck.id: deck.name for deck in await repo.list_decks()}
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    cards = await repo.list_cards(deck_id)
    for card in cards:
        writer.writerow(
            [
                names.get(card.deck_id, card.deck_id),
                card.front,
                card.back,
                card.hint or "",
                CSV_TAG_SEPARATOR.join(card.tags),
                "1" if card.suspended else "0",
            ]
        )
    return buf.getvalue(), len(cards)


async def export_csv(repo: Repository, path: Path, deck_id: str | None = None) -> int:
    """Write cards (optionally of one deck) as CSV. Returns the number of cards."""
    data, count = await render_csv(repo, deck_id)
    _write_export(path, data)
    logger.info(f"Exported {count} cards to {path}")
    return count


def _write_export(path: Path, data: str) -> None:
    try:
        atomic_write(path, data)
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        raise StorageError(f"cannot write {path}: {e}") from e


# ----- Import -----


def parse_bundle(text: str) -> tuple[list[str], list[tuple[str, CardDraft]]]:
    """
    Decode a JSON bundle into its deck names and (deck name, draft) pairs.

    Raises:
        ValidationError: for invalid JSON, an unsupported version, or cards
            that reference a deck missing from the bundle.
    """
    try:
        bundle = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON bundle: {e}") from e
    if not isinstance(bundle, dict) or bundle.get("version") != STORE_FILE_VERSION:
        raise ValidationError("unsupported bundle version")

    try:
        deck_names = {d["id"]: d["name"] for d in bundle.get("decks", [])}
        rows = []
        for raw in bundle.get("cards", []):
            deck_id = raw["deck_id"]
            if deck_id not in deck_names:
                raise ValidationError(f"card {raw.get('id')} references unknown deck {deck_id}")
            draft = CardDraft(
                front=raw["front"],
                back=raw["back"],
                hint=raw.get("hint"),
                tags=list(raw.get("tags") or []),
                suspended=bool(raw.get("suspended", False)),
            )
            rows.append((deck_names[deck_id], draft))
    except (KeyError, TypeError) as e:
        raise ValidationError(f"malformed bundle record: {e}") from e
    return list(deck_names.values()), rows


def parse_csv(text: str) -> list[tuple[str, CardDraft]]:
    """Decode CSV rows into (deck name, draft) pairs. The header row is required."""
    reader = csv.DictReader(io.StringIO(text))
    missing = {"deck", "front", "back"} - set(reader.fieldnames or ())
    if missing:
        raise ValidationError(f"CSV is missing columns: {', '.join(sorted(missing))}")

    rows = []
    for row in reader:
        tags = [t for t in (row.get("tags") or "").split(CSV_TAG_SEPARATOR) if t.strip()]
        draft = CardDraft(
            front=row.get("front") or "",
            back=row.get("back") or "",
            hint=row.get("hint") or None,
            tags=tags,
            suspended=(row.get("suspended") or "0").strip() == "1",
        )
        rows.append(((row.get("deck") or "").strip(), draft))
    return rows


async def ensure_deck(repo: Repository, name: str, known: dict[str, Deck]) -> tuple[Deck, bool]:
    """Look up a deck by exact name, creating it if needed. Returns (deck, created)."""
    if name in known:
        return known[name], False
    try:
        deck = await repo.create_deck(name)
    except ConflictError:
        known.update({d.name: d for d in await repo.list_decks()})
        return known[name], False
    known[deck.name] = deck
    return deck, True


async def import_rows(
    repo: Repository,
    rows: list[tuple[str, CardDraft]],
    target: Deck | None = None,
    deck_names: list[str] | None = None,
) -> ImportSummary:
    """
    Add drafts to the repository.

    Args:
        repo: Destination repository.
        rows: (deck name, draft) pairs.
        target: Put every card in this deck instead of the named one.
        deck_names: Decks to create even when no card refers to them.
    """
    summary = ImportSummary()
    known = {deck.name: deck for deck in await repo.list_decks()}

    for name in deck_names or ():
        _, created = await ensure_deck(repo, name, known)
        summary.decks_created += int(created)

    for deck_name, draft in rows:
        if target is not None:
            deck = target
        else:
            deck, created = await ensure_deck(repo, deck_name, known)
            summary.decks_created += int(created)
        card = await repo.add_card(deck.id, draft.front, draft.back, draft.hint, draft.tags)
        if draft.suspended:
            await repo.set_suspended(card.id, True)
        summary.cards_added += 1

    logger.info(f"Imported {summary.cards_added} cards ({summary.decks_created} new decks)")
    return summary


def _read_text(path: Path) -> str:
    if not path.is_file():
        raise NotFoundError("file", str(path))
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(f"{path} is not UTF-8 text: {e}") from e
    except OSError as e:
        raise StorageError(f"cannot read {path}: {e}") from e


async def import_json(repo: Repository, path: Path) -> ImportSummary:
    deck_names, rows = parse_bundle(_read_text(path))
    return await import_rows(repo, rows, deck_names=deck_names)


async def import_csv(repo: Repository, path: Path, target: Deck | None = None) -> ImportSummary:
    return await import_rows(repo, parse_csv(_read_text(path)), target=target)
