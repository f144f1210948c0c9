import csv
import json

import pytest

from flashmaster.application.review_service import ReviewService
from flashmaster.application.transfer import (
    export_csv,
    export_json,
    import_csv,
    import_json,
    parse_bundle,
    parse_csv,
)
from flashmaster.domain.errors import NotFoundError, StorageError, ValidationError
from flashmaster.domain.models import Grade
from flashmaster.infrastructure.adapters import MemoryRepository


@pytest.fixture
def repo(ticking_clock):
    return MemoryRepository(clock=ticking_clock)


async def seed(repo):
    spanish = await repo.create_deck("Spanish")
    await repo.create_deck("Empty")
    hola = await repo.add_card(spanish.id, "hola", "hello", hint="greeting", tags=["basic", "a1"])
    adios = await repo.add_card(spanish.id, "adios, amigo", 'bye "friend"')
    await repo.set_suspended(adios.id, True)
    return spanish, hola, adios


@pytest.mark.asyncio
async def test_json_export_and_import_into_fresh_store(repo, ticking_clock, tmp_path):
    _, hola, _ = await seed(repo)
    await ReviewService(repo, clock=ticking_clock).grade_card(hola.id, Grade.EASY)
    path = tmp_path / "out" / "bundle.json"

    assert await export_json(repo, path) == 2
    bundle = json.loads(path.read_text())
    assert bundle["version"] == 1
    assert {d["name"] for d in bundle["decks"]} == {"Spanish", "Empty"}

    target = MemoryRepository(clock=ticking_clock)
    summary = await import_json(target, path)

    assert summary.cards_added == 2
    assert summary.decks_created == 2
    cards = await target.list_cards()
    imported = {c.front: c for c in cards}
    assert imported["hola"].tags == ("basic", "a1")
    assert imported["hola"].hint == "greeting"
    assert imported["hola"].is_new
    assert imported["adios, amigo"].suspended


@pytest.mark.asyncio
async def test_csv_round_trip_keeps_content(repo, ticking_clock, tmp_path):
    await seed(repo)
    path = tmp_path / "cards.csv"

    assert await export_csv(repo, path) == 2

    with path.open(newline="", encoding="utf-8") as fh:
        rows = list(csv.DictReader(fh))
    assert rows[0] == {
        "deck": "Spanish",
        "front": "hola",
        "back": "hello",
        "hint": "greeting",
        "tags": "basic;a1",
        "suspended": "0",
    }
    assert rows[1]["back"] == 'bye "friend"'
    assert rows[1]["suspended"] == "1"

    target = MemoryRepository(clock=ticking_clock)
    summary = await import_csv(target, path)
    assert summary.cards_added == 2
    assert summary.decks_created == 1
    assert [d.name for d in await target.list_decks()] == ["Spanish"]


@pytest.mark.asyncio
async def test_csv_import_into_existing_deck_by_name(repo, tmp_path):
    spanish, _, _ = await seed(repo)
    path = tmp_path / "more.csv"
    path.write_text("deck,front,back\nSpanish,gracias,thanks\nFrench,merci,thanks\n")

    summary = await import_csv(repo, path)

    assert summary.cards_added == 2
    assert summary.decks_created == 1
    assert len(await repo.list_cards(spanish.id)) == 3


@pytest.mark.asyncio
async def test_csv_import_with_target_deck(repo, tmp_path):
    spanish, _, _ = await seed(repo)
    path = tmp_path / "more.csv"
    path.write_text("deck,front,back\nFrench,merci,thanks\n")

    summary = await import_csv(repo, path, target=spanish)

    assert summary.decks_created == 0
    assert [d.name for d in await repo.list_decks()] == ["Spanish", "Empty"]


@pytest.mark.asyncio
async def test_csv_export_single_deck(repo, tmp_path):
    spanish, _, _ = await seed(repo)
    other = await repo.create_deck("German")
    await repo.add_card(other.id, "hallo", "hello")

    assert await export_csv(repo, tmp_path / "es.csv", deck_id=spanish.id) == 2


@pytest.mark.asyncio
async def test_import_missing_file(repo, tmp_path):
    with pytest.raises(NotFoundError):
        await import_json(repo, tmp_path / "nope.json")


@pytest.mark.asyncio
async def test_export_to_unwritable_location(repo, tmp_path):
    await seed(repo)
    blocker = tmp_path / "file"
    blocker.write_text("")

    with pytest.raises(StorageError):
        await export_csv(repo, blocker / "cards.csv")


def test_parse_csv_requires_header():
    with pytest.raises(ValidationError):
        parse_csv("hola,hello\n")


def test_parse_csv_drops_blank_tags():
    [(deck, draft)] = parse_csv("deck,front,back,hint,tags,suspended\nD,f,b,,x;;y,0\n")
    assert deck == "D"
    assert draft.tags == ["x", "y"]
    assert draft.hint is None
    assert not draft.suspended


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        '{"version": 2, "decks": [], "cards": []}',
        '{"version": 1, "decks": [], "cards": [{"deck_id": "x", "front": "f", "back": "b"}]}',
        '{"version": 1, "decks": [{"id": "d"}], "cards": []}',
    ],
)
def test_parse_bundle_rejects_bad_input(text):
    with pytest.raises(ValidationError):
        parse_bundle(text)
