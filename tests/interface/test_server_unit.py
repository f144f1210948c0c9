from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from flashmaster.application.config import AppConfig
from flashmaster.consts import VERSION
from flashmaster.domain.errors import StorageError
from flashmaster.server import create_app, get_service


@pytest.fixture
def client(mock_home):
    with TestClient(create_app(AppConfig(store="memory"))) as c:
        yield c


@pytest.fixture
def deck_id(client):
    response = client.post("/decks", json={"name": "Spanish"})
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def card_id(client, deck_id):
    response = client.post(
        "/cards",
        json={"deck_id": deck_id, "front": "hola", "back": "hello", "tags": ["greeting"]},
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_decks_crud(client, deck_id):
    listing = client.get("/decks").json()
    assert [d["name"] for d in listing] == ["Spanish"]

    assert client.post("/decks", json={"name": "Spanish"}).status_code == 409
    assert client.post("/decks", json={"name": "  "}).status_code == 422

    assert client.delete(f"/decks/{deck_id}").status_code == 200
    assert client.get("/decks").json() == []
    assert client.delete(f"/decks/{deck_id}").status_code == 404


def test_cards_crud(client, deck_id, card_id):
    card = client.get(f"/cards/{card_id}").json()
    assert card["front"] == "hola"
    assert card["tags"] == ["greeting"]
    assert card["reps"] == 0
    assert card["last_grade"] is None

    assert [c["id"] for c in client.get("/cards", params={"deck_id": deck_id}).json()] == [card_id]
    assert client.get("/cards", params={"q": "HELLO"}).json()[0]["id"] == card_id
    assert client.get("/cards", params={"tag": "other"}).json() == []

    assert client.delete(f"/cards/{card_id}").status_code == 200
    assert client.get(f"/cards/{card_id}").status_code == 404


def test_create_card_errors(client, deck_id):
    missing_deck = client.post("/cards", json={"deck_id": "nope", "front": "f", "back": "b"})
    assert missing_deck.status_code == 404
    assert "deck not found" in missing_deck.json()["detail"]

    bad_tag = client.post(
        "/cards", json={"deck_id": deck_id, "front": "f", "back": "b", "tags": ["two words"]}
    )
    assert bad_tag.status_code == 422

    incomplete = client.post("/cards", json={"deck_id": deck_id})
    assert incomplete.status_code == 422


def test_due_and_review(client, card_id):
    assert client.get("/due").json() == []
    due = client.get("/due", params={"include_new": True}).json()
    assert [c["id"] for c in due] == [card_id]

    response = client.post("/review", json={"card_id": card_id, "grade": "easy"})
    assert response.status_code == 200
    data = response.json()
    assert data["card"]["reps"] == 1
    assert data["card"]["interval_days"] == 1
    assert data["card"]["last_grade"] == "easy"
    assert data["review"]["grade"] == "easy"
    assert data["review"]["interval_applied"] == 1

    assert client.get("/due", params={"include_new": True}).json() == []


def test_review_errors(client, card_id):
    assert client.post("/review", json={"card_id": card_id, "grade": "great"}).status_code == 422
    assert client.post("/review", json={"card_id": card_id, "grade": 4}).status_code == 422
    assert client.post("/review", json={"card_id": "missing", "grade": 1}).status_code == 404


def test_stats(client, deck_id, card_id):
    empty = client.get("/stats").json()
    assert empty["total_reviews"] == 0
    assert empty["accuracy"] is None

    client.post("/review", json={"card_id": card_id, "grade": 3})
    client.post("/review", json={"card_id": card_id, "grade": "h"})

    data = client.get("/stats", params={"deck_id": deck_id}).json()
    assert data["total_reviews"] == 2
    assert data["accuracy"] == 0.5
    assert data["streak_days"] == 1
    assert data["decks"][0]["deck_id"] == deck_id
    assert data["decks"][0]["lapsed"] == 1

    assert client.get("/stats", params={"since": "2000-01-01", "until": "2000-01-02"}).json()[
        "total_reviews"
    ] == 0
    assert client.get("/stats", params={"deck_id": "missing"}).status_code == 404


@pytest.mark.parametrize("transient,status", [(True, 503), (False, 500)])
def test_storage_errors_map_to_5xx(client, transient, status):
    service = AsyncMock()
    service.repo.list_decks.side_effect = StorageError("database unavailable", transient=transient)
    client.app.dependency_overrides[get_service] = lambda: service
    try:
        response = client.get("/decks")
    finally:
        client.app.dependency_overrides.clear()

    assert response.status_code == status
    assert "database unavailable" in response.json()["detail"]
