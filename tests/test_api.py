"""HTTP surface exercised through the real application lifespan."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

import app.main as main
from app.config import Settings


@pytest.fixture
def client(tmp_path, monkeypatch) -> Iterator[TestClient]:
    test_settings = Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        RECOMMENDATION_MIN_ITEMS=2,
    )
    monkeypatch.setattr(main, "settings", test_settings)
    with TestClient(main.create_app()) as test_client:
        yield test_client


def _add(client: TestClient, user_id: str, raw_id: str, **fields) -> dict:
    payload = {"id": raw_id, "domain": "games", "title": f"Game {raw_id}", "status": "owned"}
    payload.update(fields)
    response = client.post(f"/users/{user_id}/collection", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["item"]


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_collection_lifecycle(client: TestClient) -> None:
    empty = client.get("/users/alice/collection").json()
    assert empty["count"] == 0
    assert empty["loaded"] is True
    assert empty["loading"] is False

    item = _add(client, "alice", "3498", title="GTA V", rating=4)
    assert item["id"] == "game-3498"
    assert item["rating"] == 4

    listing = client.get("/users/alice/collection").json()
    assert [entry["id"] for entry in listing["items"]] == ["game-3498"]

    patched = client.patch("/users/alice/collection/game-3498", json={"status": "completed"})
    assert patched.status_code == 200
    assert patched.json()["item"]["date_completed"] is not None

    assert client.delete("/users/alice/collection/game-3498").status_code == 200
    assert client.delete("/users/alice/collection/game-3498").status_code == 404
    assert client.get("/users/alice/collection").json()["count"] == 0


def test_collections_are_isolated_per_user(client: TestClient) -> None:
    _add(client, "alice", "1")

    assert client.get("/users/bob/collection").json()["count"] == 0
    assert client.get("/users/alice/collection").json()["count"] == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"id": "1", "domain": "games", "title": "No status"},
        {"id": "1", "domain": "games", "title": "Bad rating", "status": "owned", "rating": 9},
        {"id": "1", "domain": "podcasts", "title": "Bad domain", "status": "owned"},
        ["not", "an", "object"],
    ],
)
def test_invalid_additions_are_rejected(client: TestClient, payload) -> None:
    response = client.post("/users/alice/collection", json=payload)

    assert response.status_code == 400


def test_update_validation_and_missing_items(client: TestClient) -> None:
    _add(client, "alice", "1")

    assert client.patch("/users/alice/collection/game-1", json={"rating": 0}).status_code == 400
    assert client.patch("/users/alice/collection/game-404", json={"status": "owned"}).status_code == 404


def test_status_cannot_be_cleared(client: TestClient) -> None:
    _add(client, "alice", "1")

    response = client.patch("/users/alice/collection/game-1", json={"status": None})

    assert response.status_code == 400
    assert client.get("/users/alice/collection").json()["items"][0]["status"] == "owned"


def test_sync_focus_and_session_teardown(client: TestClient) -> None:
    _add(client, "alice", "1")

    synced = client.post("/users/alice/sync").json()
    assert synced["count"] == 1
    assert synced["sync"]["state"] == "idle"
    assert synced["sync"]["fetchCount"] >= 1

    focus = client.post("/users/alice/focus").json()
    assert focus["delivered"] == 1
    assert focus["sync"]["lastError"] is None

    assert client.delete("/users/alice/session").json() == {"closed": True}
    assert client.post("/users/alice/focus").json() == {"delivered": 0, "sync": None}
    assert client.delete("/users/alice/session").json() == {"closed": False}


def test_suggestions_use_bundled_pools_without_providers(client: TestClient) -> None:
    _add(client, "alice", "1", genre="RPG")

    insufficient = client.get("/users/alice/suggestions").json()
    assert insufficient["sufficientData"] is False
    assert insufficient["items"] == []

    _add(client, "alice", "2", genre="RPG")
    result = client.get("/users/alice/suggestions").json()

    assert result["sufficientData"] is True
    assert result["reasoning"] == "Because you love RPG content"
    assert [item["title"] for item in result["items"]] == ["Elden Ring", "Baldur's Gate 3"]


def test_content_lookup_and_cache_invalidation(client: TestClient) -> None:
    trending = client.get("/content/games/trending", params={"limit": 2}).json()
    assert trending["source"] == "static"
    assert len(trending["items"]) == 2

    search = client.get("/content/games/search", params={"q": "hades"}).json()
    assert [item["title"] for item in search["items"]] == ["Hades"]

    assert client.get("/content/podcasts/trending").status_code == 400
    assert client.get("/content/games/search").status_code == 400

    invalidated = client.delete("/content/cache", params={"key": "trending:games?limit:2"})
    assert invalidated.json() == {"invalidated": "trending:games?limit:2"}
    assert client.delete("/content/cache").status_code == 400
