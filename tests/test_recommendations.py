"""Suggestion ranking against a user's preference profile."""

from __future__ import annotations

import pytest

from app.models import Collection, CollectionItem, ContentItem
from app.services.content_source import ContentResult
from app.services.recommendations import (
    ERROR_REASONING,
    GENERIC_REASONING,
    RecommendationEngine,
    build_profile,
)


class StubSource:
    def __init__(self, pools: dict[str, list[ContentItem]] | None = None, error: Exception | None = None) -> None:
        self.pools = pools or {}
        self.error = error
        self.requests: list[tuple[str, int]] = []

    async def trending(self, domain: str, limit: int = 20) -> ContentResult:
        self.requests.append((domain, limit))
        if self.error is not None:
            raise self.error
        return ContentResult(items=list(self.pools.get(domain, [])), source="primary")


def owned(raw_id: str, genre: str | None = None, creator: str | None = None, **extra) -> CollectionItem:
    return CollectionItem(
        id=raw_id,
        domain="games",
        title=f"Owned {raw_id}",
        status="completed",
        genre=genre,
        creator=creator,
        **extra,
    )


def candidate(raw_id: str, genre: str | None = None, creator: str | None = None) -> ContentItem:
    return ContentItem(id=raw_id, domain="games", title=f"Candidate {raw_id}", genre=genre, creator=creator)


def studio_collection() -> Collection:
    items = [owned(f"rpg-{index}", genre="RPG") for index in range(5)]
    items += [
        owned("sx-1", genre="Puzzle", creator="Studio X", rating=5),
        owned("sx-2", genre="Puzzle", creator="Studio X", rating=5),
    ]
    items += [owned(f"misc-{index}", genre=f"Genre {index}") for index in range(5)]
    return Collection.of(items)


@pytest.mark.anyio("asyncio")
async def test_below_threshold_reports_insufficient_data() -> None:
    source = StubSource({"games": [candidate("1", genre="RPG")]})
    engine = RecommendationEngine(source, min_items=10)
    collection = Collection.of(owned(str(index), genre="RPG") for index in range(9))

    result = await engine.get_suggestions(collection)

    assert result.sufficient_data is False
    assert result.items == []
    assert "10" in result.reasoning
    assert source.requests == []


@pytest.mark.anyio("asyncio")
async def test_threshold_is_inclusive() -> None:
    source = StubSource({"games": [candidate("new", genre="Action, RPG")]})
    engine = RecommendationEngine(source, min_items=10)
    collection = Collection.of(owned(str(index), genre="RPG") for index in range(10))

    result = await engine.get_suggestions(collection)

    assert result.sufficient_data is True
    assert [item.id for item in result.items] == ["game-new"]
    assert result.reasoning == "Because you love RPG content"


@pytest.mark.anyio("asyncio")
async def test_top_creator_leads_and_genre_matches_follow() -> None:
    pool = [
        candidate("c1", genre="Action, RPG", creator="Other Studio"),
        candidate("c2", genre="Puzzle", creator="Studio X"),
        candidate("c3", genre="rpg", creator="Someone"),
        candidate("rpg-0", genre="RPG"),
        candidate("c5", genre="Strategy"),
    ]
    source = StubSource({"games": pool})
    engine = RecommendationEngine(source)

    result = await engine.get_suggestions(studio_collection())

    assert [item.id for item in result.items] == ["game-c2", "game-c1", "game-c3"]
    assert result.reasoning == "Because you loved content by Studio X"
    assert result.sufficient_data is True


@pytest.mark.anyio("asyncio")
async def test_results_exclude_owned_items_and_respect_limit() -> None:
    collection = Collection.of(owned(str(index), genre="RPG") for index in range(10))
    pool = [candidate(str(index), genre="RPG") for index in range(5)]
    pool += [candidate(f"new-{index}", genre="Tactical RPG") for index in range(10)]
    engine = RecommendationEngine(StubSource({"games": pool}), limit=6)

    result = await engine.get_suggestions(collection)

    assert len(result.items) == 6
    assert not {item.id for item in result.items} & collection.ids
    assert [item.id for item in result.items] == [f"game-new-{index}" for index in range(6)]


@pytest.mark.anyio("asyncio")
async def test_creator_pass_takes_at_most_two_items() -> None:
    collection = Collection.of(owned(str(index), creator="Studio X") for index in range(10))
    pool = [candidate(f"sx-{index}", creator="studio x") for index in range(4)]
    engine = RecommendationEngine(StubSource({"games": pool}))

    result = await engine.get_suggestions(collection)

    assert [item.id for item in result.items] == ["game-sx-0", "game-sx-1"]


@pytest.mark.anyio("asyncio")
async def test_pools_are_read_in_domain_order() -> None:
    source = StubSource()
    engine = RecommendationEngine(source, pool_size=15)

    await engine.get_suggestions(Collection.of(owned(str(index)) for index in range(10)))

    assert source.requests == [
        ("games", 15),
        ("movies", 15),
        ("books", 15),
        ("music", 15),
        ("boardgames", 15),
    ]


@pytest.mark.anyio("asyncio")
async def test_profile_without_tastes_uses_generic_reasoning() -> None:
    engine = RecommendationEngine(StubSource({"games": [candidate("1", genre="RPG")]}))

    result = await engine.get_suggestions(Collection.of(owned(str(index)) for index in range(10)))

    assert result.items == []
    assert result.reasoning == GENERIC_REASONING


@pytest.mark.anyio("asyncio")
async def test_source_failure_yields_empty_result() -> None:
    engine = RecommendationEngine(StubSource(error=RuntimeError("boom")))

    result = await engine.get_suggestions(studio_collection())

    assert result.items == []
    assert result.reasoning == ERROR_REASONING


def test_build_profile_summarises_collection() -> None:
    collection = Collection.of(
        [
            owned("1", genre="RPG", creator="Studio X", rating=5, year=2020),
            owned("2", genre="RPG", creator="Studio X", rating=4, year=2022),
            owned("3", genre="Puzzle", creator="Indie Co", rating=2, year=2018),
            owned("4", genre="Horror", creator="Other", rating=5),
            owned("5", genre="Racing", rating=4),
            owned("6", genre="Sports", rating=5),
        ]
    )

    profile = build_profile(collection)

    assert profile.top_genres == ["RPG", "Puzzle", "Horror"]
    assert profile.top_creators == ["Studio X", "Indie Co"]
    assert profile.dominant_domain == "games"
    assert profile.average_year == 2020
    assert [item.id for item in profile.exemplars] == ["game-1", "game-2", "game-4"]
    assert profile.total_items == 6
