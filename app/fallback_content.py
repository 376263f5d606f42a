"""Bundled content shown when every live provider for a domain is unavailable."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from .models import ContentItem


def _items(domain: str, entries: list[dict[str, Any]]) -> tuple[ContentItem, ...]:
    return tuple(ContentItem.model_validate({**entry, "domain": domain}) for entry in entries)


FALLBACK_CONTENT: Mapping[str, tuple[ContentItem, ...]] = MappingProxyType(
    {
        "games": _items(
            "games",
            [
                {
                    "id": "fallback-elden-ring",
                    "title": "Elden Ring",
                    "genre": "Action, RPG",
                    "developer": "FromSoftware",
                    "year": 2022,
                    "score": 4.8,
                },
                {
                    "id": "fallback-baldurs-gate-3",
                    "title": "Baldur's Gate 3",
                    "genre": "RPG, Strategy",
                    "developer": "Larian Studios",
                    "year": 2023,
                    "score": 4.9,
                },
                {
                    "id": "fallback-hades",
                    "title": "Hades",
                    "genre": "Action, Roguelike",
                    "developer": "Supergiant Games",
                    "year": 2020,
                    "score": 4.7,
                },
            ],
        ),
        "movies": _items(
            "movies",
            [
                {
                    "id": "fallback-dune-part-two",
                    "title": "Dune: Part Two",
                    "genre": "Sci-Fi, Adventure",
                    "director": "Denis Villeneuve",
                    "year": 2024,
                    "score": 4.6,
                },
                {
                    "id": "fallback-everything-everywhere",
                    "title": "Everything Everywhere All at Once",
                    "genre": "Comedy, Sci-Fi",
                    "director": "Daniel Kwan, Daniel Scheinert",
                    "year": 2022,
                    "score": 4.5,
                },
                {
                    "id": "fallback-parasite",
                    "title": "Parasite",
                    "genre": "Thriller, Drama",
                    "director": "Bong Joon-ho",
                    "year": 2019,
                    "score": 4.7,
                },
            ],
        ),
        "books": _items(
            "books",
            [
                {
                    "id": "fallback-project-hail-mary",
                    "title": "Project Hail Mary",
                    "genre": "Science Fiction",
                    "author": "Andy Weir",
                    "year": 2021,
                    "score": 4.7,
                },
                {
                    "id": "fallback-tomorrow-and-tomorrow",
                    "title": "Tomorrow, and Tomorrow, and Tomorrow",
                    "genre": "Literary Fiction",
                    "author": "Gabrielle Zevin",
                    "year": 2022,
                    "score": 4.4,
                },
                {
                    "id": "fallback-piranesi",
                    "title": "Piranesi",
                    "genre": "Fantasy",
                    "author": "Susanna Clarke",
                    "year": 2020,
                    "score": 4.5,
                },
            ],
        ),
        "music": _items(
            "music",
            [
                {
                    "id": "fallback-harrys-house",
                    "title": "Harry's House",
                    "genre": "Pop",
                    "artist": "Harry Styles",
                    "year": 2022,
                    "score": 4.6,
                },
                {
                    "id": "fallback-renaissance",
                    "title": "Renaissance",
                    "genre": "Dance, Pop",
                    "artist": "Beyonce",
                    "year": 2022,
                    "score": 4.7,
                },
                {
                    "id": "fallback-blonde",
                    "title": "Blonde",
                    "genre": "R&B",
                    "artist": "Frank Ocean",
                    "year": 2016,
                    "score": 4.8,
                },
            ],
        ),
        "boardgames": _items(
            "boardgames",
            [
                {
                    "id": "fallback-wingspan",
                    "title": "Wingspan",
                    "genre": "Strategy, Engine Building",
                    "creator": "Elizabeth Hargrave",
                    "year": 2019,
                    "score": 4.6,
                },
                {
                    "id": "fallback-gloomhaven",
                    "title": "Gloomhaven",
                    "genre": "Adventure, Campaign",
                    "creator": "Isaac Childres",
                    "year": 2017,
                    "score": 4.7,
                },
                {
                    "id": "fallback-azul",
                    "title": "Azul",
                    "genre": "Abstract, Family",
                    "creator": "Michael Kiesling",
                    "year": 2017,
                    "score": 4.4,
                },
            ],
        ),
    }
)
