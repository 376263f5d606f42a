"""Pydantic models describing content, collections and suggestions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import extract_year, make_item_id, utcnow

Domain = Literal["games", "movies", "books", "music", "boardgames"]

DOMAINS: tuple[Domain, ...] = ("games", "movies", "books", "music", "boardgames")


def _first_text(value: object) -> str | None:
    """Return the first usable label from a string, dict or list payload."""

    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, dict):
        return _first_text(value.get("name"))
    if isinstance(value, (list, tuple)):
        for entry in value:
            text = _first_text(entry)
            if text:
                return text
    return None


class ContentItem(BaseModel):
    """A provider item normalised into the shape shared by every domain."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    domain: Domain
    title: str = Field(validation_alias=AliasChoices("title", "name"))
    genre: str | None = Field(
        default=None, validation_alias=AliasChoices("genre", "genres")
    )
    creator: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "creator", "author", "artist", "director", "developer"
        ),
    )
    year: int | None = Field(
        default=None, validation_alias=AliasChoices("year", "released")
    )
    score: float | None = None
    image: str | None = None
    overview: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _prefix_identifier(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        domain = data.get("domain")
        raw_id = data.get("id")
        if isinstance(domain, str) and domain in DOMAINS and raw_id not in (None, ""):
            data = {**data, "id": make_item_id(domain, raw_id)}
        return data

    @field_validator("genre", mode="before")
    @classmethod
    def _join_genres(cls, value: object) -> str | None:
        if isinstance(value, (list, tuple)):
            labels = [_first_text(entry) for entry in value]
            joined = ", ".join(label for label in labels if label)
            return joined or None
        return _first_text(value)

    @field_validator("creator", mode="before")
    @classmethod
    def _pick_creator(cls, value: object) -> str | None:
        return _first_text(value)

    @field_validator("year", mode="before")
    @classmethod
    def _parse_year(cls, value: object) -> int | None:
        return extract_year(value)

    @field_validator("title")
    @classmethod
    def _require_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped


class CollectionItem(ContentItem):
    """A content item tracked in a user's collection."""

    status: str = Field(min_length=1, max_length=64)
    rating: int | None = Field(
        default=None,
        ge=1,
        le=5,
        validation_alias=AliasChoices("rating", "userRating", "user_rating"),
    )
    added_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("added_at", "addedAt"),
    )
    progress: int | None = Field(default=None, ge=0, le=100)
    notes: str | None = None
    date_started: datetime | None = Field(
        default=None, validation_alias=AliasChoices("date_started", "dateStarted")
    )
    date_completed: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("date_completed", "dateCompleted"),
    )

    @field_validator("status", mode="before")
    @classmethod
    def _strip_status(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class CollectionItemUpdate(BaseModel):
    """Partial update applied to an existing collection item."""

    model_config = ConfigDict(populate_by_name=True)

    status: str | None = Field(default=None, min_length=1, max_length=64)
    rating: int | None = Field(
        default=None,
        ge=1,
        le=5,
        validation_alias=AliasChoices("rating", "userRating", "user_rating"),
    )
    progress: int | None = Field(default=None, ge=0, le=100)
    notes: str | None = None
    creator: str | None = Field(
        default=None,
        validation_alias=AliasChoices("creator", "developer", "director"),
    )
    date_started: datetime | None = Field(
        default=None, validation_alias=AliasChoices("date_started", "dateStarted")
    )
    date_completed: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("date_completed", "dateCompleted"),
    )

    @field_validator("status")
    @classmethod
    def _reject_null_status(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("status may be changed but not cleared")
        return value

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller actually supplied."""

        return self.model_dump(exclude_unset=True)


@dataclass(frozen=True)
class Collection:
    """Immutable snapshot of every item a user tracks."""

    items: tuple[CollectionItem, ...] = ()

    @classmethod
    def of(cls, items: Any) -> "Collection":
        return cls(items=tuple(items))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[CollectionItem]:
        return iter(self.items)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(item.id for item in self.items)

    def contains(self, item_id: str) -> bool:
        return any(item.id == item_id for item in self.items)

    def get(self, item_id: str) -> CollectionItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


@dataclass(slots=True)
class PreferenceProfile:
    """Derived summary of a user's tastes; recomputed on every read."""

    top_genres: list[str] = field(default_factory=list)
    top_creators: list[str] = field(default_factory=list)
    dominant_domain: str | None = None
    average_year: int | None = None
    exemplars: list[CollectionItem] = field(default_factory=list)
    total_items: int = 0


class SuggestionResult(BaseModel):
    """Ranked suggestions plus the reasoning shown alongside them."""

    items: list[ContentItem] = Field(default_factory=list)
    reasoning: str
    sufficient_data: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [item.model_dump(mode="json") for item in self.items],
            "reasoning": self.reasoning,
            "sufficientData": self.sufficient_data,
        }
