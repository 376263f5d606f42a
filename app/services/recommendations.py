"""Preference-driven suggestions drawn from trending content pools."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Iterable, Sequence

from ..models import (
    DOMAINS,
    Collection,
    ContentItem,
    PreferenceProfile,
    SuggestionResult,
)
from ..utils import utcnow
from .content_source import ContentSource

logger = logging.getLogger(__name__)

GENERIC_REASONING = "Personalized picks for you"
ERROR_REASONING = "Unable to generate recommendations right now"
INSUFFICIENT_REASONING = (
    "Add at least {threshold} items to your collection to unlock personalized "
    "suggestions ({count} so far)"
)

CREATOR_PASS_LIMIT = 2
MAX_TOP_GENRES = 3
MAX_TOP_CREATORS = 2
MAX_EXEMPLARS = 3
EXEMPLAR_MIN_RATING = 4


def matches_term(value: str | None, term: str | None) -> bool:
    """Case-insensitive substring match used for genre and creator passes."""

    if not value or not term:
        return False
    return term.casefold() in value.casefold()


def build_profile(collection: Collection) -> PreferenceProfile:
    genres: Counter[str] = Counter()
    creators: Counter[str] = Counter()
    domains: Counter[str] = Counter()
    years: list[int] = []
    exemplars = []

    for item in collection:
        domains[item.domain] += 1
        if item.genre:
            genres[item.genre] += 1
        if item.creator:
            creators[item.creator] += 1
        if item.year:
            years.append(item.year)
        if item.rating is not None and item.rating >= EXEMPLAR_MIN_RATING:
            if len(exemplars) < MAX_EXEMPLARS:
                exemplars.append(item)

    dominant = domains.most_common(1)
    return PreferenceProfile(
        top_genres=[genre for genre, _ in genres.most_common(MAX_TOP_GENRES)],
        top_creators=[creator for creator, _ in creators.most_common(MAX_TOP_CREATORS)],
        dominant_domain=dominant[0][0] if dominant else None,
        average_year=round(sum(years) / len(years)) if years else utcnow().year,
        exemplars=exemplars,
        total_items=len(collection),
    )


class RecommendationEngine:
    """Rank trending items against a user's derived preference profile.

    Selection runs two passes over the candidate pools in domain order: up to
    two items by the user's top creator, then items whose genre contains the
    top genre. Items already in the collection are never suggested and no
    secondary scoring is applied, so the output is deterministic for a given
    collection and pool snapshot.
    """

    def __init__(
        self,
        source: ContentSource,
        *,
        min_items: int = 10,
        limit: int = 6,
        pool_size: int = 20,
        domains: Sequence[str] = DOMAINS,
    ):
        self._source = source
        self._min_items = min_items
        self._limit = limit
        self._pool_size = pool_size
        self._domains = tuple(domains)

    @property
    def min_items(self) -> int:
        return self._min_items

    def build_profile(self, collection: Collection) -> PreferenceProfile:
        return build_profile(collection)

    async def get_suggestions(self, collection: Collection) -> SuggestionResult:
        count = len(collection)
        if count < self._min_items:
            return SuggestionResult(
                items=[],
                reasoning=INSUFFICIENT_REASONING.format(
                    threshold=self._min_items, count=count
                ),
                sufficient_data=False,
            )

        try:
            profile = build_profile(collection)
            candidates = await self._candidate_pool()
            items = self.select(profile, candidates, collection.ids)
            reasoning = self.reasoning_for(profile)
        except Exception:
            logger.exception("Failed to build suggestions")
            return SuggestionResult(items=[], reasoning=ERROR_REASONING, sufficient_data=True)

        logger.info("Built %s suggestions from %s candidates", len(items), len(candidates))
        return SuggestionResult(items=items, reasoning=reasoning, sufficient_data=True)

    def select(
        self,
        profile: PreferenceProfile,
        candidates: Sequence[ContentItem],
        excluded_ids: Iterable[str],
    ) -> list[ContentItem]:
        seen = set(excluded_ids)
        selected: list[ContentItem] = []

        if profile.top_creators:
            creator = profile.top_creators[0]
            taken = 0
            for candidate in candidates:
                if taken >= CREATOR_PASS_LIMIT or len(selected) >= self._limit:
                    break
                if candidate.id in seen or not matches_term(candidate.creator, creator):
                    continue
                selected.append(candidate)
                seen.add(candidate.id)
                taken += 1

        if profile.top_genres:
            genre = profile.top_genres[0]
            for candidate in candidates:
                if len(selected) >= self._limit:
                    break
                if candidate.id in seen or not matches_term(candidate.genre, genre):
                    continue
                selected.append(candidate)
                seen.add(candidate.id)

        return selected[: self._limit]

    @staticmethod
    def reasoning_for(profile: PreferenceProfile) -> str:
        if profile.top_creators:
            return f"Because you loved content by {profile.top_creators[0]}"
        if profile.top_genres:
            return f"Because you love {profile.top_genres[0]} content"
        return GENERIC_REASONING

    async def _candidate_pool(self) -> list[ContentItem]:
        results = await asyncio.gather(
            *(self._source.trending(domain, self._pool_size) for domain in self._domains)
        )
        candidates: list[ContentItem] = []
        for result in results:
            candidates.extend(result.items)
        return candidates
