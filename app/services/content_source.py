"""Layered content lookup: cache, primary provider, secondary, bundled set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Mapping

import httpx

from ..config import Settings
from ..errors import TransientFetchError
from ..models import DOMAINS, ContentItem
from ..utils import build_cache_key
from .content_cache import ContentCache
from .providers import (
    ContentProviderAdapter,
    HttpContentProvider,
    StaticContentProvider,
)

logger = logging.getLogger(__name__)

Tier = Literal["cache", "primary", "secondary", "static"]

ProviderCall = Callable[[ContentProviderAdapter], Awaitable[list[ContentItem]]]


@dataclass(slots=True)
class ContentResult:
    """Items returned by a lookup along with the tier that produced them."""

    items: list[ContentItem]
    source: Tier

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [item.model_dump(mode="json") for item in self.items],
            "source": self.source,
        }


@dataclass(slots=True)
class ProviderChain:
    """Ordered providers consulted for one domain after a cache miss."""

    primary: ContentProviderAdapter | None = None
    secondary: ContentProviderAdapter | None = None
    static: ContentProviderAdapter | None = None


class ContentSource:
    """Resolve trending and search lookups through the fallback chain.

    A failing or empty tier never blocks the next one, and the bundled static
    set guarantees a non-empty answer for every known domain. Only live
    provider results are cached so the next lookup after an outage retries the
    providers.
    """

    def __init__(
        self,
        cache: ContentCache,
        chains: Mapping[str, ProviderChain] | None = None,
    ):
        self._cache = cache
        self._chains: dict[str, ProviderChain] = dict(chains or {})

    def chain_for(self, domain: str) -> ProviderChain:
        if domain not in DOMAINS:
            raise ValueError(f"Unknown content domain: {domain}")
        chain = self._chains.get(domain)
        if chain is None:
            chain = ProviderChain()
            self._chains[domain] = chain
        if chain.static is None:
            chain.static = StaticContentProvider(domain)
        return chain

    async def trending(self, domain: str, limit: int = 20) -> ContentResult:
        key = build_cache_key(f"trending:{domain}", {"limit": limit})

        async def _call(provider: ContentProviderAdapter) -> list[ContentItem]:
            return await provider.trending(limit)

        return await self._resolve(domain, key, _call)

    async def search(
        self,
        domain: str,
        query: str,
        filters: Mapping[str, Any] | None = None,
    ) -> ContentResult:
        cleaned_query = (query or "").strip()
        if not cleaned_query:
            raise ValueError("Search query may not be empty")
        key_params: dict[str, Any] = {"q": cleaned_query}
        for name, value in (filters or {}).items():
            key_params[f"f.{name}"] = value
        key = build_cache_key(f"search:{domain}", key_params)

        async def _call(provider: ContentProviderAdapter) -> list[ContentItem]:
            return await provider.search(cleaned_query, filters)

        return await self._resolve(domain, key, _call)

    async def invalidate(self, key: str) -> None:
        await self._cache.invalidate(key)

    async def _resolve(self, domain: str, key: str, call: ProviderCall) -> ContentResult:
        chain = self.chain_for(domain)

        cached = await self._read_cache(key)
        if cached:
            return ContentResult(items=cached, source="cache")

        tiers: tuple[tuple[Tier, ContentProviderAdapter | None], ...] = (
            ("primary", chain.primary),
            ("secondary", chain.secondary),
        )
        for tier, provider in tiers:
            if provider is None:
                continue
            try:
                items = await call(provider)
            except TransientFetchError as exc:
                logger.warning("%s provider %s failed for %s: %s", tier, provider.name, key, exc)
                continue
            except Exception:
                logger.exception("Unexpected failure from %s provider %s", tier, provider.name)
                continue
            if not items:
                logger.info("%s provider %s returned nothing for %s", tier, provider.name, key)
                continue
            await self._write_cache(key, items)
            return ContentResult(items=items, source=tier)

        items = await call(chain.static or StaticContentProvider(domain))
        logger.warning("Serving bundled %s content for %s", domain, key)
        return ContentResult(items=items, source="static")

    async def _read_cache(self, key: str) -> list[ContentItem] | None:
        try:
            return await self._cache.get(key)
        except Exception:
            logger.exception("Content cache read failed for %s", key)
            return None

    async def _write_cache(self, key: str, items: list[ContentItem]) -> None:
        try:
            await self._cache.set(key, items)
        except Exception:
            logger.exception("Content cache write failed for %s", key)


def build_provider_chains(
    settings: Settings, http_client: httpx.AsyncClient
) -> dict[str, ProviderChain]:
    """Wire configured HTTP providers into per-domain chains."""

    chains: dict[str, ProviderChain] = {}
    for domain in DOMAINS:
        chain = ProviderChain(static=StaticContentProvider(domain))
        primary_url = settings.provider_urls.get(domain)
        if primary_url:
            chain.primary = HttpContentProvider(
                domain,
                http_client,
                base_url=primary_url,
                name=f"{domain}-primary",
                api_key=settings.provider_api_key,
                user_agent=settings.app_name,
                max_retries=settings.provider_retry_limit,
            )
        secondary_url = settings.fallback_provider_urls.get(domain)
        if secondary_url:
            chain.secondary = HttpContentProvider(
                domain,
                http_client,
                base_url=secondary_url,
                name=f"{domain}-secondary",
                api_key=settings.provider_api_key,
                user_agent=settings.app_name,
                max_retries=settings.provider_retry_limit,
            )
        chains[domain] = chain
    logger.info(
        "Live providers configured for: %s",
        ", ".join(settings.configured_domains) or "none",
    )
    return chains
