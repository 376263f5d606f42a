"""Content provider adapters that fetch and normalise items per domain."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol, Sequence

import httpx
from pydantic import ValidationError

from ..errors import TransientFetchError
from ..fallback_content import FALLBACK_CONTENT
from ..models import ContentItem

logger = logging.getLogger(__name__)


class ContentProviderAdapter(Protocol):
    """Interface every domain provider implements.

    Both calls may raise ``TransientFetchError``; callers treat that as a
    recoverable condition and move on to the next tier.
    """

    name: str
    domain: str

    async def search(
        self, query: str, filters: Mapping[str, Any] | None = None
    ) -> list[ContentItem]:
        """Return items matching ``query``."""

    async def trending(self, limit: int = 20) -> list[ContentItem]:
        """Return up to ``limit`` currently popular items."""


class HttpContentProvider:
    """Adapter for a JSON provider exposing ``/trending`` and ``/search``.

    Responses may be a bare list or an object wrapping the list under
    ``results`` or ``items``. Entries that do not validate as a ``ContentItem``
    are skipped.
    """

    def __init__(
        self,
        domain: str,
        http_client: httpx.AsyncClient,
        *,
        base_url: str,
        name: str | None = None,
        api_key: str | None = None,
        user_agent: str = "Stackr",
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        self.domain = domain
        self.name = name or f"{domain}-http"
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._user_agent = user_agent
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self._user_agent}
        if self._api_key:
            headers["X-Api-Key"] = self._api_key
        return headers

    async def trending(self, limit: int = 20) -> list[ContentItem]:
        resolved_limit = max(1, min(int(limit or 20), 100))
        data = await self._get("/trending", params={"limit": resolved_limit})
        return self._normalize(data)[:resolved_limit]

    async def search(
        self, query: str, filters: Mapping[str, Any] | None = None
    ) -> list[ContentItem]:
        params: dict[str, Any] = {"q": query.strip()}
        for key, value in (filters or {}).items():
            if value is None or value == "":
                continue
            if isinstance(value, (list, tuple, set)):
                value = ",".join(sorted(str(part) for part in value))
            params[key] = value
        data = await self._get("/search", params=params)
        return self._normalize(data)

    async def _get(self, path: str, *, params: Mapping[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    url, headers=self._headers(), params=dict(params)
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "Transient error talking to %s (%s). Retrying %s in %.1fs",
                        self.name,
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransientFetchError(
                    f"{self.name} request to {path} failed: {exc}", source=self.name
                ) from exc

            if 500 <= response.status_code < 600 or response.status_code == 429:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "%s answered %s for %s. Retrying in %.1fs",
                        self.name,
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            if response.status_code >= 400:
                raise TransientFetchError(
                    f"{self.name} answered {response.status_code} for {path}",
                    source=self.name,
                )
            break

        try:
            return response.json()
        except ValueError as exc:
            raise TransientFetchError(
                f"{self.name} returned a non-JSON body for {path}", source=self.name
            ) from exc

    def _backoff(self, attempt: int) -> float:
        return (min(2 ** (attempt - 1), 5) + (0.1 * attempt)) * self._backoff_seconds

    def _normalize(self, data: Any) -> list[ContentItem]:
        if isinstance(data, dict):
            data = data.get("results") or data.get("items") or []
        if not isinstance(data, list):
            logger.warning("Unexpected %s response structure", self.name)
            return []

        normalized: list[ContentItem] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                normalized.append(
                    ContentItem.model_validate({**entry, "domain": self.domain})
                )
            except ValidationError as exc:
                logger.debug(
                    "Skipping malformed %s entry: %s", self.name, exc.error_count()
                )
        return normalized


class StaticContentProvider:
    """Serves the bundled content set so a domain is never left empty."""

    def __init__(
        self, domain: str, items: Sequence[ContentItem] | None = None
    ):
        self.domain = domain
        self.name = f"{domain}-static"
        self._items = tuple(items if items is not None else FALLBACK_CONTENT.get(domain, ()))

    async def trending(self, limit: int = 20) -> list[ContentItem]:
        return list(self._items[: max(0, int(limit))])

    async def search(
        self, query: str, filters: Mapping[str, Any] | None = None
    ) -> list[ContentItem]:
        needle = query.strip().casefold()
        if not needle:
            return list(self._items)
        matches = [
            item
            for item in self._items
            if needle in item.title.casefold()
            or (item.creator and needle in item.creator.casefold())
        ]
        return matches or list(self._items)
