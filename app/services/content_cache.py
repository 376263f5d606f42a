"""TTL-bounded cache of normalised provider payloads."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

from pydantic import BaseModel, Field, ValidationError

from ..errors import DeserializationError
from ..models import ContentItem
from ..utils import utcnow
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """A cached payload and the moment it was fetched."""

    key: str
    payload: list[ContentItem] = Field(default_factory=list)
    fetched_at: datetime

    def expires_at(self, ttl: timedelta) -> datetime:
        return self.fetched_at + ttl


class _StoredEntry(BaseModel):
    """On-disk representation; the key lives in the store row itself."""

    fetched_at: datetime
    payload: list[ContentItem]


class ContentCache:
    """Serve previously fetched provider content for a fixed window.

    Entries are valid while ``now - fetched_at < ttl``. Expiry is absolute
    (reads never extend it) and an entry that cannot be decoded is reported as a
    miss instead of an error. All encoding happens in ``_encode``/``_decode`` so
    callers only ever see ``ContentItem`` lists.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl: timedelta,
        clock: Callable[[], datetime] = utcnow,
        namespace: str = "content-cache",
    ):
        if ttl <= timedelta(0):
            raise ValueError("Cache TTL must be positive")
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._namespace = namespace

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get(self, key: str) -> list[ContentItem] | None:
        """Return the cached payload, or ``None`` when absent, stale or unreadable."""

        entry = await self.get_entry(key)
        if entry is None:
            return None
        return list(entry.payload)

    async def get_entry(self, key: str) -> CacheEntry | None:
        raw = await self._store.get(self._storage_key(key))
        if raw is None:
            logger.debug("Cache miss for %s", key)
            return None
        try:
            entry = self._decode(key, raw)
        except DeserializationError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc.reason)
            return None
        if entry.expires_at(self._ttl) <= self._clock():
            logger.debug("Cache entry for %s expired at %s", key, entry.expires_at(self._ttl))
            return None
        logger.debug("Cache hit for %s", key)
        return entry

    async def set(self, key: str, payload: Sequence[ContentItem]) -> CacheEntry:
        """Store ``payload`` with ``fetched_at = now``, replacing older entries."""

        entry = CacheEntry(key=key, payload=list(payload), fetched_at=self._clock())
        await self._store.set(self._storage_key(key), self._encode(entry))
        logger.debug("Cached %s items for %s", len(entry.payload), key)
        return entry

    async def invalidate(self, key: str) -> None:
        """Force the next ``get`` for ``key`` to miss."""

        await self._store.remove(self._storage_key(key))
        logger.info("Invalidated cache entry %s", key)

    def _storage_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    @staticmethod
    def _encode(entry: CacheEntry) -> str:
        stored = _StoredEntry(fetched_at=entry.fetched_at, payload=entry.payload)
        return stored.model_dump_json()

    @staticmethod
    def _decode(key: str, raw: str) -> CacheEntry:
        try:
            stored = _StoredEntry.model_validate_json(raw)
        except ValidationError as exc:
            raise DeserializationError(key, f"{exc.error_count()} validation errors") from exc
        return CacheEntry(key=key, payload=stored.payload, fetched_at=stored.fetched_at)
