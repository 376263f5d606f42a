"""Durable local key-value area backed by the application database."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import KeyValueRecord
from ..utils import utcnow

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal string store used for cache entries and collection snapshots."""

    async def get(self, key: str) -> str | None:
        """Return the stored string or ``None`` when the key is absent."""

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    async def remove(self, key: str) -> None:
        """Delete ``key`` if present."""


class SqlKeyValueStore:
    """``KeyValueStore`` implementation persisting rows in ``kv_entries``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            record = await session.get(KeyValueRecord, key)
            return record.value if record is not None else None

    async def set(self, key: str, value: str) -> None:
        now = utcnow()
        async with self._session_factory() as session:
            record = await session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=value, updated_at=now))
            else:
                record.value = value
                record.updated_at = now
            try:
                await session.commit()
                return
            except IntegrityError:
                # Another writer inserted the key between our read and commit.
                await session.rollback()

        async with self._session_factory() as session:
            record = await session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=value, updated_at=now))
            else:
                record.value = value
                record.updated_at = now
            await session.commit()
        logger.debug("Resolved concurrent write for key %s", key)

    async def remove(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(KeyValueRecord).where(KeyValueRecord.key == key))
            await session.commit()
