"""Per-user sync sessions owned by the running application."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .collection_repository import CollectionRepository
from .collection_store import CollectionStore
from .events import EventBus
from .kv_store import KeyValueStore
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncSession:
    user_id: str
    store: CollectionStore
    coordinator: SyncCoordinator


class SyncSessionManager:
    """Create at most one store and coordinator per user, lazily."""

    def __init__(
        self,
        repository: CollectionRepository,
        bus: EventBus,
        *,
        snapshots: KeyValueStore | None = None,
        poll_interval: float = 0,
    ):
        self._repository = repository
        self._bus = bus
        self._snapshots = snapshots
        self._poll_interval = poll_interval
        self._sessions: dict[str, SyncSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> SyncSession | None:
        return self._sessions.get(user_id)

    async def open(self, user_id: str) -> SyncSession:
        """Return the user's session, starting it and awaiting the first sync."""

        existing = self._sessions.get(user_id)
        if existing is not None:
            return existing

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            existing = self._sessions.get(user_id)
            if existing is not None:
                return existing

            store = CollectionStore(user_id)
            coordinator = SyncCoordinator(
                user_id,
                store,
                self._repository,
                self._bus,
                snapshots=self._snapshots,
                poll_interval=self._poll_interval,
            )
            await coordinator.start()
            await coordinator.wait_idle()
            session = SyncSession(user_id=user_id, store=store, coordinator=coordinator)
            self._sessions[user_id] = session
            logger.info("Opened sync session for %s", user_id)
            return session

    async def close(self, user_id: str) -> bool:
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        await session.coordinator.teardown()
        return True

    async def close_all(self) -> None:
        for user_id in list(self._sessions):
            await self.close(user_id)
