"""Single-flight synchronisation of a user's collection with durable storage."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from pydantic import TypeAdapter, ValidationError

from ..errors import DeserializationError
from ..models import Collection, CollectionItem
from .collection_repository import CollectionRepository
from .collection_store import CollectionStore
from .events import APP_FOCUS, COLLECTION_MUTATED, EventBus, Subscription
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "stackr_library"

_SNAPSHOT_ADAPTER = TypeAdapter(list[CollectionItem])


class SyncSignal(str, Enum):
    DB_PUSH = "db-push"
    LOCAL_MUTATION = "local-mutation"
    FOCUS = "focus"
    POLL = "poll"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class Idle:
    pass


@dataclass(frozen=True, slots=True)
class InFlight:
    generation: int
    trigger: SyncSignal


SyncState = Union[Idle, InFlight]

IDLE = Idle()


def snapshot_key(user_id: str) -> str:
    return f"{SNAPSHOT_PREFIX}:{user_id}"


def encode_snapshot(collection: Collection) -> str:
    return _SNAPSHOT_ADAPTER.dump_json(list(collection)).decode("utf-8")


def decode_snapshot(key: str, raw: str) -> list[CollectionItem]:
    try:
        return _SNAPSHOT_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise DeserializationError(key, f"{exc.error_count()} validation errors") from exc


class SyncCoordinator:
    """Keep a ``CollectionStore`` in step with the durable repository.

    Three independent sources can ask for a refresh: the repository's change
    push, the in-process ``collection.mutated`` event and the ``app.focus``
    event. Whatever the mix, at most one fetch runs at a time; a signal that
    arrives while a fetch is in flight is dropped because that fetch will
    observe the latest committed state when it resolves.

    ``signal`` is synchronous and must run on the event loop. Because the
    check-and-set on ``_state`` contains no ``await`` it needs no lock.
    """

    def __init__(
        self,
        user_id: str,
        store: CollectionStore,
        repository: CollectionRepository,
        bus: EventBus,
        *,
        snapshots: KeyValueStore | None = None,
        poll_interval: float = 0,
    ):
        self.user_id = user_id
        self._store = store
        self._repository = repository
        self._bus = bus
        self._snapshots = snapshots
        self._poll_interval = poll_interval
        self._state: SyncState = IDLE
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._closed = False
        self.fetch_count = 0
        self.last_error: str | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return isinstance(self._state, InFlight)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self, *, initial_refresh: bool = True) -> None:
        """Attach the signal listeners and optionally kick off the first fetch."""

        if self._closed:
            raise RuntimeError(f"Sync coordinator for {self.user_id} has been torn down")
        if self._subscriptions:
            return

        self._subscriptions = [
            self._repository.subscribe(self.user_id, self._on_repository_change),
            self._bus.subscribe(COLLECTION_MUTATED, self._on_local_mutation),
            self._bus.subscribe(APP_FOCUS, self._on_focus),
        ]
        await self._hydrate_from_snapshot()

        if self._poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.info(
                "Polling collection for %s every %.0fs", self.user_id, self._poll_interval
            )
        if initial_refresh:
            self.signal(SyncSignal.MANUAL)

    def signal(self, source: SyncSignal) -> bool:
        """Request a refresh; return ``True`` if this call started a fetch."""

        if self._closed:
            logger.debug("Ignoring %s signal for torn down session %s", source.value, self.user_id)
            return False
        if isinstance(self._state, InFlight):
            logger.debug(
                "Coalescing %s signal for %s into generation %s",
                source.value,
                self.user_id,
                self._state.generation,
            )
            return False

        self._generation += 1
        generation = self._generation
        self._state = InFlight(generation=generation, trigger=source)
        self.fetch_count += 1
        logger.info(
            "Refreshing collection for %s (trigger=%s, generation=%s)",
            self.user_id,
            source.value,
            generation,
        )
        self._task = asyncio.create_task(self._run_fetch(generation))
        return True

    async def refresh(self) -> Collection:
        """Force a sync and wait for it; joins a fetch that is already running."""

        self.signal(SyncSignal.MANUAL)
        await self.wait_idle()
        return self._store.current()

    async def wait_idle(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def teardown(self) -> None:
        """Detach every listener and make any pending fetch a no-op."""

        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._generation += 1
        self._state = IDLE

        poll_task, self._poll_task = self._poll_task, None
        if poll_task is not None:
            poll_task.cancel()
            with suppress(asyncio.CancelledError):
                await poll_task
        logger.info("Sync session for %s torn down", self.user_id)

    def to_payload(self) -> dict[str, Any]:
        last_synced = self._store.last_synced_at
        return {
            "state": "in-flight" if self.in_flight else "idle",
            "generation": self._generation,
            "fetchCount": self.fetch_count,
            "lastError": self.last_error,
            "lastSyncedAt": last_synced.isoformat() if last_synced else None,
        }

    def _is_current(self, generation: int) -> bool:
        state = self._state
        return (
            not self._closed
            and isinstance(state, InFlight)
            and state.generation == generation
        )

    async def _run_fetch(self, generation: int) -> None:
        try:
            items = await self._repository.get_all(self.user_id)
        except asyncio.CancelledError:
            if self._is_current(generation):
                self._state = IDLE
            raise
        except Exception as exc:
            if not self._is_current(generation):
                logger.debug("Ignoring failure from stale generation %s", generation)
                return
            self.last_error = str(exc) or exc.__class__.__name__
            self._state = IDLE
            logger.warning(
                "Collection refresh for %s failed; keeping last known state: %s",
                self.user_id,
                self.last_error,
            )
            return

        if not self._is_current(generation):
            logger.info(
                "Discarding collection fetch for %s from stale generation %s",
                self.user_id,
                generation,
            )
            return

        collection = self._store.replace(items)
        self.last_error = None
        self._state = IDLE
        logger.info("Collection for %s refreshed with %s items", self.user_id, len(collection))
        await self._save_snapshot(collection)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self.signal(SyncSignal.POLL)

    async def _hydrate_from_snapshot(self) -> None:
        if self._snapshots is None or self._store.loaded or len(self._store.current()):
            return
        key = snapshot_key(self.user_id)
        try:
            raw = await self._snapshots.get(key)
            if raw is None:
                return
            items = decode_snapshot(key, raw)
        except DeserializationError as exc:
            logger.warning(
                "Ignoring unreadable collection snapshot for %s: %s",
                self.user_id,
                exc.reason,
            )
            return
        except Exception:
            logger.exception("Could not read collection snapshot for %s", self.user_id)
            return
        if self._closed or self._store.loaded:
            logger.debug("Skipping stale snapshot for %s; a fetch already landed", self.user_id)
            return
        self._store.hydrate(items)
        logger.info("Restored %s items for %s from the last snapshot", len(items), self.user_id)

    async def _save_snapshot(self, collection: Collection) -> None:
        if self._snapshots is None:
            return
        try:
            await self._snapshots.set(snapshot_key(self.user_id), encode_snapshot(collection))
        except Exception:
            logger.exception("Could not save collection snapshot for %s", self.user_id)

    def _on_repository_change(self, change: Any) -> None:
        self.signal(SyncSignal.DB_PUSH)

    def _on_local_mutation(self, event: Any) -> None:
        if self._targets_other_user(event):
            return
        self.signal(SyncSignal.LOCAL_MUTATION)

    def _on_focus(self, event: Any) -> None:
        if self._targets_other_user(event):
            return
        self.signal(SyncSignal.FOCUS)

    def _targets_other_user(self, event: Any) -> bool:
        user_id = getattr(event, "user_id", None)
        return user_id is not None and user_id != self.user_id
