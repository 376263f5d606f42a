"""Single-flight behaviour of the collection sync coordinator."""

from __future__ import annotations

import asyncio

import pytest

from app.models import Collection, CollectionItem
from app.services.collection_repository import CollectionChange
from app.services.collection_service import MutationEvent
from app.services.collection_store import CollectionStore
from app.services.events import APP_FOCUS, COLLECTION_MUTATED, EventBus, FocusEvent, Subscription
from app.services.sessions import SyncSessionManager
from app.services.sync import (
    Idle,
    InFlight,
    SyncCoordinator,
    SyncSignal,
    encode_snapshot,
    snapshot_key,
)


class GatedRepository:
    """In-memory repository whose fetches can be held open by a test."""

    def __init__(self) -> None:
        self.items: dict[str, list[CollectionItem]] = {}
        self.listeners: dict[str, list] = {}
        self.fetches = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    def subscribe(self, user_id, callback) -> Subscription:
        self.listeners.setdefault(user_id, []).append(callback)
        return Subscription(lambda: self.listeners[user_id].remove(callback))

    def push(self, user_id: str) -> None:
        for callback in list(self.listeners.get(user_id, ())):
            callback(CollectionChange(user_id=user_id, item_id="game-1", action="upserted"))

    async def get_all(self, user_id: str) -> list[CollectionItem]:
        self.fetches += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.items.get(user_id, ()))


def _item(raw_id: str, title: str) -> CollectionItem:
    return CollectionItem(id=raw_id, domain="games", title=title, status="owned")


def _coordinator(repository, bus, **kwargs) -> tuple[SyncCoordinator, CollectionStore]:
    store = CollectionStore("alice")
    return SyncCoordinator("alice", store, repository, bus, **kwargs), store


@pytest.mark.anyio("asyncio")
async def test_burst_of_signals_from_every_source_starts_one_fetch() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    repository.gate = asyncio.Event()
    bus = EventBus()
    coordinator, store = _coordinator(repository, bus)
    await coordinator.start(initial_refresh=False)

    repository.push("alice")
    bus.publish(COLLECTION_MUTATED, MutationEvent(user_id="alice", item_id="game-1", action="added"))
    bus.publish(APP_FOCUS, FocusEvent())

    assert coordinator.fetch_count == 1
    assert isinstance(coordinator.state, InFlight)
    assert coordinator.state.trigger is SyncSignal.DB_PUSH

    repository.gate.set()
    await coordinator.wait_idle()

    assert repository.fetches == 1
    assert isinstance(coordinator.state, Idle)
    assert [item.id for item in store.current()] == ["game-1"]
    assert store.loaded

    assert coordinator.signal(SyncSignal.FOCUS) is True
    await coordinator.wait_idle()
    assert repository.fetches == 2
    await coordinator.teardown()


@pytest.mark.anyio("asyncio")
async def test_signals_for_other_users_are_ignored() -> None:
    repository = GatedRepository()
    bus = EventBus()
    coordinator, _ = _coordinator(repository, bus)
    await coordinator.start(initial_refresh=False)

    repository.push("bob")
    bus.publish(COLLECTION_MUTATED, MutationEvent(user_id="bob", item_id="game-1", action="added"))
    bus.publish(APP_FOCUS, FocusEvent(user_id="bob"))

    assert coordinator.fetch_count == 0
    await coordinator.teardown()


@pytest.mark.anyio("asyncio")
async def test_teardown_discards_pending_fetch_and_detaches_listeners() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    repository.gate = asyncio.Event()
    bus = EventBus()
    coordinator, store = _coordinator(repository, bus)
    await coordinator.start()
    generation = coordinator.generation
    assert coordinator.in_flight

    await coordinator.teardown()
    repository.gate.set()
    await coordinator.wait_idle()

    assert len(store.current()) == 0
    assert not store.loaded
    assert isinstance(coordinator.state, Idle)
    assert coordinator.generation > generation
    assert repository.listeners["alice"] == []
    assert bus.listener_count(COLLECTION_MUTATED) == 0
    assert bus.listener_count(APP_FOCUS) == 0
    assert coordinator.signal(SyncSignal.FOCUS) is False
    assert repository.fetches == 1


@pytest.mark.anyio("asyncio")
async def test_failed_fetch_keeps_last_good_collection() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    bus = EventBus()
    coordinator, store = _coordinator(repository, bus)
    await coordinator.start()
    await coordinator.wait_idle()

    repository.error = TimeoutError("database timed out")
    repository.items["alice"] = []
    await coordinator.refresh()

    assert [item.title for item in store.current()] == ["Hades"]
    assert coordinator.last_error == "database timed out"
    assert not coordinator.in_flight

    repository.error = None
    repository.items["alice"] = [_item("1", "Hades"), _item("2", "Celeste")]
    collection = await coordinator.refresh()

    assert len(collection) == 2
    assert coordinator.last_error is None
    await coordinator.teardown()


@pytest.mark.anyio("asyncio")
async def test_refresh_joins_the_fetch_already_in_flight() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    repository.gate = asyncio.Event()
    coordinator, _ = _coordinator(repository, EventBus())
    await coordinator.start()

    waiter = asyncio.create_task(coordinator.refresh())
    await asyncio.sleep(0)
    repository.gate.set()
    collection = await waiter

    assert len(collection) == 1
    assert coordinator.fetch_count == 1
    await coordinator.teardown()


@pytest.mark.anyio("asyncio")
async def test_store_listeners_see_whole_snapshot_replacement() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades"), _item("2", "Celeste")]
    coordinator, store = _coordinator(repository, EventBus())
    seen: list[int] = []
    store.on_change(lambda collection: seen.append(len(collection)))

    await coordinator.start()
    await coordinator.wait_idle()

    assert seen == [2]
    await coordinator.teardown()


@pytest.mark.anyio("asyncio")
async def test_snapshot_saved_and_restored_for_empty_store(kv_store) -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    bus = EventBus()
    coordinator, _ = _coordinator(repository, bus, snapshots=kv_store)
    await coordinator.start()
    await coordinator.wait_idle()
    await coordinator.teardown()

    assert snapshot_key("alice") in kv_store.data

    repository.gate = asyncio.Event()
    restored, store = _coordinator(repository, bus, snapshots=kv_store)
    await restored.start()

    assert [item.title for item in store.current()] == ["Hades"]
    assert not store.loaded
    await restored.teardown()
    repository.gate.set()
    await restored.wait_idle()


@pytest.mark.anyio("asyncio")
async def test_corrupt_snapshot_is_ignored(kv_store) -> None:
    kv_store.data[snapshot_key("alice")] = "[{not json"
    repository = GatedRepository()
    repository.gate = asyncio.Event()
    coordinator, store = _coordinator(repository, EventBus(), snapshots=kv_store)

    await coordinator.start()

    assert len(store.current()) == 0
    await coordinator.teardown()
    repository.gate.set()
    await coordinator.wait_idle()


@pytest.mark.anyio("asyncio")
async def test_poll_loop_signals_until_teardown() -> None:
    repository = GatedRepository()
    coordinator, _ = _coordinator(repository, EventBus(), poll_interval=0.01)
    await coordinator.start(initial_refresh=False)

    await asyncio.sleep(0.05)
    await coordinator.teardown()
    fetches = repository.fetches
    await asyncio.sleep(0.03)

    assert fetches >= 1
    assert repository.fetches == fetches


@pytest.mark.anyio("asyncio")
async def test_session_manager_creates_one_session_per_user() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    manager = SyncSessionManager(repository, EventBus())

    first, second = await asyncio.gather(manager.open("alice"), manager.open("alice"))

    assert first is second
    assert len(manager) == 1
    assert repository.fetches == 1
    assert len(first.store.current()) == 1

    assert await manager.close("alice") is True
    assert first.coordinator.closed
    assert await manager.close("alice") is False
    assert manager.get("alice") is None


class SlowSnapshotStore:
    """Key-value store whose reads block until the test releases them."""

    def __init__(self, data: dict[str, str]) -> None:
        self.data = data
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, key: str) -> str | None:
        value = self.data.get(key)
        self.entered.set()
        await self.release.wait()
        return value

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


@pytest.mark.anyio("asyncio")
async def test_slow_snapshot_read_never_overwrites_a_fresher_fetch() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("new", "Fresh")]
    bus = EventBus()
    old_snapshot = encode_snapshot(Collection.of([_item("old", "Stale")]))
    snapshots = SlowSnapshotStore({snapshot_key("alice"): old_snapshot})
    coordinator, store = _coordinator(repository, bus, snapshots=snapshots)

    starting = asyncio.create_task(coordinator.start(initial_refresh=False))
    await snapshots.entered.wait()
    repository.push("alice")
    await coordinator.wait_idle()
    assert [item.id for item in store.current()] == ["game-new"]

    snapshots.release.set()
    await starting

    assert [item.id for item in store.current()] == ["game-new"]
    assert store.loaded
    await coordinator.teardown()


@pytest.mark.anyio("asyncio")
async def test_open_racing_close_still_yields_one_session() -> None:
    repository = GatedRepository()
    repository.items["alice"] = [_item("1", "Hades")]
    repository.gate = asyncio.Event()
    manager = SyncSessionManager(repository, EventBus())

    first_open = asyncio.create_task(manager.open("alice"))
    while repository.fetches == 0:
        await asyncio.sleep(0)
    assert await manager.close("alice") is False
    second_open = asyncio.create_task(manager.open("alice"))
    await asyncio.sleep(0)

    repository.gate.set()
    first, second = await asyncio.gather(first_open, second_open)

    assert first is second
    assert repository.fetches == 1
    await manager.close_all()
