"""In-memory view of one user's collection that the UI layer reads."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable

from ..models import Collection, CollectionItem
from ..utils import utcnow
from .events import Subscription

logger = logging.getLogger(__name__)

StoreListener = Callable[[Collection], None]


class CollectionStore:
    """Holds the latest known collection snapshot for a single user.

    ``replace`` swaps the whole snapshot in one assignment so readers observe
    either the previous collection or the new one, never a partial merge.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id
        self._collection = Collection()
        self._loaded = False
        self._listeners: list[StoreListener] = []
        self.last_synced_at: datetime | None = None

    @property
    def loaded(self) -> bool:
        """Whether a fetch from the durable store has ever completed."""

        return self._loaded

    def current(self) -> Collection:
        return self._collection

    def replace(self, items: Iterable[CollectionItem]) -> Collection:
        collection = Collection.of(items)
        self._collection = collection
        self._loaded = True
        self.last_synced_at = utcnow()
        self._emit(collection)
        return collection

    def hydrate(self, items: Iterable[CollectionItem]) -> Collection:
        """Show a previously saved snapshot until the first fetch lands."""

        collection = Collection.of(items)
        self._collection = collection
        self._emit(collection)
        return collection

    def on_change(self, callback: StoreListener) -> Subscription:
        self._listeners.append(callback)

        def _detach() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(_detach)

    def _emit(self, collection: Collection) -> None:
        for listener in list(self._listeners):
            try:
                listener(collection)
            except Exception:
                logger.exception("Collection store listener failed for %s", self.user_id)
