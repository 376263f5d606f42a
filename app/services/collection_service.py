"""Mutations applied to a user's collection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal

from ..models import CollectionItem, CollectionItemUpdate, ContentItem
from ..utils import utcnow
from .collection_repository import CollectionRepository
from .events import COLLECTION_MUTATED, EventBus

logger = logging.getLogger(__name__)

STARTED_STATUSES = frozenset({"currently-playing", "in-progress"})
COMPLETED_STATUSES = frozenset({"completed"})


@dataclass(frozen=True, slots=True)
class MutationEvent:
    """Published on the bus once a local write has been committed."""

    user_id: str
    item_id: str
    action: Literal["added", "updated", "removed"]


class CollectionService:
    """Add, update and remove collection items.

    Every write goes to the durable repository first; the
    ``collection.mutated`` event is published only after it completes so a
    sync triggered by the event always observes the write.
    """

    def __init__(
        self,
        repository: CollectionRepository,
        bus: EventBus,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._bus = bus
        self._clock = clock

    async def add_item(
        self,
        user_id: str,
        item: ContentItem | dict[str, Any],
        status: str,
        rating: int | None = None,
    ) -> CollectionItem:
        content = item if isinstance(item, ContentItem) else ContentItem.model_validate(item)
        now = self._clock()
        payload: dict[str, Any] = {
            **content.model_dump(),
            "status": status,
            "rating": rating,
            "added_at": now,
        }
        if status in STARTED_STATUSES:
            payload["date_started"] = now
        if status in COMPLETED_STATUSES:
            payload["date_completed"] = now

        entry = CollectionItem.model_validate(payload)
        stored = await self._repository.upsert(user_id, entry)
        logger.info("Added %s to %s's collection as %s", stored.id, user_id, status)
        self._publish(user_id, stored.id, "added")
        return stored

    async def update_item(
        self, user_id: str, item_id: str, update: CollectionItemUpdate
    ) -> CollectionItem | None:
        changes = update.changes()
        if not changes:
            return await self._repository.get(user_id, item_id)

        status = changes.get("status")
        if status in STARTED_STATUSES or status in COMPLETED_STATUSES:
            existing = await self._repository.get(user_id, item_id)
            if existing is None:
                return None
            now = self._clock()
            if status in STARTED_STATUSES and existing.date_started is None:
                changes.setdefault("date_started", now)
            if status in COMPLETED_STATUSES and existing.date_completed is None:
                changes.setdefault("date_completed", now)

        updated = await self._repository.patch(user_id, item_id, changes)
        if updated is None:
            return None
        logger.info("Updated %s for %s (%s)", item_id, user_id, ", ".join(sorted(changes)))
        self._publish(user_id, item_id, "updated")
        return updated

    async def remove_item(self, user_id: str, item_id: str) -> bool:
        removed = await self._repository.delete(user_id, item_id)
        if removed:
            logger.info("Removed %s from %s's collection", item_id, user_id)
            self._publish(user_id, item_id, "removed")
        return removed

    def _publish(self, user_id: str, item_id: str, action: str) -> None:
        self._bus.publish(
            COLLECTION_MUTATED,
            MutationEvent(user_id=user_id, item_id=item_id, action=action),
        )
