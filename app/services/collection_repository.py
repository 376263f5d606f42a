"""Durable per-user collection storage with change notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Protocol

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CollectionItemRecord
from ..models import CollectionItem
from ..utils import utcnow
from .events import Subscription

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = frozenset(
    {
        "status",
        "rating",
        "progress",
        "notes",
        "creator",
        "date_started",
        "date_completed",
    }
)


@dataclass(frozen=True, slots=True)
class CollectionChange:
    """Notification pushed to subscribers after a committed write."""

    user_id: str
    item_id: str
    action: Literal["upserted", "patched", "deleted"]


ChangeListener = Callable[[CollectionChange], None]


class CollectionRepository(Protocol):
    """Durable store holding every user's collection."""

    def subscribe(self, user_id: str, callback: ChangeListener) -> Subscription:
        """Deliver change notifications for ``user_id`` to ``callback``."""

    async def get_all(self, user_id: str) -> list[CollectionItem]:
        """Return a full snapshot of the user's collection."""

    async def get(self, user_id: str, item_id: str) -> CollectionItem | None:
        """Return a single item or ``None``."""

    async def upsert(self, user_id: str, item: CollectionItem) -> CollectionItem:
        """Insert or wholly replace an item."""

    async def patch(
        self, user_id: str, item_id: str, changes: Mapping[str, Any]
    ) -> CollectionItem | None:
        """Apply field changes to an existing item."""

    async def delete(self, user_id: str, item_id: str) -> bool:
        """Remove an item; return whether it existed."""


class SqlCollectionRepository:
    """``CollectionRepository`` over the ``collection_items`` table.

    Conflicting writes resolve as last-writer-wins: ``upsert`` replaces the
    whole row while ``patch`` only touches the supplied columns. Subscribers are
    notified after the transaction commits, which is the push signal the sync
    coordinator listens for.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._subscribers: dict[str, list[ChangeListener]] = {}

    def subscribe(self, user_id: str, callback: ChangeListener) -> Subscription:
        self._subscribers.setdefault(user_id, []).append(callback)

        def _detach() -> None:
            listeners = self._subscribers.get(user_id, [])
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._subscribers.pop(user_id, None)

        return Subscription(_detach)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def get_all(self, user_id: str) -> list[CollectionItem]:
        async with self._session_factory() as session:
            stmt = (
                select(CollectionItemRecord)
                .where(CollectionItemRecord.user_id == user_id)
                .order_by(
                    CollectionItemRecord.added_at.desc(),
                    CollectionItemRecord.item_id,
                )
            )
            result = await session.execute(stmt)
            records = result.scalars().all()

        items: list[CollectionItem] = []
        for record in records:
            item = self._record_to_item(record)
            if item is not None:
                items.append(item)
        return items

    async def get(self, user_id: str, item_id: str) -> CollectionItem | None:
        async with self._session_factory() as session:
            record = await session.get(CollectionItemRecord, (user_id, item_id))
            if record is None:
                return None
            return self._record_to_item(record)

    async def upsert(self, user_id: str, item: CollectionItem) -> CollectionItem:
        async with self._session_factory() as session:
            await session.merge(self._item_to_record(user_id, item))
            await session.commit()
        self._notify(CollectionChange(user_id=user_id, item_id=item.id, action="upserted"))
        return item

    async def patch(
        self, user_id: str, item_id: str, changes: Mapping[str, Any]
    ) -> CollectionItem | None:
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")

        async with self._session_factory() as session:
            record = await session.get(CollectionItemRecord, (user_id, item_id))
            if record is None:
                return None
            for name, value in changes.items():
                setattr(record, name, value)
            record.updated_at = utcnow()
            await session.commit()
            item = self._record_to_item(record)

        self._notify(CollectionChange(user_id=user_id, item_id=item_id, action="patched"))
        return item

    async def delete(self, user_id: str, item_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(CollectionItemRecord).where(
                    CollectionItemRecord.user_id == user_id,
                    CollectionItemRecord.item_id == item_id,
                )
            )
            await session.commit()
        removed = bool(result.rowcount)
        if removed:
            self._notify(CollectionChange(user_id=user_id, item_id=item_id, action="deleted"))
        return removed

    def _notify(self, change: CollectionChange) -> None:
        for listener in list(self._subscribers.get(change.user_id, ())):
            try:
                listener(change)
            except Exception:
                logger.exception("Collection change listener failed for %s", change.user_id)

    @staticmethod
    def _item_to_record(user_id: str, item: CollectionItem) -> CollectionItemRecord:
        return CollectionItemRecord(
            user_id=user_id,
            item_id=item.id,
            domain=item.domain,
            title=item.title,
            status=item.status,
            rating=item.rating,
            genre=item.genre,
            creator=item.creator,
            year=item.year,
            score=item.score,
            image=item.image,
            overview=item.overview,
            progress=item.progress,
            notes=item.notes,
            date_started=item.date_started,
            date_completed=item.date_completed,
            added_at=item.added_at,
            updated_at=utcnow(),
        )

    @staticmethod
    def _record_to_item(record: CollectionItemRecord) -> CollectionItem | None:
        try:
            return CollectionItem.model_validate(
                {
                    "id": record.item_id,
                    "domain": record.domain,
                    "title": record.title,
                    "status": record.status,
                    "rating": record.rating,
                    "genre": record.genre,
                    "creator": record.creator,
                    "year": record.year,
                    "score": record.score,
                    "image": record.image,
                    "overview": record.overview,
                    "progress": record.progress,
                    "notes": record.notes,
                    "date_started": record.date_started,
                    "date_completed": record.date_completed,
                    "added_at": record.added_at,
                }
            )
        except ValidationError as exc:
            logger.warning(
                "Skipping unreadable collection row %s/%s: %s",
                record.user_id,
                record.item_id,
                exc.error_count(),
            )
            return None
