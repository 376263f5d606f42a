"""In-process publish/subscribe used for local change signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

COLLECTION_MUTATED = "collection.mutated"
APP_FOCUS = "app.focus"

Listener = Callable[[Any], None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``subscribe`` calls; detaches the listener once."""

    _detach: Callable[[], None]
    active: bool = field(default=True)

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._detach()


class EventBus:
    """Topic based message passing between services in one process.

    Listeners run synchronously on the publishing task. A listener that raises
    is logged and skipped so one faulty consumer cannot starve the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        self._listeners.setdefault(topic, []).append(listener)

        def _detach() -> None:
            listeners = self._listeners.get(topic, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(topic, None)

        return Subscription(_detach)

    def publish(self, topic: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every listener of ``topic``; return the count."""

        listeners = list(self._listeners.get(topic, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s failed", topic)
        return len(listeners)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))


@dataclass(frozen=True, slots=True)
class FocusEvent:
    """Payload for ``app.focus``; ``user_id=None`` addresses every session."""

    user_id: str | None = None
