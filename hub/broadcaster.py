"""Topic-based fan-out of live job events."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .models import utcnow

LOGGER = logging.getLogger(__name__)

GLOBAL_TOPIC = "global"


def system_topic(system_id: str) -> str:
    return f"system-{system_id}"


@dataclass(slots=True)
class Event:
    name: str
    system_id: str | None
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "event",
            "event": self.name,
            "system_id": self.system_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """A subscriber mailbox joined to one or more topics."""

    def __init__(self, broadcaster: "Broadcaster", maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.topics: set[str] = set()
        self.dropped = 0
        self.closed = False

    def join(self, topic: str) -> None:
        self.topics.add(topic)
        self._broadcaster._attach(topic, self)

    def leave(self, topic: str) -> None:
        self.topics.discard(topic)
        self._broadcaster._detach(topic, self)

    def close(self) -> None:
        for topic in list(self.topics):
            self.leave(topic)
        self.closed = True

    def deliver(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self) -> Event:
        return await self._queue.get()

    def pending(self) -> list[Event]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()


class Broadcaster:
    """Best-effort pub/sub: events for topics nobody joined are dropped."""

    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._topics: dict[str, set[Subscription]] = {}

    def subscribe(self, *topics: str) -> Subscription:
        subscription = Subscription(self, self._queue_size)
        for topic in topics:
            subscription.join(topic)
        return subscription

    def publish(self, topic: str, event: Event) -> int:
        subscribers = self._topics.get(topic)
        if not subscribers:
            return 0
        for subscription in list(subscribers):
            subscription.deliver(event)
        return len(subscribers)

    def emit(self, system_id: str | None, name: str, payload: dict[str, Any]) -> Event:
        """Deliver ``name`` to the system's channel and to the global channel."""
        event = Event(name=name, system_id=system_id, payload=payload)
        recipients: set[Subscription] = set()
        if system_id is not None:
            recipients |= self._topics.get(system_topic(system_id), set())
        recipients |= self._topics.get(GLOBAL_TOPIC, set())
        # A subscriber joined to both channels gets the event once.
        for subscription in recipients:
            subscription.deliver(event)
        LOGGER.debug("Emitted %s for %s to %d subscriber(s)", name, system_id, len(recipients))
        return event

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def _attach(self, topic: str, subscription: Subscription) -> None:
        self._topics.setdefault(topic, set()).add(subscription)

    def _detach(self, topic: str, subscription: Subscription) -> None:
        subscribers = self._topics.get(topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._topics[topic]
