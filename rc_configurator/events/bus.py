"""In-process topic-addressed event bus.

This module handles:
- Stamping per-topic sequence numbers on published events
- Fan-out of each event to every subscriber of its topic
- Bounded per-subscriber buffering (drop-oldest)
- Subscription lifetime (unsubscribe, bus shutdown)

``publish`` never waits for consumers. Each subscription owns a bounded
buffer; when a consumer falls behind, the oldest buffered events are
discarded and counted in ``Subscription.dropped``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from types import TracebackType
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from rc_configurator.events.models import BaseEvent

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1000

EventT = TypeVar("EventT", bound="BaseEvent")


class Subscription:
    """A single-pass, cancellable stream of events for one topic.

    Iterate with ``async for``. Iteration ends when the subscription is
    closed (``close()`` / ``EventBus.unsubscribe``) or the bus shuts down.
    History is never replayed: only events published after ``subscribe``
    are delivered.
    """

    def __init__(self, bus: EventBus, topic: str, maxsize: int) -> None:
        self.topic = topic
        self.dropped = 0
        self._bus = bus
        self._buffer: deque[BaseEvent] = deque(maxlen=maxsize)
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the subscription has ended."""
        return self._closed

    def _deliver(self, event: BaseEvent) -> None:
        if self._closed:
            return
        if len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1
        self._buffer.append(event)
        self._ready.set()

    def _end(self) -> None:
        self._closed = True
        self._buffer.clear()
        self._ready.set()

    def drain(self) -> list[BaseEvent]:
        """Return and remove all currently buffered events without waiting."""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    def close(self) -> None:
        """End the subscription and release it from the bus. Idempotent."""
        self._bus.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> BaseEvent:
        while True:
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        """Return string representation of Subscription."""
        return (
            f"<Subscription(topic='{self.topic}', pending={len(self._buffer)}, "
            f"dropped={self.dropped}, closed={self._closed})>"
        )


class EventBus:
    """Topic-keyed publish/subscribe fan-out.

    Topics need no registration. Publishing to a topic without subscribers
    still advances that topic's sequence counter.

    The subscriber table is copy-on-write: registration and removal replace
    the per-topic tuple under a lock, and ``publish`` iterates the tuple it
    read.
    """

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._subscribers: dict[str, tuple[Subscription, ...]] = {}
        self._counters: dict[str, int] = {}
        self._closed = False

    def publish(self, topic: str, event: EventT) -> EventT:
        """Publish an event to every current subscriber of ``topic``.

        Args:
            topic: Topic key.
            event: Event to publish; its ``topic`` and ``sequence`` are
                replaced by the bus.

        Returns:
            The stamped event as delivered to subscribers.
        """
        with self._lock:
            sequence = self._counters.get(topic, 0)
            self._counters[topic] = sequence + 1
            stamped = event.model_copy(update={"topic": topic, "sequence": sequence})
            for subscription in self._subscribers.get(topic, ()):
                subscription._deliver(stamped)
        return stamped

    def subscribe(self, topic: str, maxsize: int | None = None) -> Subscription:
        """Subscribe to events published on ``topic`` from now on.

        Args:
            topic: Topic key.
            maxsize: Buffer size for this subscriber (defaults to the bus's).

        Returns:
            A new Subscription. On a closed bus it is already ended.
        """
        subscription = Subscription(self, topic, maxsize or self.buffer_size)
        with self._lock:
            if self._closed:
                subscription._end()
                return subscription
            self._subscribers[topic] = (*self._subscribers.get(topic, ()), subscription)
        logger.debug("Subscribed to %s", topic)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription. Calling it again has no effect."""
        with self._lock:
            current = self._subscribers.get(subscription.topic, ())
            if subscription in current:
                remaining = tuple(s for s in current if s is not subscription)
                if remaining:
                    self._subscribers[subscription.topic] = remaining
                else:
                    del self._subscribers[subscription.topic]
                logger.debug("Unsubscribed from %s", subscription.topic)
        subscription._end()

    def subscriber_count(self, topic: str) -> int:
        """Return the number of live subscriptions on ``topic``."""
        return len(self._subscribers.get(topic, ()))

    def next_sequence(self, topic: str) -> int:
        """Return the sequence number the next event on ``topic`` will get."""
        return self._counters.get(topic, 0)

    def close(self) -> None:
        """End every live subscription; later subscriptions end immediately."""
        with self._lock:
            self._closed = True
            subscriptions = [s for subs in self._subscribers.values() for s in subs]
            self._subscribers = {}
        for subscription in subscriptions:
            subscription._end()
        logger.debug("Event bus closed (%d subscriptions ended)", len(subscriptions))


__all__ = ["DEFAULT_BUFFER_SIZE", "EventBus", "Subscription"]
