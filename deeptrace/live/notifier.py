"""Publish/subscribe fan-out of ChangeEvents to push-channel subscribers."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from deeptrace import config
from deeptrace.models import ChangeEvent
from deeptrace.observability import record_broadcast

logger = logging.getLogger("deeptrace.notifier")


class Subscription:
    """One subscriber's bounded inbox."""

    def __init__(self, maxsize: int):
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0


class ChangeBroker:
    """Fan-out without backpressure.

    ``publish`` never awaits: a full inbox loses the event for that
    subscriber only. A subscriber whose stream fails is removed.
    """

    def __init__(self, queue_size: int | None = None, keepalive_seconds: float | None = None):
        self.queue_size = config.SUBSCRIBER_QUEUE_SIZE if queue_size is None else queue_size
        self.keepalive_seconds = config.SSE_KEEPALIVE_SECONDS if keepalive_seconds is None else keepalive_seconds
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self.queue_size)
        self._subscribers.add(sub)
        logger.debug("Subscriber added (%d open)", len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        logger.debug("Subscriber removed (%d open)", len(self._subscribers))

    def publish(self, event: ChangeEvent) -> int:
        """Offer *event* to every subscriber; returns the number that accepted it."""
        delivered = 0
        for sub in list(self._subscribers):
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.warning("Subscriber queue full, dropping %s event", event.kind)
                record_broadcast(event.kind, "dropped")
        record_broadcast(event.kind, "delivered", delivered)
        return delivered

    async def stream(self, sub: Subscription) -> AsyncIterator[str]:
        """Yield SSE frames for *sub*: ``connected`` first, then events, with keep-alives."""
        try:
            yield ChangeEvent(kind="connected").to_frame()
            while True:
                try:
                    event = await asyncio.wait_for(sub.queue.get(), timeout=self.keepalive_seconds)
                except asyncio.TimeoutError:
                    event = ChangeEvent(kind="ping")
                yield event.to_frame()
        finally:
            self.unsubscribe(sub)
