"""In-process fan-out of "bid created" events to realtime subscribers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


class NotificationStreamLost(Exception):
    """The subscription dropped events and can no longer be patched incrementally."""


@dataclass(frozen=True)
class BidCreated:
    auction_id: int
    bid_id: int
    bid_amount: int
    bidder_name: str
    created_at: datetime | None = None


_CLOSED = object()


class Subscription:
    def __init__(self, hub: "BidNotificationHub", maxsize: int) -> None:
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._lost = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: BidCreated) -> None:
        if self._closed or self._lost:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Bid notification subscriber fell behind; marking stream as lost")
            self._lost = True

    async def receive(self) -> BidCreated:
        if self._lost:
            raise NotificationStreamLost("subscriber queue overflowed")
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._unsubscribe(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # wake a pending receive() even when the buffer is full
            self._queue.get_nowait()
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> BidCreated:
        return await self.receive()


class BidNotificationHub:
    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self._queue_size)
        self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    def publish(self, event: BidCreated) -> None:
        """Deliver to every open subscription; never blocks the publisher."""
        for subscription in list(self._subscribers):
            subscription._deliver(event)
        logger.debug(
            "Published bid %s for auction %s to %s subscriber(s)",
            event.bid_id,
            event.auction_id,
            len(self._subscribers),
        )

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()
