"""Live projection of the highest bid and bid count for one auction.

The model is rebuilt from storage on ``load``/``refresh``/``switch_auction``
and patched from the notification hub in between. Notifications go through
``apply_bid_created``, a pure transition that only ever raises the highest bid
and counts each bid id once, so late or duplicated deliveries are harmless.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from charity_auction.services.auction_store import AuctionRecord, AuctionStore, BidRecord, compute_floor
from charity_auction.services.bidding import MIN_INCREMENT
from charity_auction.services.notifications import (
    BidCreated,
    BidNotificationHub,
    NotificationStreamLost,
    Subscription,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuctionReadState:
    auction: AuctionRecord | None = None
    highest_bid: BidCreated | None = None
    bid_count: int = 0
    # bids with ids up to the watermark are already included in bid_count
    last_bid_id: int = 0
    seen_bid_ids: frozenset[int] = field(default_factory=frozenset)
    is_ready: bool = False
    is_loading: bool = False
    error: str | None = None


def highest_from_record(record: BidRecord | None) -> BidCreated | None:
    if record is None:
        return None
    return BidCreated(
        auction_id=record.auction_id,
        bid_id=record.id,
        bid_amount=record.bid_amount,
        bidder_name=record.bidder_name,
        created_at=record.created_at,
    )


def apply_bid_created(state: AuctionReadState, event: BidCreated) -> AuctionReadState:
    if state.auction is None or event.auction_id != state.auction.id:
        return state
    if event.bid_id <= state.last_bid_id or event.bid_id in state.seen_bid_ids:
        return state
    highest = state.highest_bid
    if highest is None or event.bid_amount > highest.bid_amount:
        highest = event
    return replace(
        state,
        highest_bid=highest,
        bid_count=state.bid_count + 1,
        seen_bid_ids=state.seen_bid_ids | {event.bid_id},
    )


class AuctionReadModel:
    def __init__(
        self,
        store: AuctionStore,
        hub: BidNotificationHub,
        min_increment: int = MIN_INCREMENT,
    ) -> None:
        self._store = store
        self._hub = hub
        self._min_increment = min_increment
        self._state = AuctionReadState()
        self._target: int | None = None
        self._generation = 0
        self._pending: list[BidCreated] = []
        self._subscription: Subscription | None = None
        self._listener: asyncio.Task | None = None
        self._change_callbacks: list[Callable[[dict[str, Any]], None]] = []

    @property
    def state(self) -> AuctionReadState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._listener is not None and not self._listener.done()

    @property
    def auction_id(self) -> int | None:
        return self._state.auction.id if self._state.auction else None

    def next_floor(self) -> int | None:
        auction = self._state.auction
        if auction is None:
            return None
        highest = self._state.highest_bid.bid_amount if self._state.highest_bid else None
        return compute_floor(highest, auction.min_bid_amount, self._min_increment)

    def snapshot(self) -> dict[str, Any]:
        return {
            "auction": self._state.auction,
            "highest_bid": self._state.highest_bid,
            "bid_count": self._state.bid_count,
            "is_loading": self._state.is_loading,
            "error": self._state.error,
            "next_floor": self.next_floor(),
        }

    def on_change(self, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        """Register ``callback(snapshot)``; returns a function that unregisters it."""
        self._change_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._change_callbacks:
                self._change_callbacks.remove(callback)

        return _remove

    def _set_state(self, state: AuctionReadState) -> None:
        if state is self._state:
            return
        self._state = state
        snapshot = self.snapshot()
        for callback in list(self._change_callbacks):
            callback(snapshot)

    def apply(self, event: BidCreated) -> None:
        if self._state.is_loading:
            self._pending.append(event)
            return
        self._set_state(apply_bid_created(self._state, event))

    async def load(self, auction_id: int | None = None) -> AuctionReadState:
        """Rebuild state from storage. ``None`` follows the current active auction."""
        self._target = auction_id
        self._generation += 1
        generation = self._generation
        self._pending = []
        # the previous auction stays visible until the new data arrives
        self._set_state(replace(self._state, is_loading=True, error=None))
        try:
            snapshot = await self._store.load_snapshot(auction_id)
        except SQLAlchemyError:
            logger.exception("Failed to load auction read model (auction=%s)", auction_id)
            if generation == self._generation:
                state = replace(self._state, is_loading=False, error="Auction data is currently unavailable")
                for event in self._pending:
                    state = apply_bid_created(state, event)
                self._pending = []
                self._set_state(state)
            return self._state

        if generation != self._generation:
            # a newer load superseded this one
            return self._state

        if snapshot is None:
            state = AuctionReadState(is_ready=True)
        else:
            state = AuctionReadState(
                auction=snapshot.auction,
                highest_bid=highest_from_record(snapshot.highest_bid),
                bid_count=snapshot.bid_count,
                last_bid_id=snapshot.last_bid_id,
                is_ready=True,
            )
        for event in self._pending:
            state = apply_bid_created(state, event)
        self._pending = []
        self._set_state(state)
        logger.info(
            "Auction read model loaded (auction=%s, bids=%s)",
            self.auction_id,
            self._state.bid_count,
        )
        return self._state

    async def refresh(self) -> AuctionReadState:
        return await self.load(self._target)

    async def switch_auction(self, auction_id: int | None) -> AuctionReadState:
        return await self.load(auction_id)

    async def start(self, auction_id: int | None = None) -> AuctionReadState:
        if self._subscription is None or self._subscription.closed:
            self._subscription = self._hub.subscribe()
        state = await self.load(auction_id)
        if not self.is_running:
            self._listener = asyncio.create_task(self._listen())
        return state

    async def stop(self) -> None:
        listener, self._listener = self._listener, None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if listener is not None:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass

    async def _listen(self) -> None:
        while self._subscription is not None:
            try:
                async for event in self._subscription:
                    self.apply(event)
                return
            except NotificationStreamLost:
                logger.warning("Bid notification stream lost; rebuilding read model from storage")
                self._subscription.close()
                self._subscription = self._hub.subscribe()
                await self.refresh()
