import asyncio

import pytest

from charity_auction.services.notifications import (
    BidCreated,
    BidNotificationHub,
    NotificationStreamLost,
)


def _event(bid_id: int, amount: int = 1000, auction_id: int = 1) -> BidCreated:
    return BidCreated(auction_id=auction_id, bid_id=bid_id, bid_amount=amount, bidder_name="Ayşe Yılmaz")


@pytest.mark.asyncio
async def test_publish_fans_out_to_every_subscriber():
    hub = BidNotificationHub()
    first = hub.subscribe()
    second = hub.subscribe()

    hub.publish(_event(1))

    assert (await first.receive()).bid_id == 1
    assert (await second.receive()).bid_id == 1


@pytest.mark.asyncio
async def test_events_arrive_in_publish_order():
    hub = BidNotificationHub()
    subscription = hub.subscribe()

    for bid_id in (1, 2, 3):
        hub.publish(_event(bid_id))
    subscription.close()

    received = [event.bid_id async for event in subscription]
    assert received == [1, 2, 3]


@pytest.mark.asyncio
async def test_overflow_marks_stream_lost():
    hub = BidNotificationHub(queue_size=2)
    subscription = hub.subscribe()

    for bid_id in (1, 2, 3):
        hub.publish(_event(bid_id))

    with pytest.raises(NotificationStreamLost):
        await subscription.receive()


@pytest.mark.asyncio
async def test_slow_subscriber_does_not_affect_others():
    hub = BidNotificationHub(queue_size=1)
    slow = hub.subscribe()
    fast = hub.subscribe()

    hub.publish(_event(1))
    assert (await fast.receive()).bid_id == 1
    hub.publish(_event(2))
    assert (await fast.receive()).bid_id == 2

    with pytest.raises(NotificationStreamLost):
        await slow.receive()


@pytest.mark.asyncio
async def test_close_unsubscribes_and_wakes_reader():
    hub = BidNotificationHub()
    subscription = hub.subscribe()
    assert hub.subscriber_count == 1

    reader = asyncio.create_task(subscription.receive())
    await asyncio.sleep(0)
    subscription.close()

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(reader, timeout=1)
    assert subscription.closed
    assert hub.subscriber_count == 0

    hub.publish(_event(1))
    with pytest.raises(StopAsyncIteration):
        await subscription.receive()


@pytest.mark.asyncio
async def test_close_with_full_queue_still_terminates():
    hub = BidNotificationHub(queue_size=1)
    subscription = hub.subscribe()
    hub.publish(_event(1))

    subscription.close()

    received = [event async for event in subscription]
    assert received == []


@pytest.mark.asyncio
async def test_hub_close_closes_all_subscriptions():
    hub = BidNotificationHub()
    subscriptions = [hub.subscribe() for _ in range(3)]

    hub.close()

    assert hub.subscriber_count == 0
    assert all(subscription.closed for subscription in subscriptions)
