import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import TestSessionLocal, make_auction, make_bid
from charity_auction.models import Bid
from charity_auction.services.auction_store import compute_floor
from charity_auction.services.bidding import (
    BidAccepted,
    BidAcceptanceService,
    BidRejected,
    RejectionReason,
)
from charity_auction.services.notifications import BidNotificationHub

PHONE = "0532 123 45 67"


@pytest.fixture
def hub():
    return BidNotificationHub(queue_size=16)


@pytest.fixture
def service(db, hub):
    return BidAcceptanceService(TestSessionLocal, hub, min_increment=100)


def _stored_amounts(db, auction_id):
    db.expire_all()
    return [
        amount
        for (amount,) in db.query(Bid.bid_amount).filter(Bid.auction_id == auction_id).order_by(Bid.id)
    ]


def test_compute_floor_uses_minimum_for_first_bid():
    assert compute_floor(None, 500, 100) == 500
    assert compute_floor(1000, 500, 100) == 1100


@pytest.mark.asyncio
async def test_first_bid_at_minimum_is_accepted(db, service):
    auction = make_auction(db, min_bid_amount=500)

    result = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 500)

    assert isinstance(result, BidAccepted)
    assert result.accepted is True
    assert result.bid.bid_amount == 500
    assert _stored_amounts(db, auction.id) == [500]


@pytest.mark.asyncio
async def test_first_bid_below_minimum_is_rejected(db, service):
    auction = make_auction(db, min_bid_amount=500)

    result = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 499)

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.BELOW_FLOOR
    assert result.floor == 500
    assert "₺500" in result.message
    assert _stored_amounts(db, auction.id) == []


@pytest.mark.asyncio
async def test_bid_must_exceed_highest_by_increment(db, service):
    auction = make_auction(db, min_bid_amount=500)
    make_bid(db, auction, 1000)

    short = await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 1099)
    exact = await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 1100)

    assert isinstance(short, BidRejected)
    assert short.reason == RejectionReason.BELOW_FLOOR
    assert short.floor == 1100
    assert isinstance(exact, BidAccepted)
    assert _stored_amounts(db, auction.id) == [1000, 1100]


@pytest.mark.asyncio
async def test_accepted_bids_are_strictly_increasing(db, service):
    auction = make_auction(db, min_bid_amount=100)

    for amount in (100, 150, 250, 300, 1000, 1050, 1100):
        await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, amount)

    amounts = _stored_amounts(db, auction.id)
    assert amounts == [100, 250, 1000, 1100]
    assert all(later >= earlier + 100 for earlier, later in zip(amounts, amounts[1:]))


@pytest.mark.asyncio
async def test_concurrent_bids_accept_exactly_one(db, service):
    auction = make_auction(db, min_bid_amount=500)
    make_bid(db, auction, 1000)

    results = await asyncio.gather(
        service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 1100),
        service.submit_bid(auction.id, "Mehmet Kaya", "0533 765 43 21", 1150),
    )

    accepted = [result for result in results if isinstance(result, BidAccepted)]
    rejected = [result for result in results if isinstance(result, BidRejected)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert rejected[0].reason == RejectionReason.BELOW_FLOOR
    assert rejected[0].floor == accepted[0].bid.bid_amount + 100
    assert _stored_amounts(db, auction.id) == [1000, accepted[0].bid.bid_amount]


@pytest.mark.asyncio
async def test_stale_viewers_scenario(db, service):
    auction = make_auction(db, min_bid_amount=100)
    make_bid(db, auction, 500)

    first = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 600)
    second = await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 600)
    third = await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 700)

    assert isinstance(first, BidAccepted)
    assert isinstance(second, BidRejected)
    assert second.floor == 700
    assert isinstance(third, BidAccepted)
    assert _stored_amounts(db, auction.id) == [500, 600, 700]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name,phone,amount,field",
    [
        ("A", PHONE, 600, "bidder_name"),
        ("   ", PHONE, 600, "bidder_name"),
        ("Ayşe Yılmaz", "12345", 600, "bidder_phone"),
        ("Ayşe Yılmaz", "0532-abc-4567", 600, "bidder_phone"),
        ("Ayşe Yılmaz", PHONE, 0, "amount"),
        ("Ayşe Yılmaz", PHONE, -50, "amount"),
    ],
)
async def test_invalid_submission_is_rejected_without_write(db, service, name, phone, amount, field):
    auction = make_auction(db, min_bid_amount=100)

    result = await service.submit_bid(auction.id, name, phone, amount)

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.VALIDATION_FAILED
    assert field in [error["field"] for error in result.errors]
    assert _stored_amounts(db, auction.id) == []


@pytest.mark.asyncio
async def test_bidder_fields_are_stored_trimmed(db, service):
    auction = make_auction(db, min_bid_amount=100)

    result = await service.submit_bid(auction.id, "  Ayşe Yılmaz ", f" {PHONE} ", 100)

    assert isinstance(result, BidAccepted)
    assert result.bid.bidder_name == "Ayşe Yılmaz"
    assert result.bid.bidder_phone == PHONE


@pytest.mark.asyncio
async def test_bid_on_inactive_auction_is_rejected(db, service):
    auction = make_auction(db, is_active=False)

    result = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 1000)

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.AUCTION_CLOSED


@pytest.mark.asyncio
async def test_bid_after_end_time_is_rejected(db, service):
    auction = make_auction(db, end_time=datetime.now(timezone.utc) - timedelta(minutes=1))

    result = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 1000)

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.AUCTION_CLOSED
    assert _stored_amounts(db, auction.id) == []


@pytest.mark.asyncio
async def test_bid_on_unknown_auction_is_rejected(db, service):
    result = await service.submit_bid(9999, "Ayşe Yılmaz", PHONE, 1000)

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.AUCTION_CLOSED


@pytest.mark.asyncio
async def test_storage_failure_is_reported_not_raised(hub):
    session = MagicMock()
    session.query.side_effect = OperationalError("stmt", {}, Exception("connection refused"))
    service = BidAcceptanceService(lambda: session, hub)

    result = await service.submit_bid(1, "Ayşe Yılmaz", PHONE, 1000)

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.STORAGE_UNAVAILABLE
    session.rollback.assert_called_once()
    session.close.assert_called_once()


@pytest.mark.asyncio
async def test_accepted_bid_is_published(db, hub, service):
    auction = make_auction(db, min_bid_amount=100)
    subscription = hub.subscribe()

    result = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 300)
    await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 350)

    event = await asyncio.wait_for(subscription.receive(), timeout=1)
    assert event.bid_id == result.bid.id
    assert event.auction_id == auction.id
    assert event.bid_amount == 300
    assert event.bidder_name == "Ayşe Yılmaz"
    # the rejected bid produced no event
    subscription.close()
    with pytest.raises(StopAsyncIteration):
        await subscription.receive()


@pytest.mark.asyncio
async def test_current_floor(db, service):
    auction = make_auction(db, min_bid_amount=500)
    assert await service.current_floor(auction.id) == 500

    make_bid(db, auction, 800)
    assert await service.current_floor(auction.id) == 900
    assert await service.current_floor(9999) is None


@pytest.mark.asyncio
async def test_minimum_then_increment_scenario_reaches_read_model(db, hub, service):
    from charity_auction.services.auction_store import AuctionStore
    from charity_auction.services.read_model import AuctionReadModel

    auction = make_auction(db, min_bid_amount=500)
    model = AuctionReadModel(AuctionStore(TestSessionLocal), hub, min_increment=100)
    await model.start()

    first = await service.submit_bid(auction.id, "Ayşe Yılmaz", PHONE, 500)
    second = await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 550)
    third = await service.submit_bid(auction.id, "Mehmet Kaya", PHONE, 600)

    assert isinstance(first, BidAccepted)
    assert isinstance(second, BidRejected)
    assert second.reason == RejectionReason.BELOW_FLOOR
    assert second.floor == 600
    assert isinstance(third, BidAccepted)

    for _ in range(100):
        if model.state.bid_count == 2:
            break
        await asyncio.sleep(0.01)
    await model.stop()

    assert model.state.highest_bid.bid_amount == 600
    assert model.state.bid_count == 2
    assert model.next_floor() == 700
    assert _stored_amounts(db, auction.id) == [500, 600]


@pytest.mark.asyncio
async def test_raw_request_values_are_validated(db, service):
    auction = make_auction(db, min_bid_amount=100)

    result = await service.submit_bid(auction.id, None, PHONE, "abc")

    assert isinstance(result, BidRejected)
    assert result.reason == RejectionReason.VALIDATION_FAILED
    assert {error["field"] for error in result.errors} == {"bidder_name", "amount"}
