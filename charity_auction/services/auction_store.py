"""Read-side queries over auctions and bids.

The query helpers take a SQLAlchemy ``Session`` and are shared by the HTTP
handlers; ``AuctionStore`` wraps them for async callers, running the blocking
database work in Starlette's threadpool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from charity_auction.models import Auction, Bid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class BidRecord:
    id: int
    auction_id: int
    bid_amount: int
    bidder_name: str
    bidder_phone: str
    is_winner: bool
    created_at: datetime | None

    @classmethod
    def from_model(cls, bid: Bid) -> "BidRecord":
        return cls(
            id=bid.id,
            auction_id=bid.auction_id,
            bid_amount=bid.bid_amount,
            bidder_name=bid.bidder_name,
            bidder_phone=bid.bidder_phone,
            is_winner=bool(bid.is_winner),
            created_at=bid.created_at,
        )


@dataclass(frozen=True)
class AuctionRecord:
    id: int
    title: str
    description: str | None
    min_bid_amount: int
    end_time: datetime
    is_active: bool
    image_urls: list[str] = field(default_factory=list)
    winner_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, auction: Auction) -> "AuctionRecord":
        return cls(
            id=auction.id,
            title=auction.title,
            description=auction.description,
            min_bid_amount=auction.min_bid_amount,
            end_time=auction.end_time,
            is_active=bool(auction.is_active),
            image_urls=list(auction.image_urls or []),
            winner_id=auction.winner_id,
            created_at=auction.created_at,
            updated_at=auction.updated_at,
        )

    def is_closed(self, now: datetime | None = None) -> bool:
        return is_auction_closed(self, now)


def is_auction_closed(auction: Auction | AuctionRecord, now: datetime | None = None) -> bool:
    """An auction is closed once deactivated or once its end time has passed."""
    now = now or utcnow()
    return not auction.is_active or as_utc(auction.end_time) <= now


def compute_floor(highest_amount: int | None, min_bid_amount: int, increment: int) -> int:
    if highest_amount is None:
        return min_bid_amount
    return highest_amount + increment


def get_active_auction(db: Session) -> Auction | None:
    return (
        db.query(Auction)
        .filter(Auction.is_active == True)  # noqa: E712
        .order_by(Auction.created_at.desc(), Auction.id.desc())
        .first()
    )


def get_latest_ended_auction(db: Session, now: datetime | None = None) -> Auction | None:
    now = now or utcnow()
    bind = db.get_bind()
    if bind is not None and bind.dialect.name == "sqlite":
        now = now.replace(tzinfo=None)
    return (
        db.query(Auction)
        .filter(or_(Auction.is_active == False, Auction.end_time < now))  # noqa: E712
        .order_by(Auction.end_time.desc())
        .first()
    )


def get_highest_bid(db: Session, auction_id: int, up_to_bid_id: int | None = None) -> Bid | None:
    query = db.query(Bid).filter(Bid.auction_id == auction_id)
    if up_to_bid_id is not None:
        query = query.filter(Bid.id <= up_to_bid_id)
    return (
        query
        .order_by(Bid.bid_amount.desc(), Bid.id.asc())
        .first()
    )


def get_bid_count(db: Session, auction_id: int, up_to_bid_id: int | None = None) -> int:
    query = db.query(func.count(Bid.id)).filter(Bid.auction_id == auction_id)
    if up_to_bid_id is not None:
        query = query.filter(Bid.id <= up_to_bid_id)
    return query.scalar() or 0


def get_max_bid_id(db: Session, auction_id: int) -> int:
    return db.query(func.max(Bid.id)).filter(Bid.auction_id == auction_id).scalar() or 0


def list_bids(db: Session, auction_id: int) -> list[Bid]:
    return (
        db.query(Bid)
        .filter(Bid.auction_id == auction_id)
        .order_by(Bid.bid_amount.desc(), Bid.id.asc())
        .all()
    )


@dataclass(frozen=True)
class AuctionSnapshot:
    auction: AuctionRecord
    highest_bid: BidRecord | None
    bid_count: int
    last_bid_id: int


class AuctionStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _load_snapshot(self, auction_id: int | None) -> AuctionSnapshot | None:
        db = self._session_factory()
        try:
            if auction_id is None:
                auction = get_active_auction(db)
            else:
                auction = db.query(Auction).filter(Auction.id == auction_id).first()
            if auction is None:
                return None
            # Bid ids grow in commit order per auction, so everything at or below the
            # watermark is already committed; newer bids arrive as notifications.
            last_bid_id = get_max_bid_id(db, auction.id)
            highest = get_highest_bid(db, auction.id, up_to_bid_id=last_bid_id)
            return AuctionSnapshot(
                auction=AuctionRecord.from_model(auction),
                highest_bid=BidRecord.from_model(highest) if highest else None,
                bid_count=get_bid_count(db, auction.id, up_to_bid_id=last_bid_id),
                last_bid_id=last_bid_id,
            )
        finally:
            db.close()

    async def load_snapshot(self, auction_id: int | None = None) -> AuctionSnapshot | None:
        """Fetch an auction with its highest bid and bid count.

        ``auction_id=None`` selects the most recently created active auction.
        """
        return await run_in_threadpool(self._load_snapshot, auction_id)
