import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from charity_auction.models import Auction, Bid
from charity_auction.schemas.auctions import AuctionCreateRequest
from charity_auction.services.auction_store import get_highest_bid

logger = logging.getLogger(__name__)


def create_auction(db: Session, body: AuctionCreateRequest) -> Auction:
    auction = Auction(
        title=body.title,
        description=body.description,
        min_bid_amount=body.min_bid_amount,
        end_time=body.end_time,
        image_urls=list(body.image_urls),
        is_active=False,
    )
    db.add(auction)
    db.flush()
    if body.is_active:
        _deactivate_others(db, auction.id)
        auction.is_active = True
    db.commit()
    db.refresh(auction)
    logger.info("Created auction %s (active=%s)", auction.id, auction.is_active)
    return auction


def _deactivate_others(db: Session, auction_id: int) -> None:
    db.query(Auction).filter(Auction.id != auction_id, Auction.is_active == True).update(  # noqa: E712
        {Auction.is_active: False}, synchronize_session=False
    )


def activate_auction(db: Session, auction_id: int) -> Auction | None:
    """Make ``auction_id`` the only active auction."""
    auction = db.query(Auction).filter(Auction.id == auction_id).with_for_update().first()
    if not auction:
        return None
    _deactivate_others(db, auction.id)
    auction.is_active = True
    db.commit()
    db.refresh(auction)
    logger.info("Auction %s activated", auction.id)
    return auction


def close_auction(db: Session, auction_id: int) -> Auction | None:
    """Deactivate the auction and record its winner.

    The winner is the highest bid and is marked only once; closing an already
    closed auction leaves the recorded winner untouched.
    """
    auction = db.query(Auction).filter(Auction.id == auction_id).with_for_update().first()
    if not auction:
        return None
    auction.is_active = False
    if auction.winner_id is None:
        winner = get_highest_bid(db, auction.id)
        if winner is not None:
            winner.is_winner = True
            auction.winner_id = winner.id
    db.commit()
    db.refresh(auction)
    logger.info("Auction %s closed (winner bid=%s)", auction.id, auction.winner_id)
    return auction


def list_auctions_with_stats(db: Session) -> list[tuple[Auction, int | None, int]]:
    stats = dict(
        (auction_id, (highest, count))
        for auction_id, highest, count in db.query(
            Bid.auction_id, func.max(Bid.bid_amount), func.count(Bid.id)
        ).group_by(Bid.auction_id)
    )
    auctions = db.query(Auction).order_by(Auction.created_at.desc(), Auction.id.desc()).all()
    return [(auction, *stats.get(auction.id, (None, 0))) for auction in auctions]


def dashboard_stats(db: Session) -> dict[str, int]:
    total_bids, total_amount = db.query(func.count(Bid.id), func.coalesce(func.sum(Bid.bid_amount), 0)).one()
    return {
        "total_auctions": db.query(func.count(Auction.id)).scalar() or 0,
        "active_auctions": db.query(func.count(Auction.id)).filter(Auction.is_active == True).scalar() or 0,  # noqa: E712
        "total_bids": total_bids or 0,
        "total_amount": int(total_amount or 0),
    }
