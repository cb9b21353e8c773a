"""Authoritative bid acceptance.

A bid is accepted only if its amount meets the floor computed inside the
write transaction. Three layers close the check-then-act race between
concurrent bidders:

* a per-auction ``asyncio.Lock`` serializes submissions within the process;
* the auction row is locked with ``SELECT ... FOR UPDATE`` (PostgreSQL) so
  other processes queue behind the same row;
* the ``enforce_bid_floor`` trigger installed by the migrations re-checks the
  floor on insert and raises a check violation.

Failures are returned as ``BidRejected`` values, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from charity_auction.models import Auction, Bid
from charity_auction.services.auction_store import BidRecord, compute_floor, is_auction_closed
from charity_auction.services.formatting import format_currency
from charity_auction.services.notifications import BidCreated, BidNotificationHub

logger = logging.getLogger(__name__)

MIN_INCREMENT = 100
PHONE_PATTERN = re.compile(r"^[0-9+\-\s()]+$")


class RejectionReason(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    BELOW_FLOOR = "below_floor"
    AUCTION_CLOSED = "auction_closed"
    STORAGE_UNAVAILABLE = "storage_unavailable"


@dataclass(frozen=True)
class BidAccepted:
    bid: BidRecord
    accepted: bool = field(default=True, init=False)


@dataclass(frozen=True)
class BidRejected:
    reason: RejectionReason
    message: str
    floor: int | None = None
    errors: tuple[dict[str, str], ...] = ()
    accepted: bool = field(default=False, init=False)


BidResult = Union[BidAccepted, BidRejected]


class BidSubmission(BaseModel):
    auction_id: int
    bidder_name: str
    bidder_phone: str
    amount: int = Field(gt=0)

    @field_validator("bidder_name")
    @classmethod
    def validate_bidder_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Bidder name must be at least 2 characters long")
        return v

    @field_validator("bidder_phone")
    @classmethod
    def validate_bidder_phone(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 10:
            raise ValueError("Enter a valid phone number")
        if not PHONE_PATTERN.match(v):
            raise ValueError("Phone number may only contain digits, spaces, +, - and parentheses")
        return v


def _validation_errors(exc: ValidationError) -> tuple[dict[str, str], ...]:
    return tuple(
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    )


class BidAcceptanceService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        hub: BidNotificationHub,
        min_increment: int = MIN_INCREMENT,
    ) -> None:
        self._session_factory = session_factory
        self._hub = hub
        self._min_increment = min_increment
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def min_increment(self) -> int:
        return self._min_increment

    def auction_lock(self, auction_id: int) -> asyncio.Lock:
        """Serialization point shared by bid inserts and administrative closes."""
        lock = self._locks.get(auction_id)
        if lock is None:
            lock = self._locks[auction_id] = asyncio.Lock()
        return lock

    def _floor(self, db: Session, auction: Auction) -> int:
        highest = db.query(func.max(Bid.bid_amount)).filter(Bid.auction_id == auction.id).scalar()
        return compute_floor(highest, auction.min_bid_amount, self._min_increment)

    def _below_floor(self, floor: int) -> BidRejected:
        return BidRejected(
            reason=RejectionReason.BELOW_FLOOR,
            message=(
                f"Bid must be at least {format_currency(floor)}. "
                "A higher bid may have been placed; please resubmit."
            ),
            floor=floor,
        )

    def _check_and_insert(self, submission: BidSubmission) -> BidResult:
        db = self._session_factory()
        try:
            auction = (
                db.query(Auction)
                .filter(Auction.id == submission.auction_id)
                .with_for_update()
                .first()
            )
            if auction is None or is_auction_closed(auction):
                db.rollback()
                return BidRejected(
                    reason=RejectionReason.AUCTION_CLOSED,
                    message="Auction is not accepting bids",
                )

            floor = self._floor(db, auction)
            if submission.amount < floor:
                db.rollback()
                return self._below_floor(floor)

            bid = Bid(
                auction_id=auction.id,
                bid_amount=submission.amount,
                bidder_name=submission.bidder_name,
                bidder_phone=submission.bidder_phone,
            )
            db.add(bid)
            try:
                db.commit()
            except IntegrityError:
                # the database trigger saw a newer bid than our floor query did
                db.rollback()
                auction = db.query(Auction).filter(Auction.id == submission.auction_id).first()
                return self._below_floor(self._floor(db, auction))
            db.refresh(bid)
            return BidAccepted(bid=BidRecord.from_model(bid))
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Storage failure while submitting bid for auction %s", submission.auction_id)
            return BidRejected(
                reason=RejectionReason.STORAGE_UNAVAILABLE,
                message="Bid could not be recorded right now. Please try again.",
            )
        finally:
            db.close()

    async def submit_bid(
        self,
        auction_id: int,
        bidder_name: Any,
        bidder_phone: Any,
        amount: Any,
    ) -> BidResult:
        """Validate the raw submission, then accept or reject it against the current floor."""
        try:
            submission = BidSubmission(
                auction_id=auction_id,
                bidder_name=bidder_name,
                bidder_phone=bidder_phone,
                amount=amount,
            )
        except ValidationError as exc:
            return BidRejected(
                reason=RejectionReason.VALIDATION_FAILED,
                message="Bid submission is invalid",
                errors=_validation_errors(exc),
            )

        async with self.auction_lock(submission.auction_id):
            result = await run_in_threadpool(self._check_and_insert, submission)
            if isinstance(result, BidAccepted):
                bid = result.bid
                self._hub.publish(
                    BidCreated(
                        auction_id=bid.auction_id,
                        bid_id=bid.id,
                        bid_amount=bid.bid_amount,
                        bidder_name=bid.bidder_name,
                        created_at=bid.created_at,
                    )
                )

        if isinstance(result, BidAccepted):
            logger.info(
                "Accepted bid %s of %s on auction %s",
                result.bid.id,
                result.bid.bid_amount,
                result.bid.auction_id,
            )
        else:
            logger.info(
                "Rejected bid of %s on auction %s: %s",
                submission.amount,
                submission.auction_id,
                result.reason.value,
            )
        return result

    def _current_floor(self, auction_id: int) -> int | None:
        db = self._session_factory()
        try:
            auction = db.query(Auction).filter(Auction.id == auction_id).first()
            if auction is None:
                return None
            return self._floor(db, auction)
        finally:
            db.close()

    async def current_floor(self, auction_id: int) -> int | None:
        """Advisory floor for display; the write path re-checks it."""
        return await run_in_threadpool(self._current_floor, auction_id)
