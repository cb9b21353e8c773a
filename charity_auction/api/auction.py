import asyncio
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from charity_auction.config import settings
from charity_auction.dependencies import get_bid_service, get_read_model
from charity_auction.models import get_db
from charity_auction.schemas.auctions import (
    AuctionLiveResponse,
    AuctionResponse,
    EndedAuctionResponse,
    HighestBidResponse,
)
from charity_auction.schemas.bids import BidCreateRequest, BidPublicResponse, BidRejectedResponse
from charity_auction.services.auction_store import (
    BidRecord,
    get_bid_count,
    get_highest_bid,
    get_latest_ended_auction,
)
from charity_auction.services.bidding import BidAcceptanceService, BidRejected, RejectionReason
from charity_auction.services.formatting import mask_name
from charity_auction.services.notifications import BidCreated
from charity_auction.services.read_model import AuctionReadModel

router = APIRouter()
logger = logging.getLogger(__name__)

REJECTION_STATUS = {
    RejectionReason.VALIDATION_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RejectionReason.BELOW_FLOOR: status.HTTP_409_CONFLICT,
    RejectionReason.AUCTION_CLOSED: status.HTTP_409_CONFLICT,
    RejectionReason.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# service field names that differ from the request body
BODY_FIELDS = {"amount": "bid_amount"}


def bid_to_public_response(bid: BidRecord) -> BidPublicResponse:
    return BidPublicResponse(
        id=bid.id,
        auction_id=bid.auction_id,
        bid_amount=bid.bid_amount,
        bidder_name=mask_name(bid.bidder_name),
        created_at=bid.created_at,
    )


def highest_to_response(highest: BidCreated | None) -> HighestBidResponse | None:
    if highest is None:
        return None
    return HighestBidResponse(
        bid_id=highest.bid_id,
        bid_amount=highest.bid_amount,
        bidder_name=mask_name(highest.bidder_name),
        created_at=highest.created_at,
    )


def snapshot_to_live_response(snapshot: dict[str, Any], min_increment: int) -> AuctionLiveResponse | None:
    if snapshot["auction"] is None:
        return None
    return AuctionLiveResponse(
        auction=AuctionResponse.model_validate(snapshot["auction"]),
        highest_bid=highest_to_response(snapshot["highest_bid"]),
        bid_count=snapshot["bid_count"],
        next_floor=snapshot["next_floor"],
        min_increment=min_increment,
        currency=settings.CURRENCY_CODE,
        is_loading=snapshot["is_loading"],
        error=snapshot["error"],
    )


def rejection_to_response(result: BidRejected) -> JSONResponse:
    errors = [
        {**error, "field": BODY_FIELDS.get(error["field"], error["field"])}
        for error in result.errors
    ]
    body = BidRejectedResponse(
        reason=result.reason.value,
        message=result.message,
        floor=result.floor,
        errors=errors,
    )
    return JSONResponse(status_code=REJECTION_STATUS[result.reason], content=body.model_dump())


@router.get(
    "/auction/active",
    response_model=AuctionLiveResponse,
    summary="Get the active auction with its highest bid",
)
async def get_active_auction(
    read_model: Annotated[AuctionReadModel, Depends(get_read_model)],
    bid_service: Annotated[BidAcceptanceService, Depends(get_bid_service)],
):
    """Served from the live read model; bidder names are masked and phone numbers never exposed."""
    snapshot = read_model.snapshot()
    if snapshot["auction"] is None:
        if snapshot["error"]:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=snapshot["error"])
        if snapshot["is_loading"]:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auction data is loading")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active auction")
    return snapshot_to_live_response(snapshot, bid_service.min_increment)


@router.post(
    "/auction/active/refresh",
    response_model=AuctionLiveResponse,
    summary="Reload the active auction from storage",
)
async def refresh_active_auction(
    read_model: Annotated[AuctionReadModel, Depends(get_read_model)],
    bid_service: Annotated[BidAcceptanceService, Depends(get_bid_service)],
):
    await read_model.refresh()
    return await get_active_auction(read_model, bid_service)


@router.post(
    "/auctions/{auction_id}/bids",
    response_model=BidPublicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place a bid",
    responses={
        status.HTTP_409_CONFLICT: {"model": BidRejectedResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": BidRejectedResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": BidRejectedResponse},
    },
)
async def submit_bid(
    auction_id: int,
    body: BidCreateRequest,
    bid_service: Annotated[BidAcceptanceService, Depends(get_bid_service)],
):
    """
    Accepts the bid only if it meets the floor at write time: the auction's
    minimum for the first bid, otherwise the highest bid plus the minimum increment.
    A `below_floor` rejection carries the current floor so the bidder can resubmit.
    """
    result = await bid_service.submit_bid(
        auction_id=auction_id,
        bidder_name=body.bidder_name,
        bidder_phone=body.bidder_phone,
        amount=body.bid_amount,
    )
    if isinstance(result, BidRejected):
        return rejection_to_response(result)
    return bid_to_public_response(result.bid)


@router.get(
    "/auctions/ended/latest",
    response_model=EndedAuctionResponse,
    summary="Get the most recently ended auction and its winner",
)
def get_latest_ended(
    db: Annotated[Session, Depends(get_db)],
):
    auction = get_latest_ended_auction(db)
    if not auction:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No ended auction")
    winner = get_highest_bid(db, auction.id)
    return EndedAuctionResponse(
        auction=AuctionResponse.model_validate(auction),
        winner=bid_to_public_response(BidRecord.from_model(winner)) if winner else None,
        bid_count=get_bid_count(db, auction.id),
    )


def push_latest(queue: asyncio.Queue, snapshot: dict[str, Any]) -> None:
    """Snapshots are complete, so a viewer that fell behind only needs the newest one."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(snapshot)


@router.websocket("/auction/live")
async def auction_live(websocket: WebSocket):
    """Push a fresh snapshot of the active auction after every accepted bid."""
    read_model: AuctionReadModel = websocket.app.state.read_model
    min_increment = websocket.app.state.bid_service.min_increment
    await websocket.accept()

    updates: asyncio.Queue = asyncio.Queue(maxsize=1)
    remove_listener = read_model.on_change(lambda snapshot: push_latest(updates, snapshot))

    def _payload(snapshot: dict[str, Any]) -> dict[str, Any] | None:
        response = snapshot_to_live_response(snapshot, min_increment)
        return response.model_dump(mode="json") if response else None

    async def _forward() -> None:
        await websocket.send_json({"type": "snapshot", "data": _payload(read_model.snapshot())})
        while True:
            snapshot = await updates.get()
            await websocket.send_json({"type": "snapshot", "data": _payload(snapshot)})

    sender = asyncio.create_task(_forward())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Live auction viewer disconnected")
    finally:
        remove_listener()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
