import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from charity_auction.config import settings
from charity_auction.dependencies import get_bid_service, get_current_admin, get_read_model
from charity_auction.models import Auction, User, get_db
from charity_auction.schemas.auctions import (
    AdminAuctionResponse,
    AuctionCreateRequest,
    AuctionResponse,
    DashboardStatsResponse,
)
from charity_auction.schemas.bids import BidAdminResponse
from charity_auction.services import auction_admin
from charity_auction.services.auction_store import list_bids
from charity_auction.services.auth_tokens import authenticate_admin, create_access_token
from charity_auction.services.bidding import BidAcceptanceService
from charity_auction.services.read_model import AuctionReadModel

router = APIRouter()
logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"email": "admin@example.com", "password": "securepassword"}]},
        populate_by_name=True,
    )


class TokenResponse(CamelModel):
    access_token: str = Field(alias="accessToken")
    token_type: str = Field(default="bearer", alias="tokenType")
    expires_in: int = Field(alias="expiresIn")


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Administrator login",
)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """Returns a bearer token for the administrative endpoints."""
    user = authenticate_admin(db, body.email, body.password)
    if user is None:
        logger.warning("Failed admin login attempt for %s", body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return TokenResponse(
        accessToken=create_access_token(user.id),
        expiresIn=settings.JWT_EXPIRE_MINUTES * 60,
    )


def _get_auction_or_404(db: Session, auction_id: int) -> Auction:
    auction = db.query(Auction).filter(Auction.id == auction_id).first()
    if not auction:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Auction not found")
    return auction


@router.get(
    "/auctions",
    response_model=list[AdminAuctionResponse],
    summary="List all auctions with bid statistics",
)
def list_auctions(
    current_admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    return [
        AdminAuctionResponse(
            **AuctionResponse.model_validate(auction).model_dump(),
            highest_bid_amount=highest,
            bid_count=count,
        )
        for auction, highest, count in auction_admin.list_auctions_with_stats(db)
    ]


@router.post(
    "/auctions",
    response_model=AuctionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an auction",
)
async def create_auction(
    body: AuctionCreateRequest,
    current_admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
    read_model: Annotated[AuctionReadModel, Depends(get_read_model)],
):
    auction = await run_in_threadpool(auction_admin.create_auction, db, body)
    if auction.is_active:
        await read_model.switch_auction(None)
    return AuctionResponse.model_validate(auction)


@router.get(
    "/auctions/{auction_id}/bids",
    response_model=list[BidAdminResponse],
    summary="List bids of an auction, highest first",
)
def auction_bids(
    auction_id: int,
    current_admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    _get_auction_or_404(db, auction_id)
    return [BidAdminResponse.model_validate(bid) for bid in list_bids(db, auction_id)]


@router.post(
    "/auctions/{auction_id}/activate",
    response_model=AuctionResponse,
    summary="Make an auction the only active one",
)
async def activate_auction(
    auction_id: int,
    current_admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
    read_model: Annotated[AuctionReadModel, Depends(get_read_model)],
):
    auction = await run_in_threadpool(auction_admin.activate_auction, db, auction_id)
    if auction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Auction not found")
    await read_model.switch_auction(None)
    return AuctionResponse.model_validate(auction)


@router.post(
    "/auctions/{auction_id}/close",
    response_model=AuctionResponse,
    summary="Close an auction and record its winner",
)
async def close_auction(
    auction_id: int,
    current_admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
    bid_service: Annotated[BidAcceptanceService, Depends(get_bid_service)],
    read_model: Annotated[AuctionReadModel, Depends(get_read_model)],
):
    """Deactivates the auction; the highest bid becomes the winner. Safe to repeat."""
    async with bid_service.auction_lock(auction_id):
        auction = await run_in_threadpool(auction_admin.close_auction, db, auction_id)
    if auction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Auction not found")
    await read_model.refresh()
    return AuctionResponse.model_validate(auction)


@router.get(
    "/stats",
    response_model=DashboardStatsResponse,
    summary="Dashboard totals",
)
def stats(
    current_admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    return DashboardStatsResponse(**auction_admin.dashboard_stats(db))
