from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from charity_auction.schemas.bids import BidPublicResponse
from charity_auction.services.url_utils import validate_reference_url


class AuctionResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    min_bid_amount: int
    end_time: datetime
    is_active: bool
    image_urls: list[str] = []
    winner_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class HighestBidResponse(BaseModel):
    bid_id: int
    bid_amount: int
    bidder_name: str
    created_at: datetime | None = None


class AuctionLiveResponse(BaseModel):
    auction: AuctionResponse
    highest_bid: HighestBidResponse | None = None
    bid_count: int
    next_floor: int
    min_increment: int
    currency: str
    is_loading: bool = False
    error: str | None = None


class EndedAuctionResponse(BaseModel):
    auction: AuctionResponse
    winner: BidPublicResponse | None = None
    bid_count: int


class AuctionCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    min_bid_amount: int = Field(ge=0)
    end_time: datetime
    image_urls: list[str] = []
    is_active: bool = False

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title must not be blank")
        return v

    @field_validator("image_urls")
    @classmethod
    def validate_image_urls(cls, v: list[str]) -> list[str]:
        return [validate_reference_url(url) for url in v]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "title": "Signed football jersey",
                    "description": "Donated by the team captain",
                    "min_bid_amount": 500,
                    "end_time": "2026-12-01T18:00:00Z",
                    "image_urls": ["https://cdn.example.com/auctions/jersey.jpg"],
                    "is_active": True,
                }
            ]
        }
    }


class AdminAuctionResponse(AuctionResponse):
    highest_bid_amount: int | None = None
    bid_count: int = 0


class DashboardStatsResponse(BaseModel):
    total_auctions: int
    active_auctions: int
    total_bids: int
    total_amount: int
