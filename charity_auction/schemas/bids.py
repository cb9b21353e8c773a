from datetime import datetime
from typing import Any

from pydantic import BaseModel


class BidCreateRequest(BaseModel):
    """Raw bid body. Field checks run in the bid service so every failure
    comes back as a `validation_failed` rejection."""

    bidder_name: Any = None
    bidder_phone: Any = None
    bid_amount: Any = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "bidder_name": "Ayşe Yılmaz",
                    "bidder_phone": "0532 123 45 67",
                    "bid_amount": 1500,
                }
            ]
        }
    }


class BidPublicResponse(BaseModel):
    id: int
    auction_id: int
    bid_amount: int
    bidder_name: str
    created_at: datetime | None = None


class BidAdminResponse(BaseModel):
    id: int
    auction_id: int
    bid_amount: int
    bidder_name: str
    bidder_phone: str
    is_winner: bool
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class BidErrorDetail(BaseModel):
    field: str
    message: str


class BidRejectedResponse(BaseModel):
    reason: str
    message: str
    floor: int | None = None
    errors: list[BidErrorDetail] = []
