from charity_auction.schemas.auctions import (
    AdminAuctionResponse,
    AuctionCreateRequest,
    AuctionLiveResponse,
    AuctionResponse,
    DashboardStatsResponse,
    EndedAuctionResponse,
    HighestBidResponse,
)
from charity_auction.schemas.bids import (
    BidAdminResponse,
    BidCreateRequest,
    BidPublicResponse,
    BidRejectedResponse,
)

__all__ = [
    "AdminAuctionResponse",
    "AuctionCreateRequest",
    "AuctionLiveResponse",
    "AuctionResponse",
    "DashboardStatsResponse",
    "EndedAuctionResponse",
    "HighestBidResponse",
    "BidAdminResponse",
    "BidCreateRequest",
    "BidPublicResponse",
    "BidRejectedResponse",
]
