from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from charity_auction.models.database import Base


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (Index("ix_bids_auction_amount", "auction_id", "bid_amount"),)

    id = Column(Integer, primary_key=True, index=True)
    auction_id = Column(Integer, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False, index=True)
    bid_amount = Column(Integer, nullable=False)
    bidder_name = Column(String(255), nullable=False)
    bidder_phone = Column(String(32), nullable=False)
    is_winner = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    auction = relationship("Auction", back_populates="bids")
