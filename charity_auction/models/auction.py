from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from charity_auction.models.database import Base


class Auction(Base):
    __tablename__ = "auctions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    min_bid_amount = Column(Integer, nullable=False, default=0)
    end_time = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=False, nullable=False, index=True)
    image_urls = Column(JSON, nullable=False, default=list)
    winner_id = Column(Integer, nullable=True)  # bids.id of the winning bid, set on close
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    bids = relationship("Bid", back_populates="auction", cascade="all, delete-orphan", passive_deletes=True)
