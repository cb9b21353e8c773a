from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from charity_auction.models.database import Base


class User(Base):
    """Administrator account; bidders are anonymous and never stored here."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
