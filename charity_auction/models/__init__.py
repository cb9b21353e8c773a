from charity_auction.models.database import Base, get_db
from charity_auction.models.user import User
from charity_auction.models.auction import Auction
from charity_auction.models.bid import Bid

__all__ = ["Base", "get_db", "User", "Auction", "Bid"]
