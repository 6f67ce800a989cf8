from sqlalchemy import Column, Integer, String, Float, DateTime
from sqlalchemy.sql import func
from aarath.core.db import Base


class BidArchive(Base):
    """Durable copy of every accepted bid, kept for audit after rooms are archived."""
    __tablename__ = "bid_archive"
    id = Column(Integer, primary_key=True, index=True)
    auction_id = Column(String, index=True)
    bid_id = Column(String, unique=True, index=True)
    user_id = Column(String, index=True)
    user_name = Column(String)
    amount = Column(Float)
    placed_at = Column(DateTime, default=func.now())
