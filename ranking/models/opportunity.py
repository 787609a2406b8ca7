from sqlalchemy import Column, Integer, String, DateTime, Boolean

from .base import Base


class RankOpportunity(Base):
    __tablename__ = "rank_opportunities"

    id = Column(String(64), primary_key=True)
    # Opportunities of the same category form the demand baseline
    category = Column(String(40), nullable=False, default="general")
    total_spots = Column(Integer)
    deadline = Column(DateTime)
    published_at = Column(DateTime)
    is_active = Column(Boolean, nullable=False, default=True)
