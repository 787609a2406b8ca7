from sqlalchemy import Column, Integer, String, DateTime

from .base import Base


class RankPeriodPointer(Base):
    """The published cycle readers see for a (kind, scope, scope_id)."""

    __tablename__ = "rank_period_pointers"

    kind = Column(String(16), primary_key=True)
    scope = Column(String(16), primary_key=True)
    scope_id = Column(String(64), primary_key=True)

    cycle_id = Column(Integer, nullable=False)
    period_id = Column(String(32), nullable=False)
    previous_cycle_id = Column(Integer)
    previous_period_id = Column(String(32))

    # Bumped on every swap, guards against two publishers racing
    version = Column(Integer, nullable=False, default=1)
    published_at = Column(DateTime, nullable=False)
