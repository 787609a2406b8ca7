from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, ForeignKey, UniqueConstraint

from .base import Base


class RankScarcitySnapshot(Base):
    __tablename__ = "rank_scarcity_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id = Column(Integer, ForeignKey("rank_computation_cycles.id"), nullable=False, index=True)
    period_id = Column(String(32), nullable=False)
    opportunity_id = Column(String(64), nullable=False)

    # Volume
    total_applications = Column(Integer, nullable=False, default=0)
    applications_from_college = Column(JSON, nullable=False, default=dict)
    applications_today = Column(Integer, nullable=False, default=0)
    applications_this_week = Column(Integer, nullable=False, default=0)
    application_velocity = Column(Float, nullable=False, default=0.0)

    # Closing signals
    spots_remaining = Column(Integer)
    closing_type = Column(String(8))
    closing_value = Column(Integer)
    urgency = Column(String(16), nullable=False)
    demand_level = Column(String(16), nullable=False)

    as_of = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("cycle_id", "opportunity_id", name="uq_scarcity_cycle_opportunity"),
    )
