from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, Index

from .base import Base


class RankComputationCycle(Base):
    """One attempt at computing a period for a (kind, scope, scope_id)."""

    __tablename__ = "rank_computation_cycles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False)
    scope = Column(String(16), nullable=False)
    scope_id = Column(String(64), nullable=False)
    period_id = Column(String(32), nullable=False)
    attempt = Column(Integer, nullable=False, default=1)

    status = Column(String(16), nullable=False, default="pending")
    as_of = Column(DateTime, nullable=False)
    output_digest = Column(String(64))
    row_count = Column(Integer, nullable=False, default=0)
    error = Column(Text)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime)
    staged_at = Column(DateTime)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index("ix_cycles_target_period", "kind", "scope", "scope_id", "period_id"),
    )
