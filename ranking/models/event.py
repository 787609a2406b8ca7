from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index

from .base import Base


class RankEvent(Base):
    __tablename__ = "rank_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Client supplied id, makes re-delivery of the same event a no-op
    event_id = Column(String(64), unique=True, nullable=True)

    event_type = Column(String(40), nullable=False, index=True)
    student_id = Column(String(64), index=True)
    opportunity_id = Column(String(64), index=True)
    occurred_at = Column(DateTime, nullable=False, index=True)

    payload = Column(JSON, nullable=False, default=dict)
    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_rank_events_type_occurred", "event_type", "occurred_at"),
    )
