from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, ForeignKey, UniqueConstraint

from .base import Base


class RankScoreRecord(Base):
    __tablename__ = "rank_score_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id = Column(Integer, ForeignKey("rank_computation_cycles.id"), nullable=False, index=True)
    period_id = Column(String(32), nullable=False)
    student_id = Column(String(64), nullable=False)

    # Dimension means, NULL when the student has no attempts in that dimension
    technical_score = Column(Float)
    behavioral_score = Column(Float)
    contextual_score = Column(Float)

    technical_confidence = Column(Float, nullable=False, default=0.0)
    behavioral_confidence = Column(Float, nullable=False, default=0.0)
    contextual_confidence = Column(Float, nullable=False, default=0.0)

    composite_score = Column(Float, nullable=False)
    weights_used = Column(JSON, nullable=False)
    attempt_count = Column(Integer, nullable=False)
    completed_at = Column(DateTime, nullable=False)
    as_of = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("cycle_id", "student_id", name="uq_score_record_cycle_student"),
    )
