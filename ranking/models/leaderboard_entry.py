from sqlalchemy import Column, Integer, String, Float, ForeignKey, UniqueConstraint, Index

from .base import Base


class RankLeaderboardEntry(Base):
    __tablename__ = "rank_leaderboard_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id = Column(Integer, ForeignKey("rank_computation_cycles.id"), nullable=False)
    period_id = Column(String(32), nullable=False)

    scope = Column(String(16), nullable=False)
    scope_id = Column(String(64), nullable=False)
    student_id = Column(String(64), nullable=False)

    rank = Column(Integer, nullable=False)
    percentile = Column(Float, nullable=False)
    previous_rank = Column(Integer)
    total_in_scope = Column(Integer, nullable=False)
    composite_score = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("cycle_id", "student_id", name="uq_leaderboard_cycle_student"),
        UniqueConstraint("cycle_id", "rank", name="uq_leaderboard_cycle_rank"),
        Index("ix_leaderboard_cycle_rank", "cycle_id", "rank"),
    )
