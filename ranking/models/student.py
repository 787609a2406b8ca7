from datetime import datetime

from sqlalchemy import Column, String, DateTime

from .base import Base


class RankStudent(Base):
    """Scope membership of a student, owned by the web tier."""

    __tablename__ = "rank_students"

    student_id = Column(String(64), primary_key=True)
    college_id = Column(String(64), index=True)
    state = Column(String(64), index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
