"""Shared fixtures: an in-memory database per test and event/record factories."""

from datetime import datetime, timedelta
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base
import ranking.models  # noqa: F401
from ranking.models import RankOpportunity, RankStudent
from ranking.logic.contracts import StudentScoreRecord
from ranking.logic.engine import RankingEngine
from ranking.logic.ingestion import ingest_events

AS_OF = datetime(2026, 10, 19, 12, 0, 0)


def make_session_factory():
    """Fresh in-memory SQLite database with every ranking table created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session_factory():
    factory = make_session_factory()
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ranking_engine(session_factory):
    return RankingEngine(session_factory, max_workers=1)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def assessment(student_id, dimension, raw_score, timestamp=AS_OF, item_count=20, event_id=None):
    event = {
        "type": "assessment_completed",
        "studentId": student_id,
        "timestamp": timestamp.isoformat(),
        "payload": {"dimension": dimension, "rawScore": raw_score, "itemCount": item_count},
    }
    if event_id:
        event["eventId"] = event_id
    return event


def application(event_type, student_id, opportunity_id, timestamp=AS_OF, **payload):
    return {
        "type": event_type,
        "studentId": student_id,
        "opportunityId": opportunity_id,
        "timestamp": timestamp.isoformat(),
        "payload": payload,
    }


def full_profile(student_id, technical, behavioral, contextual, timestamp=AS_OF):
    return [
        assessment(student_id, "technical", technical, timestamp),
        assessment(student_id, "behavioral", behavioral, timestamp),
        assessment(student_id, "contextual", contextual, timestamp),
    ]


def store(session_factory, events):
    with session_factory() as session:
        ingest_events(session, events)
        session.commit()


def add_students(session_factory, students):
    """students: iterable of (student_id, college_id, state)."""
    with session_factory() as session:
        for student_id, college_id, state in students:
            session.merge(RankStudent(student_id=student_id, college_id=college_id, state=state))
        session.commit()


def add_opportunity(
    session_factory,
    opportunity_id,
    category="engineering",
    total_spots: Optional[int] = None,
    deadline: Optional[datetime] = None,
    published_at: Optional[datetime] = None,
):
    with session_factory() as session:
        session.add(RankOpportunity(
            id=opportunity_id,
            category=category,
            total_spots=total_spots,
            deadline=deadline,
            published_at=published_at or AS_OF - timedelta(days=30),
            is_active=True,
        ))
        session.commit()


def score_record(student_id, composite, completed_at=AS_OF):
    return StudentScoreRecord(
        student_id=student_id,
        technical_score=composite,
        composite_score=composite,
        technical_confidence=1.0,
        weights_used={"technical": 1.0},
        attempt_count=1,
        completed_at=completed_at,
        as_of=AS_OF,
    )
