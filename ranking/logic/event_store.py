"""
Event Store Reader

Reads the event log and the web tier's tables and hands the engine typed,
deterministically ordered inputs.

This is a pure READ + TRANSFORM layer:
- NO scoring logic
- NO ranking/classification
- NO DB writes
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, or_, func, distinct
from sqlalchemy.orm import Session

from ranking.models import RankEvent, RankStudent, RankOpportunity
from .contracts import (
    InboundEvent,
    ApplicationEvent,
    AssessmentAttempt,
    AssessmentCompletedEvent,
    OpportunityFacts,
)
from .ingestion import row_to_event

APPLICATION_EVENT_TYPES = ("application_submitted", "application_withdrawn", "offer_accepted")


def load_events(
    db: Session,
    as_of: datetime,
    event_types: Optional[Iterable[str]] = None,
    opportunity_ids: Optional[Iterable[str]] = None,
) -> List[InboundEvent]:
    """
    Load every event that happened at or before `as_of`.

    Ordered by (occurred_at, id) so the same log always yields the same list.
    """
    stmt = select(RankEvent).where(RankEvent.occurred_at <= as_of)
    if event_types is not None:
        stmt = stmt.where(RankEvent.event_type.in_(list(event_types)))
    if opportunity_ids is not None:
        stmt = stmt.where(RankEvent.opportunity_id.in_(list(opportunity_ids)))
    stmt = stmt.order_by(RankEvent.occurred_at, RankEvent.id)

    return [row_to_event(row) for row in db.execute(stmt).scalars()]


def load_assessment_attempts(db: Session, as_of: datetime) -> Dict[str, List[AssessmentAttempt]]:
    """Group assessment attempts by student id."""
    attempts: Dict[str, List[AssessmentAttempt]] = defaultdict(list)
    for event in load_events(db, as_of, event_types=["assessment_completed"]):
        if isinstance(event, AssessmentCompletedEvent):
            attempts[event.student_id].append(AssessmentAttempt.from_event(event))
    return dict(attempts)


def load_application_history(
    db: Session,
    as_of: datetime,
    opportunity_ids: Optional[Iterable[str]] = None,
) -> Dict[str, List[ApplicationEvent]]:
    """Group application lifecycle events by opportunity id."""
    history: Dict[str, List[ApplicationEvent]] = defaultdict(list)
    for event in load_events(
        db, as_of, event_types=APPLICATION_EVENT_TYPES, opportunity_ids=opportunity_ids
    ):
        history[event.opportunity_id].append(event)
    return dict(history)


def load_student_scopes(db: Session) -> Dict[str, Tuple[Optional[str], Optional[str]]]:
    """Map student id -> (college_id, state)."""
    rows = db.execute(
        select(RankStudent.student_id, RankStudent.college_id, RankStudent.state)
    ).all()
    return {student_id: (college_id, state) for student_id, college_id, state in rows}


def load_opportunities(db: Session, as_of: datetime) -> List[OpportunityFacts]:
    """Active opportunities already published at `as_of`, ordered by id."""
    stmt = (
        select(RankOpportunity)
        .where(RankOpportunity.is_active.is_(True))
        .where(or_(RankOpportunity.published_at.is_(None), RankOpportunity.published_at <= as_of))
        .order_by(RankOpportunity.id)
    )
    return [
        OpportunityFacts(
            opportunity_id=row.id,
            category=row.category or "general",
            total_spots=row.total_spots,
            deadline=row.deadline,
            published_at=row.published_at,
        )
        for row in db.execute(stmt).scalars()
    ]


def load_college_placements(
    db: Session,
    as_of: datetime,
    state: Optional[str] = None,
) -> Dict[str, Tuple[int, int]]:
    """
    (students, placed students) per college.

    A student counts as placed once they have any offer_accepted event at or
    before `as_of`. Students without a college are left out.
    """
    roster = (
        select(RankStudent.college_id, func.count(RankStudent.student_id))
        .where(RankStudent.college_id.isnot(None))
        .group_by(RankStudent.college_id)
    )
    placed = (
        select(RankStudent.college_id, func.count(distinct(RankEvent.student_id)))
        .join(RankStudent, RankStudent.student_id == RankEvent.student_id)
        .where(RankEvent.event_type == "offer_accepted")
        .where(RankEvent.occurred_at <= as_of)
        .where(RankStudent.college_id.isnot(None))
        .group_by(RankStudent.college_id)
    )
    if state is not None:
        roster = roster.where(RankStudent.state == state)
        placed = placed.where(RankStudent.state == state)

    placed_counts = dict(db.execute(placed).all())
    return {
        college_id: (students, placed_counts.get(college_id, 0))
        for college_id, students in db.execute(roster).all()
    }
