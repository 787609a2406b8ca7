"""Event ingestion: closed event union, validation and duplicate handling."""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from conftest import AS_OF, application, assessment
from ranking.logic.constants import Dimension
from ranking.logic.contracts import AssessmentCompletedEvent, ApplicationSubmittedEvent
from ranking.logic.errors import ValidationError
from ranking.logic.event_store import load_application_history, load_assessment_attempts, load_events
from ranking.logic.ingestion import ingest_event, ingest_events, parse_event
from ranking.models import RankEvent


def event_count(db):
    return db.execute(select(func.count(RankEvent.id))).scalar_one()


def test_parses_web_tier_shape_with_nested_payload():
    event = parse_event({
        "type": "assessment_completed",
        "studentId": "s1",
        "timestamp": "2026-10-19T15:30:00+05:30",
        "payload": {"dimension": "technical", "rawScore": 88, "itemCount": 10},
    })

    assert isinstance(event, AssessmentCompletedEvent)
    assert event.dimension == Dimension.TECHNICAL
    assert event.raw_score == 88.0
    # Stored as naive UTC
    assert event.timestamp == datetime(2026, 10, 19, 10, 0, 0)


def test_parses_flat_snake_case_shape():
    event = parse_event({
        "type": "application_submitted",
        "student_id": "s1",
        "opportunity_id": "opp-1",
        "college_id": "c1",
        "score_at_application": 77.5,
        "timestamp": AS_OF,
    })
    assert isinstance(event, ApplicationSubmittedEvent)
    assert event.college_id == "c1"


@pytest.mark.parametrize("raw", [
    {"type": "profile_viewed", "studentId": "s1", "timestamp": "2026-10-19T00:00:00"},
    {"studentId": "s1", "timestamp": "2026-10-19T00:00:00"},
    assessment("s1", "technical", 120),
    assessment("s1", "leadership", 50),
    assessment("s1", "technical", 50, item_count=0),
    {**assessment("s1", "technical", 50), "unexpected": True},
    {"type": "offer_accepted", "studentId": "s1", "timestamp": "2026-10-19T00:00:00"},
    "not an event",
])
def test_invalid_events_are_rejected(raw):
    with pytest.raises(ValidationError):
        parse_event(raw)


def test_duplicate_event_id_is_a_noop(db):
    raw = assessment("s1", "technical", 70, event_id="evt-1")

    assert ingest_event(db, raw) is True
    assert ingest_event(db, raw) is False
    assert event_count(db) == 1


def test_batch_counts_duplicates_within_and_across_batches(db):
    ingest_event(db, assessment("s1", "technical", 70, event_id="evt-1"))
    counts = ingest_events(db, [
        assessment("s1", "technical", 70, event_id="evt-1"),
        assessment("s2", "technical", 60, event_id="evt-2"),
        assessment("s2", "technical", 60, event_id="evt-2"),
        assessment("s3", "behavioral", 50),
    ])

    assert counts == {"stored": 2, "duplicates": 2}
    assert event_count(db) == 3


def test_one_bad_event_rejects_the_whole_batch(db):
    with pytest.raises(ValidationError) as exc_info:
        ingest_events(db, [
            assessment("s1", "technical", 70),
            assessment("s2", "technical", 170),
        ])

    assert exc_info.value.context["index"] == 1
    assert event_count(db) == 0


def test_stored_events_read_back_typed(db):
    ingest_events(db, [
        assessment("s1", "technical", 70, timestamp=AS_OF),
        assessment("s1", "behavioral", 65, timestamp=AS_OF),
        application("application_submitted", "s1", "opp-1", college_id="c1", scoreAtApplication=80),
        application("offer_accepted", "s1", "opp-1"),
    ])
    db.commit()

    assert len(load_events(db, AS_OF)) == 4

    attempts = load_assessment_attempts(db, AS_OF)
    assert {a.dimension for a in attempts["s1"]} == {Dimension.TECHNICAL, Dimension.BEHAVIORAL}

    history = load_application_history(db, AS_OF)
    submitted = history["opp-1"][0]
    assert isinstance(submitted, ApplicationSubmittedEvent)
    assert submitted.score_at_application == 80.0
    assert submitted.college_id == "c1"
