"""
Event Ingestion

Validates inbound events against the closed set of event kinds and appends
them to the event log. Unknown kinds and schema violations are rejected here,
so everything downstream can trust what it reads back.
"""

import logging
from typing import Any, Dict, Iterable, List

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ranking.models import RankEvent
from .contracts import InboundEvent, EVENT_TYPES
from .errors import ValidationError

logger = logging.getLogger(__name__)

_event_adapter = TypeAdapter(InboundEvent)


def parse_event(raw: Dict[str, Any]) -> InboundEvent:
    """
    Parse one raw event dict into its typed event.

    Raises:
        ValidationError: unknown event type or invalid fields
    """
    if not isinstance(raw, dict):
        raise ValidationError("Event must be an object", {"received": type(raw).__name__})

    event_type = raw.get("type")
    if event_type not in EVENT_TYPES:
        raise ValidationError(
            f"Unknown event type: {event_type!r}",
            {"allowed": list(EVENT_TYPES)},
        )

    try:
        return _event_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {event_type} event",
            {"errors": [
                {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                for err in e.errors()
            ]},
        ) from e


def event_to_row(event: InboundEvent) -> RankEvent:
    """Split a typed event into indexed columns plus a JSON payload."""
    body = event.model_dump(mode="json", exclude={"type", "event_id", "timestamp"})
    student_id = body.pop("student_id", None)
    opportunity_id = body.pop("opportunity_id", None)

    return RankEvent(
        event_id=event.event_id,
        event_type=event.type,
        student_id=student_id,
        opportunity_id=opportunity_id,
        occurred_at=event.timestamp,
        payload=body,
    )


def row_to_event(row: RankEvent) -> InboundEvent:
    """Rebuild the typed event from a stored row."""
    raw: Dict[str, Any] = dict(row.payload or {})
    raw["type"] = row.event_type
    raw["timestamp"] = row.occurred_at
    if row.event_id is not None:
        raw["event_id"] = row.event_id
    if row.student_id is not None:
        raw["student_id"] = row.student_id
    if row.opportunity_id is not None:
        raw["opportunity_id"] = row.opportunity_id
    return parse_event(raw)


def ingest_event(db: Session, raw: Dict[str, Any]) -> bool:
    """
    Validate and store one event.

    Returns:
        True if stored, False if an event with the same event_id already exists.
    """
    event = parse_event(raw)

    if event.event_id is not None:
        existing = db.execute(
            select(RankEvent.id).where(RankEvent.event_id == event.event_id)
        ).first()
        if existing:
            logger.debug(f"Duplicate event {event.event_id} ignored")
            return False

    db.add(event_to_row(event))
    db.flush()
    return True


def ingest_events(db: Session, raws: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate a batch of events, then store them.

    The batch is all-or-nothing: one invalid event rejects the whole batch
    and nothing is written.
    """
    raws = list(raws)
    parsed: List[InboundEvent] = []
    for index, raw in enumerate(raws):
        try:
            parsed.append(parse_event(raw))
        except ValidationError as e:
            e.context["index"] = index
            logger.warning(f"Rejected event batch at index {index}: {e.message}")
            raise

    seen = set()
    stored = 0
    duplicates = 0
    for event in parsed:
        if event.event_id is not None:
            if event.event_id in seen or db.execute(
                select(RankEvent.id).where(RankEvent.event_id == event.event_id)
            ).first():
                duplicates += 1
                continue
            seen.add(event.event_id)
        db.add(event_to_row(event))
        stored += 1

    db.flush()
    logger.info(f"Ingested {stored} events ({duplicates} duplicates skipped)")
    return {"stored": stored, "duplicates": duplicates}
