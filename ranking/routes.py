"""
Ranking API Routes

Exposes the ranking engine via REST API:
- POST /ranking/events                      event ingestion from the web tier
- GET  /ranking/ranks, /leaderboards, ...   reads of the published snapshots
- GET  /ranking/college-leaderboards        colleges by placement outcomes
- POST /ranking/jobs/{job_name}             cron triggers
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from db import get_db
from .jobs import JOBS, run_job
from .logic.constants import (
    APP_ENV,
    CRON_SECRET,
    CollegeMetric,
    CycleKind,
    DEFAULT_LEADERBOARD_LIMIT,
    DEFAULT_NEARBY_RANGE,
    ENGINE_VERSION,
    Scope,
)
from .logic.college_board import get_college_leaderboard
from .logic.contracts import RankEntry, ScarcityView
from .logic.errors import ValidationError
from .logic.ingestion import ingest_events
from .logic.reader import (
    get_cycle_history,
    get_leaderboard,
    get_nearby_competitors,
    get_rank,
    get_ranking_summary,
    get_scarcity,
)


router = APIRouter(prefix="/ranking", tags=["ranking"])


def _bad_request(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail=e.to_dict())


def get_session():
    """Request-scoped session: commits on success, rolls back on error."""
    with get_db() as db:
        yield db


def require_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """Job endpoints need the cron secret in production."""
    if APP_ENV == "production" and x_cron_secret != CRON_SECRET:
        raise HTTPException(status_code=401, detail="Invalid cron secret")


# =============================================================================
# INGESTION
# =============================================================================

@router.post("/events", summary="Append events to the ranking event log")
def post_events(
    payload: Union[Dict[str, Any], List[Dict[str, Any]]] = Body(...),
    db: Session = Depends(get_session),
):
    """
    Accepts one event or a list of events.

    Each event is `{type, studentId, opportunityId?, timestamp, payload}`;
    unknown types and invalid fields reject the whole request.
    """
    raws = payload if isinstance(payload, list) else [payload]
    try:
        counts = ingest_events(db, raws)
    except ValidationError as e:
        raise _bad_request(e)
    return counts


# =============================================================================
# LEADERBOARDS
# =============================================================================

@router.get("/ranks/{scope}/{scope_id}/{student_id}", summary="A student's rank in one scope")
def read_rank(scope: Scope, scope_id: str, student_id: str, db: Session = Depends(get_session)):
    lookup = get_rank(db, scope, scope_id, student_id)
    if lookup is None:
        raise HTTPException(status_code=404, detail="No published rank for this student and scope")
    return {
        **_serialize_entry(lookup.entry),
        "period_id": lookup.period_id,
        "last_updated": lookup.last_updated.isoformat(),
    }


@router.get("/leaderboards/{scope}/{scope_id}", summary="A page of a published leaderboard")
def read_leaderboard(
    scope: Scope,
    scope_id: str,
    limit: int = Query(DEFAULT_LEADERBOARD_LIMIT),
    offset: int = Query(0),
    db: Session = Depends(get_session),
):
    try:
        page = get_leaderboard(db, scope, scope_id, limit, offset)
    except ValidationError as e:
        raise _bad_request(e)
    if page is None:
        raise HTTPException(status_code=404, detail="No published leaderboard for this scope")
    return {
        "scope": page.scope.value,
        "scope_id": page.scope_id,
        "period_id": page.period_id,
        "last_updated": page.last_updated.isoformat(),
        "total_in_scope": page.total_in_scope,
        "limit": page.limit,
        "offset": page.offset,
        "entries": [_serialize_entry(e) for e in page.entries],
    }


@router.get(
    "/leaderboards/{scope}/{scope_id}/{student_id}/nearby",
    summary="Competitors ranked just above and below a student",
)
def read_nearby(
    scope: Scope,
    scope_id: str,
    student_id: str,
    range_size: int = Query(DEFAULT_NEARBY_RANGE, alias="range"),
    db: Session = Depends(get_session),
):
    try:
        nearby = get_nearby_competitors(db, scope, scope_id, student_id, range_size)
    except ValidationError as e:
        raise _bad_request(e)
    if nearby is None:
        raise HTTPException(status_code=404, detail="No published rank for this student and scope")
    return {
        "scope": nearby.scope.value,
        "scope_id": nearby.scope_id,
        "current": _serialize_entry(nearby.current),
        "above": [_serialize_entry(e) for e in nearby.above],
        "below": [_serialize_entry(e) for e in nearby.below],
        "last_updated": nearby.last_updated.isoformat(),
    }


@router.get("/students/{student_id}/summary", summary="A student's standing in every scope")
def read_ranking_summary(student_id: str, db: Session = Depends(get_session)):
    summary = get_ranking_summary(db, student_id)
    return summary.model_dump(mode="json")


@router.get("/college-leaderboards/{scope}/{scope_id}", summary="Colleges ranked by placements")
def read_college_leaderboard(
    scope: Scope,
    scope_id: str,
    metric: CollegeMetric = Query(CollegeMetric.PLACEMENTS),
    limit: int = Query(DEFAULT_LEADERBOARD_LIMIT),
    viewer_college_id: Optional[str] = Query(None),
    db: Session = Depends(get_session),
):
    try:
        board = get_college_leaderboard(db, scope, scope_id, metric, limit, viewer_college_id)
    except ValidationError as e:
        raise _bad_request(e)
    return board.model_dump(mode="json")


# =============================================================================
# SCARCITY
# =============================================================================

@router.get("/opportunities/{opportunity_id}/scarcity", summary="Scarcity signals for an opportunity")
def read_scarcity(
    opportunity_id: str,
    viewer_college_id: Optional[str] = Query(None),
    db: Session = Depends(get_session),
):
    view = get_scarcity(db, opportunity_id, viewer_college_id)
    if view is None:
        raise HTTPException(status_code=404, detail="No published scarcity snapshot for this opportunity")
    return _serialize_scarcity(view)


# =============================================================================
# JOBS
# =============================================================================

@router.post(
    "/jobs/{job_name}",
    summary="Run a scheduled job",
    dependencies=[Depends(require_cron_secret)],
)
def trigger_job(job_name: str):
    """Run one job inside the request with a single attempt, no backoff sleeps."""
    if job_name not in JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_name}")
    result = run_job(job_name, max_attempts=1)
    return result.model_dump(mode="json")


@router.get(
    "/jobs/history",
    summary="Recent computation cycles",
    dependencies=[Depends(require_cron_secret)],
)
def read_job_history(
    kind: Optional[CycleKind] = Query(None),
    limit: int = Query(20),
    db: Session = Depends(get_session),
):
    try:
        cycles = get_cycle_history(db, kind, limit)
    except ValidationError as e:
        raise _bad_request(e)
    return {
        "cycles": [
            {
                **cycle,
                "started_at": cycle["started_at"].isoformat() if cycle["started_at"] else None,
                "finished_at": cycle["finished_at"].isoformat() if cycle["finished_at"] else None,
            }
            for cycle in cycles
        ]
    }


def _serialize_entry(entry: RankEntry) -> Dict[str, Any]:
    """Convert RankEntry to JSON-serializable dict."""
    return {
        "scope": entry.scope.value,
        "scope_id": entry.scope_id,
        "student_id": entry.student_id,
        "rank": entry.rank,
        "percentile": round(entry.percentile, 2),
        "previous_rank": entry.previous_rank,
        "movement": entry.movement,
        "total_in_scope": entry.total_in_scope,
        "composite_score": entry.composite_score,
    }


def _serialize_scarcity(view: ScarcityView) -> Dict[str, Any]:
    return {
        "opportunity_id": view.opportunity_id,
        "total_applications": view.total_applications,
        "applications_from_your_college": view.applications_from_your_college,
        "viewer_college_id": view.viewer_college_id,
        "spots_remaining": view.spots_remaining,
        "closing_in": view.closing_in.model_dump() if view.closing_in else None,
        "urgency": view.urgency.value,
        "demand_level": view.demand_level.value,
        "applications_today": view.applications_today,
        "applications_this_week": view.applications_this_week,
        "application_velocity": view.application_velocity,
        "period_id": view.period_id,
        "last_updated": view.last_updated.isoformat() if view.last_updated else None,
    }


# =============================================================================
# HEALTH CHECK
# =============================================================================

@router.get("/health", summary="Ranking engine health check")
def health_check():
    """Check if ranking engine is operational."""
    return {"status": "ok", "engine": "ranking", "version": ENGINE_VERSION}
