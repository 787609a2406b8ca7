"""
Snapshot Reader

Read operations behind the leaderboard and opportunity screens. Every read
resolves the current cycle through the period pointer, so callers see the
last published snapshot and never a cycle that is still being written.
"""

from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ranking.models import (
    RankComputationCycle,
    RankLeaderboardEntry,
    RankPeriodPointer,
    RankScarcitySnapshot,
    RankScoreRecord,
    RankStudent,
)
from .contracts import (
    LeaderboardPage,
    NearbyCompetitors,
    OpportunityScarcitySnapshot,
    RankEntry,
    RankLookup,
    RankingSummary,
    ScarcityView,
    SpotsClosing,
    StudentScoreRecord,
    TimeClosing,
)
from .constants import (
    CycleKind,
    DemandLevel,
    Scope,
    Urgency,
    NATIONAL_SCOPE_ID,
    PLATFORM_SCOPE,
    DEFAULT_LEADERBOARD_LIMIT,
    MAX_LEADERBOARD_LIMIT,
    DEFAULT_NEARBY_RANGE,
    TOP_PERCENT_TARGET,
)
from .errors import ValidationError
from .output_assembler import assemble_standing, top_percent_rank
from .publisher import get_pointer
from .scarcity import project_for_viewer


# =============================================================================
# ROW CONVERSION
# =============================================================================

def score_row_to_record(row: RankScoreRecord) -> StudentScoreRecord:
    return StudentScoreRecord(
        student_id=row.student_id,
        technical_score=row.technical_score,
        behavioral_score=row.behavioral_score,
        contextual_score=row.contextual_score,
        technical_confidence=row.technical_confidence,
        behavioral_confidence=row.behavioral_confidence,
        contextual_confidence=row.contextual_confidence,
        composite_score=row.composite_score,
        weights_used=row.weights_used,
        attempt_count=row.attempt_count,
        completed_at=row.completed_at,
        as_of=row.as_of,
    )


def entry_row_to_rank_entry(row: RankLeaderboardEntry) -> RankEntry:
    return RankEntry(
        scope=Scope(row.scope),
        scope_id=row.scope_id,
        student_id=row.student_id,
        rank=row.rank,
        percentile=row.percentile,
        previous_rank=row.previous_rank,
        total_in_scope=row.total_in_scope,
        composite_score=row.composite_score,
        period_id=row.period_id,
    )


def scarcity_row_to_snapshot(row: RankScarcitySnapshot) -> OpportunityScarcitySnapshot:
    closing_in = None
    if row.closing_type == "time":
        closing_in = TimeClosing(hours=row.closing_value)
    elif row.closing_type == "spots":
        closing_in = SpotsClosing(count=row.closing_value)

    return OpportunityScarcitySnapshot(
        opportunity_id=row.opportunity_id,
        total_applications=row.total_applications,
        applications_from_college=row.applications_from_college or {},
        spots_remaining=row.spots_remaining,
        closing_in=closing_in,
        urgency=Urgency(row.urgency),
        demand_level=DemandLevel(row.demand_level),
        applications_today=row.applications_today,
        applications_this_week=row.applications_this_week,
        application_velocity=row.application_velocity,
        as_of=row.as_of,
    )


# =============================================================================
# SCORES
# =============================================================================

def load_published_scores(db: Session, cycle_id: int) -> List[StudentScoreRecord]:
    """Score records of one cycle, ordered by student id."""
    rows = db.execute(
        select(RankScoreRecord)
        .where(RankScoreRecord.cycle_id == cycle_id)
        .order_by(RankScoreRecord.student_id)
    ).scalars()
    return [score_row_to_record(row) for row in rows]


def load_ranks(db: Session, cycle_id: Optional[int]) -> Dict[str, int]:
    """student id -> rank for one cycle; empty when there is no cycle."""
    if cycle_id is None:
        return {}
    rows = db.execute(
        select(RankLeaderboardEntry.student_id, RankLeaderboardEntry.rank)
        .where(RankLeaderboardEntry.cycle_id == cycle_id)
    ).all()
    return {student_id: rank for student_id, rank in rows}


# =============================================================================
# LEADERBOARDS
# =============================================================================

def _rank_pointer(db: Session, scope: Scope, scope_id: str) -> Optional[RankPeriodPointer]:
    return get_pointer(db, CycleKind.RANKS, Scope(scope).value, scope_id)


def _entries_at(db: Session, cycle_id: int, first_rank: int, last_rank: int) -> List[RankEntry]:
    rows = db.execute(
        select(RankLeaderboardEntry)
        .where(RankLeaderboardEntry.cycle_id == cycle_id)
        .where(RankLeaderboardEntry.rank >= first_rank)
        .where(RankLeaderboardEntry.rank <= last_rank)
        .order_by(RankLeaderboardEntry.rank)
    ).scalars()
    return [entry_row_to_rank_entry(row) for row in rows]


def _entries_with_ranks(db: Session, cycle_id: int, ranks: List[int]) -> Dict[int, RankEntry]:
    rows = db.execute(
        select(RankLeaderboardEntry)
        .where(RankLeaderboardEntry.cycle_id == cycle_id)
        .where(RankLeaderboardEntry.rank.in_(ranks))
    ).scalars()
    return {row.rank: entry_row_to_rank_entry(row) for row in rows}


def _entry_for(db: Session, cycle_id: int, student_id: str) -> Optional[RankEntry]:
    row = db.execute(
        select(RankLeaderboardEntry)
        .where(RankLeaderboardEntry.cycle_id == cycle_id)
        .where(RankLeaderboardEntry.student_id == student_id)
    ).scalar_one_or_none()
    return entry_row_to_rank_entry(row) if row else None


def get_rank(db: Session, scope: Scope, scope_id: str, student_id: str) -> Optional[RankLookup]:
    """
    A student's published rank in one scope.

    Returns:
        RankLookup, or None when the scope was never published or the
        student is not ranked in it
    """
    pointer = _rank_pointer(db, scope, scope_id)
    if pointer is None:
        return None
    entry = _entry_for(db, pointer.cycle_id, student_id)
    if entry is None:
        return None
    return RankLookup(entry=entry, period_id=pointer.period_id, last_updated=pointer.published_at)


def get_leaderboard(
    db: Session,
    scope: Scope,
    scope_id: str,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
    offset: int = 0,
) -> Optional[LeaderboardPage]:
    """
    One page of a published leaderboard, best rank first.

    Raises:
        ValidationError: limit outside [1, MAX_LEADERBOARD_LIMIT] or negative offset
    """
    if limit < 1 or limit > MAX_LEADERBOARD_LIMIT:
        raise ValidationError(
            f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}", {"limit": limit}
        )
    if offset < 0:
        raise ValidationError("offset must not be negative", {"offset": offset})

    pointer = _rank_pointer(db, scope, scope_id)
    if pointer is None:
        return None

    total = db.execute(
        select(func.count(RankLeaderboardEntry.id))
        .where(RankLeaderboardEntry.cycle_id == pointer.cycle_id)
    ).scalar_one()

    return LeaderboardPage(
        scope=Scope(scope),
        scope_id=scope_id,
        period_id=pointer.period_id,
        last_updated=pointer.published_at,
        total_in_scope=total,
        limit=limit,
        offset=offset,
        entries=_entries_at(db, pointer.cycle_id, offset + 1, offset + limit),
    )


def get_nearby_competitors(
    db: Session,
    scope: Scope,
    scope_id: str,
    student_id: str,
    range_size: int = DEFAULT_NEARBY_RANGE,
) -> Optional[NearbyCompetitors]:
    """Entries up to `range_size` ranks above and below the student."""
    if range_size < 1 or range_size > MAX_LEADERBOARD_LIMIT:
        raise ValidationError(
            f"range must be between 1 and {MAX_LEADERBOARD_LIMIT}", {"range": range_size}
        )

    pointer = _rank_pointer(db, scope, scope_id)
    if pointer is None:
        return None
    current = _entry_for(db, pointer.cycle_id, student_id)
    if current is None:
        return None

    window = _entries_at(
        db, pointer.cycle_id, max(1, current.rank - range_size), current.rank + range_size
    )
    return NearbyCompetitors(
        scope=Scope(scope),
        scope_id=scope_id,
        current=current,
        above=[e for e in window if e.rank < current.rank],
        below=[e for e in window if e.rank > current.rank],
        last_updated=pointer.published_at,
    )


def student_scopes(db: Session, student_id: str) -> List[Tuple[Scope, str]]:
    """Scopes a student can appear in, narrowest first."""
    scopes: List[Tuple[Scope, str]] = []
    profile = db.get(RankStudent, student_id)
    if profile is not None:
        if profile.college_id:
            scopes.append((Scope.COLLEGE, profile.college_id))
        if profile.state:
            scopes.append((Scope.STATE, profile.state))
    scopes.append((Scope.NATIONAL, NATIONAL_SCOPE_ID))
    return scopes


def get_ranking_summary(db: Session, student_id: str) -> RankingSummary:
    """
    The student's standing in each of their scopes.

    Scopes the student is not ranked in are left out, so a student without
    any published rank gets an empty summary.
    """
    summary = RankingSummary(student_id=student_id)
    for scope, scope_id in student_scopes(db, student_id):
        lookup = get_rank(db, scope, scope_id, student_id)
        if lookup is None:
            continue

        entry = lookup.entry
        pointer = _rank_pointer(db, scope, scope_id)
        threshold_rank = top_percent_rank(entry.total_in_scope, TOP_PERCENT_TARGET)
        wanted = sorted({r for r in (entry.rank - 1, threshold_rank) if 1 <= r < entry.rank})
        neighbours = _entries_with_ranks(db, pointer.cycle_id, wanted) if wanted else {}

        summary.standings.append(assemble_standing(
            lookup,
            entry_above=neighbours.get(entry.rank - 1),
            threshold_entry=neighbours.get(threshold_rank),
        ))
    return summary


# =============================================================================
# SCARCITY
# =============================================================================

def get_scarcity(
    db: Session,
    opportunity_id: str,
    viewer_college_id: Optional[str] = None,
) -> Optional[ScarcityView]:
    """
    Latest published scarcity signals for an opportunity, projected for the viewer.

    Returns:
        ScarcityView, or None when no published snapshot covers the opportunity
    """
    pointer = get_pointer(db, CycleKind.SCARCITY, PLATFORM_SCOPE, NATIONAL_SCOPE_ID)
    if pointer is None:
        return None

    row = db.execute(
        select(RankScarcitySnapshot)
        .where(RankScarcitySnapshot.cycle_id == pointer.cycle_id)
        .where(RankScarcitySnapshot.opportunity_id == opportunity_id)
    ).scalar_one_or_none()
    if row is None:
        return None

    view = project_for_viewer(scarcity_row_to_snapshot(row), viewer_college_id)
    return view.model_copy(update={
        "period_id": pointer.period_id,
        "last_updated": pointer.published_at,
    })


# =============================================================================
# CYCLE HISTORY
# =============================================================================

def get_cycle_history(
    db: Session,
    kind: Optional[CycleKind] = None,
    limit: int = 20,
) -> List[Dict[str, object]]:
    """Most recent computation cycles, newest first, for the admin job view."""
    if limit < 1 or limit > MAX_LEADERBOARD_LIMIT:
        raise ValidationError(
            f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}", {"limit": limit}
        )

    stmt = select(RankComputationCycle).order_by(RankComputationCycle.id.desc()).limit(limit)
    if kind is not None:
        stmt = stmt.where(RankComputationCycle.kind == CycleKind(kind).value)

    return [
        {
            "cycle_id": cycle.id,
            "kind": cycle.kind,
            "scope": cycle.scope,
            "scope_id": cycle.scope_id,
            "period_id": cycle.period_id,
            "attempt": cycle.attempt,
            "status": cycle.status,
            "row_count": cycle.row_count,
            "output_digest": cycle.output_digest,
            "error": cycle.error,
            "started_at": cycle.started_at,
            "finished_at": cycle.finished_at,
        }
        for cycle in db.execute(stmt).scalars()
    ]
