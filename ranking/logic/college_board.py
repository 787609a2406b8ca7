"""
College Leaderboard

Ranks colleges by placement outcomes, nationally or within one state.
Placements come straight from offer_accepted events and the student scope
table at read time, so this board has no computation cycle of its own.
"""

import math
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from .contracts import CollegeGap, CollegeLeaderboard, CollegeStanding, to_naive_utc
from .constants import (
    CollegeMetric,
    Scope,
    NATIONAL_SCOPE_ID,
    DEFAULT_LEADERBOARD_LIMIT,
    MAX_LEADERBOARD_LIMIT,
)
from .errors import ValidationError
from .event_store import load_college_placements


def metric_value(standing: CollegeStanding, metric: CollegeMetric) -> float:
    if metric == CollegeMetric.PLACEMENT_RATE:
        return standing.placement_rate
    return float(standing.placements)


def rank_colleges(
    stats: Dict[str, Tuple[int, int]],
    metric: CollegeMetric = CollegeMetric.PLACEMENTS,
) -> List[CollegeStanding]:
    """
    Order colleges by the metric, best first.

    Args:
        stats: college_id -> (students, placed students)
        metric: Ordering metric

    Returns:
        CollegeStanding list with ranks 1..N; ties broken by placements,
        then college id
    """
    standings = [
        CollegeStanding(
            rank=1,
            college_id=college_id,
            placements=placed,
            students=students,
            placement_rate=round(placed / students * 100, 2) if students else 0.0,
        )
        for college_id, (students, placed) in stats.items()
    ]
    standings.sort(key=lambda s: (-metric_value(s, metric), -s.placements, s.college_id))
    return [s.model_copy(update={"rank": i}) for i, s in enumerate(standings, start=1)]


def gap_to_next(
    standings: List[CollegeStanding],
    college_id: Optional[str],
    metric: CollegeMetric,
) -> Tuple[Optional[int], Optional[CollegeGap]]:
    """The viewer college's rank and how much it needs to pass the college above."""
    for i, standing in enumerate(standings):
        if standing.college_id != college_id:
            continue
        if i == 0:
            return standing.rank, None
        above = standings[i - 1]
        diff = metric_value(above, metric) - metric_value(standing, metric)
        return standing.rank, CollegeGap(college_id=above.college_id, gap=math.ceil(diff) + 1)
    return None, None


def get_college_leaderboard(
    db: Session,
    scope: Scope = Scope.NATIONAL,
    scope_id: str = NATIONAL_SCOPE_ID,
    metric: CollegeMetric = CollegeMetric.PLACEMENTS,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
    viewer_college_id: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> CollegeLeaderboard:
    """
    Top colleges nationally or within a state.

    Raises:
        ValidationError: college scope, or limit outside 1..100
    """
    scope = Scope(scope)
    if scope == Scope.COLLEGE:
        raise ValidationError("College leaderboards are national or per state", {"scope": scope.value})
    if limit < 1 or limit > MAX_LEADERBOARD_LIMIT:
        raise ValidationError(
            f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}", {"limit": limit}
        )

    as_of = to_naive_utc(as_of) if as_of else datetime.utcnow()
    metric = CollegeMetric(metric)
    stats = load_college_placements(db, as_of, state=scope_id if scope == Scope.STATE else None)
    standings = rank_colleges(stats, metric)
    your_rank, gap = gap_to_next(standings, viewer_college_id, metric)

    return CollegeLeaderboard(
        scope=scope,
        scope_id=scope_id,
        metric=metric,
        total_colleges=len(standings),
        entries=standings[:limit],
        your_college_rank=your_rank,
        gap_to_next=gap,
        as_of=as_of,
    )
