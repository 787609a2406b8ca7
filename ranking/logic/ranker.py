"""
Ranker

Orders score records within a scope and assigns dense ranks, percentiles
and movement against the previous period.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from .contracts import StudentScoreRecord, RankEntry
from .constants import Scope, NATIONAL_SCOPE_ID
from .errors import ConsistencyViolation

ScopeKey = Tuple[Scope, str]


def tie_break_key(record: StudentScoreRecord) -> Tuple[float, datetime, str]:
    """Higher composite first, then earliest completion, then student id."""
    return (-record.composite_score, record.completed_at, record.student_id)


def rank_records(records: List[StudentScoreRecord]) -> List[StudentScoreRecord]:
    """
    Sort score records into rank order.

    Args:
        records: Score records for one scope

    Returns:
        Records sorted best first
    """
    return sorted(records, key=tie_break_key)


def calculate_percentile(rank: int, total: int) -> float:
    """Share of the scope ranked below this position, in percent."""
    if total <= 0:
        return 0.0
    return (total - rank) / total * 100


def verify_dense_ranking(entries: List[RankEntry]) -> None:
    """
    Check ranks form exactly {1..N} with one entry per student.

    Raises:
        ConsistencyViolation: duplicate rank, gap, duplicate student or bad total
    """
    total = len(entries)
    ranks = sorted(e.rank for e in entries)
    if ranks != list(range(1, total + 1)):
        raise ConsistencyViolation(
            "Ranks are not a contiguous 1..N sequence",
            {"total": total, "ranks_head": ranks[:10]},
        )

    students = {e.student_id for e in entries}
    if len(students) != total:
        raise ConsistencyViolation("A student holds more than one rank", {"total": total})

    if any(e.total_in_scope != total for e in entries):
        raise ConsistencyViolation("total_in_scope disagrees with entry count", {"total": total})


def assign_ranks(
    scope: Scope,
    scope_id: str,
    records: List[StudentScoreRecord],
    previous_ranks: Optional[Mapping[str, int]] = None,
    period_id: Optional[str] = None,
) -> List[RankEntry]:
    """
    Produce the RankEntry rows for one scope.

    Args:
        scope: Scope being ranked
        scope_id: College id, state or NATIONAL_SCOPE_ID
        records: Every score record in the scope for this period
        previous_ranks: student id -> rank in the previously published period
        period_id: Period the entries belong to

    Returns:
        Entries in rank order
    """
    previous_ranks = previous_ranks or {}
    ranked = rank_records(records)
    total = len(ranked)

    entries = [
        RankEntry(
            scope=scope,
            scope_id=scope_id,
            student_id=record.student_id,
            rank=position,
            percentile=calculate_percentile(position, total),
            previous_rank=previous_ranks.get(record.student_id),
            total_in_scope=total,
            composite_score=record.composite_score,
            period_id=period_id,
        )
        for position, record in enumerate(ranked, 1)
    ]

    verify_dense_ranking(entries)
    return entries


def assign_scopes(
    records: List[StudentScoreRecord],
    student_scopes: Mapping[str, Tuple[Optional[str], Optional[str]]],
) -> Dict[ScopeKey, List[StudentScoreRecord]]:
    """
    Group records by every scope their student belongs to.

    Every scored student is in the national scope; college and state scopes
    only when the student's profile names them.
    """
    grouped: Dict[ScopeKey, List[StudentScoreRecord]] = defaultdict(list)
    for record in records:
        grouped[(Scope.NATIONAL, NATIONAL_SCOPE_ID)].append(record)

        college_id, state = student_scopes.get(record.student_id, (None, None))
        if college_id:
            grouped[(Scope.COLLEGE, college_id)].append(record)
        if state:
            grouped[(Scope.STATE, state)].append(record)

    return dict(grouped)
