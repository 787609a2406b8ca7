"""
Output Assembler

Turns published rank entries into the standing shown on the leaderboard
screen: movement since last period, the gap to the next spot and to the
top 10%, and a motivational line.
"""

import math
from typing import Optional

from .contracts import RankEntry, RankLookup, ScopeStanding
from .constants import TOP_PERCENT_TARGET


def movement_message(entry: RankEntry) -> str:
    """
    One-line summary of rank movement since the previous period.

    Args:
        entry: The student's current entry

    Returns:
        Display message
    """
    movement = entry.movement
    if movement == "new":
        return "🆕 New on the leaderboard this period!"
    if movement > 0:
        return f"🚀 You moved up {movement} spot{'s' if movement > 1 else ''} this period!"
    if movement < 0:
        dropped = abs(movement)
        return f"⚠️ You dropped {dropped} spot{'s' if dropped > 1 else ''}. Time to catch up!"
    return "➡️ Holding steady! Keep pushing to climb higher."


def top_share(rank: int, total: int) -> float:
    """Which top-N% of the scope this rank falls in (rank 1 of 100 -> 1.0)."""
    if total <= 0:
        return 100.0
    return rank / total * 100


def motivational_message(rank: int, total: int, points_to_next: float) -> str:
    share = top_share(rank, total)
    if rank == 1 or share <= 1:
        return "🏆 You're in the top 1%! Legendary status!"
    if share <= 5:
        return f"⭐ Top 5%! Just {points_to_next:g} points to reach top 1%!"
    if share <= 10:
        return f"🔥 Top 10%! {points_to_next:g} points to break into top 5%!"
    if share <= 25:
        return f"📈 Top 25%! {points_to_next:g} points to reach top 10%!"
    if share <= 50:
        return f"💪 Above average! {points_to_next:g} points to reach top 25%!"
    return f"🚀 Keep going! {points_to_next:g} points to climb higher!"


def points_gap(target: Optional[RankEntry], entry: RankEntry) -> float:
    """Composite points separating `entry` from `target`, 0 if already level or ahead."""
    if target is None or target.rank >= entry.rank:
        return 0.0
    return max(0.0, round(target.composite_score - entry.composite_score, 2))


def top_percent_rank(total: int, percent: int = TOP_PERCENT_TARGET) -> int:
    """Lowest rank still inside the top `percent` of a scope."""
    return max(1, math.ceil(total * percent / 100))


def assemble_standing(
    lookup: RankLookup,
    entry_above: Optional[RankEntry],
    threshold_entry: Optional[RankEntry],
) -> ScopeStanding:
    """
    Build the standing for one scope.

    Args:
        lookup: The student's published entry
        entry_above: Entry one rank higher, None for rank 1
        threshold_entry: Entry at the top-10% cutoff rank

    Returns:
        ScopeStanding
    """
    entry = lookup.entry
    points_to_next = points_gap(entry_above, entry)
    points_to_top = points_gap(threshold_entry, entry)

    return ScopeStanding(
        scope=entry.scope,
        scope_id=entry.scope_id,
        rank=entry.rank,
        percentile=entry.percentile,
        total_in_scope=entry.total_in_scope,
        composite_score=entry.composite_score,
        previous_rank=entry.previous_rank,
        movement=entry.movement,
        movement_message=movement_message(entry),
        points_to_next=points_to_next,
        points_to_top_percent=points_to_top,
        motivational_message=motivational_message(
            entry.rank, entry.total_in_scope, points_to_next or points_to_top
        ),
        period_id=lookup.period_id,
        last_updated=lookup.last_updated,
    )
