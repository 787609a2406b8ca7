"""
Classifier

Classifies opportunity signals into display bands:
- Urgency (low / medium / high / critical) from time and spots remaining
- Demand level (low / medium / high / very_high) from application velocity
  against a baseline of comparable opportunities
"""

import statistics
from typing import Dict, List, Optional

from .constants import (
    DemandLevel,
    Urgency,
    URGENCY_HIGH_HOURS,
    URGENCY_HIGH_SPOTS,
    URGENCY_MEDIUM_HOURS,
    URGENCY_MEDIUM_SPOTS,
    DEMAND_PERCENTILE_CUTOFFS,
    MIN_BASELINE_OPPORTUNITIES,
)
from .errors import InsufficientDataError


def classify_urgency(
    hours_remaining: Optional[float],
    spots_remaining: Optional[int],
) -> Urgency:
    """
    Classify closing urgency. Either signal alone can raise the band.

    Args:
        hours_remaining: Hours until the deadline, None if no deadline
        spots_remaining: Spots left, None if the opportunity has no spot cap

    Returns:
        Urgency enum value
    """
    if (hours_remaining is not None and hours_remaining <= 0) or (
        spots_remaining is not None and spots_remaining <= 0
    ):
        return Urgency.CRITICAL

    if (hours_remaining is not None and hours_remaining < URGENCY_HIGH_HOURS) or (
        spots_remaining is not None and spots_remaining < URGENCY_HIGH_SPOTS
    ):
        return Urgency.HIGH

    if (hours_remaining is not None and hours_remaining < URGENCY_MEDIUM_HOURS) or (
        spots_remaining is not None and spots_remaining < URGENCY_MEDIUM_SPOTS
    ):
        return Urgency.MEDIUM

    return Urgency.LOW


def baseline_cutoffs(
    baseline_velocities: List[float],
    min_population: int = MIN_BASELINE_OPPORTUNITIES,
) -> Dict[DemandLevel, float]:
    """
    Velocity cutoffs at the configured percentiles of the baseline.

    Raises:
        InsufficientDataError: fewer than `min_population` comparable opportunities
    """
    if len(baseline_velocities) < max(2, min_population):
        raise InsufficientDataError(
            "Too few comparable opportunities for a demand baseline",
            {"population": len(baseline_velocities), "required": min_population},
        )

    # 99 cut points; index p-1 is the p-th percentile
    cut_points = statistics.quantiles(sorted(baseline_velocities), n=100, method="inclusive")
    return {
        level: cut_points[percentile - 1]
        for level, percentile in DEMAND_PERCENTILE_CUTOFFS.items()
    }


def classify_demand(velocity: float, cutoffs: Dict[DemandLevel, float]) -> DemandLevel:
    """
    Band a velocity against baseline cutoffs.

    A velocity must exceed a cutoff to reach its band, so an idle baseline
    (all zeros) classifies idle opportunities as low.
    """
    for level in (DemandLevel.VERY_HIGH, DemandLevel.HIGH, DemandLevel.MEDIUM):
        if velocity > cutoffs[level]:
            return level
    return DemandLevel.LOW
