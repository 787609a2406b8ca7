"""
Score Aggregator

Combines a student's assessment attempts into per-dimension scores and a
single composite score. Applies recency weighting, confidence and weight
renormalization for missing dimensions.
"""

import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from .contracts import AssessmentAttempt, DimensionResult, StudentScoreRecord
from .constants import (
    Dimension,
    DIMENSION_WEIGHTS,
    MIN_RAW_SCORE,
    MAX_RAW_SCORE,
    SCORE_HALF_LIFE_DAYS,
    MIN_SAMPLE_SIZE,
    WEIGHT_SUM_EPSILON,
)
from .errors import ValidationError

SECONDS_PER_DAY = 86400.0


def validate_attempt(student_id: str, attempt: AssessmentAttempt) -> None:
    """
    Reject malformed attempts. Scores are never clamped into range.

    Raises:
        ValidationError: score outside [0, 100], NaN/inf, or item count < 1
    """
    score = attempt.raw_score
    if not math.isfinite(score) or score < MIN_RAW_SCORE or score > MAX_RAW_SCORE:
        raise ValidationError(
            f"Raw score {score} out of range [{MIN_RAW_SCORE}, {MAX_RAW_SCORE}]",
            {"student_id": student_id, "dimension": attempt.dimension.value},
        )
    if attempt.item_count < 1:
        raise ValidationError(
            f"Item count must be positive, got {attempt.item_count}",
            {"student_id": student_id, "dimension": attempt.dimension.value},
        )


def decay_weight(timestamp: datetime, reference: datetime, half_life_days: float = SCORE_HALF_LIFE_DAYS) -> float:
    """Exponential decay: an attempt one half-life older than `reference` counts half as much."""
    age_days = max(0.0, (reference - timestamp).total_seconds() / SECONDS_PER_DAY)
    return 0.5 ** (age_days / half_life_days)


def score_dimension(
    dimension: Dimension,
    attempts: List[AssessmentAttempt],
    half_life_days: float = SCORE_HALF_LIFE_DAYS,
    min_sample_size: int = MIN_SAMPLE_SIZE,
) -> DimensionResult:
    """
    Recency-weighted mean and confidence for one dimension.

    Args:
        dimension: Dimension being scored
        attempts: Non-empty list of attempts in that dimension, none after
            the period cutoff

    Returns:
        DimensionResult
    """
    ordered = sorted(attempts, key=lambda a: (a.timestamp, a.raw_score, a.item_count))
    # Ages from the newest attempt: same mean as ages from the cutoff, and the
    # newest weight is always 1.0 so the total never underflows to zero
    newest = ordered[-1].timestamp
    weights = [decay_weight(a.timestamp, newest, half_life_days) for a in ordered]

    total_weight = math.fsum(weights)
    mean = math.fsum(w * a.raw_score for w, a in zip(weights, ordered)) / total_weight

    item_count = sum(a.item_count for a in ordered)
    confidence = min(1.0, item_count / min_sample_size)

    return DimensionResult(
        dimension=dimension,
        score=mean,
        confidence=confidence,
        attempt_count=len(ordered),
        item_count=item_count,
        latest_at=ordered[-1].timestamp,
    )


def renormalize_weights(
    present: List[Dimension],
    weights: Mapping[Dimension, float] = DIMENSION_WEIGHTS,
) -> Dict[Dimension, float]:
    """
    Weights for the dimensions a student actually has, rescaled to sum to 1.0.
    """
    if not present:
        return {}
    total = math.fsum(weights[d] for d in present)
    if abs(total - 1.0) <= WEIGHT_SUM_EPSILON:
        return {d: weights[d] for d in present}
    return {d: weights[d] / total for d in present}


def composite_from_dimensions(
    scores: Mapping[Dimension, Optional[float]],
    weights: Mapping[Dimension, float] = DIMENSION_WEIGHTS,
) -> Tuple[float, Dict[Dimension, float]]:
    """
    Weighted composite over the dimensions that have a score.

    Returns:
        (composite score, weights actually used)
    """
    present = [d for d in Dimension if scores.get(d) is not None]
    used = renormalize_weights(present, weights)
    composite = math.fsum(scores[d] * used[d] for d in present)
    return round(composite, 6), used


def recompute_composite(record: StudentScoreRecord) -> float:
    """Rebuild a published composite from its dimension scores, for audits."""
    composite, _ = composite_from_dimensions(
        {d: record.score_for(d) for d in Dimension}
    )
    return composite


def aggregate_scores(
    student_id: str,
    attempts: List[AssessmentAttempt],
    as_of: datetime,
    half_life_days: float = SCORE_HALF_LIFE_DAYS,
    min_sample_size: int = MIN_SAMPLE_SIZE,
) -> Optional[StudentScoreRecord]:
    """
    Compute a student's score record for the period ending at `as_of`.

    Attempts after `as_of` belong to a later period and are ignored.

    Returns:
        StudentScoreRecord, or None when the student has no attempts
        (such students are not ranked at all)
    """
    for attempt in attempts:
        validate_attempt(student_id, attempt)

    by_dimension: Dict[Dimension, List[AssessmentAttempt]] = defaultdict(list)
    for attempt in attempts:
        if attempt.timestamp <= as_of:
            by_dimension[attempt.dimension].append(attempt)

    if not by_dimension:
        return None

    results: Dict[Dimension, DimensionResult] = {
        dim: score_dimension(dim, dim_attempts, half_life_days, min_sample_size)
        for dim, dim_attempts in by_dimension.items()
    }

    # Composite comes from the stored, rounded dimension scores so that
    # recompute_composite() reproduces it exactly
    rounded = {dim: round(result.score, 6) for dim, result in results.items()}
    composite, used = composite_from_dimensions(rounded)

    def _score(dim: Dimension) -> Optional[float]:
        return rounded.get(dim)

    def _confidence(dim: Dimension) -> float:
        result = results.get(dim)
        return result.confidence if result else 0.0

    return StudentScoreRecord(
        student_id=student_id,
        technical_score=_score(Dimension.TECHNICAL),
        behavioral_score=_score(Dimension.BEHAVIORAL),
        contextual_score=_score(Dimension.CONTEXTUAL),
        technical_confidence=_confidence(Dimension.TECHNICAL),
        behavioral_confidence=_confidence(Dimension.BEHAVIORAL),
        contextual_confidence=_confidence(Dimension.CONTEXTUAL),
        composite_score=composite,
        weights_used={dim.value: weight for dim, weight in used.items()},
        attempt_count=sum(r.attempt_count for r in results.values()),
        completed_at=max(r.latest_at for r in results.values()),
        as_of=as_of,
    )


def batch_aggregate(
    attempts_by_student: Mapping[str, List[AssessmentAttempt]],
    as_of: datetime,
    half_life_days: float = SCORE_HALF_LIFE_DAYS,
    min_sample_size: int = MIN_SAMPLE_SIZE,
) -> List[StudentScoreRecord]:
    """
    Score every student in batch.

    Returns:
        Score records ordered by student id; students without attempts are omitted
    """
    records = []
    for student_id in sorted(attempts_by_student):
        record = aggregate_scores(
            student_id, attempts_by_student[student_id], as_of, half_life_days, min_sample_size
        )
        if record is not None:
            records.append(record)
    return records
