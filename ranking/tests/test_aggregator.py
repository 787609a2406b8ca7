"""Score aggregation: recency weighting, confidence, renormalized composite."""

import math
from datetime import timedelta

import pytest

from conftest import AS_OF
from ranking.logic.aggregator import (
    aggregate_scores,
    batch_aggregate,
    composite_from_dimensions,
    decay_weight,
    recompute_composite,
    renormalize_weights,
)
from ranking.logic.constants import Dimension
from ranking.logic.contracts import AssessmentAttempt
from ranking.logic.errors import ValidationError
from ranking.logic.ranker import rank_records


def attempt(dimension, raw_score, timestamp=AS_OF, item_count=20):
    return AssessmentAttempt(
        dimension=dimension, raw_score=raw_score, timestamp=timestamp, item_count=item_count
    )


def profile(technical, behavioral, contextual):
    return [
        attempt(Dimension.TECHNICAL, technical),
        attempt(Dimension.BEHAVIORAL, behavioral),
        attempt(Dimension.CONTEXTUAL, contextual),
    ]


def test_weighted_composite_and_order():
    a = aggregate_scores("A", profile(90, 80, 70), AS_OF)
    b = aggregate_scores("B", profile(85, 85, 85), AS_OF)

    # 90*0.4 + 80*0.3 + 70*0.3
    assert a.composite_score == 81.0
    assert b.composite_score == 85.0
    assert [r.student_id for r in rank_records([a, b])] == ["B", "A"]


def test_missing_dimension_is_renormalized_not_zeroed():
    record = aggregate_scores(
        "s1",
        [attempt(Dimension.TECHNICAL, 90), attempt(Dimension.BEHAVIORAL, 60)],
        AS_OF,
    )

    assert record.contextual_score is None
    assert record.contextual_confidence == 0.0
    assert math.fsum(record.weights_used.values()) == pytest.approx(1.0)
    assert record.weights_used["technical"] == pytest.approx(0.4 / 0.7)
    assert record.composite_score == round((90 * 0.4 + 60 * 0.3) / 0.7, 6)


def test_single_dimension_composite_equals_that_score():
    record = aggregate_scores("s1", [attempt(Dimension.CONTEXTUAL, 50)], AS_OF)
    assert record.composite_score == 50.0
    assert record.weights_used == {"contextual": 1.0}


@pytest.mark.parametrize("present", [
    [Dimension.TECHNICAL],
    [Dimension.TECHNICAL, Dimension.CONTEXTUAL],
    [Dimension.BEHAVIORAL, Dimension.CONTEXTUAL],
    list(Dimension),
])
def test_renormalized_weights_sum_to_one(present):
    assert math.fsum(renormalize_weights(present).values()) == pytest.approx(1.0)


def test_recency_decay_halves_weight_each_half_life():
    assert decay_weight(AS_OF, AS_OF) == 1.0
    assert decay_weight(AS_OF - timedelta(days=30), AS_OF, half_life_days=30) == pytest.approx(0.5)

    record = aggregate_scores(
        "s1",
        [
            attempt(Dimension.TECHNICAL, 100),
            attempt(Dimension.TECHNICAL, 40, timestamp=AS_OF - timedelta(days=30)),
        ],
        AS_OF,
        half_life_days=30,
    )
    # (100*1 + 40*0.5) / 1.5
    assert record.technical_score == pytest.approx(80.0)


def test_very_old_attempts_with_short_half_life_still_score():
    three_years_ago = AS_OF - timedelta(days=3 * 365)
    # 0.5 ** 1095 underflows to 0.0 when measured from the cutoff
    assert decay_weight(three_years_ago, AS_OF, half_life_days=1) == 0.0

    only_old = aggregate_scores(
        "s1", [attempt(Dimension.TECHNICAL, 64, timestamp=three_years_ago)], AS_OF, half_life_days=1
    )
    assert only_old.technical_score == pytest.approx(64.0)
    assert only_old.composite_score == pytest.approx(64.0)

    mixed = aggregate_scores(
        "s1",
        [
            attempt(Dimension.TECHNICAL, 64, timestamp=three_years_ago),
            attempt(Dimension.TECHNICAL, 70, timestamp=three_years_ago - timedelta(days=1)),
        ],
        AS_OF,
        half_life_days=1,
    )
    # (64*1 + 70*0.5) / 1.5
    assert mixed.technical_score == pytest.approx(66.0)


def test_confidence_grows_with_item_count():
    low = aggregate_scores("s1", [attempt(Dimension.TECHNICAL, 70, item_count=5)] * 2, AS_OF, min_sample_size=20)
    full = aggregate_scores("s2", [attempt(Dimension.TECHNICAL, 70, item_count=30)], AS_OF, min_sample_size=20)

    assert low.technical_confidence == 0.5
    assert full.technical_confidence == 1.0


@pytest.mark.parametrize("raw_score", [-0.1, 100.5, float("nan"), float("inf")])
def test_out_of_range_scores_are_rejected(raw_score):
    with pytest.raises(ValidationError):
        aggregate_scores("s1", [attempt(Dimension.TECHNICAL, raw_score)], AS_OF)


def test_zero_item_count_is_rejected():
    with pytest.raises(ValidationError):
        aggregate_scores("s1", [attempt(Dimension.TECHNICAL, 50, item_count=0)], AS_OF)


def test_student_without_attempts_is_not_scored():
    assert aggregate_scores("s1", [], AS_OF) is None
    records = batch_aggregate({"s1": [], "s2": [attempt(Dimension.TECHNICAL, 60)]}, AS_OF)
    assert [r.student_id for r in records] == ["s2"]


def test_attempts_after_cutoff_belong_to_a_later_period():
    later = attempt(Dimension.TECHNICAL, 99, timestamp=AS_OF + timedelta(minutes=1))
    assert aggregate_scores("s1", [later], AS_OF) is None

    record = aggregate_scores("s1", [attempt(Dimension.TECHNICAL, 60), later], AS_OF)
    assert record.technical_score == 60.0
    assert record.attempt_count == 1


def test_completed_at_is_latest_counted_attempt():
    earlier = AS_OF - timedelta(days=2)
    record = aggregate_scores(
        "s1",
        [attempt(Dimension.TECHNICAL, 60, timestamp=earlier), attempt(Dimension.BEHAVIORAL, 70)],
        AS_OF,
    )
    assert record.completed_at == AS_OF


def test_composite_reproducible_from_dimensions():
    record = aggregate_scores(
        "s1",
        [
            attempt(Dimension.TECHNICAL, 77.3),
            attempt(Dimension.TECHNICAL, 64.9, timestamp=AS_OF - timedelta(days=11)),
            attempt(Dimension.BEHAVIORAL, 58.1, timestamp=AS_OF - timedelta(days=3)),
            attempt(Dimension.CONTEXTUAL, 91.7, timestamp=AS_OF - timedelta(days=40)),
        ],
        AS_OF,
    )
    assert recompute_composite(record) == record.composite_score


def test_composite_ignores_absent_dimensions():
    composite, used = composite_from_dimensions({Dimension.TECHNICAL: 80.0, Dimension.BEHAVIORAL: None})
    assert composite == 80.0
    assert used == {Dimension.TECHNICAL: 1.0}
