"""Scarcity signals: spots remaining, closing window, urgency and demand."""

from datetime import timedelta

import pytest

from conftest import AS_OF
from ranking.logic.classifier import baseline_cutoffs, classify_demand, classify_urgency
from ranking.logic.constants import DemandLevel, Urgency
from ranking.logic.contracts import (
    ApplicationSubmittedEvent,
    ApplicationWithdrawnEvent,
    OfferAcceptedEvent,
    OpportunityFacts,
    SpotsClosing,
    TimeClosing,
)
from ranking.logic.errors import InsufficientDataError
from ranking.logic.scarcity import (
    batch_calculate_scarcity,
    calculate_scarcity,
    calculate_spots_remaining,
    project_for_viewer,
    summarize_applications,
)


def submitted(student_id, opportunity_id="opp-1", college_id="c1", score=None, at=AS_OF - timedelta(days=2)):
    return ApplicationSubmittedEvent(
        type="application_submitted",
        student_id=student_id,
        opportunity_id=opportunity_id,
        college_id=college_id,
        score_at_application=score,
        timestamp=at,
    )


def withdrawn(student_id, opportunity_id="opp-1", at=AS_OF - timedelta(days=1)):
    return ApplicationWithdrawnEvent(
        type="application_withdrawn", student_id=student_id, opportunity_id=opportunity_id, timestamp=at
    )


def accepted(student_id, opportunity_id="opp-1", at=AS_OF - timedelta(days=1)):
    return OfferAcceptedEvent(
        type="offer_accepted", student_id=student_id, opportunity_id=opportunity_id, timestamp=at
    )


def snapshot_for(facts, events, demand=DemandLevel.MEDIUM):
    summary = summarize_applications(facts.opportunity_id, events, AS_OF)
    return calculate_scarcity(facts, summary, AS_OF, demand)


# ---------------------------------------------------------------------------
# Spots and closing window
# ---------------------------------------------------------------------------


def test_ten_spots_eight_accepted_leaves_two_and_high_urgency():
    events = []
    for i in range(8):
        events += [submitted(f"s{i}"), accepted(f"s{i}")]

    snapshot = snapshot_for(OpportunityFacts(opportunity_id="opp-1", total_spots=10), events)

    assert snapshot.spots_remaining == 2
    assert snapshot.closing_in == SpotsClosing(count=2)
    assert snapshot.urgency == Urgency.HIGH


def test_strong_in_flight_applications_hold_spots():
    events = [submitted("a1"), accepted("a1"), submitted("a2"), accepted("a2")]
    events += [submitted(f"hi{i}", score=80.0) for i in range(3)]
    events += [submitted("exact", score=75.0), submitted("lo", score=60.0), submitted("none")]

    snapshot = snapshot_for(OpportunityFacts(opportunity_id="opp-1", total_spots=10), events)

    # 10 - 2 accepted - 4 in flight at or above 75
    assert snapshot.spots_remaining == 4
    assert snapshot.urgency == Urgency.MEDIUM


def test_spots_never_go_negative():
    assert calculate_spots_remaining(3, 2, 5) == 0
    assert calculate_spots_remaining(None, 2, 5) is None


def test_deadline_wins_over_spots_for_closing_window():
    facts = OpportunityFacts(
        opportunity_id="opp-1", total_spots=50, deadline=AS_OF + timedelta(hours=30)
    )
    snapshot = snapshot_for(facts, [])

    assert snapshot.closing_in == TimeClosing(hours=30)
    assert snapshot.urgency == Urgency.HIGH


def test_passed_deadline_is_critical():
    facts = OpportunityFacts(opportunity_id="opp-1", deadline=AS_OF - timedelta(hours=1))
    snapshot = snapshot_for(facts, [])

    assert snapshot.closing_in == TimeClosing(hours=0)
    assert snapshot.urgency == Urgency.CRITICAL


def test_open_ended_opportunity_has_no_closing_window():
    snapshot = snapshot_for(OpportunityFacts(opportunity_id="opp-1"), [submitted("s1")])
    assert snapshot.closing_in is None
    assert snapshot.spots_remaining is None
    assert snapshot.urgency == Urgency.LOW


@pytest.mark.parametrize("hours,spots,expected", [
    (None, 0, Urgency.CRITICAL),
    (0, None, Urgency.CRITICAL),
    (47.9, None, Urgency.HIGH),
    (None, 2, Urgency.HIGH),
    (48, None, Urgency.MEDIUM),
    (None, 9, Urgency.MEDIUM),
    (200, 3, Urgency.MEDIUM),
    (168, 10, Urgency.LOW),
    (None, None, Urgency.LOW),
])
def test_urgency_bands(hours, spots, expected):
    assert classify_urgency(hours, spots) == expected


# ---------------------------------------------------------------------------
# Application counts
# ---------------------------------------------------------------------------


def test_withdrawn_applications_are_not_counted():
    events = [
        submitted("s1", college_id="c1"),
        submitted("s2", college_id="c1"),
        submitted("s3", college_id="c2"),
        withdrawn("s2"),
    ]
    summary = summarize_applications("opp-1", events, AS_OF)

    assert summary.total_applications == 2
    assert summary.applications_from_college == {"c1": 1, "c2": 1}


def test_resubmission_after_withdrawal_counts_again():
    events = [
        submitted("s1", at=AS_OF - timedelta(days=3)),
        withdrawn("s1", at=AS_OF - timedelta(days=2)),
        submitted("s1", at=AS_OF - timedelta(days=1)),
    ]
    assert summarize_applications("opp-1", events, AS_OF).total_applications == 1


def test_today_week_and_velocity_windows():
    events = [
        submitted("today", at=AS_OF - timedelta(hours=2)),
        submitted("yesterday", at=AS_OF - timedelta(hours=20)),
        submitted("week", at=AS_OF - timedelta(days=5)),
        submitted("old", at=AS_OF - timedelta(days=10)),
        submitted("future", at=AS_OF + timedelta(hours=1)),
    ]
    summary = summarize_applications("opp-1", events, AS_OF, window_hours=24)

    assert summary.total_applications == 4
    assert summary.applications_today == 1
    assert summary.applications_this_week == 3
    assert summary.velocity(24) == pytest.approx(2 / 24)


def test_viewer_projection_uses_raw_college_counts():
    events = [submitted("s1", college_id="c1"), submitted("s2", college_id="c1"), submitted("s3", college_id="c2")]
    snapshot = snapshot_for(OpportunityFacts(opportunity_id="opp-1"), events)

    assert project_for_viewer(snapshot, "c1").applications_from_your_college == 2
    assert project_for_viewer(snapshot, "c9").applications_from_your_college == 0
    view = project_for_viewer(snapshot, None)
    assert view.applications_from_your_college == 0
    assert view.applications_from_college == {"c1": 2, "c2": 1}


# ---------------------------------------------------------------------------
# Demand
# ---------------------------------------------------------------------------


def test_demand_cutoffs_at_baseline_percentiles():
    cutoffs = baseline_cutoffs([float(v) for v in range(10)], min_population=10)

    assert cutoffs[DemandLevel.MEDIUM] == pytest.approx(4.5)
    assert cutoffs[DemandLevel.HIGH] == pytest.approx(7.2)
    assert cutoffs[DemandLevel.VERY_HIGH] == pytest.approx(8.55)

    assert classify_demand(9.0, cutoffs) == DemandLevel.VERY_HIGH
    assert classify_demand(8.0, cutoffs) == DemandLevel.HIGH
    assert classify_demand(5.0, cutoffs) == DemandLevel.MEDIUM
    assert classify_demand(4.0, cutoffs) == DemandLevel.LOW


def test_idle_baseline_classifies_idle_opportunities_low():
    cutoffs = baseline_cutoffs([0.0] * 12, min_population=10)
    assert classify_demand(0.0, cutoffs) == DemandLevel.LOW


def test_small_baseline_raises_insufficient_data():
    with pytest.raises(InsufficientDataError):
        baseline_cutoffs([1.0, 2.0, 3.0], min_population=10)


def test_small_baseline_defaults_demand_to_medium():
    opportunities = [OpportunityFacts(opportunity_id=f"opp-{i}") for i in range(3)]
    history = {"opp-0": [submitted(f"s{i}", "opp-0", at=AS_OF - timedelta(hours=1)) for i in range(20)]}

    snapshots = batch_calculate_scarcity(opportunities, history, AS_OF, min_baseline=10)

    assert [s.demand_level for s in snapshots] == [DemandLevel.MEDIUM] * 3


def test_demand_is_judged_within_category():
    opportunities = [OpportunityFacts(opportunity_id=f"eng-{i:02d}", category="engineering") for i in range(10)]
    opportunities.append(OpportunityFacts(opportunity_id="design-00", category="design"))
    history = {
        f"eng-{i:02d}": [
            submitted(f"s{j}", f"eng-{i:02d}", at=AS_OF - timedelta(hours=1)) for j in range(i)
        ]
        for i in range(10)
    }

    snapshots = {s.opportunity_id: s for s in batch_calculate_scarcity(opportunities, history, AS_OF, min_baseline=10)}

    assert snapshots["eng-09"].demand_level == DemandLevel.VERY_HIGH
    assert snapshots["eng-08"].demand_level == DemandLevel.HIGH
    assert snapshots["eng-05"].demand_level == DemandLevel.MEDIUM
    assert snapshots["eng-00"].demand_level == DemandLevel.LOW
    # A single design opportunity is too small a baseline
    assert snapshots["design-00"].demand_level == DemandLevel.MEDIUM
