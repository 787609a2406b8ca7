"""
Scarcity Signal Calculator

Derives opportunity urgency metrics from the application event history:
volume, per-college counts, spots remaining, closing window and demand level.
"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from .contracts import (
    ApplicationEvent,
    ApplicationSubmittedEvent,
    ApplicationWithdrawnEvent,
    OfferAcceptedEvent,
    OpportunityFacts,
    OpportunityScarcitySnapshot,
    ScarcityView,
    SpotsClosing,
    TimeClosing,
)
from .classifier import classify_urgency, baseline_cutoffs, classify_demand
from .constants import (
    DemandLevel,
    DEFAULT_DEMAND_LEVEL,
    DEMAND_WINDOW_HOURS,
    IN_FLIGHT_SCORE_THRESHOLD,
    MIN_BASELINE_OPPORTUNITIES,
)
from .errors import InsufficientDataError

logger = logging.getLogger(__name__)

ACTIVE = "active"
ACCEPTED = "accepted"
WITHDRAWN = "withdrawn"


class ApplicationState(BaseModel):
    """Latest known state of one student's application to one opportunity."""
    student_id: str
    status: str = ACTIVE
    college_id: Optional[str] = None
    score_at_application: Optional[float] = None
    submitted_at: Optional[datetime] = None


class ApplicationSummary(BaseModel):
    opportunity_id: str
    total_applications: int = 0
    applications_from_college: Dict[str, int] = Field(default_factory=dict)
    applications_today: int = 0
    applications_this_week: int = 0
    submissions_in_window: int = 0
    accepted: int = 0
    in_flight_above_threshold: int = 0

    def velocity(self, window_hours: int = DEMAND_WINDOW_HOURS) -> float:
        """Applications per hour over the trailing window."""
        return self.submissions_in_window / window_hours


def replay_applications(events: List[ApplicationEvent]) -> Dict[str, ApplicationState]:
    """
    Replay lifecycle events into one state per applicant.

    Events are applied in (timestamp, arrival) order; a re-submission after a
    withdrawal reactivates the application.
    """
    states: Dict[str, ApplicationState] = {}
    for event in sorted(events, key=lambda e: e.timestamp):
        current = states.get(event.student_id)
        if isinstance(event, ApplicationSubmittedEvent):
            states[event.student_id] = ApplicationState(
                student_id=event.student_id,
                status=ACCEPTED if current is not None and current.status == ACCEPTED else ACTIVE,
                college_id=event.college_id,
                score_at_application=event.score_at_application,
                submitted_at=event.timestamp,
            )
        elif isinstance(event, ApplicationWithdrawnEvent):
            if current is not None:
                states[event.student_id] = current.model_copy(update={"status": WITHDRAWN})
        elif isinstance(event, OfferAcceptedEvent):
            if current is None:
                current = ApplicationState(student_id=event.student_id)
            states[event.student_id] = current.model_copy(update={"status": ACCEPTED})
    return states


def summarize_applications(
    opportunity_id: str,
    events: List[ApplicationEvent],
    as_of: datetime,
    window_hours: int = DEMAND_WINDOW_HOURS,
    in_flight_threshold: float = IN_FLIGHT_SCORE_THRESHOLD,
) -> ApplicationSummary:
    """
    Count applications for one opportunity as of the period cutoff.

    Args:
        opportunity_id: Opportunity being summarized
        events: That opportunity's lifecycle events up to `as_of`
        as_of: Period cutoff
    """
    events = [e for e in events if e.timestamp <= as_of]
    states = replay_applications(events)

    start_of_day = as_of.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = as_of - timedelta(days=7)
    window_start = as_of - timedelta(hours=window_hours)

    by_college: Dict[str, int] = defaultdict(int)
    summary = ApplicationSummary(opportunity_id=opportunity_id)

    for state in states.values():
        if state.status == WITHDRAWN:
            continue
        summary.total_applications += 1
        if state.college_id:
            by_college[state.college_id] += 1
        if state.submitted_at is not None:
            if state.submitted_at >= start_of_day:
                summary.applications_today += 1
            if state.submitted_at >= week_ago:
                summary.applications_this_week += 1
        if state.status == ACCEPTED:
            summary.accepted += 1
        elif (
            state.score_at_application is not None
            and state.score_at_application >= in_flight_threshold
        ):
            summary.in_flight_above_threshold += 1

    # Velocity counts every submission in the window, withdrawn or not
    summary.submissions_in_window = sum(
        1 for e in events
        if isinstance(e, ApplicationSubmittedEvent) and e.timestamp > window_start
    )
    summary.applications_from_college = dict(sorted(by_college.items()))
    return summary


def calculate_spots_remaining(
    total_spots: Optional[int],
    accepted: int,
    in_flight_above_threshold: int,
) -> Optional[int]:
    """max(0, totalSpots - accepted - inFlightAboveThreshold), None without a spot cap."""
    if total_spots is None:
        return None
    return max(0, total_spots - accepted - in_flight_above_threshold)


def calculate_scarcity(
    facts: OpportunityFacts,
    summary: ApplicationSummary,
    as_of: datetime,
    demand_level: DemandLevel = DEFAULT_DEMAND_LEVEL,
    window_hours: int = DEMAND_WINDOW_HOURS,
) -> OpportunityScarcitySnapshot:
    """Build the snapshot for one opportunity from its summary."""
    spots_remaining = calculate_spots_remaining(
        facts.total_spots, summary.accepted, summary.in_flight_above_threshold
    )

    hours_remaining: Optional[float] = None
    if facts.deadline is not None:
        hours_remaining = (facts.deadline - as_of).total_seconds() / 3600

    closing_in = None
    if hours_remaining is not None:
        closing_in = TimeClosing(hours=max(0, math.ceil(hours_remaining)))
    elif spots_remaining is not None:
        closing_in = SpotsClosing(count=spots_remaining)

    return OpportunityScarcitySnapshot(
        opportunity_id=facts.opportunity_id,
        total_applications=summary.total_applications,
        applications_from_college=summary.applications_from_college,
        spots_remaining=spots_remaining,
        closing_in=closing_in,
        urgency=classify_urgency(hours_remaining, spots_remaining),
        demand_level=demand_level,
        applications_today=summary.applications_today,
        applications_this_week=summary.applications_this_week,
        application_velocity=round(summary.velocity(window_hours), 6),
        as_of=as_of,
    )


def batch_calculate_scarcity(
    opportunities: List[OpportunityFacts],
    history: Mapping[str, List[ApplicationEvent]],
    as_of: datetime,
    window_hours: int = DEMAND_WINDOW_HOURS,
    min_baseline: int = MIN_BASELINE_OPPORTUNITIES,
) -> List[OpportunityScarcitySnapshot]:
    """
    Compute snapshots for every opportunity in one pass.

    Demand is judged against opportunities of the same category in this same
    pass, so the cutoffs move as the platform grows.

    Returns:
        Snapshots ordered by opportunity id
    """
    ordered = sorted(opportunities, key=lambda o: o.opportunity_id)
    summaries = {
        facts.opportunity_id: summarize_applications(
            facts.opportunity_id, history.get(facts.opportunity_id, []), as_of, window_hours
        )
        for facts in ordered
    }

    velocities_by_category: Dict[str, List[float]] = defaultdict(list)
    for facts in ordered:
        velocities_by_category[facts.category].append(
            summaries[facts.opportunity_id].velocity(window_hours)
        )

    cutoffs_by_category = {}
    for category, velocities in velocities_by_category.items():
        try:
            cutoffs_by_category[category] = baseline_cutoffs(velocities, min_baseline)
        except InsufficientDataError as e:
            logger.info(
                f"Demand baseline for '{category}' too small ({e.context.get('population')}), "
                f"defaulting to {DEFAULT_DEMAND_LEVEL.value}"
            )
            cutoffs_by_category[category] = None

    snapshots = []
    for facts in ordered:
        summary = summaries[facts.opportunity_id]
        cutoffs = cutoffs_by_category[facts.category]
        demand = (
            classify_demand(summary.velocity(window_hours), cutoffs)
            if cutoffs is not None
            else DEFAULT_DEMAND_LEVEL
        )
        snapshots.append(calculate_scarcity(facts, summary, as_of, demand, window_hours))

    return snapshots


def project_for_viewer(
    snapshot: OpportunityScarcitySnapshot,
    viewer_college_id: Optional[str],
) -> ScarcityView:
    """Per-viewer projection: look up the viewer's college in the raw counts."""
    from_your_college = 0
    if viewer_college_id:
        from_your_college = snapshot.applications_from_college.get(viewer_college_id, 0)
    return ScarcityView(
        **snapshot.model_dump(),
        viewer_college_id=viewer_college_id,
        applications_from_your_college=from_your_college,
    )
