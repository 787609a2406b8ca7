"""
Data Contracts for the Ranking Engine

Defines Pydantic models for inbound events (input), the records the engine
computes, and the read-side views handed to the API layer.
"""

from datetime import datetime, timezone
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .constants import Dimension, Scope, DemandLevel, Urgency, CycleKind, CycleStatus, CollegeMetric


def to_naive_utc(value: datetime) -> datetime:
    """Store every timestamp as naive UTC, the way the database keeps them."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# INBOUND EVENTS
# =============================================================================

class _EventBase(BaseModel):
    """
    Common envelope of every inbound event.

    Accepts camelCase or snake_case keys, and either a flat body or the
    web tier's `{type, studentId, timestamp, payload: {...}}` shape.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    event_id: Optional[str] = Field(default=None, max_length=64)
    timestamp: datetime

    @model_validator(mode="before")
    @classmethod
    def _flatten_payload(cls, data):
        if isinstance(data, dict) and isinstance(data.get("payload"), dict):
            merged = {k: v for k, v in data.items() if k != "payload"}
            for key, value in data["payload"].items():
                merged.setdefault(key, value)
            return merged
        return data

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class AssessmentCompletedEvent(_EventBase):
    type: Literal["assessment_completed"]
    student_id: str = Field(min_length=1, max_length=64)
    dimension: Dimension
    raw_score: float = Field(ge=0.0, le=100.0, allow_inf_nan=False)
    item_count: int = Field(ge=1)


class ApplicationSubmittedEvent(_EventBase):
    type: Literal["application_submitted"]
    student_id: str = Field(min_length=1, max_length=64)
    opportunity_id: str = Field(min_length=1, max_length=64)
    college_id: Optional[str] = Field(default=None, max_length=64)
    # Applicant's composite score when they applied
    score_at_application: Optional[float] = Field(default=None, ge=0.0, le=100.0, allow_inf_nan=False)


class ApplicationWithdrawnEvent(_EventBase):
    type: Literal["application_withdrawn"]
    student_id: str = Field(min_length=1, max_length=64)
    opportunity_id: str = Field(min_length=1, max_length=64)


class OfferAcceptedEvent(_EventBase):
    type: Literal["offer_accepted"]
    student_id: str = Field(min_length=1, max_length=64)
    opportunity_id: str = Field(min_length=1, max_length=64)


InboundEvent = Annotated[
    Union[
        AssessmentCompletedEvent,
        ApplicationSubmittedEvent,
        ApplicationWithdrawnEvent,
        OfferAcceptedEvent,
    ],
    Field(discriminator="type"),
]

ApplicationEvent = Union[ApplicationSubmittedEvent, ApplicationWithdrawnEvent, OfferAcceptedEvent]

EVENT_TYPES = (
    "assessment_completed",
    "application_submitted",
    "application_withdrawn",
    "offer_accepted",
)


# =============================================================================
# SCORE AGGREGATION
# =============================================================================

class AssessmentAttempt(BaseModel):
    """One (dimension, rawScore, timestamp, itemCount) tuple for a student."""
    dimension: Dimension
    raw_score: float
    timestamp: datetime
    item_count: int

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_event(cls, event: AssessmentCompletedEvent) -> "AssessmentAttempt":
        return cls(
            dimension=event.dimension,
            raw_score=event.raw_score,
            timestamp=event.timestamp,
            item_count=event.item_count,
        )


class DimensionResult(BaseModel):
    """Recency-weighted mean and confidence for one dimension."""
    dimension: Dimension
    score: float
    confidence: float
    attempt_count: int
    item_count: int
    latest_at: datetime


class StudentScoreRecord(BaseModel):
    """
    Composite score for one student in one period.
    Immutable: a later period supersedes it with a new record.
    """
    model_config = ConfigDict(frozen=True)

    student_id: str

    technical_score: Optional[float] = None
    behavioral_score: Optional[float] = None
    contextual_score: Optional[float] = None

    technical_confidence: float = 0.0
    behavioral_confidence: float = 0.0
    contextual_confidence: float = 0.0

    composite_score: float
    # Renormalized weights actually applied, keyed by dimension value
    weights_used: Dict[str, float]
    attempt_count: int
    # Tie-break timestamp: when the student's latest counted attempt finished
    completed_at: datetime
    as_of: datetime

    def score_for(self, dimension: Dimension) -> Optional[float]:
        return getattr(self, f"{dimension.value}_score")

    def confidence_for(self, dimension: Dimension) -> float:
        return getattr(self, f"{dimension.value}_confidence")


# =============================================================================
# RANKING
# =============================================================================

class RankEntry(BaseModel):
    """One student's position within a scope for a period."""
    model_config = ConfigDict(frozen=True)

    scope: Scope
    scope_id: str
    student_id: str
    rank: int = Field(ge=1)
    percentile: float
    previous_rank: Optional[int] = None
    total_in_scope: int = Field(ge=1)
    composite_score: float
    period_id: Optional[str] = None

    @property
    def movement(self) -> Union[int, str]:
        """Spots gained since the previous period (negative = dropped), or "new"."""
        if self.previous_rank is None:
            return "new"
        return self.previous_rank - self.rank


class RankLookup(BaseModel):
    """A published rank plus when its period went live."""
    entry: RankEntry
    period_id: str
    last_updated: datetime


class LeaderboardPage(BaseModel):
    scope: Scope
    scope_id: str
    period_id: str
    last_updated: datetime
    total_in_scope: int
    limit: int
    offset: int
    entries: List[RankEntry] = Field(default_factory=list)


class NearbyCompetitors(BaseModel):
    scope: Scope
    scope_id: str
    current: RankEntry
    above: List[RankEntry] = Field(default_factory=list)
    below: List[RankEntry] = Field(default_factory=list)
    last_updated: datetime


class ScopeStanding(BaseModel):
    """A student's standing in one scope, with the gap signals shown next to it."""
    scope: Scope
    scope_id: str
    rank: int
    percentile: float
    total_in_scope: int
    composite_score: float
    previous_rank: Optional[int] = None
    movement: Union[int, str]
    movement_message: str
    points_to_next: float = 0.0
    points_to_top_percent: float = 0.0
    motivational_message: str
    period_id: str
    last_updated: datetime


class RankingSummary(BaseModel):
    student_id: str
    standings: List[ScopeStanding] = Field(default_factory=list)


class CollegeStanding(BaseModel):
    rank: int
    college_id: str
    placements: int
    students: int
    # Percent of the college's students with an accepted offer
    placement_rate: float


class CollegeGap(BaseModel):
    """What the viewer's college needs to pass the one ranked above it."""
    college_id: str
    gap: int


class CollegeLeaderboard(BaseModel):
    scope: Scope
    scope_id: str
    metric: CollegeMetric
    total_colleges: int
    entries: List[CollegeStanding] = Field(default_factory=list)
    your_college_rank: Optional[int] = None
    gap_to_next: Optional[CollegeGap] = None
    as_of: datetime


# =============================================================================
# SCARCITY
# =============================================================================

class TimeClosing(BaseModel):
    type: Literal["time"] = "time"
    hours: int = Field(ge=0)


class SpotsClosing(BaseModel):
    type: Literal["spots"] = "spots"
    count: int = Field(ge=0)


ClosingIn = Annotated[Union[TimeClosing, SpotsClosing], Field(discriminator="type")]


class OpportunityFacts(BaseModel):
    """Static opportunity attributes owned by the web tier."""
    opportunity_id: str
    category: str = "general"
    total_spots: Optional[int] = None
    deadline: Optional[datetime] = None
    published_at: Optional[datetime] = None


class OpportunityScarcitySnapshot(BaseModel):
    opportunity_id: str
    total_applications: int = 0
    # Raw counts per applicant college; projected per viewer at read time
    applications_from_college: Dict[str, int] = Field(default_factory=dict)
    spots_remaining: Optional[int] = None
    closing_in: Optional[ClosingIn] = None
    urgency: Urgency = Urgency.LOW
    demand_level: DemandLevel = DemandLevel.MEDIUM

    applications_today: int = 0
    applications_this_week: int = 0
    application_velocity: float = 0.0
    as_of: datetime


class ScarcityView(OpportunityScarcitySnapshot):
    """Snapshot projected for one viewing student."""
    viewer_college_id: Optional[str] = None
    applications_from_your_college: int = 0
    period_id: Optional[str] = None
    last_updated: Optional[datetime] = None


# =============================================================================
# CYCLES & JOBS
# =============================================================================

class CycleResult(BaseModel):
    cycle_id: int
    kind: CycleKind
    scope: str
    scope_id: str
    period_id: str
    status: CycleStatus
    row_count: int = 0
    output_digest: Optional[str] = None
    # True when an already published cycle was returned instead of recomputing
    reused: bool = False


class JobResult(BaseModel):
    job_name: str
    success: bool
    processed_count: int = 0
    errors: List[str] = Field(default_factory=list)
    attempts: int = 1
    duration_ms: float = 0.0
    timestamp: datetime
