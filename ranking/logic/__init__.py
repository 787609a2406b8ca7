"""
Ranking Logic Module

Provides the deterministic score aggregation, ranking and scarcity engine
behind the leaderboard and opportunity screens.
"""

from .contracts import (
    AssessmentAttempt,
    StudentScoreRecord,
    RankEntry,
    RankLookup,
    LeaderboardPage,
    NearbyCompetitors,
    RankingSummary,
    CollegeLeaderboard,
    OpportunityScarcitySnapshot,
    ScarcityView,
    CycleResult,
    JobResult,
)
from .engine import RankingEngine, period_id_for
from .college_board import get_college_leaderboard
from .ingestion import ingest_event, ingest_events
from .reader import (
    get_rank,
    get_leaderboard,
    get_nearby_competitors,
    get_ranking_summary,
    get_scarcity,
    get_cycle_history,
)
from .constants import Dimension, Scope, DemandLevel, Urgency, CycleKind, CycleStatus, CollegeMetric
from .errors import (
    RankingError,
    ValidationError,
    InsufficientDataError,
    ComputationFailure,
    ConsistencyViolation,
)

__all__ = [
    # Main engine
    "RankingEngine",
    "period_id_for",

    # Ingestion
    "ingest_event",
    "ingest_events",

    # Reads
    "get_rank",
    "get_leaderboard",
    "get_nearby_competitors",
    "get_ranking_summary",
    "get_scarcity",
    "get_cycle_history",
    "get_college_leaderboard",

    # Contracts
    "AssessmentAttempt",
    "StudentScoreRecord",
    "RankEntry",
    "RankLookup",
    "LeaderboardPage",
    "NearbyCompetitors",
    "RankingSummary",
    "CollegeLeaderboard",
    "OpportunityScarcitySnapshot",
    "ScarcityView",
    "CycleResult",
    "JobResult",

    # Enums
    "Dimension",
    "Scope",
    "DemandLevel",
    "Urgency",
    "CycleKind",
    "CycleStatus",
    "CollegeMetric",

    # Errors
    "RankingError",
    "ValidationError",
    "InsufficientDataError",
    "ComputationFailure",
    "ConsistencyViolation",
]
