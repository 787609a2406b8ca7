# Export all ranking models for easy imports
from .base import Base
from .event import RankEvent
from .student import RankStudent
from .opportunity import RankOpportunity
from .computation_cycle import RankComputationCycle
from .period_pointer import RankPeriodPointer
from .score_record import RankScoreRecord
from .leaderboard_entry import RankLeaderboardEntry
from .scarcity_snapshot import RankScarcitySnapshot

__all__ = [
    "Base",
    "RankEvent",
    "RankStudent",
    "RankOpportunity",
    "RankComputationCycle",
    "RankPeriodPointer",
    "RankScoreRecord",
    "RankLeaderboardEntry",
    "RankScarcitySnapshot",
]
