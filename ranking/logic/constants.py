"""
Ranking Engine Constants

Defines all weights, thresholds, cutoffs and enums used by the ranking and
scarcity engine. Values are documented defaults; several can be overridden
from the environment (see .env).
"""

import os
from enum import Enum
from typing import Dict, Tuple

from dotenv import load_dotenv

load_dotenv()


# =============================================================================
# ENUMS
# =============================================================================

class Dimension(str, Enum):
    """Assessment dimensions that feed the composite score."""
    TECHNICAL = "technical"
    BEHAVIORAL = "behavioral"
    CONTEXTUAL = "contextual"


class Scope(str, Enum):
    """Leaderboard scopes, narrowest first."""
    COLLEGE = "college"
    STATE = "state"
    NATIONAL = "national"


class CollegeMetric(str, Enum):
    """What the college leaderboard is ordered by."""
    PLACEMENTS = "placements"
    PLACEMENT_RATE = "placement_rate"


class CycleKind(str, Enum):
    """What a computation cycle produces."""
    SCORES = "scores"
    RANKS = "ranks"
    SCARCITY = "scarcity"


class CycleStatus(str, Enum):
    PENDING = "pending"
    COMPUTING = "computing"
    STAGED = "staged"
    PUBLISHED = "published"
    FAILED = "failed"


class DemandLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PeriodGranularity(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


# Legal cycle transitions. PUBLISHED and FAILED are terminal; a retry is a new cycle.
CYCLE_TRANSITIONS: Dict[CycleStatus, Tuple[CycleStatus, ...]] = {
    CycleStatus.PENDING: (CycleStatus.COMPUTING,),
    CycleStatus.COMPUTING: (CycleStatus.STAGED, CycleStatus.FAILED),
    CycleStatus.STAGED: (CycleStatus.PUBLISHED, CycleStatus.FAILED),
    CycleStatus.PUBLISHED: (),
    CycleStatus.FAILED: (),
}

# Scope id used for the single national scope and platform-wide cycles
NATIONAL_SCOPE_ID = "all"
PLATFORM_SCOPE = "platform"


# =============================================================================
# SCORE AGGREGATION
# =============================================================================

# Composite weights (must sum to 1.0). Missing dimensions are dropped and the
# remaining weights renormalized.
DIMENSION_WEIGHTS: Dict[Dimension, float] = {
    Dimension.TECHNICAL: 0.40,
    Dimension.BEHAVIORAL: 0.30,
    Dimension.CONTEXTUAL: 0.30,
}

MIN_RAW_SCORE = 0.0
MAX_RAW_SCORE = 100.0

# Attempts lose half their weight every SCORE_HALF_LIFE_DAYS
SCORE_HALF_LIFE_DAYS = float(os.getenv("SCORE_HALF_LIFE_DAYS", "30"))

# Item count at which a dimension reaches full confidence
MIN_SAMPLE_SIZE = int(os.getenv("MIN_SAMPLE_SIZE", "20"))

WEIGHT_SUM_EPSILON = 1e-9


# =============================================================================
# SCARCITY SIGNALS
# =============================================================================

# Urgency thresholds: (hours remaining, spots remaining), strictly below
URGENCY_HIGH_HOURS = 48
URGENCY_HIGH_SPOTS = 3
URGENCY_MEDIUM_HOURS = 168
URGENCY_MEDIUM_SPOTS = 10

# In-flight applications from applicants at or above this score count
# against the remaining spots
IN_FLIGHT_SCORE_THRESHOLD = 75.0

# Trailing window used for application velocity
DEMAND_WINDOW_HOURS = int(os.getenv("DEMAND_WINDOW_HOURS", "24"))

# Percentile cutoffs against the baseline of comparable opportunities
DEMAND_PERCENTILE_CUTOFFS: Dict[DemandLevel, int] = {
    DemandLevel.MEDIUM: 50,
    DemandLevel.HIGH: 80,
    DemandLevel.VERY_HIGH: 95,
}

# Fewer comparable opportunities than this and demand defaults to medium
MIN_BASELINE_OPPORTUNITIES = int(os.getenv("MIN_BASELINE_OPPORTUNITIES", "10"))
DEFAULT_DEMAND_LEVEL = DemandLevel.MEDIUM


# =============================================================================
# LEADERBOARD READS
# =============================================================================

DEFAULT_LEADERBOARD_LIMIT = 20
MAX_LEADERBOARD_LIMIT = 100
DEFAULT_NEARBY_RANGE = 5

# "points to top 10%" signal
TOP_PERCENT_TARGET = 10


# =============================================================================
# PUBLISHING & JOBS
# =============================================================================

# Published cycles kept per pointer, current + previous at minimum
SNAPSHOT_RETENTION = max(2, int(os.getenv("SNAPSHOT_RETENTION", "2")))

# Leaderboard period length. One granularity per deployment: daily and weekly
# boards would otherwise share the same pointers.
RANK_PERIOD = PeriodGranularity(os.getenv("RANK_PERIOD", "daily"))
SCARCITY_PERIOD = PeriodGranularity.HOURLY

RANK_MAX_WORKERS = int(os.getenv("RANK_MAX_WORKERS", "4"))
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
JOB_BACKOFF_SECONDS = float(os.getenv("JOB_BACKOFF_SECONDS", "5"))

CRON_SECRET = os.getenv("CRON_SECRET", "dev-cron-secret")
APP_ENV = os.getenv("APP_ENV", "development")

ENGINE_VERSION = "1.0.0"
