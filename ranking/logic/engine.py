"""
Ranking Engine

Main orchestrator for the periodic computations. Each run reads the event
log up to `as_of`, computes one kind of snapshot and hands the rows to the
publisher.

Pipeline flow:
1. Scores   - Event log -> per-student StudentScoreRecord (platform-wide)
2. Ranks    - Published scores -> RankEntry rows per college/state/national scope
3. Scarcity - Event log + opportunities -> OpportunityScarcitySnapshot rows
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from db import SessionLocal
from .contracts import (
    CycleResult,
    OpportunityScarcitySnapshot,
    RankEntry,
    StudentScoreRecord,
    to_naive_utc,
)
from .aggregator import batch_aggregate
from .ranker import assign_ranks, assign_scopes
from .scarcity import batch_calculate_scarcity
from .event_store import (
    load_assessment_attempts,
    load_application_history,
    load_opportunities,
    load_student_scopes,
)
from .publisher import SnapshotPublisher
from .reader import load_published_scores, load_ranks
from .constants import (
    CycleKind,
    PeriodGranularity,
    Scope,
    NATIONAL_SCOPE_ID,
    PLATFORM_SCOPE,
    SCORE_HALF_LIFE_DAYS,
    MIN_SAMPLE_SIZE,
    DEMAND_WINDOW_HOURS,
    MIN_BASELINE_OPPORTUNITIES,
    RANK_MAX_WORKERS,
    RANK_PERIOD,
    SCARCITY_PERIOD,
    SNAPSHOT_RETENTION,
    ENGINE_VERSION,
)
from .errors import RankingError, ComputationFailure, ConsistencyViolation

logger = logging.getLogger(__name__)


def period_id_for(as_of: datetime, granularity: PeriodGranularity) -> str:
    """
    Period identifier containing `as_of`.

    hourly "2026-10-19T14", daily "2026-10-19", weekly ISO week "2026-W43".
    """
    if granularity == PeriodGranularity.HOURLY:
        return as_of.strftime("%Y-%m-%dT%H")
    if granularity == PeriodGranularity.DAILY:
        return as_of.strftime("%Y-%m-%d")
    year, week, _ = as_of.isocalendar()
    return f"{year}-W{week:02d}"


def score_payload(record: StudentScoreRecord) -> Dict[str, Any]:
    return record.model_dump()


def rank_payload(entry: RankEntry) -> Dict[str, Any]:
    return entry.model_dump(mode="json", exclude={"period_id"})


def scarcity_payload(snapshot: OpportunityScarcitySnapshot) -> Dict[str, Any]:
    closing = snapshot.closing_in
    return {
        "opportunity_id": snapshot.opportunity_id,
        "total_applications": snapshot.total_applications,
        "applications_from_college": snapshot.applications_from_college,
        "applications_today": snapshot.applications_today,
        "applications_this_week": snapshot.applications_this_week,
        "application_velocity": snapshot.application_velocity,
        "spots_remaining": snapshot.spots_remaining,
        "closing_type": closing.type if closing else None,
        "closing_value": (closing.hours if closing.type == "time" else closing.count) if closing else None,
        "urgency": snapshot.urgency.value,
        "demand_level": snapshot.demand_level.value,
        "as_of": snapshot.as_of,
    }


class RankingEngine:
    """
    Runs score, rank and scarcity cycles against the event log.

    Every run is idempotent per period: a period that is already published
    is returned as-is instead of being recomputed.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        max_workers: int = RANK_MAX_WORKERS,
        retention: int = SNAPSHOT_RETENTION,
        half_life_days: float = SCORE_HALF_LIFE_DAYS,
        min_sample_size: int = MIN_SAMPLE_SIZE,
        window_hours: int = DEMAND_WINDOW_HOURS,
        min_baseline: int = MIN_BASELINE_OPPORTUNITIES,
    ):
        """
        Initialize the ranking engine.

        Args:
            session_factory: Creates one session per unit of work; workers
                never share a session
            max_workers: Parallel per-scope rank workers (1 = run inline)
        """
        self.session_factory = session_factory
        self.publisher = SnapshotPublisher(session_factory, retention)
        self.max_workers = max(1, max_workers)
        self.half_life_days = half_life_days
        self.min_sample_size = min_sample_size
        self.window_hours = window_hours
        self.min_baseline = min_baseline
        self.version = ENGINE_VERSION

    # -------------------------------------------------------------------------
    # Cycle wrapper
    # -------------------------------------------------------------------------

    def _run_cycle(
        self,
        kind: CycleKind,
        scope: str,
        scope_id: str,
        period_id: str,
        as_of: datetime,
        compute: Callable[[], List[Dict[str, Any]]],
    ) -> CycleResult:
        """
        Compute, stage and publish one cycle.

        Any failure marks the cycle failed and leaves the pointer where it
        was; database errors surface as ComputationFailure.
        """
        cycle_id: Optional[int] = None
        try:
            existing = self.publisher.find_published(kind, scope, scope_id, period_id)
            if existing is not None:
                logger.info(
                    f"{kind.value} {scope}/{scope_id} period {period_id} already published "
                    f"(cycle {existing.cycle_id}), reusing"
                )
                return existing

            cycle_id = self.publisher.start_cycle(kind, scope, scope_id, period_id, as_of)
            started = time.perf_counter()
            payloads = compute()
            self.publisher.stage(cycle_id, payloads)
            result = self.publisher.publish(cycle_id)
            logger.info(
                f"✅ {kind.value} {scope}/{scope_id} period {period_id}: {result.row_count} rows "
                f"in {(time.perf_counter() - started) * 1000:.1f}ms"
            )
            return result

        except ConsistencyViolation as e:
            logger.critical(
                f"🚨 Consistency violation in {kind.value} {scope}/{scope_id} "
                f"period {period_id}: {e.message} {e.context}"
            )
            self._mark_failed(cycle_id, f"ConsistencyViolation: {e.message}")
            raise
        except RankingError as e:
            self._mark_failed(cycle_id, f"{type(e).__name__}: {e.message}")
            raise
        except SQLAlchemyError as e:
            self._mark_failed(cycle_id, f"{type(e).__name__}: {e}")
            raise ComputationFailure(
                f"Database error during {kind.value} cycle",
                {"scope": scope, "scope_id": scope_id, "period_id": period_id},
            ) from e
        except Exception as e:
            logger.error(
                f"❌ Unexpected error in {kind.value} {scope}/{scope_id} "
                f"period {period_id}: {type(e).__name__}: {e}"
            )
            self._mark_failed(cycle_id, f"{type(e).__name__}: {e}")
            raise

    def _mark_failed(self, cycle_id: Optional[int], error: str) -> None:
        if cycle_id is None:
            return
        try:
            self.publisher.fail(cycle_id, error)
        except SQLAlchemyError:
            # The cycle error is re-raised by the caller; the cycle stays
            # unpublished either way
            logger.exception(f"Could not mark cycle {cycle_id} failed")

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    def run_score_cycle(
        self,
        as_of: datetime,
        granularity: PeriodGranularity = RANK_PERIOD,
    ) -> CycleResult:
        """Aggregate every student's attempts up to `as_of` and publish the records."""
        as_of = to_naive_utc(as_of)
        period_id = period_id_for(as_of, granularity)

        def compute() -> List[Dict[str, Any]]:
            with self.session_factory() as db:
                attempts = load_assessment_attempts(db, as_of)
            records = batch_aggregate(attempts, as_of, self.half_life_days, self.min_sample_size)
            logger.info(f"Scored {len(records)} students for period {period_id}")
            return [score_payload(r) for r in records]

        return self._run_cycle(
            CycleKind.SCORES, PLATFORM_SCOPE, NATIONAL_SCOPE_ID, period_id, as_of, compute
        )

    # -------------------------------------------------------------------------
    # Ranks
    # -------------------------------------------------------------------------

    def _rank_scope(
        self,
        scope: Scope,
        scope_id: str,
        records: List[StudentScoreRecord],
        period_id: str,
        as_of: datetime,
    ) -> CycleResult:
        def compute() -> List[Dict[str, Any]]:
            previous_cycle = self.publisher.current_cycle_id(CycleKind.RANKS, scope.value, scope_id)
            with self.session_factory() as db:
                previous_ranks = load_ranks(db, previous_cycle)
            entries = assign_ranks(scope, scope_id, records, previous_ranks, period_id)
            return [rank_payload(e) for e in entries]

        return self._run_cycle(CycleKind.RANKS, scope.value, scope_id, period_id, as_of, compute)

    def run_rank_cycles(
        self,
        as_of: datetime,
        granularity: PeriodGranularity = RANK_PERIOD,
    ) -> List[CycleResult]:
        """
        Score the period, then publish a leaderboard for every scope.

        Scopes are independent: a failing scope does not stop the others.
        After all scopes ran, the first failure is raised (a consistency
        violation ahead of anything else) so the job can retry; scopes that
        already published are reused on the retry.

        Returns:
            One CycleResult per scope, ordered by (scope, scope_id)
        """
        as_of = to_naive_utc(as_of)
        period_id = period_id_for(as_of, granularity)

        scores = self.run_score_cycle(as_of, granularity)
        with self.session_factory() as db:
            records = load_published_scores(db, scores.cycle_id)
            student_scopes = load_student_scopes(db)

        grouped = assign_scopes(records, student_scopes)
        targets = sorted(grouped.items(), key=lambda item: (item[0][0].value, item[0][1]))
        logger.info(
            f"Ranking {len(records)} students across {len(targets)} scopes for period {period_id}"
        )

        def run(target):
            (scope, scope_id), scope_records = target
            return self._rank_scope(scope, scope_id, scope_records, period_id, as_of)

        results: List[CycleResult] = []
        failures: List[RankingError] = []

        if self.max_workers == 1:
            outcomes = [self._capture(run, target) for target in targets]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(lambda t: self._capture(run, t), targets))

        for outcome in outcomes:
            if isinstance(outcome, RankingError):
                failures.append(outcome)
            else:
                results.append(outcome)

        if failures:
            logger.error(
                f"❌ {len(failures)} of {len(targets)} scopes failed for period {period_id}"
            )
            violations = [f for f in failures if isinstance(f, ConsistencyViolation)]
            raise (violations or failures)[0]

        return results

    @staticmethod
    def _capture(fn, target):
        try:
            return fn(target)
        except RankingError as e:
            return e

    # -------------------------------------------------------------------------
    # Scarcity
    # -------------------------------------------------------------------------

    def run_scarcity_cycle(
        self,
        as_of: datetime,
        granularity: PeriodGranularity = SCARCITY_PERIOD,
    ) -> CycleResult:
        """Compute scarcity signals for every active opportunity and publish them."""
        as_of = to_naive_utc(as_of)
        period_id = period_id_for(as_of, granularity)

        def compute() -> List[Dict[str, Any]]:
            with self.session_factory() as db:
                opportunities = load_opportunities(db, as_of)
                history = load_application_history(
                    db, as_of, [o.opportunity_id for o in opportunities]
                )
            snapshots = batch_calculate_scarcity(
                opportunities, history, as_of, self.window_hours, self.min_baseline
            )
            return [scarcity_payload(s) for s in snapshots]

        return self._run_cycle(
            CycleKind.SCARCITY, PLATFORM_SCOPE, NATIONAL_SCOPE_ID, period_id, as_of, compute
        )
