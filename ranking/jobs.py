"""
Scheduled Jobs

Cron entry points for the periodic computations. Every run is tracked as a
JobResult; transient failures are retried with exponential backoff, logic
failures are reported immediately.

Usage (crontab):
    5 * * * *  python -m ranking.jobs hourly_scarcity_update
    15 0 * * * python -m ranking.jobs leaderboard_update
"""

import argparse
import logging
import sys
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from ranking.logic.constants import JOB_MAX_ATTEMPTS, JOB_BACKOFF_SECONDS
from ranking.logic.contracts import JobResult, to_naive_utc
from ranking.logic.engine import RankingEngine
from ranking.logic.errors import RankingError, ValidationError

logger = logging.getLogger(__name__)


def _scarcity_update(engine: RankingEngine, as_of: datetime) -> int:
    return engine.run_scarcity_cycle(as_of).row_count


def _score_update(engine: RankingEngine, as_of: datetime) -> int:
    return engine.run_score_cycle(as_of).row_count


def _leaderboard_update(engine: RankingEngine, as_of: datetime) -> int:
    return sum(result.row_count for result in engine.run_rank_cycles(as_of))


JOBS: Dict[str, Callable[[RankingEngine, datetime], int]] = {
    "hourly_scarcity_update": _scarcity_update,
    "score_update": _score_update,
    "leaderboard_update": _leaderboard_update,
}


def track_job(
    job_name: str,
    executor: Callable[[], int],
    max_attempts: int = JOB_MAX_ATTEMPTS,
    backoff_seconds: float = JOB_BACKOFF_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> JobResult:
    """
    Run a job with retry and report the outcome.

    Retryable errors (ComputationFailure) are retried up to `max_attempts`
    times, waiting backoff_seconds * 2**(attempt - 1) between attempts.
    Anything else ends the run on the first attempt.

    Args:
        job_name: Name reported in logs and in the result
        executor: Runs the job, returns the number of rows processed
        sleep: Injected for tests

    Returns:
        JobResult with success flag, processed count and collected errors
    """
    start_time = time.perf_counter()
    errors = []
    attempt = 0
    logger.info(f"▶️ Job {job_name} started")

    while True:
        attempt += 1
        try:
            processed = executor()
        except RankingError as e:
            errors.append(f"attempt {attempt}: {type(e).__name__}: {e.message}")
            if not e.retryable or attempt >= max(1, max_attempts):
                logger.error(f"❌ Job {job_name} failed after {attempt} attempt(s): {e.message}")
                return _result(job_name, False, 0, errors, attempt, start_time)

            delay = backoff_seconds * 2 ** (attempt - 1)
            logger.warning(
                f"⚠️ Job {job_name} attempt {attempt} failed ({e.message}), retrying in {delay:.1f}s"
            )
            sleep(delay)
        except Exception as e:
            logger.exception(f"❌ Job {job_name} crashed on attempt {attempt}")
            errors.append(f"attempt {attempt}: {type(e).__name__}: {e}")
            return _result(job_name, False, 0, errors, attempt, start_time)
        else:
            logger.info(f"✅ Job {job_name} completed: {processed} rows in {attempt} attempt(s)")
            return _result(job_name, True, processed, errors, attempt, start_time)


def _result(job_name, success, processed, errors, attempts, start_time) -> JobResult:
    return JobResult(
        job_name=job_name,
        success=success,
        processed_count=processed,
        errors=errors,
        attempts=attempts,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        timestamp=datetime.utcnow(),
    )


def run_job(
    job_name: str,
    as_of: Optional[datetime] = None,
    engine: Optional[RankingEngine] = None,
    **track_kwargs,
) -> JobResult:
    """
    Run a named job for the period containing `as_of` (default: now).

    Raises:
        ValidationError: unknown job name
    """
    if job_name not in JOBS:
        raise ValidationError(f"Unknown job: {job_name}", {"allowed": sorted(JOBS)})

    engine = engine or RankingEngine()
    as_of = to_naive_utc(as_of) if as_of else datetime.utcnow()
    job = JOBS[job_name]
    return track_job(job_name, lambda: job(engine, as_of), **track_kwargs)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a ranking engine job")
    parser.add_argument("job_name", choices=sorted(JOBS))
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Period cutoff as ISO timestamp (default: now, UTC)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    from db import init_db
    init_db()

    result = run_job(args.job_name, args.as_of)
    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
