"""
Snapshot Publisher

Makes a computed period visible to readers in one step.

Rows for a cycle are written under that cycle's id while nobody reads them
(staging). Publishing is a single transaction that moves the
(kind, scope, scope_id) pointer to the new cycle and marks it published.
Readers only ever follow the pointer, so they see either the old period or
the new one, never a mix.

Cycle states: pending -> computing -> staged -> published, or
computing/staged -> failed. A retry is a new cycle.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import select, update, delete, func
from sqlalchemy.orm import Session, sessionmaker

from ranking.models import (
    Base,
    RankComputationCycle,
    RankPeriodPointer,
    RankScoreRecord,
    RankLeaderboardEntry,
    RankScarcitySnapshot,
)
from .contracts import CycleResult
from .constants import CycleKind, CycleStatus, CYCLE_TRANSITIONS, SNAPSHOT_RETENTION
from .errors import ComputationFailure, ConsistencyViolation

logger = logging.getLogger(__name__)

SNAPSHOT_TABLES: Dict[CycleKind, Type[Base]] = {
    CycleKind.SCORES: RankScoreRecord,
    CycleKind.RANKS: RankLeaderboardEntry,
    CycleKind.SCARCITY: RankScarcitySnapshot,
}


def compute_digest(payloads: List[Dict[str, Any]]) -> str:
    """sha256 over the canonical JSON of a cycle's rows, for audit and idempotency checks."""
    canonical = json.dumps(payloads, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _transition(cycle: RankComputationCycle, target: CycleStatus) -> None:
    current = CycleStatus(cycle.status)
    if target not in CYCLE_TRANSITIONS[current]:
        raise ConsistencyViolation(
            f"Illegal cycle transition {current.value} -> {target.value}",
            {"cycle_id": cycle.id},
        )
    cycle.status = target.value


def _to_result(cycle: RankComputationCycle, reused: bool = False) -> CycleResult:
    return CycleResult(
        cycle_id=cycle.id,
        kind=CycleKind(cycle.kind),
        scope=cycle.scope,
        scope_id=cycle.scope_id,
        period_id=cycle.period_id,
        status=CycleStatus(cycle.status),
        row_count=cycle.row_count,
        output_digest=cycle.output_digest,
        reused=reused,
    )


def get_pointer(db: Session, kind: CycleKind, scope: str, scope_id: str) -> Optional[RankPeriodPointer]:
    """The pointer readers follow, or None if nothing was ever published."""
    return db.get(RankPeriodPointer, (kind.value, scope, scope_id))


class SnapshotPublisher:
    """
    Owns the cycle lifecycle for every snapshot kind.

    Each step runs in its own short transaction so a crash between steps
    leaves at worst an orphaned staged cycle, which readers never see.
    """

    def __init__(self, session_factory: sessionmaker, retention: int = SNAPSHOT_RETENTION):
        self.session_factory = session_factory
        self.retention = max(2, retention)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_published(
        self, kind: CycleKind, scope: str, scope_id: str, period_id: str
    ) -> Optional[CycleResult]:
        """The published cycle for this exact period, if one exists."""
        with self.session_factory() as db:
            cycle = db.execute(
                select(RankComputationCycle)
                .where(RankComputationCycle.kind == kind.value)
                .where(RankComputationCycle.scope == scope)
                .where(RankComputationCycle.scope_id == scope_id)
                .where(RankComputationCycle.period_id == period_id)
                .where(RankComputationCycle.status == CycleStatus.PUBLISHED.value)
                .order_by(RankComputationCycle.id.desc())
            ).scalars().first()
            return _to_result(cycle, reused=True) if cycle else None

    def current_cycle_id(self, kind: CycleKind, scope: str, scope_id: str) -> Optional[int]:
        with self.session_factory() as db:
            pointer = get_pointer(db, kind, scope, scope_id)
            return pointer.cycle_id if pointer else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_cycle(
        self,
        kind: CycleKind,
        scope: str,
        scope_id: str,
        period_id: str,
        as_of: datetime,
    ) -> int:
        """Create a new attempt for the period and move it to computing."""
        with self.session_factory() as db:
            previous_attempts = db.execute(
                select(func.count(RankComputationCycle.id))
                .where(RankComputationCycle.kind == kind.value)
                .where(RankComputationCycle.scope == scope)
                .where(RankComputationCycle.scope_id == scope_id)
                .where(RankComputationCycle.period_id == period_id)
            ).scalar_one()

            cycle = RankComputationCycle(
                kind=kind.value,
                scope=scope,
                scope_id=scope_id,
                period_id=period_id,
                attempt=previous_attempts + 1,
                status=CycleStatus.PENDING.value,
                as_of=as_of,
            )
            db.add(cycle)
            db.flush()

            _transition(cycle, CycleStatus.COMPUTING)
            cycle.started_at = datetime.utcnow()
            db.commit()

            logger.info(
                f"Cycle {cycle.id} computing: {kind.value} {scope}/{scope_id} "
                f"period {period_id} (attempt {cycle.attempt})"
            )
            return cycle.id

    def stage(self, cycle_id: int, payloads: List[Dict[str, Any]]) -> str:
        """
        Write a cycle's rows under its id and mark it staged.

        Returns:
            The output digest of the staged rows
        """
        digest = compute_digest(payloads)
        with self.session_factory() as db:
            cycle = db.get(RankComputationCycle, cycle_id)
            model_cls = SNAPSHOT_TABLES[CycleKind(cycle.kind)]

            db.add_all(
                model_cls(cycle_id=cycle_id, period_id=cycle.period_id, **payload)
                for payload in payloads
            )

            _transition(cycle, CycleStatus.STAGED)
            cycle.output_digest = digest
            cycle.row_count = len(payloads)
            cycle.staged_at = datetime.utcnow()
            db.commit()

        logger.info(f"Cycle {cycle_id} staged {len(payloads)} rows (digest {digest[:12]})")
        return digest

    def publish(self, cycle_id: int) -> CycleResult:
        """
        Swap the pointer to a staged cycle in one transaction.

        The previous cycle stays reachable through previous_cycle_id. A cycle
        for a period that is already current, or older than the current one,
        is failed instead of published.
        """
        with self.session_factory() as db:
            cycle = db.get(RankComputationCycle, cycle_id)
            kind = CycleKind(cycle.kind)
            pointer = get_pointer(db, kind, cycle.scope, cycle.scope_id)
            now = datetime.utcnow()

            if pointer is None:
                db.add(RankPeriodPointer(
                    kind=kind.value,
                    scope=cycle.scope,
                    scope_id=cycle.scope_id,
                    cycle_id=cycle.id,
                    period_id=cycle.period_id,
                    version=1,
                    published_at=now,
                ))
            else:
                current = db.get(RankComputationCycle, pointer.cycle_id)
                if current is not None and (
                    current.period_id == cycle.period_id or current.as_of > cycle.as_of
                ):
                    _transition(cycle, CycleStatus.FAILED)
                    cycle.error = f"superseded by published cycle {current.id} ({current.period_id})"
                    cycle.finished_at = now
                    db.commit()
                    logger.warning(f"Cycle {cycle.id} not published: {cycle.error}")
                    return _to_result(current, reused=True)

                swapped = db.execute(
                    update(RankPeriodPointer)
                    .where(RankPeriodPointer.kind == kind.value)
                    .where(RankPeriodPointer.scope == cycle.scope)
                    .where(RankPeriodPointer.scope_id == cycle.scope_id)
                    .where(RankPeriodPointer.version == pointer.version)
                    .values(
                        cycle_id=cycle.id,
                        period_id=cycle.period_id,
                        previous_cycle_id=pointer.cycle_id,
                        previous_period_id=pointer.period_id,
                        version=pointer.version + 1,
                        published_at=now,
                    )
                )
                if swapped.rowcount != 1:
                    db.rollback()
                    raise ComputationFailure(
                        "Pointer moved while publishing",
                        {"cycle_id": cycle_id, "kind": kind.value, "scope_id": cycle.scope_id},
                    )

            _transition(cycle, CycleStatus.PUBLISHED)
            cycle.finished_at = now
            db.commit()
            result = _to_result(cycle)

        logger.info(
            f"Published cycle {cycle_id}: {result.kind.value} {result.scope}/{result.scope_id} "
            f"period {result.period_id}"
        )
        self.prune(kind, result.scope, result.scope_id)
        return result

    def fail(self, cycle_id: int, error: str) -> None:
        """Mark a cycle failed. Published cycles are left alone."""
        with self.session_factory() as db:
            cycle = db.get(RankComputationCycle, cycle_id)
            if cycle is None:
                return
            status = CycleStatus(cycle.status)
            if CycleStatus.FAILED not in CYCLE_TRANSITIONS[status]:
                return
            _transition(cycle, CycleStatus.FAILED)
            cycle.error = error[:2000]
            cycle.finished_at = datetime.utcnow()
            db.commit()
        logger.error(f"Cycle {cycle_id} failed: {error}")

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def prune(self, kind: CycleKind, scope: str, scope_id: str) -> int:
        """
        Delete snapshot rows no reader can reach any more.

        Keeps the pointer's current and previous cycles plus the newest
        `retention` published cycles. Rows of failed cycles are dropped.
        Cycle rows themselves are kept as the audit trail.

        Returns:
            Number of cycles whose rows were deleted
        """
        model_cls = SNAPSHOT_TABLES[kind]
        with self.session_factory() as db:
            pointer = get_pointer(db, kind, scope, scope_id)
            keep = set()
            if pointer is not None:
                keep.update(c for c in (pointer.cycle_id, pointer.previous_cycle_id) if c)

            cycles = db.execute(
                select(RankComputationCycle.id, RankComputationCycle.status)
                .where(RankComputationCycle.kind == kind.value)
                .where(RankComputationCycle.scope == scope)
                .where(RankComputationCycle.scope_id == scope_id)
                .order_by(RankComputationCycle.id.desc())
            ).all()

            published = [cid for cid, status in cycles if status == CycleStatus.PUBLISHED.value]
            keep.update(published[: self.retention])

            doomed = [
                cid for cid, status in cycles
                if cid not in keep
                and status in (CycleStatus.PUBLISHED.value, CycleStatus.FAILED.value)
            ]
            if not doomed:
                return 0

            db.execute(delete(model_cls).where(model_cls.cycle_id.in_(doomed)))
            db.commit()

        logger.debug(f"Pruned rows of {len(doomed)} cycles for {kind.value} {scope}/{scope_id}")
        return len(doomed)
