"""
Ranking Engine Errors

Errors are classified by what the caller should do about them:

- ValidationError: bad input, rejected at ingestion, never coerced
- InsufficientDataError: too little data for a stable statistic, caller falls
  back to a documented default
- ComputationFailure: transient (DB unavailable, timeout), the cycle is marked
  failed and retried; the previous snapshot stays visible
- ConsistencyViolation: a broken ranking invariant, aborts the publish. This is
  a logic bug, never retried.
"""

from typing import Any, Dict, Optional


class RankingError(Exception):
    """Base class for all ranking engine errors."""

    retryable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "error": self.message,
            "error_type": type(self).__name__,
        }
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(RankingError, ValueError):
    """Malformed or out-of-range input."""


class InsufficientDataError(RankingError):
    """Not enough comparable samples for a stable statistic."""


class ComputationFailure(RankingError):
    """Transient failure while computing or publishing a cycle."""

    retryable = True


class ConsistencyViolation(RankingError):
    """A ranking invariant does not hold (duplicate rank, gap, missing order)."""
