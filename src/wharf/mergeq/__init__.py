"""Merge queue: persisted requests, readiness and the scheduling daemon."""

from .queue import MergeQueue
from .readiness import ReadinessChecker, Reason, Verdict

__all__ = ["MergeQueue", "ReadinessChecker", "Reason", "Verdict"]
