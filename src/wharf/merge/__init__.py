"""Merge execution: target resolution, the engine, cleanup and landing."""

from .cleanup import CleanupReport, cleanup_merged_branch
from .engine import WORKSPACE_BRANCH, MergeEngine, MergeResult
from .land import LandResult, LandService
from .resolve import MergeTarget, resolve_target, target_for_entry

__all__ = [
    "CleanupReport",
    "LandResult",
    "LandService",
    "MergeEngine",
    "MergeResult",
    "MergeTarget",
    "WORKSPACE_BRANCH",
    "cleanup_merged_branch",
    "resolve_target",
    "target_for_entry",
]
