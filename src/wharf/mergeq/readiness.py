"""Readiness predicate for merge queue entries.

Evaluation never mutates anything: the same inputs always produce the same
verdict, and the scheduler decides what to do with a miss.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .. import git
from ..issues import IssueTracker
from ..models import OperationState, Phase, QueueEntry
from ..operations.machine import OperationStateMachine
from ..services.errors import ServiceFailure
from ..sessions import AgentSessions


class Reason(str, Enum):
    READY = "ready"
    OPERATION_MISSING = "operation_missing"
    NOT_QUEUED = "not_queued"
    WRONG_PHASE = "wrong_phase"
    HELD = "held"
    BLOCKED = "blocked"
    WORKTREE_MISSING = "worktree_missing"
    SESSION_ACTIVE = "session_active"
    ISSUES_OPEN = "issues_open"
    ISSUES_UNAVAILABLE = "issues_unavailable"
    BRANCH_MISSING = "branch_missing"


@dataclass(frozen=True)
class Verdict:
    """Outcome of a readiness evaluation."""

    reason: Reason
    detail: str = ""
    open_issues: tuple[str, ...] = ()
    blockers: tuple[str, ...] = ()

    @property
    def ready(self) -> bool:
        return self.reason is Reason.READY


READY = Verdict(Reason.READY, "ready")


class ReadinessChecker:
    """Evaluate whether a queue entry may be merged now."""

    def __init__(
        self,
        machine: OperationStateMachine,
        *,
        repo_root: Path,
        remote: str = "origin",
        tracker: IssueTracker | None = None,
        sessions: AgentSessions | None = None,
        git_path: str | None = None,
    ) -> None:
        self.machine = machine
        self.repo_root = repo_root
        self.remote = remote
        self.tracker = tracker or machine.tracker
        self.sessions = sessions or AgentSessions()
        self.git_path = git_path

    def evaluate(self, entry: QueueEntry) -> Verdict:
        if entry.merge_type == "branch":
            return self._evaluate_branch(entry)
        state = self.machine.get(entry.operation)
        if state is None:
            return Verdict(Reason.OPERATION_MISSING, f"operation {entry.operation} not found")
        return self._evaluate_operation(state)

    def _evaluate_branch(self, entry: QueueEntry) -> Verdict:
        branch = entry.source_branch
        if git.git_branch_exists(self.repo_root, branch, git_path=self.git_path):
            return READY
        if git.git_ref_exists(
            self.repo_root, f"refs/remotes/{self.remote}/{branch}", git_path=self.git_path
        ):
            return READY
        return Verdict(Reason.BRANCH_MISSING, f"branch {branch} does not exist")

    def _evaluate_operation(self, state: OperationState) -> Verdict:
        if not state.merge_queued:
            return Verdict(Reason.NOT_QUEUED, f"{state.name} is not queued for merge")
        if state.phase is not Phase.EXECUTING:
            return Verdict(
                Reason.WRONG_PHASE,
                f"{state.name} is {state.phase.value}, waiting for executing",
            )
        if state.held:
            return Verdict(Reason.HELD, f"{state.name} is on hold")
        blockers = self.machine.unresolved_blockers(state.name)
        if blockers:
            return Verdict(
                Reason.BLOCKED,
                f"blocked by {', '.join(blockers)}",
                blockers=tuple(blockers),
            )
        if not state.worktree:
            return Verdict(Reason.WORKTREE_MISSING, f"{state.name} has no worktree recorded")
        if not Path(state.worktree).is_dir():
            return Verdict(Reason.WORKTREE_MISSING, f"worktree {state.worktree} is missing")
        if not self.sessions.has_exited(state):
            return Verdict(Reason.SESSION_ACTIVE, f"agent session {state.session} still running")
        if self.tracker.enabled:
            try:
                open_issues = self.tracker.open_issues(state.issue_labels)
            except ServiceFailure as exc:
                return Verdict(Reason.ISSUES_UNAVAILABLE, exc.message)
            if open_issues:
                ids = tuple(issue.id for issue in open_issues)
                return Verdict(
                    Reason.ISSUES_OPEN,
                    f"{len(ids)} open issue(s): {', '.join(ids)}",
                    open_issues=ids,
                )
        return READY
