"""Merge queue scheduler.

``run_cycle`` performs one pass over the queue: purge finished or orphaned
entries, re-arm conflicts once, pick the first ready entry by
``(priority, enqueued_at)``, land it, and wake the dependents it released.
All state travels in an explicit ``SchedulerContext``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .. import config, git, log
from ..issues import IssueTracker
from ..merge.engine import MergeEngine
from ..merge.land import LandResult, LandService
from ..merge.resolve import target_for_entry
from ..models import EntryStatus, Phase, ProjectConfig, QueueEntry
from ..operations.machine import OperationStateMachine
from ..operations.store import OperationStore
from ..services.errors import (
    ExternalCommandFailedError,
    LockHeldError,
    MergeConflictError,
    ServiceFailure,
)
from ..sessions import AgentSessions
from .queue import MergeQueue, sort_key
from .readiness import ReadinessChecker, Reason, Verdict

TRANSIENT_FAILURES = (ExternalCommandFailedError,)


@dataclass
class SchedulerContext:
    """Everything one scheduler cycle needs."""

    repo_root: Path
    build_dir: Path
    remote: str
    target: str
    queue: MergeQueue
    machine: OperationStateMachine
    readiness: ReadinessChecker
    lander: LandService
    sessions: AgentSessions
    max_attempts: int = 3
    git_path: str | None = None

    @property
    def store(self) -> OperationStore:
        return self.machine.store


def build_context(repo_root: Path, project_config: ProjectConfig) -> SchedulerContext:
    """Wire the queue, state machine, readiness checker and engine for a repo."""
    build_dir = config.resolve_build_dir(repo_root, project_config)
    git_path = project_config.git.path
    lock_timeout = project_config.queue.lock_timeout
    tracker = IssueTracker(
        command=project_config.issues.command,
        enabled=project_config.issues.enabled,
        cwd=repo_root,
    )
    sessions = AgentSessions(resume_command=list(project_config.agent.resume_command))
    store = OperationStore(build_dir, lock_timeout=lock_timeout)
    machine = OperationStateMachine(store, tracker=tracker)
    queue = MergeQueue(build_dir, operations=store, lock_timeout=lock_timeout)
    engine = MergeEngine(
        repo_root=repo_root,
        build_dir=build_dir,
        remote=project_config.git.remote,
        target=project_config.git.develop_branch,
        git_path=git_path,
    )
    readiness = ReadinessChecker(
        machine,
        repo_root=repo_root,
        remote=project_config.git.remote,
        tracker=tracker,
        sessions=sessions,
        git_path=git_path,
    )
    return SchedulerContext(
        repo_root=repo_root,
        build_dir=build_dir,
        remote=project_config.git.remote,
        target=project_config.git.develop_branch,
        queue=queue,
        machine=machine,
        readiness=readiness,
        lander=LandService(engine, machine, queue),
        sessions=sessions,
        max_attempts=project_config.queue.max_attempts,
        git_path=git_path,
    )


@dataclass
class CycleReport:
    """What one scheduler cycle did."""

    purged: list[str] = field(default_factory=list)
    rearmed: list[str] = field(default_factory=list)
    stalled_on: str | None = None
    selected: str | None = None
    outcome: EntryStatus | None = None
    merge_commit: str | None = None
    unblocked: list[str] = field(default_factory=list)
    resumed: list[str] = field(default_factory=list)

    @property
    def idle(self) -> bool:
        return self.selected is None and self.stalled_on is None


def _should_purge(ctx: SchedulerContext, entry: QueueEntry) -> str | None:
    if entry.merge_type == "branch":
        if entry.status is EntryStatus.COMPLETED and not git.git_branch_exists(
            ctx.repo_root, entry.source_branch, git_path=ctx.git_path
        ):
            return "branch merged and deleted"
        return None
    state = ctx.store.get(entry.operation)
    if state is None:
        return "operation no longer exists"
    if state.phase is Phase.CANCELLED:
        return "operation cancelled"
    if state.phase is Phase.MERGED and state.merge_commit:
        landed = git.git_is_ancestor(
            ctx.repo_root,
            state.merge_commit,
            f"{ctx.remote}/{ctx.target}",
            git_path=ctx.git_path,
        )
        if landed is True:
            return f"merged as {state.merge_commit[:12]}"
    return None


def purge_entries(ctx: SchedulerContext) -> list[str]:
    """Drop entries that can never (or need never) be merged again."""
    reasons: dict[str, str] = {}
    for entry in ctx.queue.list():
        if entry.status is EntryStatus.PROCESSING:
            continue
        reason = _should_purge(ctx, entry)
        if reason is not None:
            reasons[entry.operation] = reason
    if not reasons:
        return []
    removed = ctx.queue.remove_where(
        lambda entry: entry.operation in reasons and entry.status is not EntryStatus.PROCESSING
    )
    for entry in removed:
        log.info(f"purged {entry.operation}: {reasons[entry.operation]}")
    return [entry.operation for entry in removed]


def rearm_conflicts(ctx: SchedulerContext) -> list[str]:
    """Give each conflicted entry exactly one automatic retry."""
    rearmed: list[str] = []
    for entry in ctx.queue.list():
        if entry.status is not EntryStatus.CONFLICT or entry.conflict_retried:
            continue
        ctx.queue.update(
            entry.operation,
            status=EntryStatus.PENDING,
            conflict_retried=True,
            message="retrying once after conflict",
        )
        log.info(f"{entry.operation}: retrying once after conflict")
        rearmed.append(entry.operation)
    return rearmed


def _record_miss(ctx: SchedulerContext, entry: QueueEntry, verdict: Verdict) -> None:
    if verdict.reason is Reason.ISSUES_OPEN:
        if not entry.merge_resumed:
            state = ctx.machine.get(entry.operation)
            resumed = state is not None and ctx.sessions.resume(state)
            ctx.queue.update(
                entry.operation,
                merge_resumed=True,
                message=f"{verdict.detail}; "
                + (
                    "agent resumed to finish them"
                    if resumed
                    else "resume the agent to finish them"
                ),
            )
            log.info(f"{entry.operation}: {verdict.detail}; resume requested")
            return
        message = (
            f"{verdict.detail} after resume; close them or run: "
            f"wharf mergeq remove {entry.operation}"
        )
        if entry.message != message:
            ctx.queue.update(entry.operation, message=message)
            log.warning(f"{entry.operation}: {message}")
        return
    if verdict.reason is Reason.WORKTREE_MISSING:
        message = (
            f"{verdict.detail}; recreate it, then run: wharf mergeq retry {entry.operation}"
        )
        if not entry.worktree_missing or entry.message != message:
            ctx.queue.update(entry.operation, worktree_missing=True, message=message)
            log.warning(f"{entry.operation}: {message}")
        return
    if entry.message != verdict.detail:
        ctx.queue.update(entry.operation, message=verdict.detail)
    log.debug(f"{entry.operation}: not ready ({verdict.detail})")


def select_entry(ctx: SchedulerContext) -> QueueEntry | None:
    """Return the first ready pending entry, recording why others wait."""
    pending = [e for e in ctx.queue.list() if e.status is EntryStatus.PENDING]
    for entry in sorted(pending, key=sort_key):
        verdict = ctx.readiness.evaluate(entry)
        if verdict.ready:
            return entry
        _record_miss(ctx, entry, verdict)
    return None


def execute_entry(
    ctx: SchedulerContext, entry: QueueEntry
) -> tuple[EntryStatus, LandResult | None]:
    """Land one entry and settle its final status."""
    name = entry.operation
    ctx.queue.update_status(name, EntryStatus.PROCESSING, message="merging")
    try:
        target = target_for_entry(
            entry, store=ctx.store, repo_root=ctx.repo_root, git_path=ctx.git_path
        )
        result = ctx.lander(target)
    except MergeConflictError as exc:
        ctx.queue.update_status(name, EntryStatus.CONFLICT, message=exc.describe())
        log.warning(f"{name}: {exc.describe()}")
        return EntryStatus.CONFLICT, None
    except LockHeldError as exc:
        ctx.queue.update_status(name, EntryStatus.PENDING, message=exc.describe())
        log.info(f"{name}: {exc.message}; retrying next cycle")
        return EntryStatus.PENDING, None
    except TRANSIENT_FAILURES as exc:
        attempts = entry.attempts + 1
        if attempts >= ctx.max_attempts:
            ctx.queue.update_status(
                name,
                EntryStatus.FAILED,
                attempts=attempts,
                message=f"gave up after {attempts} attempts: {exc.describe()}",
            )
            log.error(f"{name}: gave up after {attempts} attempts: {exc.message}")
            return EntryStatus.FAILED, None
        ctx.queue.update_status(
            name,
            EntryStatus.PENDING,
            attempts=attempts,
            message=f"attempt {attempts} failed: {exc.describe()}",
        )
        log.warning(f"{name}: attempt {attempts}/{ctx.max_attempts} failed: {exc.message}")
        return EntryStatus.PENDING, None
    except ServiceFailure as exc:
        ctx.queue.update_status(name, EntryStatus.FAILED, message=exc.describe())
        log.error(f"{name}: {exc.describe()}")
        return EntryStatus.FAILED, None
    return EntryStatus.COMPLETED, result


def wake_dependents(ctx: SchedulerContext, names: list[str]) -> list[str]:
    """Run the session resume hook for released dependents."""
    resumed: list[str] = []
    for name in dict.fromkeys(names):
        state = ctx.machine.get(name)
        if state is None or state.phase.is_terminal:
            continue
        ctx.sessions.resume(state)
        resumed.append(name)
    return resumed


def run_cycle(ctx: SchedulerContext) -> CycleReport:
    """Run one scheduler pass."""
    report = CycleReport()
    report.purged = purge_entries(ctx)
    report.unblocked.extend(ctx.machine.reconcile_merged())
    report.rearmed = rearm_conflicts(ctx)

    stuck = ctx.queue.processing()
    if stuck:
        report.stalled_on = stuck[0].operation
        log.warning(
            f"{stuck[0].operation} is still marked processing; if no merge is running, "
            f"run: wharf mergeq retry {stuck[0].operation}"
        )
    else:
        entry = select_entry(ctx)
        if entry is not None:
            report.selected = entry.operation
            log.info(f"merging {entry.operation} ({entry.merge_type})")
            status, result = execute_entry(ctx, entry)
            report.outcome = status
            if result is not None:
                report.merge_commit = result.merge_commit
                report.unblocked.extend(result.unblocked)

    if report.unblocked:
        report.resumed = wake_dependents(ctx, report.unblocked)
    return report


def run_loop(
    ctx: SchedulerContext,
    *,
    interval: float,
    max_cycles: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Run cycles forever (or ``max_cycles`` times), sleeping between them.

    Returns:
        Number of cycles run.
    """
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        try:
            report = run_cycle(ctx)
        except ServiceFailure as exc:
            log.error(f"cycle failed: {exc.describe()}")
        else:
            if report.idle:
                log.trace("queue idle")
        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
        sleep(interval)
    return cycles
