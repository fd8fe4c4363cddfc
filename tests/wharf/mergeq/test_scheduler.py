from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from tests.wharf.helpers import FakeRunner, advance_to, make_machine, make_queue
from wharf.issues import IssueTracker
from wharf.merge.engine import MergeResult
from wharf.merge.land import LandService
from wharf.merge.resolve import MergeTarget
from wharf.mergeq.readiness import ReadinessChecker
from wharf.mergeq.scheduler import SchedulerContext, run_cycle, run_loop
from wharf.models import EntryStatus, OperationState, Phase
from wharf.services.errors import (
    ExternalCommandFailedError,
    LockHeldError,
    MergeConflictError,
    UnexpectedStateError,
    VerificationFailedError,
)


@pytest.fixture(autouse=True)
def _worktrees_are_checkouts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("wharf.merge.resolve.git.git_is_repo", lambda path, git_path=None: True)


class FakeEngine:
    """Engine double: each call consumes the next scripted outcome."""

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[MergeTarget] = []

    def merge(self, request: MergeTarget) -> MergeResult:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else "c0ffee"
        if isinstance(outcome, Exception):
            raise outcome
        return MergeResult(
            branch=request.branch, target="main", merge_commit=str(outcome), strategy="fast-forward"
        )


class FakeSessions:
    def __init__(self) -> None:
        self.resumed: list[str] = []

    def has_exited(self, state: OperationState) -> bool:
        return True

    def resume(self, state: OperationState, *, log_path: Path | None = None) -> bool:
        self.resumed.append(state.name)
        return True


def _context(
    tmp_path: Path, engine: FakeEngine, *, runner: FakeRunner | None = None
) -> SchedulerContext:
    runner = runner or FakeRunner({("wk", "list"): (0, "[]"), ("wk", "done"): (0, "")})
    tracker = IssueTracker(runner=runner)
    machine = make_machine(tmp_path / "build", tracker=tracker)
    queue = make_queue(machine)
    sessions = FakeSessions()
    readiness = ReadinessChecker(
        machine, repo_root=tmp_path, tracker=tracker, sessions=sessions  # type: ignore[arg-type]
    )
    return SchedulerContext(
        repo_root=tmp_path,
        build_dir=tmp_path / "build",
        remote="origin",
        target="main",
        queue=queue,
        machine=machine,
        readiness=readiness,
        lander=LandService(engine, machine, queue),  # type: ignore[arg-type]
        sessions=sessions,  # type: ignore[arg-type]
        max_attempts=3,
    )


def _ready(ctx: SchedulerContext, name: str, *, priority: int = 0, **fields: object) -> None:
    if "worktree" not in fields:
        worktree = ctx.repo_root / "trees" / name
        worktree.mkdir(parents=True, exist_ok=True)
        (worktree / ".git").write_text("gitdir: elsewhere\n", encoding="utf-8")
        fields["worktree"] = str(worktree)
    ctx.store.create(name, **fields)
    advance_to(ctx.machine, name, Phase.EXECUTING)
    ctx.queue.enqueue(name, priority=priority)


def test_cycle_merges_highest_priority_ready_entry(tmp_path: Path) -> None:
    engine = FakeEngine("c0ffee")
    ctx = _context(tmp_path, engine)
    _ready(ctx, "later", priority=5)
    _ready(ctx, "first", priority=0)

    report = run_cycle(ctx)

    assert report.selected == "first"
    assert report.outcome is EntryStatus.COMPLETED
    assert report.merge_commit == "c0ffee"
    assert [r.branch for r in engine.requests] == ["first"]
    assert ctx.queue.get("first").status is EntryStatus.COMPLETED
    assert ctx.machine.get("first").phase is Phase.MERGED
    assert ctx.queue.get("later").status is EntryStatus.PENDING


def test_merge_wakes_released_dependents(tmp_path: Path) -> None:
    ctx = _context(tmp_path, FakeEngine("c0ffee"))
    _ready(ctx, "db", epic_id="wk-db")
    ctx.store.create("api", blocked_by=["db"])
    ctx.machine.hold("api")

    report = run_cycle(ctx)

    assert report.unblocked == ["api"]
    assert report.resumed == ["api"]
    assert ctx.machine.get("api").held is False
    assert ctx.sessions.resumed == ["api"]  # type: ignore[attr-defined]


def test_conflict_is_retried_exactly_once(tmp_path: Path) -> None:
    engine = FakeEngine(MergeConflictError("conflict"), MergeConflictError("conflict again"))
    ctx = _context(tmp_path, engine)
    _ready(ctx, "auth")

    first = run_cycle(ctx)
    assert first.outcome is EntryStatus.CONFLICT

    second = run_cycle(ctx)
    assert second.rearmed == ["auth"]
    assert second.outcome is EntryStatus.CONFLICT
    assert ctx.queue.get("auth").conflict_retried is True

    third = run_cycle(ctx)
    assert third.rearmed == []
    assert third.selected is None
    assert len(engine.requests) == 2
    assert ctx.queue.get("auth").status is EntryStatus.CONFLICT


def test_transient_failures_are_bounded(tmp_path: Path) -> None:
    engine = FakeEngine(
        ExternalCommandFailedError("fetch failed"),
        ExternalCommandFailedError("push failed"),
        ExternalCommandFailedError("push failed"),
        "never",
    )
    ctx = _context(tmp_path, engine)
    _ready(ctx, "auth")

    outcomes = [run_cycle(ctx).outcome for _ in range(4)]

    assert outcomes == [EntryStatus.PENDING, EntryStatus.PENDING, EntryStatus.FAILED, None]
    entry = ctx.queue.get("auth")
    assert entry.status is EntryStatus.FAILED
    assert entry.attempts == 3
    assert "gave up after 3 attempts" in (entry.message or "")
    assert ctx.machine.get("auth").phase is Phase.EXECUTING


def test_merge_lock_contention_does_not_use_attempts(tmp_path: Path) -> None:
    held = LockHeldError(
        "merge lock held by operator", holder="operator", lock_path="/tmp/.merge.lock"
    )
    engine = FakeEngine(held, held, held, held, "c0ffee")
    ctx = _context(tmp_path, engine)
    _ready(ctx, "auth")

    outcomes = [run_cycle(ctx).outcome for _ in range(5)]

    assert outcomes == [EntryStatus.PENDING] * 4 + [EntryStatus.COMPLETED]
    entry = ctx.queue.get("auth")
    assert entry.attempts == 0
    assert ctx.machine.get("auth").phase is Phase.MERGED


def test_verification_failure_fails_entry(tmp_path: Path) -> None:
    ctx = _context(tmp_path, FakeEngine(VerificationFailedError("not on remote")))
    _ready(ctx, "auth")

    report = run_cycle(ctx)

    assert report.outcome is EntryStatus.FAILED
    assert ctx.machine.get("auth").phase is Phase.EXECUTING


def test_processing_entry_stalls_the_cycle(tmp_path: Path) -> None:
    engine = FakeEngine()
    ctx = _context(tmp_path, engine)
    _ready(ctx, "stuck")
    _ready(ctx, "other")
    ctx.queue.update_status("stuck", EntryStatus.PROCESSING)

    report = run_cycle(ctx)

    assert report.stalled_on == "stuck"
    assert report.selected is None
    assert engine.requests == []


def test_purge_drops_orphaned_cancelled_and_landed_entries(tmp_path: Path) -> None:
    ctx = _context(tmp_path, FakeEngine())
    _ready(ctx, "cancelled-op")
    ctx.machine.cancel("cancelled-op")
    _ready(ctx, "gone")
    ctx.store.remove("gone")
    _ready(ctx, "landed")
    ctx.machine.mark_merged("landed", "c0ffee")
    _ready(ctx, "keep")
    ctx.machine.hold("keep")

    with patch("wharf.mergeq.scheduler.git.git_is_ancestor", return_value=True) as ancestor:
        report = run_cycle(ctx)

    assert sorted(report.purged) == ["cancelled-op", "gone", "landed"]
    ancestor.assert_called_once_with(tmp_path, "c0ffee", "origin/main", git_path=None)
    assert [e.operation for e in ctx.queue.list()] == ["keep"]


def test_merged_entry_not_yet_on_remote_is_kept(tmp_path: Path) -> None:
    ctx = _context(tmp_path, FakeEngine())
    _ready(ctx, "landed")
    ctx.machine.mark_merged("landed", "c0ffee")

    with patch("wharf.mergeq.scheduler.git.git_is_ancestor", return_value=None):
        report = run_cycle(ctx)

    assert report.purged == []
    assert ctx.queue.get("landed") is not None


def test_completed_branch_entry_purged_once_branch_deleted(tmp_path: Path) -> None:
    ctx = _context(tmp_path, FakeEngine())
    ctx.queue.enqueue("hotfix/login")
    ctx.queue.complete(["hotfix/login"], merge_commit="c0ffee")

    with patch("wharf.mergeq.scheduler.git.git_branch_exists", return_value=False):
        report = run_cycle(ctx)

    assert report.purged == ["hotfix/login"]


def test_open_issues_resume_agent_once(tmp_path: Path) -> None:
    runner = FakeRunner()
    runner.set(("wk", "list"), stdout=json.dumps([{"id": "wk-3", "status": "open"}]))
    ctx = _context(tmp_path, FakeEngine(), runner=runner)
    _ready(ctx, "auth")

    run_cycle(ctx)
    run_cycle(ctx)

    entry = ctx.queue.get("auth")
    assert entry.merge_resumed is True
    assert entry.status is EntryStatus.PENDING
    assert "after resume" in (entry.message or "")
    assert ctx.sessions.resumed == ["auth"]  # type: ignore[attr-defined]


def test_missing_worktree_is_flagged_with_hint(tmp_path: Path) -> None:
    engine = FakeEngine()
    ctx = _context(tmp_path, engine)
    _ready(ctx, "auth", worktree=str(tmp_path / "trees" / "gone"))

    report = run_cycle(ctx)

    entry = ctx.queue.get("auth")
    assert report.selected is None
    assert entry.worktree_missing is True
    assert "wharf mergeq retry auth" in (entry.message or "")
    assert engine.requests == []


def test_operation_without_worktree_is_not_merged(tmp_path: Path) -> None:
    engine = FakeEngine()
    ctx = _context(tmp_path, engine)
    _ready(ctx, "auth", worktree=None)

    report = run_cycle(ctx)

    entry = ctx.queue.get("auth")
    assert report.selected is None
    assert entry.status is EntryStatus.PENDING
    assert entry.worktree_missing is True
    assert "no worktree recorded" in (entry.message or "")
    assert engine.requests == []


def test_tracker_close_failure_is_reconciled_next_cycle(tmp_path: Path) -> None:
    runner = FakeRunner()
    runner.set(("wk", "list"), stdout="[]")
    runner.set(("wk", "done"), returncode=1)
    runner.set(("wk", "show"), stdout='{"id": "wk-db", "status": "open"}')
    ctx = _context(tmp_path, FakeEngine("c0ffee"), runner=runner)
    _ready(ctx, "db", epic_id="wk-db")
    ctx.store.create("api", blocked_by=["db"])

    first = run_cycle(ctx)
    assert first.outcome is EntryStatus.COMPLETED
    assert first.unblocked == []
    assert ctx.machine.get("api").blocked_by == ["db"]

    runner.set(("wk", "done"), returncode=0)
    with patch("wharf.mergeq.scheduler.git.git_is_ancestor", return_value=None):
        second = run_cycle(ctx)
    assert second.unblocked == ["api"]
    assert ctx.machine.get("db").issue_closed is True


def test_run_loop_survives_failed_cycles(tmp_path: Path) -> None:
    ctx = _context(tmp_path, FakeEngine())
    sleeps: list[float] = []
    calls = {"count": 0}

    def flaky_cycle(_ctx: SchedulerContext) -> object:
        calls["count"] += 1
        if calls["count"] == 1:
            raise UnexpectedStateError("corrupt queue")
        return run_cycle(_ctx)

    with patch("wharf.mergeq.scheduler.run_cycle", flaky_cycle):
        cycles = run_loop(ctx, interval=0.5, max_cycles=3, sleep=sleeps.append)

    assert cycles == 3
    assert calls["count"] == 3
    assert sleeps == [0.5, 0.5]
