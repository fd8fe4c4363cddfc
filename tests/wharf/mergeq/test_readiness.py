from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from tests.wharf.helpers import FakeRunner, advance_to, make_machine, make_queue
from wharf.issues import IssueTracker
from wharf.mergeq.readiness import ReadinessChecker, Reason
from wharf.models import Phase
from wharf.sessions import AgentSessions


class Harness:
    def __init__(self, tmp_path: Path) -> None:
        self.runner = FakeRunner()
        self.runner.set(("wk", "list"), stdout="[]")
        self.runner.set(("tmux", "has-session"), returncode=1)
        self.tracker = IssueTracker(runner=self.runner)
        self.machine = make_machine(tmp_path / "build", tracker=self.tracker)
        self.queue = make_queue(self.machine)
        self.worktree = tmp_path / "trees" / "auth"
        self.worktree.mkdir(parents=True)
        self.checker = ReadinessChecker(
            self.machine,
            repo_root=tmp_path,
            tracker=self.tracker,
            sessions=AgentSessions(runner=self.runner),
        )

    def ready_operation(self, name: str = "auth", **fields: object) -> None:
        fields.setdefault("worktree", str(self.worktree))
        self.machine.store.create(name, session=f"wharf-{name}", **fields)
        advance_to(self.machine, name, Phase.EXECUTING)
        self.queue.enqueue(name)

    def evaluate(self, name: str = "auth"):
        entry = self.queue.get(name)
        assert entry is not None
        return self.checker.evaluate(entry)


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(tmp_path)


def test_ready_operation(harness: Harness) -> None:
    harness.ready_operation()

    verdict = harness.evaluate()

    assert verdict.ready
    assert ("wk", "list", "--label", "plan:auth", "-o", "json") in harness.runner.argvs()


def test_evaluation_is_idempotent_and_read_only(harness: Harness) -> None:
    harness.ready_operation()
    before_queue = harness.queue.path.read_text(encoding="utf-8")
    before_state = harness.machine.store.state_path("auth").read_text(encoding="utf-8")

    first = harness.evaluate()
    second = harness.evaluate()

    assert first == second
    assert harness.queue.path.read_text(encoding="utf-8") == before_queue
    assert harness.machine.store.state_path("auth").read_text(encoding="utf-8") == before_state


def test_missing_operation(harness: Harness) -> None:
    harness.ready_operation()
    harness.machine.store.remove("auth")

    assert harness.evaluate().reason is Reason.OPERATION_MISSING


def test_not_queued_flag(harness: Harness) -> None:
    harness.ready_operation()
    harness.machine.store.update("auth", lambda s: s.model_copy(update={"merge_queued": False}))

    assert harness.evaluate().reason is Reason.NOT_QUEUED


def test_wrong_phase(harness: Harness) -> None:
    harness.machine.store.create("auth", worktree=str(harness.worktree))
    advance_to(harness.machine, "auth", Phase.QUEUED)
    harness.queue.enqueue("auth")

    assert harness.evaluate().reason is Reason.WRONG_PHASE


def test_held(harness: Harness) -> None:
    harness.ready_operation()
    harness.machine.hold("auth")

    assert harness.evaluate().reason is Reason.HELD


def test_blocked_until_blocker_merged_and_closed(harness: Harness) -> None:
    harness.machine.store.create("db")
    advance_to(harness.machine, "db", Phase.EXECUTING)
    harness.ready_operation(blocked_by=["db"])

    verdict = harness.evaluate()
    assert verdict.reason is Reason.BLOCKED
    assert verdict.blockers == ("db",)

    harness.machine.mark_merged("db", "c0ffee")
    assert harness.evaluate().ready


def test_worktree_missing(harness: Harness) -> None:
    harness.ready_operation()
    harness.worktree.rmdir()

    assert harness.evaluate().reason is Reason.WORKTREE_MISSING


def test_operation_without_worktree_is_not_ready(harness: Harness) -> None:
    harness.ready_operation(worktree=None)

    verdict = harness.evaluate()

    assert not verdict.ready
    assert verdict.reason is Reason.WORKTREE_MISSING
    assert "no worktree recorded" in verdict.detail


def test_session_still_running(harness: Harness) -> None:
    harness.ready_operation()
    harness.runner.set(("tmux", "has-session"), returncode=0)

    verdict = harness.evaluate()
    assert verdict.reason is Reason.SESSION_ACTIVE
    assert "wharf-auth" in verdict.detail


def test_open_issues_block_with_ids(harness: Harness) -> None:
    harness.ready_operation(labels=["epic:7"])
    harness.runner.set(
        ("wk", "list", "--label", "epic:7"),
        stdout=json.dumps([{"id": "wk-9", "status": "todo"}, {"id": "wk-8", "status": "done"}]),
    )

    verdict = harness.evaluate()

    assert verdict.reason is Reason.ISSUES_OPEN
    assert verdict.open_issues == ("wk-9",)


def test_tracker_failure_is_a_miss_not_an_error(harness: Harness) -> None:
    harness.ready_operation()
    harness.runner.set(("wk", "list"), returncode=1)

    assert harness.evaluate().reason is Reason.ISSUES_UNAVAILABLE


def test_disabled_tracker_skips_issue_check(tmp_path: Path) -> None:
    runner = FakeRunner()
    runner.set(("tmux", "has-session"), returncode=1)
    tracker = IssueTracker(enabled=False, runner=runner)
    machine = make_machine(tmp_path / "build", tracker=tracker)
    worktree = tmp_path / "trees" / "auth"
    worktree.mkdir(parents=True)
    machine.store.create("auth", worktree=str(worktree))
    advance_to(machine, "auth", Phase.EXECUTING)
    queue = make_queue(machine)
    queue.enqueue("auth")
    checker = ReadinessChecker(machine, repo_root=tmp_path, sessions=AgentSessions(runner=runner))

    assert checker.evaluate(queue.get("auth")).ready
    assert not any(argv[0] == "wk" for argv in runner.argvs())


def test_branch_entries_only_need_a_ref(harness: Harness) -> None:
    harness.queue.enqueue("hotfix/login")
    entry = harness.queue.get("hotfix/login")

    with (
        patch("wharf.mergeq.readiness.git.git_branch_exists", return_value=False),
        patch("wharf.mergeq.readiness.git.git_ref_exists", return_value=True) as ref_exists,
    ):
        assert harness.checker.evaluate(entry).ready
    ref_exists.assert_called_once_with(
        harness.checker.repo_root, "refs/remotes/origin/hotfix/login", git_path=None
    )

    with (
        patch("wharf.mergeq.readiness.git.git_branch_exists", return_value=False),
        patch("wharf.mergeq.readiness.git.git_ref_exists", return_value=False),
    ):
        assert harness.checker.evaluate(entry).reason is Reason.BRANCH_MISSING


def test_scenario_dependent_waits_for_blocker_merge(harness: Harness) -> None:
    harness.machine.store.create("schema", epic_id="wk-schema")
    advance_to(harness.machine, "schema", Phase.EXECUTING)
    harness.ready_operation("feature", blocked_by=["schema"])
    harness.runner.set(("wk", "done"), returncode=0)

    assert harness.evaluate("feature").reason is Reason.BLOCKED
    outcome = harness.machine.mark_merged("schema", "c0ffee")

    assert outcome.unblocked == ["feature"]
    assert harness.evaluate("feature").ready
