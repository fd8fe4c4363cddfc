from __future__ import annotations

from pathlib import Path

import pytest

from tests.wharf.helpers import advance_to, make_machine, make_queue
from wharf.merge.engine import MergeResult
from wharf.merge.land import LandService
from wharf.merge.resolve import MergeTarget
from wharf.models import EntryStatus, Phase
from wharf.services.errors import InvalidTransitionError, MergeConflictError


class StubEngine:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests: list[MergeTarget] = []

    def merge(self, request: MergeTarget) -> MergeResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return MergeResult(
            branch=request.branch, target="main", merge_commit="c0ffee", strategy="fast-forward"
        )


def test_lands_operation_and_completes_entries(tmp_path: Path) -> None:
    machine = make_machine(tmp_path)
    queue = make_queue(machine)
    machine.store.create("db")
    advance_to(machine, "db", Phase.EXECUTING)
    machine.store.create("api", blocked_by=["db"])
    machine.hold("api")
    queue.enqueue("db")
    lander = LandService(StubEngine(), machine, queue)  # type: ignore[arg-type]

    result = lander(MergeTarget(branch="db", operation="db"))

    assert result.merge_commit == "c0ffee"
    assert result.issue_closed is True
    assert result.unblocked == ["api"]
    assert machine.get("api").held is False
    assert machine.get("db").phase is Phase.MERGED
    entry = queue.get("db")
    assert entry.status is EntryStatus.COMPLETED
    assert entry.merge_commit == "c0ffee"


def test_non_executing_operation_is_rejected_before_merging(tmp_path: Path) -> None:
    machine = make_machine(tmp_path)
    machine.store.create("db")
    engine = StubEngine()
    lander = LandService(engine, machine, make_queue(machine))  # type: ignore[arg-type]

    with pytest.raises(InvalidTransitionError, match="only executing operations can merge"):
        lander(MergeTarget(branch="db", operation="db"))

    assert engine.requests == []


def test_raw_branch_touches_no_operation(tmp_path: Path) -> None:
    machine = make_machine(tmp_path)
    queue = make_queue(machine)
    queue.enqueue("hotfix/login")
    lander = LandService(StubEngine(), machine, queue)  # type: ignore[arg-type]

    result = lander(MergeTarget(branch="hotfix/login"))

    assert result.operation is None
    assert result.issue_closed is False
    assert queue.get("hotfix/login").status is EntryStatus.COMPLETED
    assert machine.store.list() == []


def test_engine_failure_leaves_state_alone(tmp_path: Path) -> None:
    machine = make_machine(tmp_path)
    queue = make_queue(machine)
    machine.store.create("db")
    advance_to(machine, "db", Phase.EXECUTING)
    queue.enqueue("db")
    lander = LandService(
        StubEngine(MergeConflictError("conflict")), machine, queue  # type: ignore[arg-type]
    )

    with pytest.raises(MergeConflictError):
        lander(MergeTarget(branch="db", operation="db"))

    assert machine.get("db").phase is Phase.EXECUTING
    assert queue.get("db").status is EntryStatus.PENDING


def test_operation_cancelled_during_merge_is_still_recorded(tmp_path: Path) -> None:
    machine = make_machine(tmp_path)
    queue = make_queue(machine)
    machine.store.create("db")
    advance_to(machine, "db", Phase.EXECUTING)
    queue.enqueue("db")

    class CancellingEngine(StubEngine):
        def merge(self, request: MergeTarget) -> MergeResult:
            machine.cancel("db")
            return super().merge(request)

    lander = LandService(CancellingEngine(), machine, queue)  # type: ignore[arg-type]

    result = lander(MergeTarget(branch="db", operation="db"))

    state = machine.get("db")
    assert state.phase is Phase.MERGED
    assert state.merge_commit == "c0ffee"
    assert result.issue_closed is True
    assert queue.get("db").status is EntryStatus.COMPLETED


def test_operation_removed_during_merge_still_completes_entry(tmp_path: Path) -> None:
    machine = make_machine(tmp_path)
    queue = make_queue(machine)
    machine.store.create("db")
    advance_to(machine, "db", Phase.EXECUTING)
    queue.enqueue("db")

    class PruningEngine(StubEngine):
        def merge(self, request: MergeTarget) -> MergeResult:
            machine.store.remove("db")
            return super().merge(request)

    lander = LandService(PruningEngine(), machine, queue)  # type: ignore[arg-type]

    result = lander(MergeTarget(branch="db", operation="db"))

    assert result.issue_closed is False
    assert queue.get("db").status is EntryStatus.COMPLETED
