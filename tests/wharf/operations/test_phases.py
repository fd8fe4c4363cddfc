from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from tests.wharf.helpers import make_machine
from wharf.models import TERMINAL_PHASES, Phase
from wharf.operations.phases import DEFAULT_EDGES, TRANSITIONS, Event, TransitionTable
from wharf.services.errors import InvalidTransitionError

phases = st.sampled_from(list(Phase))


def test_happy_path_edges() -> None:
    assert TRANSITIONS.next_phase(Phase.INIT, Event.PLAN) is Phase.PLANNED
    assert TRANSITIONS.next_phase(Phase.PLANNED, Event.QUEUE) is Phase.QUEUED
    assert TRANSITIONS.next_phase(Phase.QUEUED, Event.EXECUTE) is Phase.EXECUTING
    assert TRANSITIONS.next_phase(Phase.EXECUTING, Event.MERGE) is Phase.MERGED


@given(phases, phases)
def test_only_listed_edges_are_allowed(current: Phase, target: Phase) -> None:
    allowed = target in DEFAULT_EDGES[current].values()
    assert TRANSITIONS.can_transition(current, target) is allowed
    if current in TERMINAL_PHASES:
        assert not allowed


@given(st.sampled_from([p for p in Phase if p not in TERMINAL_PHASES]))
def test_every_live_phase_can_be_abandoned(phase: Phase) -> None:
    assert TRANSITIONS.can_transition(phase, Phase.CANCELLED)
    assert TRANSITIONS.can_transition(phase, Phase.FAILED)


def test_table_rejects_missing_phase() -> None:
    edges = {phase: dict(out) for phase, out in DEFAULT_EDGES.items() if phase is not Phase.FAILED}
    with pytest.raises(ValueError, match="missing phases"):
        TransitionTable(edges)


def test_table_rejects_terminal_outgoing_edge() -> None:
    edges = {phase: dict(out) for phase, out in DEFAULT_EDGES.items()}
    edges[Phase.MERGED] = {Event.PLAN: Phase.PLANNED}
    with pytest.raises(ValueError, match="terminal phase"):
        TransitionTable(edges)


def test_table_rejects_live_phase_without_abort() -> None:
    edges = {phase: dict(out) for phase, out in DEFAULT_EDGES.items()}
    edges[Phase.QUEUED] = {Event.EXECUTE: Phase.EXECUTING, Event.FAIL: Phase.FAILED}
    with pytest.raises(ValueError, match="cancelled and failed"):
        TransitionTable(edges)


@settings(max_examples=30, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(st.lists(phases, min_size=1, max_size=8))
def test_random_walks_never_leave_the_table(tmp_path: Path, walk: list[Phase]) -> None:
    machine = make_machine(tmp_path / f"build-{len(list(tmp_path.iterdir()))}")
    machine.store.create("auth")
    current = Phase.INIT
    for target in walk:
        allowed = target is not Phase.MERGED and TRANSITIONS.can_transition(current, target)
        if allowed:
            current = machine.transition("auth", target).phase
        else:
            with pytest.raises(InvalidTransitionError):
                machine.transition("auth", target)
        assert machine.phase("auth") is current
