"""Operation lifecycle events and the validated transition table.

Example:
    >>> TRANSITIONS.next_phase(Phase.INIT, Event.PLAN)
    <Phase.PLANNED: 'planned'>
    >>> TRANSITIONS.event_for(Phase.QUEUED, Phase.EXECUTING)
    <Event.EXECUTE: 'execute'>
    >>> TRANSITIONS.event_for(Phase.INIT, Phase.MERGED) is None
    True
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from ..models import TERMINAL_PHASES, Phase


class Event(str, Enum):
    PLAN = "plan"
    QUEUE = "queue"
    EXECUTE = "execute"
    MERGE = "merge"
    CANCEL = "cancel"
    FAIL = "fail"


_ABORT_EDGES = {Event.CANCEL: Phase.CANCELLED, Event.FAIL: Phase.FAILED}

DEFAULT_EDGES: dict[Phase, dict[Event, Phase]] = {
    Phase.INIT: {Event.PLAN: Phase.PLANNED, **_ABORT_EDGES},
    Phase.PLANNED: {Event.QUEUE: Phase.QUEUED, **_ABORT_EDGES},
    Phase.QUEUED: {Event.EXECUTE: Phase.EXECUTING, **_ABORT_EDGES},
    Phase.EXECUTING: {Event.MERGE: Phase.MERGED, **_ABORT_EDGES},
    Phase.MERGED: {},
    Phase.CANCELLED: {},
    Phase.FAILED: {},
}


class TransitionTable:
    """Mapping of ``(phase, event) -> phase`` checked for completeness.

    Construction raises ``ValueError`` when a phase is missing, a terminal
    phase has outgoing edges, or a live phase cannot reach ``cancelled`` and
    ``failed``.
    """

    def __init__(self, edges: Mapping[Phase, Mapping[Event, Phase]]) -> None:
        missing = [phase.value for phase in Phase if phase not in edges]
        if missing:
            raise ValueError(f"transition table missing phases: {', '.join(missing)}")
        for phase, outgoing in edges.items():
            if phase in TERMINAL_PHASES and outgoing:
                raise ValueError(f"terminal phase {phase.value!r} has outgoing edges")
            if phase in TERMINAL_PHASES:
                continue
            targets = set(outgoing.values())
            if Phase.CANCELLED not in targets or Phase.FAILED not in targets:
                raise ValueError(
                    f"phase {phase.value!r} must be able to reach cancelled and failed"
                )
        self._edges = {phase: dict(outgoing) for phase, outgoing in edges.items()}

    def next_phase(self, phase: Phase, event: Event) -> Phase | None:
        return self._edges[phase].get(event)

    def event_for(self, current: Phase, target: Phase) -> Event | None:
        """Return the single event leading from ``current`` to ``target``."""
        for event, phase in self._edges[current].items():
            if phase is target:
                return event
        return None

    def can_transition(self, current: Phase, target: Phase) -> bool:
        return self.event_for(current, target) is not None

    def targets(self, current: Phase) -> list[Phase]:
        return list(self._edges[current].values())


TRANSITIONS = TransitionTable(DEFAULT_EDGES)
