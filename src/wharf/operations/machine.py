"""Operation state machine: validated phase changes and merge bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field

from .. import config, log
from ..issues import IssueTracker
from ..models import OperationState, Phase
from ..services.errors import (
    InvalidTransitionError,
    ServiceFailure,
)
from .phases import TRANSITIONS, Event, TransitionTable
from .store import OperationStore


@dataclass(frozen=True)
class MergeOutcome:
    """Result of recording a merge.

    Attributes:
        state: Operation document after the merge was recorded.
        issue_closed: Whether the tracker now reflects the closure.
        unblocked: Dependents whose last blocker this merge removed.
    """

    state: OperationState
    issue_closed: bool
    unblocked: list[str] = field(default_factory=list)


def _coerce_phase(value: Phase | str) -> Phase:
    if isinstance(value, Phase):
        return value
    try:
        return Phase(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(phase.value for phase in Phase)
        raise InvalidTransitionError(
            f"unknown phase {value!r}", recovery_hint=f"choose one of: {allowed}"
        ) from exc


class OperationStateMachine:
    """Mutations of operation documents that respect the transition table."""

    def __init__(
        self,
        store: OperationStore,
        *,
        tracker: IssueTracker | None = None,
        table: TransitionTable = TRANSITIONS,
    ) -> None:
        self.store = store
        self.tracker = tracker or IssueTracker(enabled=False)
        self.table = table

    def get(self, name: str) -> OperationState | None:
        return self.store.get(name)

    def phase(self, name: str) -> Phase | None:
        state = self.store.get(name)
        return state.phase if state is not None else None

    def transition(
        self, name: str, target: Phase | str, *, detail: str | None = None
    ) -> OperationState:
        """Move ``name`` one edge forward to ``target``.

        Raises:
            InvalidTransitionError: ``target`` is not one edge away, or is
                ``merged`` (use ``mark_merged``).
            OperationNotFoundError: the operation does not exist.
        """
        target_phase = _coerce_phase(target)
        if target_phase is Phase.MERGED:
            raise InvalidTransitionError(
                f"{name}: merged is recorded by the merge engine, not set directly",
                recovery_hint=f"land the work with: wharf merge {name}",
            )

        previous: list[Phase] = []

        def mutate(state: OperationState) -> OperationState:
            event = self.table.event_for(state.phase, target_phase)
            if event is None:
                allowed = ", ".join(p.value for p in self.table.targets(state.phase)) or "none"
                raise InvalidTransitionError(
                    f"{name}: cannot move from {state.phase.value} to {target_phase.value}",
                    recovery_hint=f"allowed from {state.phase.value}: {allowed}",
                )
            previous.append(state.phase)
            state.phase = target_phase
            return state

        updated = self.store.update(
            name,
            mutate,
            event={"event": "transition", "detail": detail},
        )
        if previous:
            log.debug(f"{name}: {previous[0].value} -> {updated.phase.value}")
        return updated

    def cancel(self, name: str, *, detail: str | None = None) -> OperationState:
        return self.transition(name, Phase.CANCELLED, detail=detail)

    def fail(self, name: str, *, detail: str | None = None) -> OperationState:
        return self.transition(name, Phase.FAILED, detail=detail)

    def _set_held(self, name: str, held: bool) -> OperationState:
        def mutate(state: OperationState) -> OperationState:
            if state.phase.is_terminal:
                raise InvalidTransitionError(
                    f"{name}: cannot {'hold' if held else 'resume'} a {state.phase.value} operation"
                )
            state.held = held
            return state

        return self.store.update(
            name, mutate, event={"event": "hold" if held else "resume"}
        )

    def hold(self, name: str) -> OperationState:
        """Pause automatic processing; the phase is unchanged."""
        return self._set_held(name, True)

    def resume(self, name: str) -> OperationState:
        return self._set_held(name, False)

    def mark_merged(
        self, name: str, merge_commit: str, *, verified: bool = False
    ) -> MergeOutcome:
        """Record a landed merge, close the issue, then release dependents.

        The steps run strictly in order and a dependent is never released
        before the tracker reflects the closure; a failed close leaves
        ``issue_closed`` false for ``reconcile_merged`` to finish later.

        Args:
            name: Operation name.
            merge_commit: Commit now at the tip of the target.
            verified: The commit is already confirmed on the remote target, so
                the merge is recorded from any phase, not only ``executing``.
        """

        def mutate(state: OperationState) -> OperationState:
            if state.phase is Phase.MERGED:
                return state
            if verified and state.phase is not Phase.EXECUTING:
                log.warning(
                    f"{name}: recording landed merge {merge_commit} over phase "
                    f"{state.phase.value}"
                )
            elif self.table.next_phase(state.phase, Event.MERGE) is not Phase.MERGED:
                raise InvalidTransitionError(
                    f"{name}: cannot record a merge from phase {state.phase.value}",
                    recovery_hint=(
                        f"move it to executing first: wharf op transition {name} executing"
                    ),
                )
            state.phase = Phase.MERGED
            state.merge_commit = merge_commit
            state.merged_at = config.utc_now()
            state.merge_queued = False
            state.held = False
            return state

        state = self.store.update(
            name,
            mutate,
            event={"event": "merged", "detail": merge_commit},
        )
        return self._close_and_release(state)

    def _close_and_release(self, state: OperationState) -> MergeOutcome:
        if not state.issue_closed:
            if state.epic_id:
                try:
                    self.tracker.mark_done(state.epic_id)
                except ServiceFailure as exc:
                    log.warning(f"{state.name}: {exc.describe()}")
                    return MergeOutcome(state=state, issue_closed=False)

            def mutate(current: OperationState) -> OperationState:
                current.issue_closed = True
                return current

            state = self.store.update(
                state.name, mutate, event={"event": "issue_closed", "detail": state.epic_id}
            )
        unblocked = self.release_dependents(state)
        return MergeOutcome(state=state, issue_closed=True, unblocked=unblocked)

    def release_dependents(self, state: OperationState) -> list[str]:
        """Drop references to ``state`` from every dependent's ``blocked_by``.

        A dependent left with no blockers also has its hold cleared.

        Returns:
            Names of live dependents left with no blockers.
        """
        refs = {state.name}
        if state.epic_id:
            refs.add(state.epic_id)
        unblocked: list[str] = []
        for dependent in self.store.list():
            if dependent.name == state.name or not refs.intersection(dependent.blocked_by):
                continue

            def mutate(current: OperationState) -> OperationState:
                current.blocked_by = [ref for ref in current.blocked_by if ref not in refs]
                if not current.blocked_by and not current.phase.is_terminal:
                    current.held = False
                return current

            updated = self.store.update(
                dependent.name,
                mutate,
                event={"event": "unblocked", "detail": state.name},
            )
            if not updated.blocked_by and not updated.phase.is_terminal:
                unblocked.append(updated.name)
                log.info(f"{updated.name}: unblocked by {state.name}")
        return unblocked

    def reconcile_merged(self) -> list[str]:
        """Finish issue closure and dependent release for merged operations."""
        unblocked: list[str] = []
        for state in self.store.list():
            if state.phase is not Phase.MERGED or state.issue_closed:
                continue
            outcome = self._close_and_release(state)
            unblocked.extend(outcome.unblocked)
        return unblocked

    def _ref_resolved(self, ref: str, by_name: dict[str, OperationState]) -> bool:
        blocker = by_name.get(ref)
        if blocker is None:
            blocker = next(
                (state for state in by_name.values() if state.epic_id == ref), None
            )
        if blocker is not None:
            return blocker.phase is Phase.MERGED and blocker.issue_closed
        try:
            return self.tracker.is_closed(ref)
        except ServiceFailure as exc:
            log.debug(f"blocker {ref}: {exc.describe()}")
            return False

    def unresolved_blockers(self, name: str) -> list[str]:
        """Return the ``blocked_by`` references of ``name`` that still block it."""
        state = self.store.get(name)
        if state is None or not state.blocked_by:
            return []
        by_name = {op.name: op for op in self.store.list()}
        return [ref for ref in state.blocked_by if not self._ref_resolved(ref, by_name)]
