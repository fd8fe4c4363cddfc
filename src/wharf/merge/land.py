"""Landing service: run the engine, then record the merge everywhere."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .. import log
from ..models import Phase
from ..operations.machine import OperationStateMachine
from ..services.base import BaseService
from ..services.errors import InvalidTransitionError, OperationNotFoundError
from .engine import MergeEngine, MergeResult
from .resolve import MergeTarget

if TYPE_CHECKING:
    from ..mergeq.queue import MergeQueue


@dataclass(frozen=True)
class LandResult:
    """Outcome of a landed merge.

    Attributes:
        merge: Verified engine result.
        operation: Operation that was marked merged, if any.
        issue_closed: Whether the operation's issue is closed in the tracker.
        unblocked: Dependents released by this merge.
    """

    merge: MergeResult
    operation: str | None = None
    issue_closed: bool = False
    unblocked: list[str] = field(default_factory=list)

    @property
    def merge_commit(self) -> str:
        return self.merge.merge_commit


class LandService(BaseService[MergeTarget, LandResult]):
    """Merge a target and apply the state updates in order.

    1. The engine integrates, pushes and verifies.
    2. The operation is marked merged (which closes its issue and releases
       dependents), whatever phase it moved to while the engine ran.
    3. Queue entries for the operation name and the branch are completed.
    """

    def __init__(
        self,
        engine: MergeEngine,
        machine: OperationStateMachine,
        queue: MergeQueue,
    ) -> None:
        self.engine = engine
        self.machine = machine
        self.queue = queue

    def _preflight(self, target: MergeTarget) -> None:
        if target.operation is None:
            return
        state = self.machine.store.require(target.operation)
        if state.phase not in {Phase.EXECUTING, Phase.MERGED}:
            raise InvalidTransitionError(
                f"{state.name} is {state.phase.value}; only executing operations can merge",
                recovery_hint=f"wharf op transition {state.name} <next phase>",
            )

    def _run(self, request: MergeTarget) -> LandResult:
        self._preflight(request)
        merged = self.engine.merge(request)
        operation = request.operation
        issue_closed = False
        unblocked: list[str] = []
        if operation is not None:
            try:
                outcome = self.machine.mark_merged(
                    operation, merged.merge_commit, verified=True
                )
            except OperationNotFoundError:
                log.warning(
                    f"{operation} landed as {merged.merge_commit} but its operation was "
                    "removed; nothing to record"
                )
            else:
                issue_closed = outcome.issue_closed
                unblocked = outcome.unblocked
        names = [name for name in (operation, request.branch) if name]
        completed = self.queue.complete(names, merge_commit=merged.merge_commit)
        if completed:
            log.debug(f"completed queue entries: {', '.join(e.operation for e in completed)}")
        return LandResult(
            merge=merged,
            operation=operation,
            issue_closed=issue_closed,
            unblocked=unblocked,
        )
