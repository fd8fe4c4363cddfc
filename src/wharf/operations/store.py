"""On-disk operation documents.

Each operation lives in ``<build>/operations/<name>/`` with ``state.json``
(the whole document, replaced atomically) and ``events.log`` (JSON lines).
Every read-modify-write runs under that operation's lock file, so unrelated
operations never contend.
"""

from __future__ import annotations

import json
import re
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from pydantic import ValidationError

from .. import config, paths
from ..locks import LockFile
from ..models import OperationState, Phase
from ..services.errors import (
    IoFailedError,
    OperationNotFoundError,
    UnexpectedStateError,
    ValidationFailedError,
)

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_name(name: str) -> str:
    """Return ``name`` stripped, or raise when it is not a usable operation name.

    Example:
        >>> validate_name(" auth-flow ")
        'auth-flow'
    """
    cleaned = name.strip()
    if not _NAME_RE.match(cleaned) or cleaned.endswith(".lock"):
        raise ValidationFailedError(
            f"invalid operation name: {name!r}",
            recovery_hint="use letters, digits, '.', '_' or '-'",
        )
    return cleaned


class OperationStore:
    """Persistence for operation documents under a build directory.

    Args:
        build_dir: Project build directory.
        lock_timeout: Seconds to wait for a contended operation lock.
    """

    def __init__(self, build_dir: Path, *, lock_timeout: float = 10.0) -> None:
        self.build_dir = build_dir
        self.lock_timeout = lock_timeout

    def state_path(self, name: str) -> Path:
        return paths.operation_state_path(self.build_dir, name)

    def events_path(self, name: str) -> Path:
        return paths.operation_events_path(self.build_dir, name)

    def exists(self, name: str) -> bool:
        return self.state_path(name).is_file()

    @contextmanager
    def locked(self, name: str) -> Iterator[LockFile]:
        lock = LockFile(
            paths.operation_lock_path(self.build_dir, name),
            f"operation {name}",
            label=f"operation {name!r}",
            timeout=self.lock_timeout,
        )
        with lock:
            yield lock

    def _read(self, name: str) -> OperationState | None:
        path = self.state_path(name)
        try:
            payload = config.load_json(path)
        except json.JSONDecodeError as exc:
            raise UnexpectedStateError(
                f"corrupt operation document {path}: {exc}",
                recovery_hint=f"inspect or remove {path.parent}",
            ) from exc
        except OSError as exc:
            raise IoFailedError(f"failed to read {path}: {exc}") from exc
        if payload is None:
            return None
        try:
            return OperationState.model_validate(payload)
        except ValidationError as exc:
            raise UnexpectedStateError(
                f"invalid operation document {path}:\n{exc}",
                recovery_hint=f"inspect or remove {path.parent}",
            ) from exc

    def _write(self, state: OperationState) -> None:
        try:
            config.write_json_atomic(self.state_path(state.name), state)
        except OSError as exc:
            raise IoFailedError(f"failed to write operation {state.name!r}: {exc}") from exc

    def get(self, name: str) -> OperationState | None:
        """Return the operation document, or ``None`` when absent."""
        return self._read(name)

    def require(self, name: str) -> OperationState:
        state = self._read(name)
        if state is None:
            raise OperationNotFoundError(name)
        return state

    def list(self) -> list[OperationState]:
        root = paths.operations_dir(self.build_dir)
        if not root.is_dir():
            return []
        states: list[OperationState] = []
        for entry in sorted(root.iterdir()):
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            state = self._read(entry.name)
            if state is not None:
                states.append(state)
        return states

    def create(
        self,
        name: str,
        *,
        worktree: str | None = None,
        branch: str | None = None,
        epic_id: str | None = None,
        blocked_by: list[str] | None = None,
        labels: list[str] | None = None,
        session: str | None = None,
        kind: str = "feature",
        phase: Phase = Phase.INIT,
    ) -> OperationState:
        """Create a new operation document; names are unique."""
        name = validate_name(name)
        if phase is Phase.MERGED:
            raise ValidationFailedError("operations cannot be created already merged")
        with self.locked(name):
            if self.exists(name):
                raise ValidationFailedError(
                    f"operation {name!r} already exists",
                    recovery_hint=f"inspect it with: wharf op show {name}",
                )
            now = config.utc_now()
            state = OperationState(
                name=name,
                phase=phase,
                worktree=worktree,
                branch=branch or name,
                epic_id=epic_id,
                blocked_by=blocked_by or [],
                labels=labels or [],
                session=session,
                kind=kind,
                created_at=now,
                updated_at=now,
            )
            self._write(state)
            self._append_event(name, {"ts": now, "event": "create", "to": phase.value})
        return state

    def update(
        self,
        name: str,
        mutate: Callable[[OperationState], OperationState | None],
        *,
        event: dict[str, object] | None = None,
    ) -> OperationState:
        """Apply ``mutate`` to the document under the operation lock.

        ``mutate`` returns the new state, or ``None`` to leave the document
        untouched. ``event`` is appended to the event log only when the
        document changed.
        """
        with self.locked(name):
            current = self.require(name)
            updated = mutate(current.model_copy(deep=True))
            if updated is None or updated == current:
                return current
            now = config.utc_now()
            try:
                updated = OperationState.model_validate(
                    {**updated.model_dump(), "updated_at": now}
                )
            except ValidationError as exc:
                raise ValidationFailedError(f"invalid update for {name!r}:\n{exc}") from exc
            self._write(updated)
            if event is not None:
                self._append_event(
                    name,
                    {"ts": now, "from": current.phase.value, "to": updated.phase.value, **event},
                )
            return updated

    def _append_event(self, name: str, record: dict[str, object]) -> None:
        path = self.events_path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            raise IoFailedError(f"failed to append event for {name!r}: {exc}") from exc

    def events(self, name: str) -> list[dict[str, object]]:
        path = self.events_path(name)
        if not path.exists():
            return []
        records: list[dict[str, object]] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                records.append(payload)
        return records

    def remove(self, name: str) -> None:
        """Delete the operation directory."""
        with self.locked(name):
            self.require(name)
            shutil.rmtree(paths.operation_dir(self.build_dir, name))
