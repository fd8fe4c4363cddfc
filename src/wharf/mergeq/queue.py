"""Persisted merge queue document.

The queue lives in ``<build>/mergeq/queue.json``. Every mutation is one
read-modify-write of the whole document under the queue lock.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from pydantic import ValidationError

from .. import config, log, paths
from ..locks import LockFile
from ..models import EntryStatus, MergeType, OperationState, QueueDocument, QueueEntry
from ..operations.store import OperationStore
from ..services.errors import (
    InvalidTransitionError,
    IoFailedError,
    UnexpectedStateError,
    ValidationFailedError,
)


def sort_key(entry: QueueEntry) -> tuple[int, str]:
    return (entry.priority, entry.enqueued_at)


def _entry_not_found(name: str) -> ValidationFailedError:
    return ValidationFailedError(
        f"no merge queue entry for {name!r}",
        recovery_hint="list entries with: wharf mergeq list",
    )


class MergeQueue:
    """Merge queue operations, each a single locked read-modify-write.

    Args:
        build_dir: Project build directory.
        operations: Operation store used to resolve operation merges.
        lock_timeout: Seconds to wait for the queue lock.
    """

    def __init__(
        self,
        build_dir: Path,
        *,
        operations: OperationStore | None = None,
        lock_timeout: float = 10.0,
    ) -> None:
        self.build_dir = build_dir
        self.operations = operations or OperationStore(build_dir, lock_timeout=lock_timeout)
        self.lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return paths.queue_path(self.build_dir)

    @contextmanager
    def locked(self) -> Iterator[LockFile]:
        lock = LockFile(
            paths.queue_lock_path(self.build_dir),
            "merge queue",
            label="merge queue",
            timeout=self.lock_timeout,
        )
        with lock:
            yield lock

    def load(self) -> QueueDocument:
        """Read the queue document without locking; missing means empty."""
        try:
            payload = config.load_json(self.path)
        except json.JSONDecodeError as exc:
            raise UnexpectedStateError(
                f"corrupt merge queue {self.path}: {exc}",
                recovery_hint=f"inspect or remove {self.path}",
            ) from exc
        except OSError as exc:
            raise IoFailedError(f"failed to read {self.path}: {exc}") from exc
        if payload is None:
            return QueueDocument()
        try:
            return QueueDocument.model_validate(payload)
        except ValidationError as exc:
            raise UnexpectedStateError(
                f"invalid merge queue {self.path}:\n{exc}",
                recovery_hint=f"inspect or remove {self.path}",
            ) from exc

    def _save(self, document: QueueDocument) -> None:
        try:
            config.write_json_atomic(self.path, document)
        except OSError as exc:
            raise IoFailedError(f"failed to write {self.path}: {exc}") from exc

    @contextmanager
    def editing(self) -> Iterator[QueueDocument]:
        """Yield the document under the queue lock and save it on success."""
        with self.locked():
            document = self.load()
            before = document.model_copy(deep=True)
            yield document
            if document != before:
                self._save(document)

    def list(self) -> list[QueueEntry]:
        """Return entries ordered by ``(priority, enqueued_at)``."""
        return sorted(self.load().entries, key=sort_key)

    def get(self, name: str) -> QueueEntry | None:
        return self.load().find(name)

    def enqueue(
        self,
        name: str,
        *,
        branch: str | None = None,
        priority: int = 0,
        issue_id: str | None = None,
        merge_type: MergeType | None = None,
    ) -> QueueEntry:
        """Add or reset a merge request.

        Operation merges take worktree, branch and issue from the operation
        document and flag the operation as queued for merge. Anything that is
        not a known operation is queued as a raw branch merge.
        """
        name = name.strip()
        if not name:
            raise ValidationFailedError("merge queue entries need a name")
        state: OperationState | None = None
        if merge_type != "branch":
            state = self.operations.get(name)
            if state is None and merge_type == "operation":
                raise ValidationFailedError(
                    f"no operation found for {name!r}",
                    recovery_hint="use --branch for raw branch merges",
                )
        if state is not None and state.phase.is_terminal:
            raise InvalidTransitionError(
                f"{name}: cannot enqueue a {state.phase.value} operation"
            )
        now = config.utc_now()
        if state is not None:
            fields = {
                "operation": state.name,
                "worktree": state.worktree,
                "branch": branch or state.branch or state.name,
                "merge_type": "operation",
                "issue_id": issue_id or state.epic_id,
            }
        else:
            fields = {
                "operation": name,
                "worktree": None,
                "branch": branch or name,
                "merge_type": "branch",
                "issue_id": issue_id,
            }
        with self.editing() as document:
            existing = document.find(name)
            if existing is not None and existing.status is EntryStatus.PROCESSING:
                raise ValidationFailedError(
                    f"{name} is being merged right now",
                    recovery_hint=f"if it is stuck, run: wharf mergeq retry {name}",
                )
            entry = QueueEntry(
                **fields,
                priority=priority,
                enqueued_at=now,
                updated_at=now,
                message="queued",
            )
            if existing is not None:
                document.entries[document.entries.index(existing)] = entry
            else:
                document.entries.append(entry)
        if state is not None and not state.merge_queued:

            def mark(current: OperationState) -> OperationState:
                current.merge_queued = True
                return current

            self.operations.update(state.name, mark, event={"event": "merge_queued"})
        log.info(f"queued {entry.merge_type} merge: {entry.operation} (priority {priority})")
        return entry

    def update(self, name: str, **fields: object) -> QueueEntry:
        """Update fields of one entry in place."""
        with self.editing() as document:
            entry = document.find(name)
            if entry is None:
                raise _entry_not_found(name)
            payload = {**entry.model_dump(), **fields, "updated_at": config.utc_now()}
            try:
                updated = QueueEntry.model_validate(payload)
            except ValidationError as exc:
                raise ValidationFailedError(f"invalid queue update for {name!r}:\n{exc}") from exc
            document.entries[document.entries.index(entry)] = updated
        return updated

    def update_status(self, name: str, status: EntryStatus | str, **fields: object) -> QueueEntry:
        return self.update(name, status=EntryStatus(status), **fields)

    def retry(self, name: str) -> QueueEntry:
        """Force an entry back to ``pending`` and clear its transient flags."""
        entry = self.update(
            name,
            status=EntryStatus.PENDING,
            conflict_retried=False,
            merge_resumed=False,
            worktree_missing=False,
            attempts=0,
            message="retry requested",
        )
        log.info(f"{name}: reset to pending")
        return entry

    def remove(self, name: str) -> QueueEntry:
        with self.editing() as document:
            entry = document.find(name)
            if entry is None:
                raise _entry_not_found(name)
            document.entries.remove(entry)
        return entry

    def remove_where(self, predicate: Callable[[QueueEntry], bool]) -> list[QueueEntry]:
        """Remove every entry matching ``predicate`` in one locked write."""
        with self.editing() as document:
            removed = [entry for entry in document.entries if predicate(entry)]
            document.entries = [entry for entry in document.entries if entry not in removed]
        return removed

    def complete(self, names: list[str], *, merge_commit: str) -> list[QueueEntry]:
        """Mark entries matching any of ``names`` (operation or branch) completed."""
        now = config.utc_now()
        completed: list[QueueEntry] = []
        with self.editing() as document:
            for index, entry in enumerate(document.entries):
                if not any(entry.matches(name) for name in names if name):
                    continue
                updated = entry.model_copy(
                    update={
                        "status": EntryStatus.COMPLETED,
                        "merge_commit": merge_commit,
                        "message": f"merged as {merge_commit[:12]}",
                        "updated_at": now,
                    }
                )
                document.entries[index] = updated
                completed.append(updated)
        return completed

    def processing(self) -> list[QueueEntry]:
        return [entry for entry in self.load().entries if entry.status is EntryStatus.PROCESSING]
