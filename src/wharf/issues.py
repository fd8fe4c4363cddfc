"""Typed boundary for the external issue tracker CLI (``wk``).

The tracker is only ever shelled out to:

- ``wk show <id> -o json``
- ``wk list --label <label> -o json``
- ``wk done <id>``

Issues whose status is ``done`` or ``closed`` count as closed; every other
status counts as open.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from . import exec as exec_util
from .models import IssueRecord
from .services.errors import ExternalCommandFailedError

CLOSED_STATUSES = frozenset({"done", "closed"})


def is_closed_status(status: str | None) -> bool:
    """Return whether a tracker status means closed.

    Example:
        >>> is_closed_status("Done")
        True
        >>> is_closed_status("in_progress")
        False
        >>> is_closed_status(None)
        False
    """
    if not status:
        return False
    return status.strip().lower() in CLOSED_STATUSES


@dataclass(frozen=True)
class IssueTracker:
    """Issue tracker client.

    When ``enabled`` is false every issue is treated as closed and closing is
    a no-op, so readiness and merge bookkeeping proceed without a tracker.
    """

    command: str = "wk"
    enabled: bool = True
    cwd: Path | None = None
    runner: exec_util.CommandRunner | None = None

    def _request(self, args: list[str]) -> exec_util.CommandRequest:
        return exec_util.CommandRequest(argv=(self.command, *args), cwd=self.cwd)

    def _records(self, args: list[str], *, context: str) -> list[IssueRecord]:
        spec = exec_util.CommandSpec(
            request=self._request(args),
            parser=lambda result: exec_util.parse_json_model_list(
                result, model_type=IssueRecord, context=context
            ),
            context=context,
        )
        try:
            return exec_util.run_typed(spec, runner=self.runner)
        except (exec_util.CommandExecutionError, exec_util.CommandParseError) as exc:
            raise ExternalCommandFailedError(
                f"issue tracker query failed: {exc}",
                recovery_hint=f"check that {self.command!r} is installed and configured",
            ) from exc

    def show(self, issue_id: str) -> IssueRecord | None:
        """Return one issue, or ``None`` when the tracker does not know it."""
        if not self.enabled:
            return None
        result = exec_util.run_with_runner(
            self._request(["show", issue_id, "-o", "json"]), runner=self.runner
        )
        if result is None:
            raise ExternalCommandFailedError(
                f"missing required command: {self.command}",
                recovery_hint="install the issue tracker or set issues.enabled=false",
            )
        if not result.ok:
            return None
        try:
            records = exec_util.parse_json_model_list(
                result, model_type=IssueRecord, context=f"{self.command} show {issue_id}"
            )
        except exec_util.CommandParseError as exc:
            raise ExternalCommandFailedError(str(exc)) from exc
        return records[0] if records else None

    def list_by_label(self, label: str) -> list[IssueRecord]:
        if not self.enabled:
            return []
        return self._records(
            ["list", "--label", label, "-o", "json"],
            context=f"{self.command} list --label {label}",
        )

    def open_issues(self, labels: list[str]) -> list[IssueRecord]:
        """Return open issues carrying any of ``labels`` (deduplicated by id)."""
        found: dict[str, IssueRecord] = {}
        for label in labels:
            for record in self.list_by_label(label):
                if not is_closed_status(record.status):
                    found.setdefault(record.id, record)
        return list(found.values())

    def is_closed(self, issue_id: str) -> bool:
        """Return whether the tracker reports ``issue_id`` closed.

        Unknown issues are not closed.
        """
        if not self.enabled:
            return True
        record = self.show(issue_id)
        return record is not None and is_closed_status(record.status)

    def mark_done(self, issue_id: str) -> None:
        """Mark ``issue_id`` done; already-closed issues succeed silently."""
        if not self.enabled:
            return
        result = exec_util.run_with_runner(
            self._request(["done", issue_id]), runner=self.runner
        )
        if result is not None and result.ok:
            return
        if result is not None and self.is_closed(issue_id):
            return
        detail = (
            result.detail if result is not None else f"missing required command: {self.command}"
        )
        raise ExternalCommandFailedError(
            f"failed to close issue {issue_id}: {detail}",
            recovery_hint="the queue daemon retries closing on its next cycle",
        )
