"""Implementation for the ``wharf mergeq`` commands."""

from __future__ import annotations

import json

from rich import box
from rich.console import Console
from rich.table import Table

from .. import log
from ..io import die, die_with_hint, say
from ..models import QueueEntry
from ..mergeq import daemon
from ..mergeq.scheduler import run_cycle
from ..services.errors import ServiceFailure
from .resolve import resolve_build_dir, resolve_queue, resolve_scheduler

_FORMATS = {"table", "json"}


def _fail(exc: ServiceFailure) -> None:
    die_with_hint(exc.message, exc.recovery_hint)


def _display_value(value: object) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _entry_payload(entry: QueueEntry) -> dict[str, object]:
    return entry.model_dump(mode="json")


def start_daemon(args: object) -> None:
    """Start the merge queue daemon in the background.

    Example:
        $ wharf mergeq start
    """
    repo_root, build_dir, _config = resolve_build_dir()
    try:
        pid, started = daemon.start_daemon(build_dir, repo_root)
    except ServiceFailure as exc:
        _fail(exc)
        return
    if started:
        say(f"Started merge queue daemon (pid {pid}).")
    else:
        say(f"Merge queue daemon already running (pid {pid}).")


def stop_daemon(args: object) -> None:
    _repo_root, build_dir, _config = resolve_build_dir()
    if daemon.stop_daemon(build_dir):
        say("Stopped merge queue daemon.")
    else:
        say("Merge queue daemon not running.")


def status_daemon(args: object) -> None:
    _repo_root, build_dir, _config = resolve_build_dir()
    status = daemon.daemon_status(build_dir)
    if status.running:
        say(f"merge queue daemon: running (pid {status.pid})")
    else:
        say("merge queue daemon: stopped")
    say(f"log: {status.log_path}")


def run_daemon(args: object) -> None:
    """Run the scheduler loop in the foreground until interrupted."""
    if getattr(args, "log_timestamps", False):
        log.set_timestamps(True)
    ctx, project_config = resolve_scheduler()
    interval = getattr(args, "interval", None) or project_config.queue.poll_interval
    try:
        daemon.run_foreground(ctx, interval=float(interval))
    except ServiceFailure as exc:
        _fail(exc)
    except KeyboardInterrupt:
        say("Interrupted.")


def run_once(args: object) -> None:
    """Run exactly one scheduler cycle and summarize it."""
    ctx, _project_config = resolve_scheduler()
    try:
        report = run_cycle(ctx)
    except ServiceFailure as exc:
        _fail(exc)
        return
    for name in report.purged:
        say(f"purged: {name}")
    for name in report.rearmed:
        say(f"re-armed after conflict: {name}")
    if report.stalled_on:
        say(f"stalled: {report.stalled_on} is still processing")
    elif report.selected is None:
        say("Nothing ready to merge.")
    else:
        outcome = report.outcome.value if report.outcome else "unknown"
        say(f"{report.selected}: {outcome}")
        if report.merge_commit:
            say(f"merge commit: {report.merge_commit}")
    for name in report.resumed:
        say(f"resumed: {name}")


def enqueue(args: object) -> None:
    """Add an operation or branch to the merge queue.

    Example:
        $ wharf mergeq enqueue auth-flow --priority 1
    """
    name = str(getattr(args, "name", "") or "").strip()
    if not name:
        die("enqueue requires an operation or branch name")
    queue = resolve_queue()
    as_branch = bool(getattr(args, "branch", False))
    try:
        entry = queue.enqueue(
            name,
            priority=int(getattr(args, "priority", 0) or 0),
            issue_id=getattr(args, "issue", None),
            merge_type="branch" if as_branch else None,
        )
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"Queued {entry.merge_type} merge: {entry.operation}")


def list_entries(args: object) -> None:
    format_value = str(getattr(args, "format", "table") or "table").lower()
    if format_value not in _FORMATS:
        die(f"unsupported format: {format_value}")
    queue = resolve_queue()
    try:
        entries = queue.list()
    except ServiceFailure as exc:
        _fail(exc)
        return
    if format_value == "json":
        payload = {"entries": [_entry_payload(entry) for entry in entries]}
        say(json.dumps(payload, indent=2, sort_keys=True))
        return
    if not entries:
        say("Merge queue is empty.")
        return
    table = Table(title="Merge Queue", box=box.SIMPLE)
    table.add_column("Name", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Priority", justify="right")
    table.add_column("Enqueued", no_wrap=True)
    table.add_column("Message", overflow="fold")
    for entry in entries:
        table.add_row(
            entry.operation,
            entry.merge_type,
            entry.status.value,
            str(entry.priority),
            entry.enqueued_at,
            _display_value(entry.message),
        )
    Console().print(table)


def show_entry(args: object) -> None:
    name = str(getattr(args, "name", "") or "").strip()
    queue = resolve_queue()
    try:
        entry = queue.get(name)
    except ServiceFailure as exc:
        _fail(exc)
        return
    if entry is None:
        die_with_hint(f"no merge queue entry for {name!r}", "list entries with: wharf mergeq list")
        return
    for key, value in _entry_payload(entry).items():
        say(f"{key}: {_display_value(value)}")


def retry_entry(args: object) -> None:
    name = str(getattr(args, "name", "") or "").strip()
    queue = resolve_queue()
    try:
        queue.retry(name)
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"{name}: reset to pending")


def remove_entry(args: object) -> None:
    name = str(getattr(args, "name", "") or "").strip()
    queue = resolve_queue()
    try:
        entry = queue.remove(name)
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"Removed {entry.operation} from the merge queue.")
