"""Wharf command-line interface.

The typer application only parses arguments; every command builds an args
namespace and hands it to the matching implementation in ``wharf.commands``.

Example:
    $ wharf op create auth-flow --worktree ../trees/auth-flow
    $ wharf op transition auth-flow planned
    $ wharf mergeq enqueue auth-flow
    $ wharf mergeq start
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Optional

import typer

from . import __version__
from . import log as wharf_log
from .commands import merge as merge_cmd
from .commands import mergeq as mergeq_cmd
from .commands import op as op_cmd

app = typer.Typer(
    help="Land agent operations on the integration branch, one verified merge at a time.",
    no_args_is_help=True,
    add_completion=False,
)
mergeq_app = typer.Typer(help="Merge queue and daemon control.", no_args_is_help=True)
op_app = typer.Typer(help="Operation documents and phase transitions.", no_args_is_help=True)
app.add_typer(mergeq_app, name="mergeq")
app.add_typer(op_app, name="op")


def _validate_log_level(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in wharf_log.LEVEL_NAMES:
        raise typer.BadParameter(f"expected one of: {', '.join(wharf_log.LEVEL_NAMES)}")
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"wharf {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        callback=_validate_log_level,
        help="Log verbosity: trace, debug, info, success, warning or error.",
    ),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colorized output."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    if log_level is not None:
        wharf_log.set_level(log_level)
    if no_color:
        wharf_log.set_no_color(True)


@app.command("merge")
def merge_command(
    target: str = typer.Argument(..., help="Operation name, worktree path, or branch."),
    no_cleanup: bool = typer.Option(
        False, "--no-cleanup", help="Keep the branch and worktree after landing."
    ),
) -> None:
    """Merge a target into the integration branch now."""
    merge_cmd.merge_target(SimpleNamespace(target=target, no_cleanup=no_cleanup))


@mergeq_app.command("start")
def mergeq_start() -> None:
    """Start the merge queue daemon in the background."""
    mergeq_cmd.start_daemon(SimpleNamespace())


@mergeq_app.command("stop")
def mergeq_stop() -> None:
    """Stop the merge queue daemon."""
    mergeq_cmd.stop_daemon(SimpleNamespace())


@mergeq_app.command("status")
def mergeq_status() -> None:
    """Show whether the merge queue daemon is running."""
    mergeq_cmd.status_daemon(SimpleNamespace())


@mergeq_app.command("run")
def mergeq_run(
    interval: Optional[float] = typer.Option(
        None, "--interval", min=0.1, help="Seconds between cycles (default: config)."
    ),
    log_timestamps: bool = typer.Option(
        False, "--log-timestamps", help="Prefix log lines with timestamps."
    ),
) -> None:
    """Run the scheduler loop in the foreground."""
    mergeq_cmd.run_daemon(SimpleNamespace(interval=interval, log_timestamps=log_timestamps))


@mergeq_app.command("once")
def mergeq_once() -> None:
    """Run a single scheduler cycle."""
    mergeq_cmd.run_once(SimpleNamespace())


@mergeq_app.command("enqueue")
def mergeq_enqueue(
    name: str = typer.Argument(..., help="Operation or branch name."),
    branch: bool = typer.Option(False, "--branch", help="Treat NAME as a raw branch."),
    priority: int = typer.Option(0, "--priority", help="Lower values merge first."),
    issue: Optional[str] = typer.Option(None, "--issue", help="Tracker issue for this merge."),
) -> None:
    """Add an operation or branch to the merge queue."""
    mergeq_cmd.enqueue(SimpleNamespace(name=name, branch=branch, priority=priority, issue=issue))


@mergeq_app.command("list")
def mergeq_list(
    format: str = typer.Option("table", "--format", help="Output format: table or json."),
) -> None:
    """List merge queue entries in processing order."""
    mergeq_cmd.list_entries(SimpleNamespace(format=format))


@mergeq_app.command("show")
def mergeq_show(name: str = typer.Argument(..., help="Queue entry name.")) -> None:
    """Show one merge queue entry."""
    mergeq_cmd.show_entry(SimpleNamespace(name=name))


@mergeq_app.command("retry")
def mergeq_retry(name: str = typer.Argument(..., help="Queue entry name.")) -> None:
    """Reset an entry to pending."""
    mergeq_cmd.retry_entry(SimpleNamespace(name=name))


@mergeq_app.command("remove")
def mergeq_remove(name: str = typer.Argument(..., help="Queue entry name.")) -> None:
    """Remove an entry from the merge queue."""
    mergeq_cmd.remove_entry(SimpleNamespace(name=name))


@op_app.command("create")
def op_create(
    name: str = typer.Argument(..., help="Operation name."),
    worktree: Optional[str] = typer.Option(None, "--worktree", help="Worktree path."),
    branch: Optional[str] = typer.Option(None, "--branch", help="Branch (default: NAME)."),
    epic: Optional[str] = typer.Option(None, "--epic", help="Tracker issue for the operation."),
    blocked_by: Optional[list[str]] = typer.Option(
        None, "--blocked-by", help="Operation or issue that must land first (repeatable)."
    ),
    label: Optional[list[str]] = typer.Option(
        None, "--label", help="Issue label gating the merge (repeatable)."
    ),
    session: Optional[str] = typer.Option(None, "--session", help="Agent tmux session."),
    kind: str = typer.Option("feature", "--kind", help="Operation kind."),
) -> None:
    """Register a new operation."""
    op_cmd.create_operation(
        SimpleNamespace(
            name=name,
            worktree=worktree,
            branch=branch,
            epic=epic,
            blocked_by=blocked_by,
            label=label,
            session=session,
            kind=kind,
        )
    )


@op_app.command("list")
def op_list(
    format: str = typer.Option("table", "--format", help="Output format: table or json."),
) -> None:
    """List operations."""
    op_cmd.list_operations(SimpleNamespace(format=format))


@op_app.command("show")
def op_show(
    name: str = typer.Argument(..., help="Operation name."),
    events: bool = typer.Option(False, "--events", help="Include the event log."),
) -> None:
    """Show one operation document."""
    op_cmd.show_operation(SimpleNamespace(name=name, events=events))


@op_app.command("transition")
def op_transition(
    name: str = typer.Argument(..., help="Operation name."),
    phase: str = typer.Argument(..., help="Target phase."),
    detail: Optional[str] = typer.Option(None, "--detail", help="Note for the event log."),
) -> None:
    """Move an operation to another phase."""
    op_cmd.transition_operation(SimpleNamespace(name=name, phase=phase, detail=detail))


@op_app.command("hold")
def op_hold(name: str = typer.Argument(..., help="Operation name.")) -> None:
    """Pause automatic processing of an operation."""
    op_cmd.hold_operation(SimpleNamespace(name=name))


@op_app.command("resume")
def op_resume(name: str = typer.Argument(..., help="Operation name.")) -> None:
    """Clear the hold flag of an operation."""
    op_cmd.resume_operation(SimpleNamespace(name=name))


@op_app.command("prune")
def op_prune(
    names: Optional[list[str]] = typer.Argument(None, help="Operations to prune."),
    force: bool = typer.Option(False, "--force", help="Also prune live operations."),
) -> None:
    """Delete merged or cancelled operation documents."""
    op_cmd.prune_operations(SimpleNamespace(names=names, force=force))


def main() -> None:
    """Entry point for the ``wharf`` console script."""
    app()
