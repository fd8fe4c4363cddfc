"""Implementation for the ``wharf op`` commands."""

from __future__ import annotations

import json

from rich import box
from rich.console import Console
from rich.table import Table

from ..io import die, die_with_hint, say
from ..models import OperationState, Phase
from ..services.errors import ServiceFailure
from .resolve import resolve_state_machine

_FORMATS = {"table", "json"}


def _fail(exc: ServiceFailure) -> None:
    die_with_hint(exc.message, exc.recovery_hint)


def _name(args: object) -> str:
    name = str(getattr(args, "name", "") or "").strip()
    if not name:
        die("an operation name is required")
    return name


def _split_refs(values: object) -> list[str]:
    """Flatten repeated and comma separated option values.

    Example:
        >>> _split_refs(["a,b", " c "])
        ['a', 'b', 'c']
    """
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    refs: list[str] = []
    for value in values:  # type: ignore[union-attr]
        refs.extend(part.strip() for part in str(value).split(",") if part.strip())
    return refs


def _display_value(value: object) -> str:
    if value is None or value == "" or value == []:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, list):
        return ", ".join(str(item) for item in value)
    return str(value)


def create_operation(args: object) -> None:
    """Register a new operation.

    Example:
        $ wharf op create auth-flow --worktree ../trees/auth-flow --epic wk-12
    """
    name = _name(args)
    _build_dir, machine = resolve_state_machine()
    try:
        state = machine.store.create(
            name,
            worktree=getattr(args, "worktree", None),
            branch=getattr(args, "branch", None),
            epic_id=getattr(args, "epic", None),
            blocked_by=_split_refs(getattr(args, "blocked_by", None)),
            labels=_split_refs(getattr(args, "label", None)),
            session=getattr(args, "session", None),
            kind=str(getattr(args, "kind", None) or "feature"),
        )
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"Created operation {state.name} ({state.phase.value}, branch {state.branch})")


def list_operations(args: object) -> None:
    format_value = str(getattr(args, "format", "table") or "table").lower()
    if format_value not in _FORMATS:
        die(f"unsupported format: {format_value}")
    _build_dir, machine = resolve_state_machine()
    try:
        states = machine.store.list()
    except ServiceFailure as exc:
        _fail(exc)
        return
    if format_value == "json":
        payload = {"operations": [state.model_dump(mode="json") for state in states]}
        say(json.dumps(payload, indent=2, sort_keys=True))
        return
    if not states:
        say("No operations.")
        return
    table = Table(title="Operations", box=box.SIMPLE)
    table.add_column("Name", no_wrap=True)
    table.add_column("Phase", no_wrap=True)
    table.add_column("Held", no_wrap=True)
    table.add_column("Queued", no_wrap=True)
    table.add_column("Branch", no_wrap=True)
    table.add_column("Blocked By", overflow="fold")
    for state in states:
        table.add_row(
            state.name,
            state.phase.value,
            _display_value(state.held),
            _display_value(state.merge_queued),
            _display_value(state.branch),
            _display_value(state.blocked_by),
        )
    Console().print(table)


def _print_state(state: OperationState) -> None:
    for key, value in state.model_dump(mode="json").items():
        say(f"{key}: {_display_value(value)}")


def show_operation(args: object) -> None:
    name = _name(args)
    _build_dir, machine = resolve_state_machine()
    try:
        state = machine.store.require(name)
        events = machine.store.events(name) if getattr(args, "events", False) else []
    except ServiceFailure as exc:
        _fail(exc)
        return
    _print_state(state)
    if events:
        say("events:")
        for record in events:
            detail = record.get("detail")
            line = f"  {record.get('ts', '?')} {record.get('event', '?')}"
            if "from" in record and record["from"] != record.get("to"):
                line += f" {record.get('from')} -> {record.get('to')}"
            if detail:
                line += f" ({detail})"
            say(line)


def transition_operation(args: object) -> None:
    """Move an operation to its next phase, or to cancelled/failed."""
    name = _name(args)
    phase = str(getattr(args, "phase", "") or "").strip()
    if not phase:
        die("a target phase is required")
    _build_dir, machine = resolve_state_machine()
    try:
        state = machine.transition(name, phase, detail=getattr(args, "detail", None))
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"{state.name}: {state.phase.value}")


def hold_operation(args: object) -> None:
    name = _name(args)
    _build_dir, machine = resolve_state_machine()
    try:
        machine.hold(name)
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"{name}: held")


def resume_operation(args: object) -> None:
    name = _name(args)
    _build_dir, machine = resolve_state_machine()
    try:
        machine.resume(name)
    except ServiceFailure as exc:
        _fail(exc)
        return
    say(f"{name}: resumed")


def prune_operations(args: object) -> None:
    """Delete operation documents.

    Without names, every merged or cancelled operation is pruned. Named
    operations must be terminal unless ``--force`` is given.
    """
    names = [str(n).strip() for n in (getattr(args, "names", None) or []) if str(n).strip()]
    force = bool(getattr(args, "force", False))
    _build_dir, machine = resolve_state_machine()
    store = machine.store
    try:
        if names:
            targets = [store.require(name) for name in names]
        else:
            targets = [
                state
                for state in store.list()
                if state.phase in {Phase.MERGED, Phase.CANCELLED}
            ]
        for state in targets:
            if not state.phase.is_terminal and not force:
                die_with_hint(
                    f"{state.name} is {state.phase.value}",
                    f"cancel it first (wharf op transition {state.name} cancelled) or pass --force",
                )
        for state in targets:
            store.remove(state.name)
            say(f"Pruned {state.name}")
    except ServiceFailure as exc:
        _fail(exc)
        return
    if not targets:
        say("Nothing to prune.")
