"""Command implementations exposed by the Wharf CLI."""

from .merge import merge_target
from .mergeq import (
    enqueue,
    list_entries,
    remove_entry,
    retry_entry,
    run_daemon,
    run_once,
    show_entry,
    start_daemon,
    status_daemon,
    stop_daemon,
)
from .op import (
    create_operation,
    hold_operation,
    list_operations,
    prune_operations,
    resume_operation,
    show_operation,
    transition_operation,
)

__all__ = [
    "create_operation",
    "enqueue",
    "hold_operation",
    "list_entries",
    "list_operations",
    "merge_target",
    "prune_operations",
    "remove_entry",
    "resume_operation",
    "retry_entry",
    "run_daemon",
    "run_once",
    "show_entry",
    "show_operation",
    "start_daemon",
    "status_daemon",
    "stop_daemon",
    "transition_operation",
]
