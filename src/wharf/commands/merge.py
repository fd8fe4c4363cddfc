"""Implementation for ``wharf merge``: land one target synchronously."""

from __future__ import annotations

from .. import log
from ..io import die, die_with_hint, say
from ..merge.engine import MergeEngine
from ..merge.land import LandService
from ..merge.resolve import resolve_target
from ..mergeq.queue import MergeQueue
from ..services.errors import ServiceFailure
from .resolve import resolve_build_dir, resolve_state_machine


def merge_target(args: object) -> None:
    """Merge an operation, worktree path, or branch into the target branch.

    Runs in the calling process and excludes with the daemon through the
    merge lock, so it fails fast while the daemon is merging.

    Example:
        $ wharf merge auth-flow
    """
    value = str(getattr(args, "target", "") or "").strip()
    if not value:
        die("merge requires an operation, worktree path, or branch")
    repo_root, build_dir, project_config = resolve_build_dir()
    _build_dir, machine = resolve_state_machine()
    git_path = project_config.git.path
    engine = MergeEngine(
        repo_root=repo_root,
        build_dir=build_dir,
        remote=project_config.git.remote,
        target=project_config.git.develop_branch,
        git_path=git_path,
        cleanup=not bool(getattr(args, "no_cleanup", False)),
    )
    queue = MergeQueue(
        build_dir,
        operations=machine.store,
        lock_timeout=project_config.queue.lock_timeout,
    )
    lander = LandService(engine, machine, queue)
    try:
        target = resolve_target(value, store=machine.store, repo_root=repo_root, git_path=git_path)
        log.debug(f"resolved {value} to {target.kind} {target.branch}")
        result = lander(target)
    except ServiceFailure as exc:
        die_with_hint(exc.message, exc.recovery_hint)
        return
    say(
        f"Merged {result.merge.branch} into {result.merge.target} "
        f"({result.merge.strategy}): {result.merge_commit}"
    )
    if result.operation is not None and not result.issue_closed:
        say(f"{result.operation}: issue not closed yet; the merge queue will retry")
    for name in result.unblocked:
        say(f"unblocked: {name}")
    if result.merge.cleanup is not None:
        for problem in result.merge.cleanup.failed:
            say(f"cleanup: {problem}")
