"""Shared repository and service resolution helpers for commands."""

from __future__ import annotations

from pathlib import Path

from .. import config, git, paths
from ..io import die
from ..issues import IssueTracker
from ..models import ProjectConfig
from ..mergeq.queue import MergeQueue
from ..mergeq.scheduler import SchedulerContext, build_context
from ..operations.machine import OperationStateMachine
from ..operations.store import OperationStore


def resolve_current_repo() -> tuple[Path, ProjectConfig]:
    """Resolve the main checkout and its configuration from the working directory.

    Running from inside a linked worktree resolves to the main checkout, so
    every operation worktree shares one build directory.
    """
    cwd = Path.cwd()
    repo_root = git.git_main_repo_root(cwd)
    if repo_root is None:
        die("not inside a git repository")
    return repo_root, config.load_project_config(repo_root)


def resolve_build_dir() -> tuple[Path, Path, ProjectConfig]:
    repo_root, project_config = resolve_current_repo()
    build_dir = config.resolve_build_dir(repo_root, project_config)
    paths.ensure_dir(build_dir)
    return repo_root, build_dir, project_config


def resolve_state_machine() -> tuple[Path, OperationStateMachine]:
    repo_root, build_dir, project_config = resolve_build_dir()
    store = OperationStore(build_dir, lock_timeout=project_config.queue.lock_timeout)
    tracker = IssueTracker(
        command=project_config.issues.command,
        enabled=project_config.issues.enabled,
        cwd=repo_root,
    )
    return build_dir, OperationStateMachine(store, tracker=tracker)


def resolve_queue() -> MergeQueue:
    _repo_root, build_dir, project_config = resolve_build_dir()
    return MergeQueue(build_dir, lock_timeout=project_config.queue.lock_timeout)


def resolve_scheduler() -> tuple[SchedulerContext, ProjectConfig]:
    repo_root, project_config = resolve_current_repo()
    ctx = build_context(repo_root, project_config)
    paths.ensure_dir(ctx.build_dir)
    return ctx, project_config
