"""Resolve a merge target from an operation name, a path, or a branch."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .. import git
from ..models import QueueEntry
from ..operations.store import OperationStore
from ..services.errors import ValidationFailedError


@dataclass(frozen=True)
class MergeTarget:
    """What to merge.

    Attributes:
        branch: Source branch to land.
        worktree: Checkout holding ``branch``, if any.
        operation: Operation the branch belongs to, if any.
        tree_dir: Enclosing tree directory when the worktree lives at
            ``<tree>/<repo>``; removed with the worktree on cleanup.
    """

    branch: str
    worktree: Path | None = None
    operation: str | None = None
    tree_dir: Path | None = None

    @property
    def kind(self) -> str:
        if self.worktree is None:
            return "branch"
        return "worktree"


def is_worktree(path: Path, *, git_path: str | None = None) -> bool:
    """Return whether ``path`` is the top of a git checkout or linked worktree."""
    return (path / ".git").exists() and git.git_is_repo(path, git_path=git_path)


def _worktree_layout(
    path: Path, repo_name: str, *, git_path: str | None
) -> tuple[Path, Path | None] | None:
    nested = path / repo_name
    if is_worktree(nested, git_path=git_path):
        return nested, path
    if is_worktree(path, git_path=git_path):
        return path, None
    return None


def resolve_target(
    value: str,
    *,
    store: OperationStore,
    repo_root: Path,
    git_path: str | None = None,
) -> MergeTarget:
    """Resolve ``value`` into a merge target.

    An operation name takes its worktree and branch from the operation
    document (a recorded tree directory is corrected to ``<tree>/<repo>``);
    an existing directory is treated as a worktree or tree directory; anything
    else is a raw branch name.
    """
    value = value.strip()
    if not value:
        raise ValidationFailedError("merge target must not be empty")
    repo_name = repo_root.name
    state = store.get(value) if "/" not in value else None
    if state is not None:
        branch = state.branch or state.name
        if not state.worktree:
            return MergeTarget(branch=branch, operation=state.name)
        layout = _worktree_layout(Path(state.worktree), repo_name, git_path=git_path)
        if layout is None:
            raise ValidationFailedError(
                f"{state.name}: worktree {state.worktree} is not a git worktree",
                recovery_hint=f"recreate the worktree, then: wharf mergeq retry {state.name}",
            )
        worktree, tree_dir = layout
        return MergeTarget(
            branch=branch, worktree=worktree, operation=state.name, tree_dir=tree_dir
        )

    candidate = Path(value).expanduser()
    if candidate.is_dir():
        layout = _worktree_layout(candidate.resolve(), repo_name, git_path=git_path)
        if layout is None:
            raise ValidationFailedError(f"{value} is not a git worktree")
        worktree, tree_dir = layout
        if worktree.resolve() == repo_root.resolve():
            raise ValidationFailedError(
                "refusing to merge the main checkout",
                recovery_hint="pass an operation name, a worktree, or a branch",
            )
        branch = git.git_current_branch(worktree, git_path=git_path)
        if not branch or branch == "HEAD":
            raise ValidationFailedError(f"worktree {worktree} has no branch checked out")
        return MergeTarget(branch=branch, worktree=worktree, tree_dir=tree_dir)

    return MergeTarget(branch=value)


def target_for_entry(
    entry: QueueEntry,
    *,
    store: OperationStore,
    repo_root: Path,
    git_path: str | None = None,
) -> MergeTarget:
    """Build the merge target for a queue entry."""
    if entry.merge_type == "branch":
        return MergeTarget(branch=entry.source_branch)
    target = resolve_target(entry.operation, store=store, repo_root=repo_root, git_path=git_path)
    if entry.branch and entry.branch != target.branch:
        return MergeTarget(
            branch=entry.branch,
            worktree=target.worktree,
            operation=target.operation,
            tree_dir=target.tree_dir,
        )
    return target
