"""Post-merge cleanup of branches, worktrees and tree directories."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .. import git
from ..git import RunGitStatusFn


@dataclass
class CleanupReport:
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def cleanup_merged_branch(
    *,
    repo_root: Path,
    branch: str,
    remote: str,
    worktree: Path | None = None,
    tree_dir: Path | None = None,
    protected: set[str] | None = None,
    git_path: str | None = None,
    run_git_status: RunGitStatusFn = git.run_git_status,
    log: Callable[[str], None] | None = None,
) -> CleanupReport:
    """Remove everything a landed branch left behind.

    The worktree goes first (a branch checked out anywhere cannot be
    deleted), then the tree directory when the worktree lived at
    ``<tree>/<repo>``, then the local branch (``-d`` falling back to ``-D``)
    and finally the remote branch if the remote still has it. Failures are
    reported, not raised: the merge itself has already landed.
    """
    report = CleanupReport()

    def note(bucket: list[str], message: str) -> None:
        bucket.append(message)
        if log:
            log(f"cleanup {message}")

    if worktree is not None:
        if not worktree.exists():
            note(report.skipped, f"worktree {worktree} (missing)")
        else:
            ok, detail = run_git_status(
                ["worktree", "remove", "--force", str(worktree)],
                repo_root=repo_root,
                git_path=git_path,
            )
            if ok:
                note(report.removed, f"worktree {worktree}")
            else:
                note(report.failed, f"worktree {worktree} ({detail})")
        if tree_dir is not None and tree_dir != worktree and tree_dir.exists():
            try:
                shutil.rmtree(tree_dir)
            except OSError as exc:
                note(report.failed, f"tree {tree_dir} ({exc})")
            else:
                note(report.removed, f"tree {tree_dir}")
        run_git_status(["worktree", "prune"], repo_root=repo_root, git_path=git_path)

    if branch in (protected or set()):
        note(report.skipped, f"branch {branch} (protected)")
        return report

    ok, _detail = run_git_status(
        ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
        repo_root=repo_root,
        git_path=git_path,
    )
    if ok:
        deleted, detail = run_git_status(
            ["branch", "-d", branch], repo_root=repo_root, git_path=git_path
        )
        if not deleted:
            deleted, detail = run_git_status(
                ["branch", "-D", branch], repo_root=repo_root, git_path=git_path
            )
        if deleted:
            note(report.removed, f"branch {branch}")
        else:
            note(report.failed, f"branch {branch} ({detail})")
    else:
        note(report.skipped, f"branch {branch} (no local branch)")

    ref = f"refs/heads/{branch}"
    ok, listing = run_git_status(
        ["ls-remote", "--heads", remote, ref], repo_root=repo_root, git_path=git_path
    )
    if ok and git.parse_ls_remote_tip(listing, ref):
        deleted, detail = run_git_status(
            ["push", remote, "--delete", branch], repo_root=repo_root, git_path=git_path
        )
        if deleted:
            note(report.removed, f"remote branch {remote}/{branch}")
        else:
            note(report.failed, f"remote branch {remote}/{branch} ({detail})")
    elif ok:
        note(report.skipped, f"remote branch {remote}/{branch} (absent)")
    else:
        note(report.failed, f"remote branch {remote}/{branch} ({listing})")
    return report
