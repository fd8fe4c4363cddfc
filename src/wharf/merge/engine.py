"""Merge execution engine.

Every merge runs in a Wharf-owned worktree of the project repository (the
merge workspace, ``<build>/workspace/<repo>`` on branch ``wharf/workspace``)
so the target branch never needs to be checked out anywhere. Integration
escalates through three tiers:

1. ``merge --ff-only`` of the source branch.
2. Rebase the source branch onto the fresh target, then fast-forward again.
3. ``merge --no-edit``; a conflict is aborted, never committed.

The result is pushed with an explicit ``HEAD:<target>`` refspec and verified
independently against the remote before it counts as landed.
"""

from __future__ import annotations

import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .. import git, log, paths
from ..git import RunGitStatusFn
from ..locks import LockFile
from ..services.errors import (
    ExternalCommandFailedError,
    MergeConflictError,
    ValidationFailedError,
    VerificationFailedError,
)
from .cleanup import CleanupReport, cleanup_merged_branch
from .resolve import MergeTarget

WORKSPACE_BRANCH = "wharf/workspace"

STRATEGY_FAST_FORWARD = "fast-forward"
STRATEGY_REBASE = "rebase"
STRATEGY_MERGE = "merge"


@dataclass(frozen=True)
class MergeResult:
    """A verified merge.

    Attributes:
        branch: Source branch that was landed.
        target: Integration branch it landed on.
        merge_commit: Commit now reachable from the remote target.
        strategy: Tier that integrated the branch.
        cleanup: What cleanup removed or could not remove.
    """

    branch: str
    target: str
    merge_commit: str
    strategy: str
    cleanup: CleanupReport | None = None


def _scratch_name(branch: str) -> str:
    """Directory prefix for a branch's scratch worktree.

    Example:
        >>> _scratch_name("feature/auth flow")
        'feature-auth-flow-'
    """
    return re.sub(r"[^A-Za-z0-9._-]+", "-", branch).strip("-") + "-"


class MergeEngine:
    """Integrate one branch into the target under the merge lock.

    Args:
        repo_root: Main checkout of the project repository.
        build_dir: Project build directory (workspace, scratch, merge lock).
        remote: Remote receiving the merge.
        target: Integration branch.
        git_path: Optional git executable.
        run_git_status: Git runner returning ``(ok, detail)``.
        cleanup: Whether to remove branch and worktree after landing.
    """

    def __init__(
        self,
        *,
        repo_root: Path,
        build_dir: Path,
        remote: str = "origin",
        target: str = "main",
        git_path: str | None = None,
        run_git_status: RunGitStatusFn = git.run_git_status,
        cleanup: bool = True,
    ) -> None:
        self.repo_root = repo_root
        self.build_dir = build_dir
        self.remote = remote
        self.target = target
        self.git_path = git_path
        self.run_git_status = run_git_status
        self.cleanup = cleanup

    @property
    def workspace(self) -> Path:
        return paths.workspace_dir(self.build_dir, self.repo_root.name)

    @property
    def remote_target(self) -> str:
        return f"{self.remote}/{self.target}"

    def _git(self, args: list[str], *, cwd: Path | None = None) -> tuple[bool, str]:
        return self.run_git_status(
            args, repo_root=self.repo_root, git_path=self.git_path, cwd=cwd
        )

    def _workspace_git(self, args: list[str]) -> tuple[bool, str]:
        return self._git(args, cwd=self.workspace)

    def _fetch_target(self, *, cwd: Path | None = None) -> tuple[bool, str]:
        refspec = f"+refs/heads/{self.target}:refs/remotes/{self.remote}/{self.target}"
        return self._git(["fetch", self.remote, refspec], cwd=cwd)

    def _head(self) -> str:
        ok, detail = self._workspace_git(["rev-parse", "HEAD"])
        if not ok or not detail:
            raise ExternalCommandFailedError(f"failed to resolve workspace HEAD: {detail}")
        return detail.splitlines()[0].strip()

    def merge_lock(self, holder: str) -> LockFile:
        lock_path = paths.merge_lock_path(self.build_dir)
        return LockFile(
            lock_path,
            holder,
            label="merge",
            timeout=0.0,
            recovery_hint=(
                "another merge is running; wait for it to finish "
                f"(if its pid is gone, remove {lock_path})"
            ),
        )

    def merge(self, request: MergeTarget) -> MergeResult:
        """Land ``request.branch`` on the target branch.

        Raises:
            LockHeldError: another merge holds the merge lock.
            ExternalCommandFailedError: fetch, workspace or push failure.
            MergeConflictError: the branch conflicts with the target.
            VerificationFailedError: the remote does not contain the merge.
        """
        with self.merge_lock(request.branch):
            self.sync_workspace()
            merge_ref = self._merge_ref(request.branch)
            pre_head = self._head()
            strategy = self._integrate(request, merge_ref, pre_head)
            merge_commit = self._head()
            self._push(pre_head)
            self.verify(merge_commit)
            log.success(
                f"merged {request.branch} into {self.target} "
                f"({strategy}, {merge_commit[:12]})"
            )
            report = self._cleanup(request) if self.cleanup else None
        return MergeResult(
            branch=request.branch,
            target=self.target,
            merge_commit=merge_commit,
            strategy=strategy,
            cleanup=report,
        )

    def sync_workspace(self) -> None:
        """Create the workspace if needed and reset it to the remote target.

        Fails before touching anything when the target cannot be fetched.
        """
        ok, detail = self._fetch_target()
        if not ok:
            raise ExternalCommandFailedError(
                f"failed to fetch {self.remote_target}: {detail}",
                recovery_hint=f"check access to remote {self.remote!r}",
            )
        if not (self.workspace / ".git").exists():
            self.workspace.parent.mkdir(parents=True, exist_ok=True)
            self._git(["worktree", "prune"])
            ok, detail = self._git(
                [
                    "worktree",
                    "add",
                    "--force",
                    "-B",
                    WORKSPACE_BRANCH,
                    str(self.workspace),
                    self.remote_target,
                ]
            )
            if not ok:
                raise ExternalCommandFailedError(
                    f"failed to create merge workspace {self.workspace}: {detail}",
                    recovery_hint=f"remove {self.workspace} and run: git worktree prune",
                )
            log.debug(f"created merge workspace {self.workspace}")
        ok, detail = self._workspace_git(["reset", "--hard", self.remote_target])
        if not ok:
            raise ExternalCommandFailedError(
                f"failed to reset merge workspace to {self.remote_target}: {detail}",
                recovery_hint=f"remove {self.workspace} and run: git worktree prune",
            )
        self._workspace_git(["clean", "-fdx"])

    def _merge_ref(self, branch: str) -> str:
        ok, _ = self._git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"])
        if ok:
            return branch
        ok, _ = self._git(
            ["rev-parse", "--verify", "--quiet", f"refs/remotes/{self.remote}/{branch}"]
        )
        if ok:
            return f"{self.remote}/{branch}"
        raise ValidationFailedError(
            f"branch {branch} does not exist locally or on {self.remote}",
            recovery_hint=f"remove the request with: wharf mergeq remove {branch}",
        )

    def _integrate(self, request: MergeTarget, merge_ref: str, pre_head: str) -> str:
        ok, _ = self._workspace_git(["merge", "--ff-only", merge_ref])
        if ok:
            return STRATEGY_FAST_FORWARD
        log.debug(f"{request.branch}: fast-forward not possible, rebasing")

        if merge_ref == request.branch and self._rebase(request):
            ok, _ = self._workspace_git(["merge", "--ff-only", merge_ref])
            if ok:
                return STRATEGY_REBASE
        log.debug(f"{request.branch}: rebase failed, falling back to a merge commit")

        ok, detail = self._workspace_git(["merge", "--no-edit", merge_ref])
        if ok:
            return STRATEGY_MERGE
        aborted, _ = self._workspace_git(["merge", "--abort"])
        if not aborted:
            self._workspace_git(["reset", "--hard", pre_head])
        raise MergeConflictError(
            f"{request.branch} conflicts with {self.target}: {detail}",
            recovery_hint=(
                f"rebase {request.branch} onto {self.remote_target} and resolve the "
                f"conflicts, then: wharf mergeq retry {request.operation or request.branch}"
            ),
        )

    def _rebase(self, request: MergeTarget) -> bool:
        if request.worktree is not None:
            return self._rebase_in(request.worktree, request.branch)
        scratch_root = paths.scratch_dir(self.build_dir)
        scratch_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix=_scratch_name(request.branch), dir=scratch_root))
        try:
            ok, detail = self._git(["worktree", "add", str(scratch), request.branch])
            if not ok:
                log.debug(f"{request.branch}: no scratch worktree ({detail})")
                return False
            return self._rebase_in(scratch, request.branch)
        finally:
            if (scratch / ".git").exists():
                self._git(["worktree", "remove", "--force", str(scratch)])
            shutil.rmtree(scratch, ignore_errors=True)
            self._git(["worktree", "prune"])

    def _rebase_in(self, worktree: Path, branch: str) -> bool:
        ok, detail = self._fetch_target(cwd=worktree)
        if not ok:
            log.debug(f"{branch}: fetch in {worktree} failed ({detail})")
            return False
        ok, detail = self._git(["rebase", self.remote_target], cwd=worktree)
        if ok:
            return True
        log.debug(f"{branch}: rebase failed ({detail})")
        self._git(["rebase", "--abort"], cwd=worktree)
        return False

    def _push(self, pre_head: str) -> None:
        ok, detail = self._workspace_git(["push", self.remote, f"HEAD:{self.target}"])
        if ok:
            return
        self._workspace_git(["reset", "--hard", pre_head])
        raise ExternalCommandFailedError(
            f"failed to push to {self.remote_target}: {detail}",
            recovery_hint="the target may have moved; the queue retries on its next cycle",
        )

    def verify(self, merge_commit: str) -> None:
        """Confirm the remote target contains ``merge_commit``."""
        ref = f"refs/heads/{self.target}"
        ok, listing = self._git(["ls-remote", "--heads", self.remote, ref])
        tip = git.parse_ls_remote_tip(listing, ref) if ok else None
        if tip is None:
            raise VerificationFailedError(
                f"could not read {self.remote_target} from the remote after push",
                recovery_hint=f"check {self.remote_target} by hand before retrying",
            )
        ok, detail = self._fetch_target()
        if not ok:
            raise VerificationFailedError(
                f"failed to fetch {self.remote_target} for verification: {detail}"
            )
        ok, _ = self._git(["merge-base", "--is-ancestor", merge_commit, tip])
        if not ok:
            raise VerificationFailedError(
                f"{merge_commit[:12]} is not on {self.remote_target} (remote tip {tip[:12]})",
                recovery_hint=f"check {self.remote_target} by hand before retrying",
            )

    def _cleanup(self, request: MergeTarget) -> CleanupReport:
        return cleanup_merged_branch(
            repo_root=self.repo_root,
            branch=request.branch,
            remote=self.remote,
            worktree=request.worktree,
            tree_dir=request.tree_dir,
            protected={self.target, WORKSPACE_BRANCH},
            git_path=self.git_path,
            run_git_status=self.run_git_status,
            log=log.debug,
        )
