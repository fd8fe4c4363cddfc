"""Git helper functions used by the Wharf merge engine and queue."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol

from . import exec as exec_util
from .io import die


class RunGitStatusFn(Protocol):
    def __call__(
        self,
        args: list[str],
        *,
        repo_root: Path,
        git_path: str | None = None,
        cwd: Path | None = None,
    ) -> tuple[bool, str]: ...


def _run_git_capture(
    cmd: list[str], *, cwd: Path | None = None
) -> subprocess.CompletedProcess[str] | None:
    result = exec_util.run_with_runner(
        exec_util.CommandRequest(
            argv=tuple(cmd),
            cwd=cwd,
            capture_output=True,
            text=True,
        )
    )
    if result is None:
        return None
    return subprocess.CompletedProcess(
        args=list(result.argv),
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )


def _run_git_or_die(cmd: list[str], *, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    result = _run_git_capture(cmd, cwd=cwd)
    if result is None:
        die("missing required command: git")
    return result


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"], git_path=" /usr/bin/git ")
        ['/usr/bin/git', 'status']
        >>> git_command(["status"])
        ['git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = "git"
    return [resolved, *args]


def run_git_status(
    args: list[str],
    *,
    repo_root: Path,
    git_path: str | None = None,
    cwd: Path | None = None,
) -> tuple[bool, str]:
    """Run a git command and return ``(ok, detail)``.

    ``detail`` is stdout on success and the trimmed error output on failure.
    """
    target_cwd = cwd or repo_root
    result = exec_util.try_run_command(
        git_command(["-C", str(target_cwd), *args], git_path=git_path)
    )
    if result is None:
        return False, "missing required command: git"
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip()
        return False, detail or f"command failed: git {' '.join(args)}"
    return True, (result.stdout or "").strip()


def git_repo_root(start: Path, *, git_path: str | None = None) -> Path | None:
    """Return the git repository root for a starting path.

    Args:
        start: Directory to search from.

    Returns:
        Repo root path or ``None`` if not inside a git repository.
    """
    result = _run_git_or_die(
        git_command(["-C", str(start), "rev-parse", "--show-toplevel"], git_path=git_path)
    )
    if result.returncode != 0:
        return None
    resolved = result.stdout.strip()
    if not resolved:
        return None
    return Path(resolved)


def git_main_repo_root(start: Path, *, git_path: str | None = None) -> Path | None:
    """Return the main checkout for ``start``, even when it is a linked worktree."""
    result = _run_git_or_die(
        git_command(
            ["-C", str(start), "rev-parse", "--path-format=absolute", "--git-common-dir"],
            git_path=git_path,
        )
    )
    if result.returncode != 0:
        return None
    common_dir = result.stdout.strip()
    if not common_dir:
        return None
    common_path = Path(common_dir)
    if common_path.name == ".git":
        return common_path.parent
    return git_repo_root(start, git_path=git_path)


def git_current_branch(repo_dir: Path, *, git_path: str | None = None) -> str | None:
    """Return the current branch name.

    Args:
        repo_dir: Git repository directory.

    Returns:
        Branch name or ``None`` when unavailable.
    """
    result = _run_git_or_die(
        git_command(
            ["-C", str(repo_dir), "rev-parse", "--abbrev-ref", "HEAD"],
            git_path=git_path,
        )
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_ref_exists(repo_dir: Path, ref: str, *, git_path: str | None = None) -> bool:
    """Check whether a git ref exists.

    Args:
        repo_dir: Git repository directory.
        ref: Ref name (e.g., ``refs/heads/main``).

    Returns:
        ``True`` if the ref exists.
    """
    result = _run_git_or_die(
        git_command(
            ["-C", str(repo_dir), "show-ref", "--verify", "--quiet", ref],
            git_path=git_path,
        )
    )
    return result.returncode == 0


def git_branch_exists(repo_dir: Path, branch: str, *, git_path: str | None = None) -> bool:
    return git_ref_exists(repo_dir, f"refs/heads/{branch}", git_path=git_path)


def git_is_repo(repo_dir: Path, *, git_path: str | None = None) -> bool:
    """Return whether the path is inside a git work tree."""
    if not repo_dir.is_dir():
        return False
    result = _run_git_or_die(
        git_command(
            ["-C", str(repo_dir), "rev-parse", "--is-inside-work-tree"],
            git_path=git_path,
        )
    )
    return result.returncode == 0 and result.stdout.strip() == "true"


def git_is_ancestor(
    repo_dir: Path,
    ancestor: str,
    descendant: str,
    *,
    git_path: str | None = None,
) -> bool | None:
    """Return whether ``ancestor`` is an ancestor of ``descendant``.

    Returns ``True``/``False`` for git's explicit status codes, or ``None`` when
    git fails for another reason (missing ref, invalid repo, etc.).
    """
    result = _run_git_or_die(
        git_command(
            [
                "-C",
                str(repo_dir),
                "merge-base",
                "--is-ancestor",
                ancestor,
                descendant,
            ],
            git_path=git_path,
        )
    )
    if result.returncode == 0:
        return True
    if result.returncode == 1:
        return False
    return None


def parse_ls_remote_tip(output: str, ref: str) -> str | None:
    """Return the hash advertised for ``ref`` in ``git ls-remote`` output.

    Example:
        >>> parse_ls_remote_tip("abc123\\trefs/heads/main\\n", "refs/heads/main")
        'abc123'
        >>> parse_ls_remote_tip("", "refs/heads/main") is None
        True
    """
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] == ref:
            return parts[0]
    return None

