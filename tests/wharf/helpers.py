from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import pytest

import wharf.exec as exec_util
import wharf.paths as paths
from wharf.issues import IssueTracker
from wharf.mergeq.queue import MergeQueue
from wharf.models import Phase
from wharf.operations.machine import OperationStateMachine
from wharf.operations.store import OperationStore

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


class FakeRunner:
    """Command runner that answers from a script keyed by argv prefix."""

    def __init__(self, responses: dict[tuple[str, ...], object] | None = None) -> None:
        self.responses = dict(responses or {})
        self.requests: list[exec_util.CommandRequest] = []

    def set(self, prefix: tuple[str, ...], returncode: int = 0, stdout: str = "") -> None:
        self.responses[prefix] = (returncode, stdout)

    def run(self, request: exec_util.CommandRequest) -> exec_util.CommandResult | None:
        self.requests.append(request)
        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if request.argv[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return exec_util.CommandResult(
                argv=request.argv, returncode=1, stdout="", stderr="unscripted"
            )
        response = self.responses[best]
        if response is None:
            return None
        returncode, stdout = response  # type: ignore[misc]
        return exec_util.CommandResult(
            argv=request.argv,
            returncode=returncode,
            stdout=stdout,
            stderr="" if returncode == 0 else "failed",
        )

    def argvs(self) -> list[tuple[str, ...]]:
        return [request.argv for request in self.requests]


@dataclass
class GitScript:
    """Fake ``run_git_status`` recording calls and failing chosen commands."""

    failures: dict[tuple[str, ...], str] = field(default_factory=dict)
    fail_times: dict[tuple[str, ...], int] = field(default_factory=dict)
    outputs: dict[tuple[str, ...], str] = field(default_factory=dict)
    calls: list[tuple[tuple[str, ...], Path | None]] = field(default_factory=list)

    def __call__(
        self,
        args: list[str],
        *,
        repo_root: Path,
        git_path: str | None = None,
        cwd: Path | None = None,
    ) -> tuple[bool, str]:
        argv = tuple(args)
        self.calls.append((argv, cwd))
        for prefix, remaining in self.fail_times.items():
            if remaining > 0 and argv[: len(prefix)] == prefix:
                self.fail_times[prefix] = remaining - 1
                return False, "failed"
        for prefix, detail in self.failures.items():
            if argv[: len(prefix)] == prefix:
                return False, detail
        for prefix, output in self.outputs.items():
            if argv[: len(prefix)] == prefix:
                return True, output
        return True, ""

    def commands(self) -> list[tuple[str, ...]]:
        return [argv for argv, _cwd in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(argv[: len(prefix)] == prefix for argv in self.commands())


def make_machine(
    build_dir: Path, *, tracker: IssueTracker | None = None
) -> OperationStateMachine:
    store = OperationStore(build_dir, lock_timeout=0.5)
    return OperationStateMachine(store, tracker=tracker)


def make_queue(machine: OperationStateMachine) -> MergeQueue:
    return MergeQueue(machine.store.build_dir, operations=machine.store, lock_timeout=0.5)


def advance_to(machine: OperationStateMachine, name: str, phase: Phase) -> None:
    """Walk ``name`` along the happy path until it reaches ``phase``."""
    order = [Phase.INIT, Phase.PLANNED, Phase.QUEUED, Phase.EXECUTING]
    current = machine.phase(name)
    assert current is not None
    for step in order[order.index(current) + 1 : order.index(phase) + 1]:
        machine.transition(name, step)


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
        env={**os.environ, **GIT_ENV},
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    (repo / name).write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-m", message)
    return git(repo, "rev-parse", "HEAD")


def init_remote_and_clone(root: Path, *, target: str = "main") -> tuple[Path, Path]:
    """Create a bare remote with one commit on ``target`` and a clone of it."""
    remote = root / "remote.git"
    subprocess.run(
        ["git", "init", "--bare", "-b", target, str(remote)],
        check=True,
        capture_output=True,
    )
    clone = root / "repo"
    subprocess.run(
        ["git", "clone", str(remote), str(clone)],
        check=True,
        capture_output=True,
        env={**os.environ, **GIT_ENV},
    )
    git(clone, "checkout", "-B", target)
    commit_file(clone, "README.md", "base\n", "chore: initial")
    git(clone, "push", "-u", "origin", target)
    return remote, clone


def scratch_entries(build_dir: Path) -> list[Path]:
    """Return whatever the engine left under its scratch worktree directory."""
    root = paths.scratch_dir(build_dir)
    if not root.is_dir():
        return []
    return sorted(root.iterdir())
