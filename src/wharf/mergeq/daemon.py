"""Merge queue daemon process control."""

from __future__ import annotations

import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .. import exec, log, paths
from ..locks import LockFile, pid_alive
from ..services.errors import ExternalCommandFailedError
from .scheduler import SchedulerContext, run_loop


@dataclass(frozen=True)
class DaemonStatus:
    running: bool
    pid: int | None
    log_path: Path


def read_pid(path: Path) -> int | None:
    if not path.exists():
        return None
    try:
        value = int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None
    return value if value > 0 else None


def daemon_status(build_dir: Path) -> DaemonStatus:
    pid = read_pid(paths.daemon_pid_path(build_dir))
    running = pid is not None and pid_alive(pid)
    return DaemonStatus(
        running=running,
        pid=pid if running else None,
        log_path=paths.daemon_log_path(build_dir),
    )


def start_daemon(build_dir: Path, repo_root: Path) -> tuple[int, bool]:
    """Spawn ``wharf mergeq run`` detached.

    Returns:
        ``(pid, started)``; ``started`` is false when a daemon was already
        running.
    """
    status = daemon_status(build_dir)
    if status.running and status.pid is not None:
        return status.pid, False
    paths.ensure_dir(paths.mergeq_dir(build_dir))
    cmd = [sys.executable, "-m", "wharf", "mergeq", "run", "--log-timestamps"]
    pid = exec.run_command_detached(cmd, cwd=repo_root, log_path=status.log_path)
    if pid is None:
        raise ExternalCommandFailedError(f"failed to start merge queue daemon: {cmd[0]}")
    paths.daemon_pid_path(build_dir).write_text(str(pid), encoding="utf-8")
    return pid, True


def stop_daemon(build_dir: Path) -> bool:
    """Send SIGTERM to a running daemon; return whether one was running."""
    pid_path = paths.daemon_pid_path(build_dir)
    pid = read_pid(pid_path)
    if pid is None:
        return False
    if not pid_alive(pid):
        pid_path.unlink(missing_ok=True)
        return False
    os.kill(pid, signal.SIGTERM)
    pid_path.unlink(missing_ok=True)
    return True


def _raise_system_exit(signum: int, _frame: object) -> None:
    raise SystemExit(128 + signum)


def run_foreground(
    ctx: SchedulerContext,
    *,
    interval: float,
    max_cycles: int | None = None,
    sleep: Callable[[float], None] | None = None,
) -> int:
    """Run the scheduler loop in this process until stopped.

    Only one loop runs per build directory. SIGTERM raises ``SystemExit`` so
    every lock guard unwinds before the process exits.
    """
    previous = signal.signal(signal.SIGTERM, _raise_system_exit)
    pid_path = paths.daemon_pid_path(ctx.build_dir)
    try:
        with LockFile(
            paths.daemon_lock_path(ctx.build_dir),
            "merge queue daemon",
            label="merge queue daemon",
            recovery_hint="stop it with: wharf mergeq stop",
        ):
            recorded = read_pid(pid_path)
            if recorded is None or not pid_alive(recorded):
                paths.ensure_dir(pid_path.parent)
                pid_path.write_text(str(os.getpid()), encoding="utf-8")
            log.info(
                f"merge queue daemon running (pid {os.getpid()}, every {interval:g}s, "
                f"target {ctx.remote}/{ctx.target})"
            )
            kwargs = {"sleep": sleep} if sleep is not None else {}
            try:
                return run_loop(ctx, interval=interval, max_cycles=max_cycles, **kwargs)
            finally:
                if read_pid(pid_path) == os.getpid():
                    pid_path.unlink(missing_ok=True)
                log.info("merge queue daemon stopped")
    finally:
        signal.signal(signal.SIGTERM, previous)
