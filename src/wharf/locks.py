"""Advisory lock files for the queue, operation documents and merges.

A lock is a small text file containing ``"<holder> (pid <pid>)"``; its
presence means the lock is held. The holder additionally keeps an exclusive
``flock`` on the file so the kernel drops the lock when the process dies. An
acquirer that finds the file present with no ``flock`` on it takes the lock
over; nothing ever expires by age.

Example:
    >>> format_holder("feature-auth", pid=42)
    'feature-auth (pid 42)'
    >>> parse_holder_pid("feature-auth (pid 42)")
    42
"""

from __future__ import annotations

import errno
import fcntl
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path

from .services.errors import LockHeldError

_HOLDER_PID_RE = re.compile(r"\(pid (\d+)\)\s*$")
DEFAULT_POLL_INTERVAL = 0.1


def format_holder(holder: str, *, pid: int | None = None) -> str:
    return f"{holder} (pid {pid if pid is not None else os.getpid()})"


def parse_holder_pid(text: str | None) -> int | None:
    if not text:
        return None
    match = _HOLDER_PID_RE.search(text.strip())
    if not match:
        return None
    return int(match.group(1))


def read_holder(path: Path) -> str | None:
    """Return the holder text stored in a lock file, if any."""
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


def pid_alive(pid: int) -> bool:
    """Return whether a process with ``pid`` exists.

    Example:
        >>> pid_alive(os.getpid())
        True
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@dataclass(frozen=True)
class LockStatus:
    """Diagnosis of a lock file."""

    path: Path
    present: bool
    holder: str | None = None
    pid: int | None = None
    alive: bool | None = None

    @property
    def stale(self) -> bool:
        return self.present and self.alive is False


def describe_lock(path: Path) -> LockStatus:
    """Describe a lock file by holder text and pid liveness."""
    if not path.exists():
        return LockStatus(path=path, present=False)
    holder = read_holder(path)
    pid = parse_holder_pid(holder)
    alive = pid_alive(pid) if pid is not None else None
    return LockStatus(path=path, present=True, holder=holder, pid=pid, alive=alive)


def _try_flock(fd: int) -> bool:
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as exc:
        if exc.errno in {errno.EWOULDBLOCK, errno.EAGAIN, errno.EACCES}:
            return False
        raise
    return True


def _same_file(fd: int, path: Path) -> bool:
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    opened = os.fstat(fd)
    return (on_disk.st_dev, on_disk.st_ino) == (opened.st_dev, opened.st_ino)


class LockFile:
    """A scoped lock guard over one lock file.

    Args:
        path: Lock file path.
        holder: Identity recorded in the file (e.g. a branch or operation).
        label: Human-readable lock name used in contention messages.
        timeout: Seconds to wait for a contended lock; ``0`` fails fast.
        recovery_hint: Remediation included in ``LockHeldError``.
    """

    def __init__(
        self,
        path: Path,
        holder: str,
        *,
        label: str = "lock",
        timeout: float = 0.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        recovery_hint: str | None = None,
    ) -> None:
        self.path = path
        self.holder = holder
        self.label = label
        self.timeout = max(timeout, 0.0)
        self.poll_interval = poll_interval
        self.recovery_hint = recovery_hint
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        while True:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
            if _try_flock(fd):
                if not _same_file(fd, self.path):
                    # the previous holder unlinked the file after we opened it
                    os.close(fd)
                    continue
                os.ftruncate(fd, 0)
                os.write(fd, format_holder(self.holder).encode("utf-8"))
                os.fsync(fd)
                self._fd = fd
                return
            os.close(fd)
            if time.monotonic() >= deadline:
                raise self._contention_error()
            time.sleep(self.poll_interval)

    def release(self) -> None:
        fd = self._fd
        if fd is None:
            return
        self._fd = None
        try:
            if _same_file(fd, self.path):
                self.path.unlink(missing_ok=True)
        finally:
            os.close(fd)

    def _contention_error(self) -> LockHeldError:
        holder = read_holder(self.path) or "unknown holder"
        return LockHeldError(
            f"{self.label} lock held by {holder}",
            holder=holder,
            lock_path=str(self.path),
            recovery_hint=self.recovery_hint,
        )

    def __enter__(self) -> "LockFile":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def is_locked(path: Path) -> bool:
    """Return whether some process currently holds the ``flock`` on ``path``."""
    try:
        fd = os.open(path, os.O_RDWR)
    except FileNotFoundError:
        return False
    try:
        if _try_flock(fd):
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        return True
    finally:
        os.close(fd)
