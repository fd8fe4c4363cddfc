"""Agent session liveness check and resume hook.

Operations run their agent inside a named tmux session. The queue only merges
an operation once its session has exited, and it can nudge a finished agent
back to work through the configured resume command.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from . import exec as exec_util
from . import log
from .models import OperationState


def render_resume_command(
    template: list[str], *, operation: str, worktree: str | None, branch: str | None
) -> list[str]:
    """Substitute operation placeholders into a resume command template.

    Example:
        >>> render_resume_command(
        ...     ["agent", "resume", "{operation}", "--cwd", "{worktree}"],
        ...     operation="auth",
        ...     worktree="/tree/auth",
        ...     branch=None,
        ... )
        ['agent', 'resume', 'auth', '--cwd', '/tree/auth']
    """
    values = {
        "operation": operation,
        "worktree": worktree or "",
        "branch": branch or operation,
    }
    return [part.format(**values) for part in template]


@dataclass(frozen=True)
class AgentSessions:
    """Session control for operation agents."""

    resume_command: list[str] = field(default_factory=list)
    tmux_command: str = "tmux"
    runner: exec_util.CommandRunner | None = None

    def is_running(self, session: str | None) -> bool:
        """Return whether a tmux session with that name is alive."""
        if not session:
            return False
        result = exec_util.run_with_runner(
            exec_util.CommandRequest(argv=(self.tmux_command, "has-session", "-t", session)),
            runner=self.runner,
        )
        return result is not None and result.ok

    def has_exited(self, state: OperationState) -> bool:
        return not self.is_running(state.session)

    def resume(self, state: OperationState, *, log_path: Path | None = None) -> bool:
        """Launch the resume hook for ``state``; ``False`` when none is configured."""
        if not self.resume_command:
            log.debug(f"no resume command configured; {state.name} needs a manual resume")
            return False
        argv = render_resume_command(
            self.resume_command,
            operation=state.name,
            worktree=state.worktree,
            branch=state.branch,
        )
        cwd = Path(state.worktree) if state.worktree and Path(state.worktree).is_dir() else None
        pid = exec_util.run_command_detached(argv, cwd=cwd, log_path=log_path)
        if pid is None:
            log.warning(f"resume command not found: {argv[0]}")
            return False
        log.info(f"resumed agent for {state.name} (pid {pid})")
        return True
