"""Path helpers for locating Wharf data directories and files.

Everything Wharf persists for a project lives under its build directory::

    <build>/
      .merge.lock
      operations/<name>/state.json
      operations/<name>/events.log
      operations/.locks/<name>.lock
      mergeq/queue.json
      mergeq/.queue.lock
      mergeq/daemon.pid
      mergeq/daemon.log
      mergeq/.daemon.lock
      workspace/<repo>/
      scratch/
"""

from pathlib import Path

from platformdirs import user_data_dir

WHARF_APP_NAME = "wharf"
PROJECT_CONFIG_DIRNAME = ".wharf"
PROJECT_CONFIG_FILENAME = "config.json"
INSTALLED_CONFIG_USER_FILENAME = "config.user.json"
OPERATIONS_DIRNAME = "operations"
OPERATION_STATE_FILENAME = "state.json"
OPERATION_EVENTS_FILENAME = "events.log"
LOCKS_DIRNAME = ".locks"
MERGEQ_DIRNAME = "mergeq"
QUEUE_FILENAME = "queue.json"
QUEUE_LOCK_FILENAME = ".queue.lock"
MERGE_LOCK_FILENAME = ".merge.lock"
DAEMON_PID_FILENAME = "daemon.pid"
DAEMON_LOG_FILENAME = "daemon.log"
DAEMON_LOCK_FILENAME = ".daemon.lock"
WORKSPACE_DIRNAME = "workspace"
SCRATCH_DIRNAME = "scratch"


def wharf_data_dir() -> Path:
    """Return the base Wharf user data directory.

    Example:
        >>> isinstance(wharf_data_dir(), Path)
        True
    """
    return Path(user_data_dir(WHARF_APP_NAME))


def installed_config_path() -> Path:
    """Return the path to the installed defaults config file.

    Example:
        >>> installed_config_path().name == INSTALLED_CONFIG_USER_FILENAME
        True
    """
    return wharf_data_dir() / INSTALLED_CONFIG_USER_FILENAME


def project_config_path(repo_root: Path) -> Path:
    """Return the project config path for a repository."""
    return repo_root / PROJECT_CONFIG_DIRNAME / PROJECT_CONFIG_FILENAME


def operations_dir(build_dir: Path) -> Path:
    return build_dir / OPERATIONS_DIRNAME


def operation_dir(build_dir: Path, name: str) -> Path:
    """Return the directory holding one operation's documents.

    Example:
        >>> operation_dir(Path("/b"), "auth").as_posix()
        '/b/operations/auth'
    """
    return operations_dir(build_dir) / name


def operation_state_path(build_dir: Path, name: str) -> Path:
    return operation_dir(build_dir, name) / OPERATION_STATE_FILENAME


def operation_events_path(build_dir: Path, name: str) -> Path:
    return operation_dir(build_dir, name) / OPERATION_EVENTS_FILENAME


def operation_lock_path(build_dir: Path, name: str) -> Path:
    """Return the per-operation lock path.

    Lock files live outside the operation directory so pruning an operation
    never races a lock holder.

    Example:
        >>> operation_lock_path(Path("/b"), "auth").as_posix()
        '/b/operations/.locks/auth.lock'
    """
    return operations_dir(build_dir) / LOCKS_DIRNAME / f"{name}.lock"


def mergeq_dir(build_dir: Path) -> Path:
    return build_dir / MERGEQ_DIRNAME


def queue_path(build_dir: Path) -> Path:
    return mergeq_dir(build_dir) / QUEUE_FILENAME


def queue_lock_path(build_dir: Path) -> Path:
    return mergeq_dir(build_dir) / QUEUE_LOCK_FILENAME


def merge_lock_path(build_dir: Path) -> Path:
    """Return the merge lock path.

    Example:
        >>> merge_lock_path(Path("/b")).as_posix()
        '/b/.merge.lock'
    """
    return build_dir / MERGE_LOCK_FILENAME


def daemon_pid_path(build_dir: Path) -> Path:
    return mergeq_dir(build_dir) / DAEMON_PID_FILENAME


def daemon_log_path(build_dir: Path) -> Path:
    return mergeq_dir(build_dir) / DAEMON_LOG_FILENAME


def daemon_lock_path(build_dir: Path) -> Path:
    return mergeq_dir(build_dir) / DAEMON_LOCK_FILENAME


def workspace_dir(build_dir: Path, repo_name: str) -> Path:
    """Return the merge workspace checkout for a repository."""
    return build_dir / WORKSPACE_DIRNAME / repo_name


def scratch_dir(build_dir: Path) -> Path:
    return build_dir / SCRATCH_DIRNAME


def ensure_dir(path: Path) -> None:
    """Create a directory (and parents) if it does not exist.

    Args:
        path: Directory path to create.

    Returns:
        None.
    """
    path.mkdir(parents=True, exist_ok=True)
