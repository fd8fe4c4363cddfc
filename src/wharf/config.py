"""Configuration helpers for Wharf projects.

Configuration is layered: built-in defaults, installed defaults
(``config.user.json`` in the user data directory), the project file
``<repo>/.wharf/config.json`` and finally ``WHARF_*`` environment overrides.

Example:
    >>> from wharf.config import utc_now
    >>> utc_now().endswith("Z")
    True
"""

from __future__ import annotations

import datetime as dt
import json
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Mapping

from pydantic import BaseModel, ValidationError

from . import paths
from .io import die
from .models import ProjectConfig

ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "WHARF_GIT_REMOTE": ("git", "remote"),
    "WHARF_DEVELOP_BRANCH": ("git", "develop_branch"),
    "WHARF_BUILD_DIR": ("build_dir",),
    "WHARF_POLL_INTERVAL": ("queue", "poll_interval"),
}


def utc_now() -> str:
    """Return the current UTC timestamp in ISO-8601 format.

    Returns:
        UTC timestamp like ``2026-01-18T12:34:56Z``.

    Example:
        >>> timestamp = utc_now()
        >>> timestamp.endswith("Z")
        True
    """
    now = dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def load_json(path: Path) -> dict | None:
    """Load a JSON file if it exists.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload as a dict, or ``None`` if the file does not exist.

    Example:
        >>> from pathlib import Path
        >>> load_json(Path("missing.json")) is None
        True
    """
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_text_atomic(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Atomically replace a text file with new content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            "w",
            encoding=encoding,
            delete=False,
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
        ) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
            temp_path = Path(handle.name)
        os.replace(temp_path, path)
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)


def write_json_atomic(path: Path, payload: dict | BaseModel) -> None:
    """Serialize ``payload`` and atomically replace ``path`` with it."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    write_text_atomic(path, json.dumps(payload, indent=2) + "\n")


def _deep_merge(base: dict, override: Mapping[str, object]) -> dict:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides(env: Mapping[str, str] | None = None) -> dict:
    """Return a nested config payload built from ``WHARF_*`` variables.

    Example:
        >>> env_overrides({"WHARF_GIT_REMOTE": "upstream"})
        {'git': {'remote': 'upstream'}}
        >>> env_overrides({"WHARF_BUILD_DIR": "  "})
        {}
    """
    source = os.environ if env is None else env
    payload: dict = {}
    for name, key_path in ENV_OVERRIDES.items():
        raw = source.get(name)
        if raw is None or not raw.strip():
            continue
        target = payload
        for key in key_path[:-1]:
            target = target.setdefault(key, {})
        target[key_path[-1]] = raw.strip()
    return payload


def parse_project_config(
    payload: dict, source: Path | str | None = None
) -> ProjectConfig:
    """Validate a project config payload.

    Args:
        payload: Raw config payload.
        source: Optional path or label for error messages.

    Returns:
        Parsed ``ProjectConfig``.

    Example:
        >>> parse_project_config({"git": {"remote": "upstream"}}).git.remote
        'upstream'
    """
    try:
        return ProjectConfig.model_validate(payload)
    except ValidationError as exc:
        location = f" at {source}" if source else ""
        die(f"invalid project config{location}:\n{exc}")


def load_installed_defaults(path: Path | None = None) -> dict:
    """Load the installed defaults payload, or ``{}`` when absent."""
    defaults_path = path or paths.installed_config_path()
    payload = load_json(defaults_path)
    if not payload:
        return {}
    if not isinstance(payload, dict):
        die(f"invalid installed defaults at {defaults_path}: expected an object")
    return payload


def load_project_config(
    repo_root: Path,
    *,
    env: Mapping[str, str] | None = None,
    installed_path: Path | None = None,
) -> ProjectConfig:
    """Resolve the effective configuration for a repository.

    Args:
        repo_root: Root of the project checkout.
        env: Environment mapping to read overrides from (defaults to
            ``os.environ``).
        installed_path: Override for the installed defaults file.

    Returns:
        Validated ``ProjectConfig``.
    """
    payload: dict = {}
    payload = _deep_merge(payload, load_installed_defaults(installed_path))
    project_path = paths.project_config_path(repo_root)
    project_payload = load_json(project_path)
    if project_payload:
        if not isinstance(project_payload, dict):
            die(f"invalid project config at {project_path}: expected an object")
        payload = _deep_merge(payload, project_payload)
    payload = _deep_merge(payload, env_overrides(env))
    return parse_project_config(payload, project_path)


def resolve_build_dir(repo_root: Path, config: ProjectConfig) -> Path:
    """Resolve the build directory, relative paths anchored at ``repo_root``.

    Example:
        >>> resolve_build_dir(Path("/repo"), ProjectConfig()).as_posix()
        '/repo/.wharf/build'
    """
    build_dir = Path(config.build_dir).expanduser()
    if not build_dir.is_absolute():
        build_dir = repo_root / build_dir
    return build_dir
