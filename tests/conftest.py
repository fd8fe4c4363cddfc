# ruff: noqa: E402

import builtins
import sys
from pathlib import Path

import pytest
from _pytest.doctest import DoctestModule

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import wharf.log as wharf_log

DOCTEST_MODULES = {
    ROOT / "src" / "wharf" / "__init__.py",
    ROOT / "src" / "wharf" / "config.py",
    ROOT / "src" / "wharf" / "git.py",
    ROOT / "src" / "wharf" / "io.py",
    ROOT / "src" / "wharf" / "issues.py",
    ROOT / "src" / "wharf" / "locks.py",
    ROOT / "src" / "wharf" / "models.py",
    ROOT / "src" / "wharf" / "paths.py",
    ROOT / "src" / "wharf" / "sessions.py",
    ROOT / "src" / "wharf" / "commands" / "op.py",
    ROOT / "src" / "wharf" / "merge" / "engine.py",
    ROOT / "src" / "wharf" / "operations" / "phases.py",
    ROOT / "src" / "wharf" / "operations" / "store.py",
}


@pytest.fixture(autouse=True)
def _quiet_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "WHARF_GIT_REMOTE",
        "WHARF_DEVELOP_BRANCH",
        "WHARF_BUILD_DIR",
        "WHARF_POLL_INTERVAL",
        "WHARF_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(wharf_log, "_configured_level", None)
    monkeypatch.setattr(wharf_log, "_no_color", None)
    monkeypatch.setattr(wharf_log, "_timestamps", False)

    def fail_input(prompt: str = "") -> str:
        raise AssertionError("prompted unexpectedly")

    monkeypatch.setattr(builtins, "input", fail_input)


def pytest_collect_file(
    parent: pytest.Collector, file_path: Path
) -> DoctestModule | None:
    path = file_path if isinstance(file_path, Path) else Path(str(file_path))
    if path in DOCTEST_MODULES:
        return DoctestModule.from_parent(parent, path=path)
    return None
