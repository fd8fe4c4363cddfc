"""Console I/O helpers for user-facing messages."""

from __future__ import annotations

import sys


def say(message: str) -> None:
    """Print a normal message to stdout.

    Args:
        message: Text to print.

    Returns:
        None.

    Example:
        >>> say("Hello")
        Hello
    """
    print(message)


def die(message: str, code: int = 1) -> None:
    """Print an error message and exit.

    Args:
        message: Error message to display.
        code: Exit code to use.

    Returns:
        None. Exits the process via ``sys.exit``.
    """
    print(f"error: {message}", file=sys.stderr)
    sys.exit(code)


def die_with_hint(message: str, hint: str | None, code: int = 1) -> None:
    """Exit with an error message followed by a remediation line."""
    if hint:
        die(f"{message}\n  {hint}", code=code)
    die(message, code=code)
