"""Service failure contracts.

Services return typed outcomes on success and raise ServiceFailure on expected
domain/policy/runtime failures. Programmer bugs raise normal exceptions.
Every failure may carry a recovery hint; the CLI prints both and exits 1.
"""

from __future__ import annotations

from typing import Literal

ServiceFailureCode = Literal[
    "validation_failed",
    "not_found",
    "invalid_transition",
    "lock_held",
    "merge_conflict",
    "verification_failed",
    "external_command_failed",
    "io_failed",
    "unexpected_state",
]


class ServiceFailure(Exception):
    """Expected service failure: validation, contention, or runtime error.

    Raised by services instead of returning a failure value. Use ``raise
    ServiceFailure(...) from exc`` to chain a causing exception; it is
    available as ``__cause__``. Callers catch ServiceFailure and handle per
    their interface (CLI dies, daemon records it on the queue entry).
    """

    def __init__(
        self,
        code: ServiceFailureCode,
        message: str,
        *,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recovery_hint = recovery_hint

    def describe(self) -> str:
        if self.recovery_hint:
            return f"{self.message} ({self.recovery_hint})"
        return self.message


class ValidationFailedError(ServiceFailure):
    """Validation failed (invalid input, constraint violation)."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("validation_failed", message, recovery_hint=recovery_hint)


class OperationNotFoundError(ServiceFailure):
    """A mutation targeted an operation that does not exist."""

    def __init__(self, name: str, *, recovery_hint: str | None = None) -> None:
        super().__init__(
            "not_found",
            f"no operation found for {name!r}",
            recovery_hint=recovery_hint or "list operations with: wharf op list",
        )
        self.name = name


class InvalidTransitionError(ServiceFailure):
    """A phase change not permitted by the transition table."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("invalid_transition", message, recovery_hint=recovery_hint)


class LockHeldError(ServiceFailure):
    """An advisory lock is held by another process."""

    def __init__(
        self,
        message: str,
        *,
        holder: str | None,
        lock_path: str,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(
            "lock_held",
            message,
            recovery_hint=recovery_hint or f"if stale, remove: rm {lock_path}",
        )
        self.holder = holder
        self.lock_path = lock_path


class MergeConflictError(ServiceFailure):
    """Integration could not be reconciled automatically."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("merge_conflict", message, recovery_hint=recovery_hint)


class VerificationFailedError(ServiceFailure):
    """Push reported success but the commit is absent from the remote target."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("verification_failed", message, recovery_hint=recovery_hint)


class ExternalCommandFailedError(ServiceFailure):
    """External command (git, wk, etc.) failed."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("external_command_failed", message, recovery_hint=recovery_hint)


class IoFailedError(ServiceFailure):
    """I/O operation failed (read, write, config)."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("io_failed", message, recovery_hint=recovery_hint)


class UnexpectedStateError(ServiceFailure):
    """Unexpected or inconsistent state."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("unexpected_state", message, recovery_hint=recovery_hint)
