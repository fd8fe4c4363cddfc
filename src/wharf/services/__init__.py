from .base import BaseService
from .errors import (
    ExternalCommandFailedError,
    InvalidTransitionError,
    IoFailedError,
    LockHeldError,
    MergeConflictError,
    OperationNotFoundError,
    ServiceFailure,
    UnexpectedStateError,
    ValidationFailedError,
    VerificationFailedError,
)

__all__ = [
    "BaseService",
    "ExternalCommandFailedError",
    "InvalidTransitionError",
    "IoFailedError",
    "LockHeldError",
    "MergeConflictError",
    "OperationNotFoundError",
    "ServiceFailure",
    "UnexpectedStateError",
    "ValidationFailedError",
    "VerificationFailedError",
]
