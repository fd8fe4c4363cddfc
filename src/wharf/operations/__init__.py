"""Operation documents and their lifecycle."""

from ..models import Phase
from .machine import MergeOutcome, OperationStateMachine
from .phases import TRANSITIONS, Event, TransitionTable
from .store import OperationStore, validate_name

__all__ = [
    "Event",
    "MergeOutcome",
    "OperationStateMachine",
    "OperationStore",
    "Phase",
    "TRANSITIONS",
    "TransitionTable",
    "validate_name",
]
