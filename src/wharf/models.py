"""Pydantic models for Wharf configuration and persisted documents."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

QUEUE_DOCUMENT_VERSION = 1
DEFAULT_ISSUE_LABEL_PREFIX = "plan:"


class Phase(str, Enum):
    """Lifecycle phase of an operation.

    Example:
        >>> Phase("merged").is_terminal
        True
        >>> Phase.EXECUTING.is_terminal
        False
    """

    INIT = "init"
    PLANNED = "planned"
    QUEUED = "queued"
    EXECUTING = "executing"
    MERGED = "merged"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({Phase.MERGED, Phase.CANCELLED, Phase.FAILED})


class EntryStatus(str, Enum):
    """Status of a merge queue entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CONFLICT = "conflict"


MergeType = Literal["operation", "branch"]


def _clean_optional(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip()
        if not normalized or normalized.lower() == "null":
            return None
        return normalized
    return value


class GitSection(BaseModel):
    """Git configuration for a project.

    Attributes:
        path: Git executable path (default ``git``).
        remote: Remote that receives merged work.
        develop_branch: Integration branch every merge lands on.

    Example:
        >>> GitSection(develop_branch=" develop ").develop_branch
        'develop'
    """

    model_config = ConfigDict(extra="allow")

    path: str = "git"
    remote: str = "origin"
    develop_branch: str = "main"

    @field_validator("path", mode="before")
    @classmethod
    def normalize_path(cls, value: object) -> object:
        if value is None:
            return "git"
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or "git"
        return value

    @field_validator("remote", "develop_branch", mode="before")
    @classmethod
    def normalize_names(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("remote", "develop_branch", mode="after")
    @classmethod
    def require_names(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value


class QueueSection(BaseModel):
    """Merge queue daemon settings.

    Attributes:
        poll_interval: Seconds to sleep between daemon cycles.
        max_attempts: Transient failures tolerated before an entry fails.
        lock_timeout: Seconds to wait for the queue or operation lock.
    """

    model_config = ConfigDict(extra="allow")

    poll_interval: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    lock_timeout: float = Field(default=10.0, ge=0)


class IssuesSection(BaseModel):
    """Issue tracker integration.

    Attributes:
        enabled: Whether readiness and merge bookkeeping consult the tracker.
        command: Tracker executable (default ``wk``).
    """

    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    command: str = "wk"

    @field_validator("command", mode="before")
    @classmethod
    def normalize_command(cls, value: object) -> object:
        if value is None:
            return "wk"
        if isinstance(value, str):
            return value.strip() or "wk"
        return value


class AgentSection(BaseModel):
    """Agent session integration.

    Attributes:
        resume_command: Argument template used to resume an operation's agent
            session; supports ``{operation}``, ``{worktree}`` and ``{branch}``.
    """

    model_config = ConfigDict(extra="allow")

    resume_command: list[str] = Field(default_factory=list)

    @field_validator("resume_command", mode="before")
    @classmethod
    def normalize_resume_command(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return value


class ProjectConfig(BaseModel):
    """Resolved project configuration.

    Example:
        >>> ProjectConfig().git.remote
        'origin'
    """

    model_config = ConfigDict(extra="allow")

    build_dir: str = ".wharf/build"
    git: GitSection = Field(default_factory=GitSection)
    queue: QueueSection = Field(default_factory=QueueSection)
    issues: IssuesSection = Field(default_factory=IssuesSection)
    agent: AgentSection = Field(default_factory=AgentSection)


class OperationState(BaseModel):
    """Persisted operation document (``state.json``)."""

    model_config = ConfigDict(extra="allow", use_enum_values=False)

    name: str
    phase: Phase = Phase.INIT
    held: bool = False
    worktree: str | None = None
    branch: str | None = None
    epic_id: str | None = None
    merge_commit: str | None = None
    merged_at: str | None = None
    merge_queued: bool = False
    issue_closed: bool = False
    blocked_by: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    session: str | None = None
    kind: str = "feature"
    created_at: str
    updated_at: str

    @field_validator("worktree", "branch", "epic_id", "merge_commit", "session", mode="before")
    @classmethod
    def normalize_optional(cls, value: object) -> object:
        return _clean_optional(value)

    @field_validator("blocked_by", "labels", mode="before")
    @classmethod
    def normalize_refs(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return value
        refs: list[str] = []
        for item in value:
            cleaned = _clean_optional(item)
            if isinstance(cleaned, str) and cleaned not in refs:
                refs.append(cleaned)
        return refs

    @model_validator(mode="after")
    def check_merge_commit(self) -> "OperationState":
        if (self.merge_commit is not None) != (self.phase is Phase.MERGED):
            raise ValueError("merge_commit must be set if and only if phase is merged")
        return self

    @property
    def issue_labels(self) -> list[str]:
        return self.labels or [f"{DEFAULT_ISSUE_LABEL_PREFIX}{self.name}"]


class QueueEntry(BaseModel):
    """One merge request in the queue document."""

    model_config = ConfigDict(extra="allow")

    operation: str
    worktree: str | None = None
    branch: str | None = None
    priority: int = 0
    enqueued_at: str
    updated_at: str | None = None
    status: EntryStatus = EntryStatus.PENDING
    merge_type: MergeType = "operation"
    issue_id: str | None = None
    merge_resumed: bool = False
    worktree_missing: bool = False
    conflict_retried: bool = False
    attempts: int = 0
    message: str | None = None
    merge_commit: str | None = None

    @field_validator("worktree", "branch", "issue_id", "merge_commit", mode="before")
    @classmethod
    def normalize_optional(cls, value: object) -> object:
        return _clean_optional(value)

    @property
    def source_branch(self) -> str:
        return self.branch or self.operation

    def matches(self, name: str) -> bool:
        return name in {self.operation, self.branch}


class QueueDocument(BaseModel):
    """Persisted merge queue (``queue.json``)."""

    model_config = ConfigDict(extra="allow")

    version: int = QUEUE_DOCUMENT_VERSION
    entries: list[QueueEntry] = Field(default_factory=list)

    def find(self, name: str) -> QueueEntry | None:
        for entry in self.entries:
            if entry.operation == name:
                return entry
        for entry in self.entries:
            if entry.matches(name):
                return entry
        return None


class IssueRecord(BaseModel):
    """Issue payload returned by the tracker CLI."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str = "unknown"
    title: str | None = None
    labels: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)

    @field_validator("labels", "blockers", mode="before")
    @classmethod
    def normalize_lists(cls, value: object) -> object:
        if value is None:
            return []
        return value

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: object) -> object:
        if value is None:
            return "unknown"
        if isinstance(value, str):
            return value.strip().lower() or "unknown"
        return value
