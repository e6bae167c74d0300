"""
Value objects exchanged between the Deckhand core and its callers.

All models are transient: they are rebuilt on every query and never
persisted. Each one serializes to a plain dict for the HTTP layer.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


@dataclass
class ErrorDetail:
    """
    Structured, user-visible failure.

    Carries a machine-readable kind, a human-readable detail and any
    captured subprocess output worth showing to the operator.
    """

    kind: str
    detail: str
    output: str = ""
    retryable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "detail": self.detail,
            "output": self.output,
            "retryable": self.retryable,
        }


# ============================================================================
# Git
# ============================================================================


@dataclass
class RepositorySnapshot:
    """
    Point-in-time comparison of the local checkout against the remote branch.

    updates_available is derived from the two hashes and is only as fresh
    as the last fetch of the remote ref.
    """

    local_commit: str
    remote_commit: str
    current_branch: str

    @property
    def updates_available(self) -> bool:
        return self.local_commit != self.remote_commit

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_commit": self.local_commit,
            "remote_commit": self.remote_commit,
            "local_short": self.local_commit[:8],
            "remote_short": self.remote_commit[:8],
            "current_branch": self.current_branch,
            "updates_available": self.updates_available,
        }


@dataclass
class PullOutcome:
    """Result of a fast-forward-only pull."""

    success: bool
    already_up_to_date: bool = False
    files_changed: int = 0
    raw_output: str = ""
    error: ErrorDetail | None = None

    def __post_init__(self) -> None:
        if self.already_up_to_date and self.files_changed > 0:
            raise ValueError(
                "already_up_to_date and files_changed > 0 are mutually exclusive"
            )

    @property
    def rejected(self) -> bool:
        """True when the pull was refused because histories diverged."""
        return self.error is not None and self.error.kind == "pull_rejected_diverged"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "already_up_to_date": self.already_up_to_date,
            "files_changed": self.files_changed,
            "raw_output": self.raw_output,
            "rejected": self.rejected,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class CommitInfo:
    hash: str
    short_hash: str
    author_name: str
    author_email: str
    timestamp_unix: int
    subject: str
    body: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "short_hash": self.short_hash,
            "author_name": self.author_name,
            "author_email": self.author_email,
            "timestamp_unix": self.timestamp_unix,
            "subject": self.subject,
            "body": self.body,
        }


# ============================================================================
# Containers
# ============================================================================


class ContainerState(str, Enum):
    """Closed set of container states exposed to callers."""

    RUNNING = "running"
    STOPPED = "stopped"
    PAUSED = "paused"
    RESTARTING = "restarting"
    DEAD = "dead"
    CREATED = "created"
    REMOVING = "removing"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: Any) -> "ContainerState":
        """
        Map a raw runtime state to a member.

        The mapping is total: empty, missing, non-string and unrecognized
        values all resolve to UNKNOWN.
        """
        if not isinstance(raw, str):
            return cls.UNKNOWN
        return _RAW_STATE_TABLE.get(raw.strip().lower(), cls.UNKNOWN)


# Docker reports "exited" for stopped containers
_RAW_STATE_TABLE: dict[str, ContainerState] = {
    "running": ContainerState.RUNNING,
    "exited": ContainerState.STOPPED,
    "paused": ContainerState.PAUSED,
    "restarting": ContainerState.RESTARTING,
    "dead": ContainerState.DEAD,
    "created": ContainerState.CREATED,
    "removing": ContainerState.REMOVING,
}


@dataclass
class ContainerRecord:
    """
    Information about a managed container.

    Represents the current state of a container from the runtime's perspective.
    """

    id: str
    name: str  # Leading "/" stripped
    state: ContainerState
    image: str
    created_at_unix: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "short_id": self.id[:12],
            "name": self.name,
            "state": self.state.value,
            "image": self.image,
            "created_at_unix": self.created_at_unix,
        }


@dataclass
class OperationResult:
    """
    Outcome of a single or bulk mutating operation.

    For bulk sequences, completed lists the containers handled before the
    sequence stopped and container names the one that failed.
    """

    success: bool
    output: str = ""
    error: ErrorDetail | None = None
    container: str | None = None
    completed: list[str] = field(default_factory=list)

    @classmethod
    def failure(
        cls,
        error: ErrorDetail,
        output: str = "",
        container: str | None = None,
        completed: list[str] | None = None,
    ) -> "OperationResult":
        return cls(
            success=False,
            output=output,
            error=error,
            container=container,
            completed=list(completed or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "container": self.container,
            "completed": list(self.completed),
        }


# ============================================================================
# Aggregate
# ============================================================================


@dataclass
class StatusSnapshot:
    """Combined git and container status for polling consumers."""

    repository: RepositorySnapshot | None = None
    repository_error: ErrorDetail | None = None
    containers: list[ContainerRecord] = field(default_factory=list)
    containers_error: ErrorDetail | None = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository.to_dict() if self.repository else None,
            "repository_error": self.repository_error.to_dict()
            if self.repository_error
            else None,
            "containers": [c.to_dict() for c in self.containers],
            "containers_error": self.containers_error.to_dict()
            if self.containers_error
            else None,
            "generated_at": self.generated_at.isoformat(),
        }
