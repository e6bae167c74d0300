"""
Error taxonomy for Deckhand.

Every failure the core reports carries a machine-readable kind, a
human-readable detail, and optionally the captured output of the
subprocess that failed. Mutating operations convert these into
ErrorDetail values on their results; strict queries raise them.
"""

from .models import ErrorDetail


class DeckhandError(Exception):
    """Base class for all Deckhand errors."""

    kind = "deckhand_error"
    retryable = True

    def __init__(self, detail: str, output: str = ""):
        super().__init__(detail)
        self.detail = detail
        self.output = output

    def to_error_detail(self) -> ErrorDetail:
        """Convert the exception into a serializable error value."""
        return ErrorDetail(
            kind=self.kind, detail=self.detail, output=self.output, retryable=self.retryable
        )


# ============================================================================
# Git
# ============================================================================


class GitError(DeckhandError):
    kind = "git_error"


class FetchFailed(GitError):
    kind = "fetch_failed"


class RemoteUnreachable(GitError):
    kind = "remote_unreachable"


class PullRejectedDiverged(GitError):
    """Local history has diverged from the remote; needs manual resolution."""

    kind = "pull_rejected_diverged"
    retryable = False


class PullFailed(GitError):
    kind = "pull_failed"


class InvalidRepository(GitError):
    kind = "invalid_repository"
    retryable = False


class InvalidCommitRef(GitError):
    kind = "invalid_commit_ref"
    retryable = False


class CommitNotFound(GitError):
    kind = "commit_not_found"
    retryable = False


# ============================================================================
# Containers
# ============================================================================


class ContainerError(DeckhandError):
    kind = "container_error"


class DaemonUnreachable(ContainerError):
    kind = "daemon_unreachable"


class ContainerNotFound(ContainerError):
    kind = "container_not_found"


class ContainerOperationFailed(ContainerError):
    kind = "container_operation_failed"


class ComposeFailed(ContainerError):
    kind = "compose_failed"


class UnmanagedContainer(ContainerError):
    kind = "unmanaged_container"
    retryable = False


# ============================================================================
# Execution and configuration
# ============================================================================


class OperationTimeout(DeckhandError):
    kind = "operation_timeout"


class CommandLaunchError(DeckhandError):
    kind = "command_launch_failed"


class ConfigError(DeckhandError):
    kind = "config_error"
    retryable = False
