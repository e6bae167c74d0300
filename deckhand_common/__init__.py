"""
Deckhand common module.

This module contains the shared value objects, error taxonomy and
configuration used across the Deckhand components (controller, server,
admin CLI, client).

The common module has no dependencies on other deckhand_* modules, making
it a pure domain layer that can be imported by any component.
"""

from .config import DeckhandConfig
from .errors import DeckhandError
from .models import (
    CommitInfo,
    ContainerRecord,
    ContainerState,
    ErrorDetail,
    OperationResult,
    PullOutcome,
    RepositorySnapshot,
    StatusSnapshot,
)

__all__ = [
    "CommitInfo",
    "ContainerRecord",
    "ContainerState",
    "DeckhandConfig",
    "DeckhandError",
    "ErrorDetail",
    "OperationResult",
    "PullOutcome",
    "RepositorySnapshot",
    "StatusSnapshot",
]
