"""
Status aggregation for polling consumers.

Queries the git and container sides concurrently and handles their
failures independently, so a broken repository never blanks out the
container list and an unreachable runtime never hides git status.
"""

import asyncio
import logging

from deckhand_common.errors import DeckhandError
from deckhand_common.models import ErrorDetail, StatusSnapshot

from .git_sync import GitSyncController
from .lifecycle import ContainerLifecycleController

logger = logging.getLogger(__name__)


class StatusAggregator:
    """Builds one StatusSnapshot per call; nothing is cached."""

    def __init__(self, git: GitSyncController, lifecycle: ContainerLifecycleController):
        self.git = git
        self.lifecycle = lifecycle

    async def get_snapshot(self) -> StatusSnapshot:
        repository, containers = await asyncio.gather(
            self.git.get_status(),
            self.lifecycle.get_all_statuses(),
            return_exceptions=True,
        )

        snapshot = StatusSnapshot()

        if isinstance(repository, DeckhandError):
            logger.error(f"Failed to get git status: {repository}")
            snapshot.repository_error = repository.to_error_detail()
        elif isinstance(repository, BaseException):
            logger.error(f"Unexpected error getting git status: {repository}", exc_info=repository)
            snapshot.repository_error = ErrorDetail(kind="internal_error", detail=str(repository))
        else:
            snapshot.repository = repository

        if isinstance(containers, DeckhandError):
            logger.error(f"Failed to get container status: {containers}")
            snapshot.containers_error = containers.to_error_detail()
        elif isinstance(containers, BaseException):
            logger.error(
                f"Unexpected error getting container status: {containers}", exc_info=containers
            )
            snapshot.containers_error = ErrorDetail(kind="internal_error", detail=str(containers))
        else:
            snapshot.containers = containers

        return snapshot
