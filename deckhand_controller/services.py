"""
Wiring of the Deckhand controllers.

Services are built once at startup from a validated DeckhandConfig and
shared by reference with every request handler. They hold no mutable
cache, so only the single-flight locks need coordination.
"""

import logging
from dataclasses import dataclass

from deckhand_common.config import DeckhandConfig

from .command_runner import CommandRunner, SubprocessCommandRunner
from .compose import ComposeOrchestrator
from .git_sync import GitSyncController
from .lifecycle import ContainerLifecycleController
from .runtime_client import ContainerRuntimeClient
from .single_flight import ResourceLocks
from .status import StatusAggregator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    git: GitSyncController
    containers: ContainerLifecycleController
    status: StatusAggregator
    locks: ResourceLocks

    async def validate(self) -> None:
        """
        Fail-fast startup checks for both sides.

        Raises:
            InvalidRepository: If the repository or remote is invalid
            ComposeFailed: If the compose file is missing or invalid
            DaemonUnreachable: If the container runtime cannot be reached
        """
        await self.git.validate_repository()
        logger.info("Git controller validated")
        await self.containers.validate()
        logger.info("Container controller validated")

    def close(self) -> None:
        self.containers.runtime.close()


def create_services(
    config: DeckhandConfig,
    runner: CommandRunner | None = None,
    runtime: ContainerRuntimeClient | None = None,
) -> Services:
    """
    Build every controller from configuration.

    Args:
        config: Validated configuration
        runner: Command runner override (defaults to asyncio subprocesses)
        runtime: Runtime client override (defaults to the docker SDK)

    Returns:
        Services bundle sharing one ResourceLocks registry
    """
    runner = runner or SubprocessCommandRunner(default_timeout=config.git_timeout)
    runtime = runtime or ContainerRuntimeClient(
        base_url=config.docker_host, api_timeout=config.runtime_timeout
    )
    locks = ResourceLocks()

    git = GitSyncController(
        runner,
        config.repo_path,
        remote=config.git_remote,
        branch=config.git_branch,
        timeout=config.git_timeout,
        locks=locks,
    )
    compose = ComposeOrchestrator(runner, config.compose_file, timeout=config.compose_timeout)
    containers = ContainerLifecycleController(
        runtime,
        compose,
        config.containers,
        stop_timeout=config.stop_timeout,
        locks=locks,
    )

    return Services(
        git=git,
        containers=containers,
        status=StatusAggregator(git, containers),
        locks=locks,
    )
