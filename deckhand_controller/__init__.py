"""
Deckhand controller module.

This module contains the orchestration core: the git sync controller,
the container lifecycle controller and the status aggregator, together
with the command runner and runtime client they are built on.

The controllers are stateless facades. They issue commands and re-query
the repository and the container runtime on every call.
"""

from .command_runner import CommandResult, CommandRunner, SubprocessCommandRunner
from .compose import ComposeOrchestrator
from .git_sync import GitSyncController
from .lifecycle import ContainerLifecycleController
from .runtime_client import ContainerRuntimeClient
from .services import Services, create_services
from .single_flight import ResourceLocks
from .status import StatusAggregator

__all__ = [
    "CommandResult",
    "CommandRunner",
    "ComposeOrchestrator",
    "ContainerLifecycleController",
    "ContainerRuntimeClient",
    "GitSyncController",
    "ResourceLocks",
    "Services",
    "StatusAggregator",
    "SubprocessCommandRunner",
    "create_services",
]
