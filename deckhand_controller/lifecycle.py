"""
Container lifecycle controller.

Combines the runtime client (single-container operations) with the
compose orchestrator (pull-and-recreate) behind one facade over the
configured, ordered set of managed containers.

Two bulk policies coexist on purpose:
- read-only aggregation (get_all_statuses) is best-effort: a missing
  container is logged and omitted, the rest still returns;
- mutating sequences (start_all/stop_all/restart_all) are fail-fast:
  the first failure aborts the remaining containers.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from deckhand_common.errors import DaemonUnreachable, DeckhandError, UnmanagedContainer
from deckhand_common.models import ContainerRecord, OperationResult

from .compose import ComposeOrchestrator
from .runtime_client import ContainerRuntimeClient
from .single_flight import ResourceLocks

logger = logging.getLogger(__name__)


class ContainerLifecycleController:
    """
    Stateless facade over the managed containers.

    Container state is owned by the runtime; this class issues commands
    and re-queries, and never remembers a last known state.
    """

    def __init__(
        self,
        runtime: ContainerRuntimeClient,
        compose: ComposeOrchestrator,
        container_names: Sequence[str],
        stop_timeout: int = 10,
        locks: ResourceLocks | None = None,
    ):
        """
        Initialize the lifecycle controller.

        Args:
            runtime: Client for single-container runtime API calls
            compose: Orchestrator for compose pull/up/down
            container_names: Managed containers, in bulk-operation order
            stop_timeout: Graceful-shutdown window for stop/restart (seconds)
            locks: Shared single-flight registry for mutating calls
        """
        self.runtime = runtime
        self.compose = compose
        self.container_names = list(container_names)
        self.stop_timeout = stop_timeout
        self.locks = locks or ResourceLocks()

    def _ensure_managed(self, name: str) -> None:
        if name not in self.container_names:
            raise UnmanagedContainer(f"Container '{name}' is not managed by this service")

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    async def validate(self) -> list[str]:
        """
        Check the compose file and runtime connection.

        Missing containers are only a warning: they may not have been
        created yet and will appear after the first compose up.

        Returns:
            Names of configured containers the runtime does not know

        Raises:
            ComposeFailed: If the compose file is missing or invalid
            DaemonUnreachable: If the runtime cannot be reached
        """
        logger.info("Validating container configuration")

        await self.compose.validate()
        await self.runtime.ping()

        known = await self.runtime.list_container_names()
        missing = [name for name in self.container_names if name not in known]
        if missing:
            logger.warning(f"Some configured containers not found in runtime: {missing}")
            logger.warning(
                "These containers may not be created yet. "
                "They will be available after first compose up."
            )

        logger.info("Container validation completed successfully")
        return missing

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_status(self, name: str) -> ContainerRecord:
        """
        Strict single lookup.

        Raises:
            UnmanagedContainer: If name is not in the managed set
            ContainerNotFound: If the runtime has no such container
        """
        self._ensure_managed(name)
        return await self.runtime.inspect(name)

    async def get_all_statuses(self) -> list[ContainerRecord]:
        """
        Best-effort lookup of every managed container, in configured order.

        Containers that are missing or fail to inspect are omitted with a
        warning. Only when the runtime itself is unreachable for every
        container does the call fail as a whole.

        Raises:
            DaemonUnreachable: If no container could be queried because the
                runtime is down
        """
        logger.debug("Getting status for all managed containers")

        results = await asyncio.gather(
            *(self.runtime.inspect(name) for name in self.container_names),
            return_exceptions=True,
        )

        records: list[ContainerRecord] = []
        unreachable: DaemonUnreachable | None = None

        for name, result in zip(self.container_names, results):
            if isinstance(result, ContainerRecord):
                records.append(result)
            elif isinstance(result, DeckhandError):
                logger.warning(f"Failed to get status for container '{name}': {result}")
                if isinstance(result, DaemonUnreachable):
                    unreachable = result
            else:
                raise result

        if not records and unreachable is not None:
            raise unreachable

        return records

    # ------------------------------------------------------------------
    # Single-container operations
    # ------------------------------------------------------------------

    async def _single(
        self, action: str, name: str, op: Callable[[str], Awaitable[None]]
    ) -> OperationResult:
        try:
            self._ensure_managed(name)
            await op(name)
        except DeckhandError as e:
            logger.error(f"Failed to {action} container '{name}': {e}")
            return OperationResult.failure(e.to_error_detail(), container=name)

        return OperationResult(
            success=True, output=f"Container '{name}': {action} succeeded", container=name
        )

    async def _stop(self, name: str) -> None:
        await self.runtime.stop(name, timeout=self.stop_timeout)

    async def _restart(self, name: str) -> None:
        await self.runtime.restart(name, timeout=self.stop_timeout)

    async def start(self, name: str) -> OperationResult:
        return await self._single("start", name, self.runtime.start)

    async def stop(self, name: str) -> OperationResult:
        return await self._single("stop", name, self._stop)

    async def restart(self, name: str) -> OperationResult:
        return await self._single("restart", name, self._restart)

    # ------------------------------------------------------------------
    # Bulk operations (fail-fast)
    # ------------------------------------------------------------------

    async def _run_all(
        self, action: str, op: Callable[[str], Awaitable[None]]
    ) -> OperationResult:
        logger.info(f"Running {action} on all managed containers")
        return await self.locks.run_exclusive(
            self.compose.resource_key, lambda: self._run_sequence(action, op)
        )

    async def _run_sequence(
        self, action: str, op: Callable[[str], Awaitable[None]]
    ) -> OperationResult:
        completed: list[str] = []
        for index, name in enumerate(self.container_names):
            try:
                await op(name)
            except DeckhandError as e:
                skipped = self.container_names[index + 1 :]
                logger.error(f"Failed to {action} container '{name}': {e}")
                if skipped:
                    logger.warning(f"Aborted {action}-all, not attempted: {skipped}")
                return OperationResult.failure(
                    e.to_error_detail(),
                    output=f"{action} stopped at '{name}'",
                    container=name,
                    completed=completed,
                )
            completed.append(name)

        logger.info(f"Successfully ran {action} on all containers")
        return OperationResult(
            success=True,
            output=f"{action} succeeded for: {', '.join(completed)}",
            completed=completed,
        )

    async def start_all(self) -> OperationResult:
        return await self._run_all("start", self.runtime.start)

    async def stop_all(self) -> OperationResult:
        return await self._run_all("stop", self._stop)

    async def restart_all(self) -> OperationResult:
        return await self._run_all("restart", self._restart)

    # ------------------------------------------------------------------
    # Compose updates
    # ------------------------------------------------------------------

    async def _compose_exclusive(
        self, operation: Callable[[], Awaitable[OperationResult]]
    ) -> OperationResult:
        """
        Run a compose sequence under the compose-file lock, shielded.

        If the caller goes away, the sequence still runs to the end so a
        `down` is never left without its `up`.
        """
        return await self.locks.run_exclusive(self.compose.resource_key, operation)

    async def update_container(self, name: str) -> OperationResult:
        """Pull the newest image for one container and recreate it."""
        try:
            self._ensure_managed(name)
        except UnmanagedContainer as e:
            return OperationResult.failure(e.to_error_detail(), container=name)

        logger.info(f"Pulling and recreating container: {name}")
        result = await self._compose_exclusive(lambda: self.compose.update_service(name))
        result.container = name
        if result.success:
            logger.info(f"Successfully pulled and recreated container: {name}")
        return result

    async def update_all(self) -> OperationResult:
        """Pull every image and recreate the whole stack."""
        logger.info("Pulling and recreating all containers")
        result = await self._compose_exclusive(self.compose.update_all)
        if result.success:
            result.completed = list(self.container_names)
            logger.info("Successfully pulled and recreated all containers")
        return result

