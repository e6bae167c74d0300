"""
Compose orchestration for multi-container pull/recreate/down.

Updates here are registry-pull-and-recreate operations: images are
pulled and containers recreated with --no-build, never built locally.
Compose failures are a normal operating condition, so every sequence
returns an OperationResult instead of raising.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from deckhand_common.errors import ComposeFailed, DeckhandError
from deckhand_common.models import ErrorDetail, OperationResult

from .command_runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_COMPOSE_COMMAND = ("docker", "compose")


class ComposeOrchestrator:
    """Runs `docker compose` against one compose file."""

    def __init__(
        self,
        runner: CommandRunner,
        compose_file: str | Path,
        timeout: float = 600.0,
        compose_command: Sequence[str] = DEFAULT_COMPOSE_COMMAND,
    ):
        """
        Initialize the orchestrator.

        Args:
            runner: Command runner used for every compose invocation
            compose_file: Path to the compose file
            timeout: Seconds before a single compose command is killed
            compose_command: Program prefix, e.g. ("docker", "compose")
        """
        self.runner = runner
        self.compose_file = Path(compose_file)
        self.compose_dir = self.compose_file.parent
        self.timeout = timeout
        self.compose_command = list(compose_command)

    @property
    def resource_key(self) -> str:
        return f"compose:{self.compose_file.resolve()}"

    async def _compose(self, *args: str) -> CommandResult:
        return await self.runner.run(
            [*self.compose_command, "-f", str(self.compose_file), *args],
            cwd=self.compose_dir,
            timeout=self.timeout,
        )

    async def validate(self) -> None:
        """
        Check that the compose file exists and parses.

        Raises:
            ComposeFailed: If the file is missing or rejected by compose
        """
        if not self.compose_file.is_file():
            raise ComposeFailed(f"Compose file not found: {self.compose_file}")

        result = await self._compose("config", "--quiet")
        if not result.success:
            raise ComposeFailed(
                f"Compose file is invalid: {result.stderr.strip()}", output=result.stderr
            )

    async def run_steps(self, steps: Sequence[tuple[str, list[str]]]) -> OperationResult:
        """
        Run compose subcommands in order, stopping at the first failure.

        Args:
            steps: (label, arguments) pairs, e.g. ("pull", ["pull", "web"])

        Returns:
            OperationResult with the accumulated output of every step that ran
        """
        outputs: list[str] = []

        for label, args in steps:
            logger.debug(f"docker compose {' '.join(args)}")
            try:
                result = await self._compose(*args)
            except DeckhandError as e:
                logger.error(f"Docker compose {label} could not run: {e}")
                return OperationResult.failure(e.to_error_detail(), output="\n".join(outputs))

            outputs.append((result.stdout + result.stderr).strip())

            if not result.success:
                stderr = result.stderr.strip()
                logger.error(f"Docker compose {label} failed: {stderr}")
                error = ErrorDetail(
                    kind=ComposeFailed.kind,
                    detail=stderr or f"docker compose {label} exited with {result.returncode}",
                    output=result.stdout,
                )
                return OperationResult.failure(error, output="\n".join(outputs))

            logger.debug(f"Docker compose {label} completed")

        return OperationResult(success=True, output="\n".join(o for o in outputs if o))

    async def update_service(self, service: str) -> OperationResult:
        """Pull the newest image for one service and recreate it."""
        return await self.run_steps(
            [
                ("pull", ["pull", service]),
                ("up", ["up", "-d", "--no-build", service]),
            ]
        )

    async def update_all(self) -> OperationResult:
        """
        Pull every image, take the stack down, and bring it back up.

        Images are pulled first so a registry failure leaves the running
        stack untouched.
        """
        return await self.run_steps(
            [
                ("pull", ["pull"]),
                ("down", ["down"]),
                ("up", ["up", "-d", "--no-build"]),
            ]
        )
