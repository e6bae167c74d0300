"""
Shared fixtures for Deckhand tests.

FakeCommandRunner stands in for git and docker compose so unit tests
never start a real process. Responses are registered against a
contiguous run of arguments, e.g. ("pull", "--ff-only") or ("up", "-d").
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from deckhand_controller.command_runner import CommandResult, CommandRunner


@dataclass
class ScriptedResponse:
    pattern: tuple[str, ...]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    exc: Exception | None = None
    delay: float = 0.0
    handler: Callable[[list[str]], CommandResult] | None = None


def _contains(argv: list[str], pattern: tuple[str, ...]) -> bool:
    size = len(pattern)
    return any(tuple(argv[i : i + size]) == pattern for i in range(len(argv) - size + 1))


class FakeCommandRunner(CommandRunner):
    """Records every invocation and replays scripted results."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.events: list[tuple[str, list[str]]] = []
        self.kwargs: list[dict] = []
        self._responses: list[ScriptedResponse] = []

    def on(self, *pattern: str, **kwargs) -> None:
        """Register a response; later registrations win over earlier ones."""
        self._responses.append(ScriptedResponse(pattern=pattern, **kwargs))

    def called(self, *pattern: str) -> bool:
        return any(_contains(argv, pattern) for argv in self.calls)

    async def run(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        self.kwargs.append({"cwd": cwd, "timeout": timeout, "env": env})
        self.events.append(("start", argv))

        response = next(
            (r for r in reversed(self._responses) if _contains(argv, r.pattern)), None
        )
        if response is None:
            self.events.append(("end", argv))
            return CommandResult(args=argv, returncode=0)

        if response.delay:
            await asyncio.sleep(response.delay)
        self.events.append(("end", argv))

        if response.exc is not None:
            raise response.exc
        if response.handler is not None:
            return response.handler(argv)
        return CommandResult(
            args=argv,
            returncode=response.returncode,
            stdout=response.stdout,
            stderr=response.stderr,
        )


@pytest.fixture
def fake_runner():
    """Create a fresh FakeCommandRunner."""
    return FakeCommandRunner()


@pytest.fixture
def compose_file(tmp_path):
    """Create a minimal compose file on disk."""
    path = tmp_path / "docker-compose.yml"
    path.write_text("services:\n  web:\n    image: nginx\n")
    return path
