"""
Configuration for Deckhand services.

Values are read from environment variables by DeckhandConfig.from_env()
and validated once at startup. The core only ever sees the resulting
dataclass; it never reads the environment itself.

Environment Variables:
    DECKHAND_REPO_PATH: Path to the managed git working copy (required)
    DECKHAND_GIT_REMOTE: Remote to track (default: origin)
    DECKHAND_GIT_BRANCH: Branch to track (default: main)
    DECKHAND_COMPOSE_FILE: Path to the compose file (required)
    DECKHAND_CONTAINERS: Comma-separated, ordered container names (required)
    DECKHAND_STOP_TIMEOUT: Graceful-shutdown window in seconds (default: 10)
    DECKHAND_DOCKER_HOST: Runtime endpoint (default: unix:///var/run/docker.sock)
    DECKHAND_GIT_TIMEOUT: Seconds before a git command is killed (default: 120)
    DECKHAND_COMPOSE_TIMEOUT: Seconds before a compose command is killed (default: 600)
    DECKHAND_RUNTIME_TIMEOUT: Seconds allowed for a runtime API call (default: 30)
    DECKHAND_HOST: HTTP bind address (default: 127.0.0.1)
    DECKHAND_PORT: HTTP port (default: 3000)
    DECKHAND_API_TOKEN: Plaintext API token for the HTTP server
    DECKHAND_API_TOKEN_HASH: SHA-256 hash of the API token (preferred)
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"


def parse_container_names(raw: str) -> list[str]:
    """Split a comma-separated list, dropping blanks and keeping order."""
    names: list[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return names


def _get_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {key}={raw!r}: {e}") from e


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {key}={raw!r}: {e}") from e


def _require(environ: Mapping[str, str], key: str) -> str:
    value = environ.get(key, "").strip()
    if not value:
        raise ConfigError(f"{key} must be set in environment")
    return value


@dataclass
class DeckhandConfig:
    """Validated settings shared by the server, admin CLI and controllers."""

    repo_path: Path
    compose_file: Path
    containers: list[str]
    git_remote: str = "origin"
    git_branch: str = "main"
    stop_timeout: int = 10
    docker_host: str = DEFAULT_DOCKER_HOST
    git_timeout: float = 120.0
    compose_timeout: float = 600.0
    runtime_timeout: float = 30.0
    host: str = "127.0.0.1"
    port: int = 3000
    api_token: str | None = field(default=None, repr=False)
    api_token_hash: str | None = field(default=None, repr=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DeckhandConfig":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Unvalidated configuration; call validate() before use

        Raises:
            ConfigError: If a required variable is missing or malformed
        """
        env = os.environ if environ is None else environ

        return cls(
            repo_path=Path(_require(env, "DECKHAND_REPO_PATH")),
            compose_file=Path(_require(env, "DECKHAND_COMPOSE_FILE")),
            containers=parse_container_names(_require(env, "DECKHAND_CONTAINERS")),
            git_remote=env.get("DECKHAND_GIT_REMOTE", "").strip() or "origin",
            git_branch=env.get("DECKHAND_GIT_BRANCH", "").strip() or "main",
            stop_timeout=_get_int(env, "DECKHAND_STOP_TIMEOUT", 10),
            docker_host=env.get("DECKHAND_DOCKER_HOST", "").strip()
            or DEFAULT_DOCKER_HOST,
            git_timeout=_get_float(env, "DECKHAND_GIT_TIMEOUT", 120.0),
            compose_timeout=_get_float(env, "DECKHAND_COMPOSE_TIMEOUT", 600.0),
            runtime_timeout=_get_float(env, "DECKHAND_RUNTIME_TIMEOUT", 30.0),
            host=env.get("DECKHAND_HOST", "").strip() or "127.0.0.1",
            port=_get_int(env, "DECKHAND_PORT", 3000),
            api_token=env.get("DECKHAND_API_TOKEN") or None,
            api_token_hash=env.get("DECKHAND_API_TOKEN_HASH") or None,
        )

    def validate(self) -> None:
        """
        Check paths, timeouts and the container list.

        Raises:
            ConfigError: On the first invalid setting found
        """
        if not self.repo_path.exists():
            raise ConfigError(f"Git repository path does not exist: {self.repo_path}")

        if not self.compose_file.is_file():
            raise ConfigError(f"Compose file does not exist: {self.compose_file}")

        if not self.containers:
            raise ConfigError("At least one container must be specified")

        if self.git_remote.startswith("-") or self.git_branch.startswith("-"):
            raise ConfigError("Git remote and branch must not start with '-'")

        if self.stop_timeout < 0:
            raise ConfigError("Stop timeout must not be negative")

        for name in ("git_timeout", "compose_timeout", "runtime_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be greater than 0")

        if not 0 < self.port < 65536:
            raise ConfigError(f"Port must be between 1 and 65535, got {self.port}")

    def validate_server(self) -> None:
        """Additional checks that only apply when serving HTTP."""
        self.validate()
        if not (self.api_token or self.api_token_hash):
            raise ConfigError(
                "DECKHAND_API_TOKEN or DECKHAND_API_TOKEN_HASH must be set to run the server"
            )
