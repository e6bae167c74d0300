"""
Container runtime client backed by the Docker Engine API.

This module wraps the docker SDK's low-level API client. Every call runs
in a worker thread and is bounded by a timeout; failures are translated
into the Deckhand container error taxonomy so callers never see raw
docker or requests exceptions.
"""

import asyncio
import logging
import re
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from deckhand_common.config import DEFAULT_DOCKER_HOST
from deckhand_common.errors import (
    ContainerNotFound,
    ContainerOperationFailed,
    DaemonUnreachable,
    OperationTimeout,
)
from deckhand_common.models import ContainerRecord, ContainerState

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_docker_timestamp(value: str | None) -> int | None:
    """
    Convert a Docker RFC 3339 timestamp to unix seconds.

    Docker reports nanosecond precision and uses "0001-01-01T00:00:00Z"
    for unset times; both are handled.
    """
    if not value:
        return None
    try:
        normalized = _EXCESS_FRACTION.sub(r"\1", value).replace("Z", "+00:00")
        parsed = datetime.fromisoformat(normalized)
    except (ValueError, AttributeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    if parsed.year <= 1:
        return None
    return int(parsed.timestamp())


def record_from_inspect(data: dict[str, Any]) -> ContainerRecord:
    """Build a ContainerRecord from a raw inspect payload."""
    state = data.get("State") or {}
    config = data.get("Config") or {}
    return ContainerRecord(
        id=data.get("Id") or "",
        name=(data.get("Name") or "").lstrip("/"),
        state=ContainerState.from_raw(state.get("Status")),
        image=config.get("Image") or data.get("Image") or "",
        created_at_unix=parse_docker_timestamp(data.get("Created")),
    )


class ContainerRuntimeClient:
    """
    Queries and mutates individual containers through the runtime API.

    The underlying docker client is created lazily on first use so that
    constructing the client never blocks on the daemon. Creation is serialized
    across worker threads, so concurrent first calls share one client.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_DOCKER_HOST,
        api_timeout: float = 30.0,
        docker_client: docker.DockerClient | None = None,
    ):
        """
        Initialize the runtime client.

        Args:
            base_url: Runtime endpoint, e.g. unix:///var/run/docker.sock
            api_timeout: Seconds allowed for a single API call
            docker_client: Pre-built client (used by tests)
        """
        self.base_url = base_url
        self.api_timeout = api_timeout
        self._client = docker_client
        self._client_lock = threading.Lock()

    def _get_client(self) -> docker.DockerClient:
        with self._client_lock:
            if self._client is None:
                logger.debug(f"Connecting to container runtime at {self.base_url}")
                self._client = docker.DockerClient(
                    base_url=self.base_url, timeout=int(self.api_timeout)
                )
            return self._client

    async def _call(
        self,
        action: str,
        target: str,
        func: Callable[[Any], T],
        timeout: float | None = None,
    ) -> T:
        bound = timeout if timeout is not None else self.api_timeout

        def invoke() -> T:
            return func(self._get_client().api)

        try:
            return await asyncio.wait_for(asyncio.to_thread(invoke), timeout=bound)
        except asyncio.TimeoutError:
            raise OperationTimeout(
                f"Runtime call '{action}' on '{target}' did not finish within {bound}s"
            ) from None
        except NotFound as e:
            raise ContainerNotFound(
                f"Container '{target}' not found", output=str(e)
            ) from e
        except APIError as e:
            raise ContainerOperationFailed(
                f"Failed to {action} container '{target}': {e.explanation or e}",
                output=str(e),
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise DaemonUnreachable(
                f"Container runtime at {self.base_url} is unreachable: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            raise OperationTimeout(
                f"Runtime call '{action}' on '{target}' timed out: {e}"
            ) from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise DaemonUnreachable(
                f"Container runtime at {self.base_url} is unreachable: {e}"
            ) from e

    async def ping(self) -> None:
        """
        Check that the runtime answers.

        Raises:
            DaemonUnreachable: If the endpoint cannot be reached
        """
        await self._call("ping", self.base_url, lambda api: api.ping())

    async def inspect(self, name: str) -> ContainerRecord:
        """
        Get the current record for one container.

        Raises:
            ContainerNotFound: If the runtime has no such container
        """
        data = await self._call("inspect", name, lambda api: api.inspect_container(name))
        record = record_from_inspect(data)
        logger.debug(f"Container {name} status: {record.state.value}")
        return record

    async def list_container_names(self) -> set[str]:
        """Return the names of all containers known to the runtime."""
        containers = await self._call(
            "list", self.base_url, lambda api: api.containers(all=True)
        )
        names: set[str] = set()
        for container in containers:
            for name in container.get("Names") or []:
                names.add(name.lstrip("/"))
        return names

    async def start(self, name: str) -> None:
        logger.info(f"Starting container: {name}")
        await self._call("start", name, lambda api: api.start(name))
        logger.info(f"Successfully started container: {name}")

    async def stop(self, name: str, timeout: int = 10) -> None:
        """
        Stop a container, allowing `timeout` seconds for graceful exit.

        The runtime kills the container once the window expires.
        """
        logger.info(f"Stopping container: {name} (grace {timeout}s)")
        await self._call(
            "stop",
            name,
            lambda api: api.stop(name, timeout=timeout),
            timeout=timeout + self.api_timeout,
        )
        logger.info(f"Successfully stopped container: {name}")

    async def restart(self, name: str, timeout: int = 10) -> None:
        """Restart a container with the same graceful-shutdown window as stop()."""
        logger.info(f"Restarting container: {name} (grace {timeout}s)")
        await self._call(
            "restart",
            name,
            lambda api: api.restart(name, timeout=timeout),
            timeout=timeout + self.api_timeout,
        )
        logger.info(f"Successfully restarted container: {name}")

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None
