"""
Per-resource serialization of mutating operations.

Reads never take these locks. Mutations against the same repository or
the same compose file queue behind each other so two overlapping
rebuilds cannot interleave their down/up steps at the tool level.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceLocks:
    """
    Registry of asyncio locks keyed by resource identity.

    Thread Safety:
        A threading.Lock guards the key-to-lock dictionary so locks can be
        created from any thread; the per-key asyncio.Lock serializes the
        mutations themselves.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._async_key_locks: dict[str, asyncio.Lock] = {}

    def _get_async_key_lock(self, key: str) -> asyncio.Lock:
        """
        Get or create the async lock for a resource.

        Args:
            key: Resource identity, e.g. "repo:/srv/app" or "compose:/srv/app/compose.yml"

        Returns:
            asyncio.Lock for the given key
        """
        with self._lock:
            if key not in self._async_key_locks:
                self._async_key_locks[key] = asyncio.Lock()
            return self._async_key_locks[key]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for a resource for the duration of the block."""
        key_lock = self._get_async_key_lock(key)
        if key_lock.locked():
            logger.info(f"Waiting for in-flight operation on {key}")
        async with key_lock:
            yield

    async def run_exclusive(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation under the resource lock, shielded from cancellation.

        A caller that goes away stops waiting, but the operation keeps the
        lock until it has finished, so the next mutation on the same
        resource never overlaps it.

        Args:
            key: Resource identity
            operation: Zero-argument coroutine function to run

        Returns:
            Whatever the operation returns
        """

        async def locked() -> T:
            async with self.hold(key):
                return await operation()

        task = asyncio.ensure_future(locked())
        task.add_done_callback(_log_abandoned_failure)
        return await asyncio.shield(task)


def _log_abandoned_failure(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.error(f"Exclusive operation raised: {task.exception()}")
