"""Async concurrency primitives: keyed locks and bounded batch execution."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from ..utils.logging import get_logger


T = TypeVar('T')


class KeyedLockPool:
    """Pool of asyncio locks, one per resource name.

    Used to serialize read-modify-write cycles on the same file while letting
    cycles on different files interleave.
    """

    def __init__(self):
        """Initialize lock pool."""
        self.locks: Dict[str, asyncio.Lock] = {}
        self.logger = get_logger(self.__class__.__name__)

    def get_lock(self, name: str) -> asyncio.Lock:
        """Get or create the lock for the given name.

        Args:
            name: Resource name/identifier

        Returns:
            Asyncio lock
        """
        if name not in self.locks:
            self.locks[name] = asyncio.Lock()
            self.logger.debug("Created lock", name=name)

        return self.locks[name]

    def locked(self, name: str) -> bool:
        """Whether the named resource is currently held."""
        lock = self.locks.get(name)
        return lock.locked() if lock else False

    @asynccontextmanager
    async def acquire(self, name: str):
        """Hold the lock for the given resource.

        Args:
            name: Resource name
        """
        lock = self.get_lock(name)
        async with lock:
            yield


class ConcurrentExecutor:
    """Runs batches of async callables with a concurrency limit."""

    def __init__(self, max_concurrent: int = 10):
        """Initialize concurrent executor.

        Args:
            max_concurrent: Maximum concurrent operations
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.logger = get_logger(self.__class__.__name__)

    async def execute_batch(
        self,
        tasks: List[Callable[[], Awaitable[T]]],
        return_exceptions: bool = False
    ) -> List[Union[T, BaseException]]:
        """Execute a batch of async tasks concurrently.

        Args:
            tasks: List of async callables
            return_exceptions: Whether to return exceptions instead of raising

        Returns:
            List of results in task order
        """
        async def _execute_single(task_func):
            async with self.semaphore:
                return await task_func()

        results = await asyncio.gather(
            *(_execute_single(task) for task in tasks),
            return_exceptions=return_exceptions
        )

        self.logger.debug(
            "Batch execution completed",
            total_tasks=len(tasks),
            successful=len([r for r in results if not isinstance(r, BaseException)])
        )

        return list(results)


# Global instances
_lock_pool: Optional[KeyedLockPool] = None


def get_lock_pool() -> KeyedLockPool:
    """Get the process-wide keyed lock pool."""
    global _lock_pool
    if _lock_pool is None:
        _lock_pool = KeyedLockPool()
    return _lock_pool
