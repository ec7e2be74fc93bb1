"""Concurrency helpers for Provider Sync."""

from .async_optimizer import (
    KeyedLockPool,
    ConcurrentExecutor,
    get_lock_pool
)

__all__ = [
    "KeyedLockPool",
    "ConcurrentExecutor",
    "get_lock_pool"
]
