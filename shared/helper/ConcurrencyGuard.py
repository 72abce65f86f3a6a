"""Keyed, call-chain reentrant async lock for read-modify-write metadata operations.

Every guarded operation holds the lock for its key (e.g. "tenant:7"). A guarded
operation that calls another guarded operation on the same key, within the
same logical call chain, passes straight through instead of waiting on itself.
The per-chain depth counter lives in a ContextVar, so it follows awaits and is
copied into tasks spawned from inside a guarded section, while unrelated
concurrent requests start with an empty counter and block until the key is free.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from shared.helper.HelperConfig import HelperConfig

T = TypeVar("T")

GLOBAL_KEY = "global"

_held_depths: ContextVar[dict[str, int]] = ContextVar("concurrency_guard_depths", default={})


def tenant_key(tenant_id: int) -> str:
    return f"tenant:{tenant_id}"


class ConcurrencyGuard:
    """Serialises guarded operations per key."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._locks: dict[str, asyncio.Lock] = {}

    def is_held(self, key: str = GLOBAL_KEY) -> bool:
        """Return True if the current call chain already holds the key."""
        return _held_depths.get().get(key, 0) > 0

    @asynccontextmanager
    async def hold(self, key: str = GLOBAL_KEY) -> AsyncIterator[None]:
        """Hold the lock for a key for the duration of the block.

        Args:
            key (str): Resource key; operations on different keys do not block each other.
        """
        depths = _held_depths.get()
        depth = depths.get(key, 0)
        if depth > 0:
            token = _held_depths.set({**depths, key: depth + 1})
            try:
                yield
            finally:
                _held_depths.reset(token)
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            self.logging.debug("Waiting for guard key '%s'.", key)
        async with lock:
            token = _held_depths.set({**depths, key: 1})
            try:
                yield
            finally:
                _held_depths.reset(token)

    async def run(self, operation: Callable[[], Awaitable[T]], key: str = GLOBAL_KEY) -> T:
        """Run an async operation while holding the key.

        Args:
            operation (Callable[[], Awaitable[T]]): Zero-argument coroutine factory.
            key (str): Resource key.

        Returns:
            T: Whatever the operation returns.
        """
        async with self.hold(key):
            return await operation()
