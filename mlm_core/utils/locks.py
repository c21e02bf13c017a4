# mlm_core/utils/locks.py
"""
In-process lock registry for member-scoped write serialization.

Keys are tuples such as ("tree", memberId) or ("ledger", memberId).
Callers pass keys already in their global acquisition order; the registry
acquires them one by one with a bounded wait and releases everything it
holds if any acquisition times out.

Locks are held weakly: a key's lock lives only while someone holds or
waits on it, so the table stays as large as the current contention.
"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Hashable, Iterable, List, Optional

from config import Config
from mlm_core.errors import Contention

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0


class LockRegistry:
    """Lazily created asyncio locks keyed by hashable tuples."""

    def __init__(self, timeout: Optional[float] = None):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._timeout = timeout

    def active_count(self) -> int:
        """Number of keys whose lock is currently held or awaited."""
        return len(self._locks)

    @property
    def timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return float(Config.get(Config.LOCK_TIMEOUT_SECONDS, DEFAULT_LOCK_TIMEOUT))

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, keys: Iterable[Hashable], timeout: Optional[float] = None):
        """
        Acquire all keys in the given order, release in reverse.

        Duplicate keys are acquired once.

        Raises:
            Contention: If any lock is not acquired within the timeout
        """
        wait = self.timeout if timeout is None else timeout
        ordered: List[Hashable] = []
        for key in keys:
            if key not in ordered:
                ordered.append(key)

        acquired: List[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self.lock_for(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=wait)
                except asyncio.TimeoutError:
                    logger.warning(f"Lock wait timed out after {wait}s on {key}")
                    raise Contention(key, wait)
                acquired.append(lock)

            yield ordered

        finally:
            for lock in reversed(acquired):
                lock.release()


_registry: Optional[LockRegistry] = None


def get_lock_registry() -> LockRegistry:
    """Get or create the process-wide lock registry."""
    global _registry
    if _registry is None:
        _registry = LockRegistry()
    return _registry
