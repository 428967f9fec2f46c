"""Per-identifier asyncio locks.

Two reconciliations that share an email, a phone number or an identity
cluster must not interleave their read-decide-write sequences. Identifier
keys are always taken before cluster keys, and each batch of keys is taken
in sorted order, so overlapping requests cannot deadlock each other.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from app.core.exceptions import IdentityLockTimeout

logger = logging.getLogger(__name__)


def cluster_keys(primary_ids: Iterable[int]) -> list[str]:
    """Build sorted lock keys for identity clusters, one per primary id."""
    return sorted(f"cluster:{primary_id}" for primary_id in set(primary_ids))


def identifier_keys(email: str | None, phone: str | None) -> list[str]:
    """Build sorted lock keys for an email/phone pair.

    Args:
        email: Optional email
        phone: Optional phone number

    Returns:
        Sorted list of lock keys
    """
    keys = []
    if email:
        keys.append(f"email:{email}")
    if phone:
        keys.append(f"phone:{phone}")
    return sorted(keys)


class IdentifierLockRegistry:
    """Registry of keyed locks, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        self._waiters[key] -= 1
        if self._waiters[key] == 0:
            del self._waiters[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(
        self, keys: Iterable[str], timeout: float | None = None
    ) -> AsyncIterator[None]:
        """Hold the locks for all keys for the duration of the block.

        Args:
            keys: Lock keys; duplicates are ignored
            timeout: Total seconds to wait for all locks, None waits forever

        Raises:
            IdentityLockTimeout: If the locks were not acquired in time
        """
        ordered = sorted(set(keys))
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        acquired: list[str] = []
        checked_out: list[str] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                remaining = None if deadline is None else max(deadline - loop.time(), 0)
                try:
                    await asyncio.wait_for(lock.acquire(), remaining)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Identifier lock wait timed out",
                        extra={"lock_keys": ordered, "timeout_seconds": timeout},
                    )
                    raise IdentityLockTimeout(ordered, timeout) from None
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
            for key in checked_out:
                self._checkin(key)


# Shared by every request handled by this process
identifier_locks = IdentifierLockRegistry()
