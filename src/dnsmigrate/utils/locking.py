"""
Concurrency utilities: per-container mutexes and the topology lease.
"""

import asyncio
import os
import socket
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Hashable, Iterable
from contextlib import (
    AbstractAsyncContextManager,
    AsyncExitStack,
    asynccontextmanager,
)
from pathlib import Path

import diskcache
import structlog

from .exceptions import LeaseHeldError

logger = structlog.get_logger(__name__)


class KeyedLock:
    """
    A lock that manages independent locks for different keys.

    Keys are resource-group-equivalent containers: two provider calls that
    mutate the same container are serialized, calls against different
    containers run concurrently. The provider holds a container-wide lock
    while peering or DNS settings change, so overlapping calls fail there.

    Locks are never removed from the table, so a waiter can never end up
    holding a lock that was swapped out underneath it.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def acquire(self, key: Hashable) -> AsyncIterator[None]:
        """
        Acquire the lock for a single container.

        Usage:
            async with keyed_lock.acquire("rg-hub"):
                await provisioner.create_or_update(spec)
        """
        lock = self._locks[key]
        async with lock:
            yield

    @asynccontextmanager
    async def acquire_many(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """
        Acquire several container locks.

        Keys are de-duplicated and taken in sorted order, so two tasks that
        both need containers A and B cannot deadlock each other.
        """
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.acquire(key))
            yield

    def __call__(self, key: Hashable) -> AbstractAsyncContextManager[None]:
        """Shortcut for acquire: `async with keyed_lock(key): ...`"""
        return self.acquire(key)


def default_holder_id() -> str:
    """Identify this process for lease bookkeeping."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class PhaseLease:
    """
    Exclusive, expiring lease on a topology, shared between processes.

    Backed by a diskcache directory: `Cache.add` only stores a key that is not
    already present, which makes acquisition atomic across processes. The TTL
    bounds how long a crashed holder can block other orchestrators; a live
    holder renews it every third of the TTL while a transition runs.
    """

    def __init__(self, directory: str | Path, ttl_seconds: float = 900.0) -> None:
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self._cache = diskcache.Cache(str(self.directory))

    @staticmethod
    def _key(topology: str) -> str:
        return f"lease:{topology}"

    def holder(self, topology: str) -> str | None:
        """Return the current lease holder, if any."""
        return self._cache.get(self._key(topology))

    def acquire(self, topology: str, holder: str) -> None:
        """
        Take the lease or fail immediately.

        Raises:
            LeaseHeldError: If another holder owns an unexpired lease.
        """
        if not self._cache.add(self._key(topology), holder, expire=self.ttl_seconds):
            current = self.holder(topology)
            if current != holder:
                raise LeaseHeldError(topology, current)
        logger.debug("Lease acquired", topology=topology, holder=holder)

    def release(self, topology: str, holder: str) -> None:
        """Release the lease if this holder still owns it."""
        key = self._key(topology)
        with self._cache.transact():
            if self._cache.get(key) == holder:
                self._cache.delete(key)
                logger.debug("Lease released", topology=topology, holder=holder)

    def renew(self, topology: str, holder: str) -> None:
        """
        Extend the lease by another TTL.

        Raises:
            LeaseHeldError: If the lease expired or another holder owns it now.
        """
        key = self._key(topology)
        with self._cache.transact():
            current = self._cache.get(key)
            if current != holder:
                raise LeaseHeldError(topology, current)
            self._cache.set(key, holder, expire=self.ttl_seconds)

    async def _heartbeat(self, topology: str, holder: str) -> None:
        while True:
            await asyncio.sleep(self.ttl_seconds / 3)
            try:
                self.renew(topology, holder)
            except LeaseHeldError as e:
                # The owner check before commit turns this into an error
                logger.error("Lease lost", topology=topology, holder=holder, now=e.holder)
                return

    @asynccontextmanager
    async def hold(self, topology: str, holder: str) -> AsyncIterator[None]:
        """
        Hold the lease for the duration of a phase transition.

        Usage:
            async with lease.hold("hub-spoke", holder):
                ...
                lease.renew("hub-spoke", holder)  # still ours before committing
        """
        self.acquire(topology, holder)
        heartbeat = asyncio.create_task(self._heartbeat(topology, holder))
        try:
            yield
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            self.release(topology, holder)

    def close(self) -> None:
        self._cache.close()
