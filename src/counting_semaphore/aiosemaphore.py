"""Async distributed counting semaphore backed by Redis.

This module mirrors :mod:`counting_semaphore.semaphore` for asyncio code.
It runs the same Lua scripts against the same keys, so sync and async
instances sharing a namespace act as one semaphore.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Optional, Union

from pottery import ContextTimer

from .exceptions import ForeignLeaseError
from .lease import Lease, new_lease_id
from .leasing import aio_currently_leased, aio_with_lease
from .logger import NullLogger, SemaphoreLogger
from .pool import AIOClientPool, wrap_aio_client
from .scripts import ACQUIRE_LEASE, GET_USAGE, RELEASE_LEASE, decode
from .semaphore import RedisSemaphore

if TYPE_CHECKING:
    from redis.asyncio import ConnectionPool
    from redis.asyncio import Redis as AIORedis


class AIORedisSemaphore:
    """Async distributed Redis-powered counting semaphore.

    Usage:
        >>> import asyncio
        >>> from redis.asyncio import Redis
        >>> async def main():
        ...     sem = AIORedisSemaphore(20, 'api-quota', redis=Redis())
        ...     lease = await sem.acquire(3)
        ...     try:
        ...         pass
        ...     finally:
        ...         await sem.release(lease)
        ...
        ...     async with sem.with_lease(3, timeout_seconds=10):
        ...         pass
        >>> asyncio.run(main())

    Args:
        capacity: Maximum number of permits held at once across all instances
        namespace: Key prefix identifying this semaphore in Redis
        redis: An async Redis client, an async ConnectionPool, or any object
               exposing a ``borrow()`` async context manager
        logger: Receives debug messages (default: NullLogger)
        lease_expiration_seconds: TTL of each lease key, in whole seconds
    """

    LEASE_EXPIRATION_SECONDS = RedisSemaphore.LEASE_EXPIRATION_SECONDS
    _SIGNAL_WAIT_SLACK = RedisSemaphore._SIGNAL_WAIT_SLACK
    _MINIMUM_WAIT = RedisSemaphore._MINIMUM_WAIT

    def __init__(
        self,
        capacity: int,
        namespace: str,
        *,
        redis: Union[AIORedis, ConnectionPool, AIOClientPool, None] = None,
        logger: Optional[SemaphoreLogger] = None,
        lease_expiration_seconds: int = LEASE_EXPIRATION_SECONDS,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        if not namespace:
            raise ValueError("Namespace must be a non-empty string")
        if int(lease_expiration_seconds) != lease_expiration_seconds or lease_expiration_seconds < 1:
            raise ValueError(
                "Lease expiration must be a positive whole number of seconds, "
                f"got {lease_expiration_seconds}"
            )

        self._capacity = int(capacity)
        self._namespace = namespace
        self._lease_expiration_seconds = int(lease_expiration_seconds)
        self._pool = wrap_aio_client(redis)
        self._logger: SemaphoreLogger = logger if logger is not None else NullLogger()

        self._lease_set_key = f"{namespace}:lease_set"
        self._queue_key = f"{namespace}:waiting_queue"

    @classmethod
    def from_url(cls, capacity: int, namespace: str, url: str, **kwargs: Any) -> AIORedisSemaphore:
        """Create a semaphore connected to the Redis at ``url``."""
        from redis.asyncio import Redis as AIORedisClient

        return cls(capacity, namespace, redis=AIORedisClient.from_url(url), **kwargs)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def lease_expiration_seconds(self) -> int:
        return self._lease_expiration_seconds

    def _lease_key(self, lease_id: str) -> str:
        return f"{self._namespace}:leases:{lease_id}"

    def _check_permits(self, permits: int) -> int:
        permits = int(permits)
        if permits < 1:
            raise ValueError(f"Permits must be at least 1, got {permits}")
        return permits

    async def acquire(self, permits: int = 1) -> Lease:
        """Acquire ``permits``, waiting until all of them are available.

        Raises:
            ValueError: if ``permits`` is below 1 or above capacity
        """
        permits = self._check_permits(permits)
        if permits > self._capacity:
            raise ValueError(
                f"Cannot acquire {permits} permits as capacity is only {self._capacity}"
            )

        lease_id = await self._acquire_lease_id(permits, timeout=None)
        assert lease_id is not None
        return Lease(semaphore=self, id=lease_id, permits=permits)

    async def try_acquire(
        self, permits: int = 1, timeout: Optional[float] = None
    ) -> Optional[Lease]:
        """Acquire ``permits`` if they become available within ``timeout``.

        With no ``timeout`` a single atomic attempt is made.
        """
        permits = self._check_permits(permits)
        if permits > self._capacity:
            return None

        if timeout is None:
            lease_id = await self._attempt_lease(permits)
        else:
            lease_id = await self._acquire_lease_id(permits, timeout=timeout)

        if lease_id is None:
            return None
        return Lease(semaphore=self, id=lease_id, permits=permits)

    async def _acquire_lease_id(self, permits: int, *, timeout: Optional[float]) -> Optional[str]:
        with ContextTimer() as timer:
            while True:
                lease_id = await self._attempt_lease(permits)
                if lease_id is not None:
                    return lease_id

                remaining = None
                if timeout is not None:
                    remaining = timeout - timer.elapsed() / 1000
                    if remaining <= 0:
                        return None

                lease_id = await self._wait_for_permits(permits, remaining)
                if lease_id is not None:
                    return lease_id

    async def _wait_for_permits(self, permits: int, remaining: Optional[float]) -> Optional[str]:
        window = float(self._lease_expiration_seconds + self._SIGNAL_WAIT_SLACK)
        if remaining is not None:
            window = min(window, remaining)

        if window < self._MINIMUM_WAIT:
            self._logger.debug(
                lazy=lambda: f"🚦Remaining timeout ({window:.3f}s) too small to block, sleeping"
            )
            await asyncio.sleep(window)
        else:
            self._logger.debug(
                lazy=lambda: f"🚦Unable to lease {permits}, waiting for signals (timeout: {window}s)"
            )
            async with self._pool.borrow() as redis:
                await redis.blpop([self._queue_key], timeout=window)

        lease_id = await self._attempt_lease(permits)
        if lease_id is None:
            self._logger.debug(
                lazy=lambda: f"🚦Still unable to lease {permits} after signal/timeout, "
                "continuing to wait"
            )
        return lease_id

    async def _attempt_lease(self, permits: int) -> Optional[str]:
        lease_id = new_lease_id()
        async with self._pool.borrow() as redis:
            result = await ACQUIRE_LEASE.aio_call(
                redis,
                keys=[self._lease_key(lease_id), self._lease_set_key],
                args=[self._capacity, permits, self._lease_expiration_seconds],
                logger=self._logger,
            )

        success, usage = int(result[0]), int(result[2])
        if success == 1:
            self._logger.debug(
                lazy=lambda: f"🚦Acquired lease {lease_id}, current usage: {usage}/{self._capacity}"
            )
            return lease_id

        self._logger.debug(
            lazy=lambda: f"🚦No capacity available, current usage: {usage}/{self._capacity}"
        )
        return None

    async def release(self, lease: Lease) -> None:
        """Return the permits held by ``lease`` and signal waiting clients.

        Raises:
            ForeignLeaseError: if ``lease`` was issued by another semaphore
        """
        if not lease.belongs_to(self):
            raise ForeignLeaseError(lease, self)

        async with self._pool.borrow() as redis:
            await RELEASE_LEASE.aio_call(
                redis,
                keys=[self._lease_key(lease.id), self._queue_key, self._lease_set_key],
                args=[lease.permits, self._capacity * 2],
                logger=self._logger,
            )

        self._logger.debug(
            lazy=lambda: f"🚦Returned {lease.permits} leased permits (lease: {lease.id}) "
            "and signaled waiting clients"
        )

    async def _get_usage(self) -> int:
        async with self._pool.borrow() as redis:
            usage = await GET_USAGE.aio_call(
                redis,
                keys=[self._lease_set_key],
                args=[self._lease_expiration_seconds],
                logger=self._logger,
            )
        return int(usage)

    async def available_permits(self) -> int:
        return self._capacity - await self._get_usage()

    async def drain_permits(self) -> Optional[Lease]:
        """Acquire every permit that looks available as a single lease.

        Advisory only, like :meth:`RedisSemaphore.drain_permits`.
        """
        available = await self.available_permits()
        while available > 0:
            lease_id = await self._attempt_lease(available)
            if lease_id is not None:
                self._logger.debug(lazy=lambda: f"🚦Drained {available} permits")
                return Lease(semaphore=self, id=lease_id, permits=available)
            available = await self.available_permits()
        return None

    async def debug_info(self) -> dict[str, Any]:
        usage = await self._get_usage()
        active_leases = []
        async with self._pool.borrow() as redis:
            lease_keys = sorted(decode(key) for key in await redis.smembers(self._lease_set_key))
            values = await redis.mget(lease_keys) if lease_keys else []

        for key, value in zip(lease_keys, values):
            if value is None:
                continue
            active_leases.append({"key": key, "permits": int(decode(value))})

        return {
            "usage": usage,
            "capacity": self._capacity,
            "available": self._capacity - usage,
            "active_leases": active_leases,
        }

    def with_lease(
        self, permit_count: int = 1, timeout_seconds: float = 30
    ) -> AbstractAsyncContextManager[Optional[Lease]]:
        """Hold ``permit_count`` permits for the duration of an ``async with`` block."""
        return aio_with_lease(self, permit_count, timeout_seconds)

    async def currently_leased(self) -> int:
        return await aio_currently_leased(self)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"namespace={self._namespace!r} "
            f"capacity={self._capacity} "
            f"lease_expiration_seconds={self._lease_expiration_seconds}>"
        )
