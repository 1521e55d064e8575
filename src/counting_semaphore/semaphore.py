"""Distributed counting semaphore backed by Redis.

This module implements a distributed counting semaphore on top of three
Lua scripts (see :mod:`counting_semaphore.scripts`) and a Redis list used
as a wakeup bell for blocked acquirers.
"""

from __future__ import annotations

import time
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Optional, Union

from pottery import ContextTimer

from .exceptions import ForeignLeaseError
from .lease import Lease, new_lease_id
from .leasing import currently_leased, with_lease
from .logger import NullLogger, SemaphoreLogger
from .pool import ClientPool, wrap_client
from .scripts import ACQUIRE_LEASE, GET_USAGE, RELEASE_LEASE, decode

if TYPE_CHECKING:
    from redis import ConnectionPool, Redis


class RedisSemaphore:
    """Distributed Redis-powered counting semaphore.

    Every instance created with the same ``namespace`` against the same Redis
    coordinates as one semaphore, across threads, processes and machines.
    Each lease is a Redis key with a TTL, so permits held by a process that
    dies are reclaimed once ``lease_expiration_seconds`` elapse.

    Usage:
        >>> from redis import Redis
        >>> sem = RedisSemaphore(20, 'api-quota', redis=Redis())
        >>> lease = sem.acquire(3)
        >>> try:
        ...     # At most 20 permits are held across all processes
        ...     pass
        ... finally:
        ...     sem.release(lease)

        >>> # Or scoped
        >>> with sem.with_lease(3, timeout_seconds=10):
        ...     pass

    Args:
        capacity: Maximum number of permits held at once across all instances
        namespace: Key prefix identifying this semaphore in Redis
        redis: A Redis client, a ConnectionPool, or any object exposing a
               ``borrow()`` context manager (default: ``Redis()``)
        logger: Receives debug messages (default: NullLogger)
        lease_expiration_seconds: TTL of each lease key, in whole seconds
    """

    LEASE_EXPIRATION_SECONDS = 5
    _SIGNAL_WAIT_SLACK = 2  # seconds added to the lease TTL for a blocking wait
    _MINIMUM_WAIT = 0.1  # BLPOP cannot wait for less than this

    def __init__(
        self,
        capacity: int,
        namespace: str,
        *,
        redis: Union[Redis, ConnectionPool, ClientPool, None] = None,
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
        self._pool = wrap_client(redis)
        self._logger: SemaphoreLogger = logger if logger is not None else NullLogger()

        self._lease_set_key = f"{namespace}:lease_set"
        self._queue_key = f"{namespace}:waiting_queue"

    @classmethod
    def from_url(cls, capacity: int, namespace: str, url: str, **kwargs: Any) -> RedisSemaphore:
        """Create a semaphore connected to the Redis at ``url``."""
        from redis import Redis as RedisClient

        return cls(capacity, namespace, redis=RedisClient.from_url(url), **kwargs)

    @property
    def capacity(self) -> int:
        """Return the maximum number of permits."""
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

    def acquire(self, permits: int = 1) -> Lease:
        """Acquire ``permits``, blocking until all of them are available.

        Raises:
            ValueError: if ``permits`` is below 1 or above capacity
        """
        permits = self._check_permits(permits)
        if permits > self._capacity:
            raise ValueError(
                f"Cannot acquire {permits} permits as capacity is only {self._capacity}"
            )

        lease_id = self._acquire_lease_id(permits, timeout=None)
        assert lease_id is not None
        return Lease(semaphore=self, id=lease_id, permits=permits)

    def try_acquire(self, permits: int = 1, timeout: Optional[float] = None) -> Optional[Lease]:
        """Acquire ``permits`` if they become available within ``timeout``.

        With no ``timeout`` a single atomic attempt is made and no waiting
        happens. Asking for more than the capacity returns None.

        Returns:
            The lease, or None if the permits could not be acquired in time
        """
        permits = self._check_permits(permits)
        if permits > self._capacity:
            return None

        if timeout is None:
            lease_id = self._attempt_lease(permits)
        else:
            lease_id = self._acquire_lease_id(permits, timeout=timeout)

        if lease_id is None:
            return None
        return Lease(semaphore=self, id=lease_id, permits=permits)

    def _acquire_lease_id(self, permits: int, *, timeout: Optional[float]) -> Optional[str]:
        """Retry until a lease is granted or ``timeout`` seconds pass.

        Between attempts the caller blocks on the waiting queue. The wait is
        never longer than the lease TTL plus slack, so leases left behind by
        crashed holders are noticed even when no release signal arrives.
        """
        with ContextTimer() as timer:
            while True:
                lease_id = self._attempt_lease(permits)
                if lease_id is not None:
                    return lease_id

                remaining = None
                if timeout is not None:
                    remaining = timeout - timer.elapsed() / 1000
                    if remaining <= 0:
                        return None

                lease_id = self._wait_for_permits(permits, remaining)
                if lease_id is not None:
                    return lease_id

    def _wait_for_permits(self, permits: int, remaining: Optional[float]) -> Optional[str]:
        window = float(self._lease_expiration_seconds + self._SIGNAL_WAIT_SLACK)
        if remaining is not None:
            window = min(window, remaining)

        if window < self._MINIMUM_WAIT:
            self._logger.debug(
                lazy=lambda: f"🚦Remaining timeout ({window:.3f}s) too small to block, sleeping"
            )
            time.sleep(window)
        else:
            self._logger.debug(
                lazy=lambda: f"🚦Unable to lease {permits}, waiting for signals (timeout: {window}s)"
            )
            with self._pool.borrow() as redis:
                redis.blpop([self._queue_key], timeout=window)

        # A signal may have been taken by another waiter, so always retry here
        lease_id = self._attempt_lease(permits)
        if lease_id is None:
            self._logger.debug(
                lazy=lambda: f"🚦Still unable to lease {permits} after signal/timeout, "
                "continuing to wait"
            )
        return lease_id

    def _attempt_lease(self, permits: int) -> Optional[str]:
        lease_id = new_lease_id()
        with self._pool.borrow() as redis:
            result = ACQUIRE_LEASE(
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

    def release(self, lease: Lease) -> None:
        """Return the permits held by ``lease`` and signal waiting clients.

        Releasing a lease whose key already expired is harmless.

        Raises:
            ForeignLeaseError: if ``lease`` was issued by another semaphore
        """
        if not lease.belongs_to(self):
            raise ForeignLeaseError(lease, self)

        with self._pool.borrow() as redis:
            RELEASE_LEASE(
                redis,
                keys=[self._lease_key(lease.id), self._queue_key, self._lease_set_key],
                args=[lease.permits, self._capacity * 2],
                logger=self._logger,
            )

        self._logger.debug(
            lazy=lambda: f"🚦Returned {lease.permits} leased permits (lease: {lease.id}) "
            "and signaled waiting clients"
        )

    def _get_usage(self) -> int:
        with self._pool.borrow() as redis:
            usage = GET_USAGE(
                redis,
                keys=[self._lease_set_key],
                args=[self._lease_expiration_seconds],
                logger=self._logger,
            )
        return int(usage)

    def available_permits(self) -> int:
        """Return the number of permits not held by any live lease."""
        return self._capacity - self._get_usage()

    def drain_permits(self) -> Optional[Lease]:
        """Acquire every permit that looks available as a single lease.

        Other clients may take permits between the availability read and the
        acquisition, so the lease can be smaller than the availability seen
        a moment earlier, or None.
        """
        available = self.available_permits()
        while available > 0:
            lease_id = self._attempt_lease(available)
            if lease_id is not None:
                self._logger.debug(lazy=lambda: f"🚦Drained {available} permits")
                return Lease(semaphore=self, id=lease_id, permits=available)
            available = self.available_permits()
        return None

    def debug_info(self) -> dict[str, Any]:
        """Return usage, capacity, availability and the live leases."""
        usage = self._get_usage()
        active_leases = []
        with self._pool.borrow() as redis:
            lease_keys = sorted(decode(key) for key in redis.smembers(self._lease_set_key))
            values = redis.mget(lease_keys) if lease_keys else []

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
    ) -> AbstractContextManager[Optional[Lease]]:
        """Hold ``permit_count`` permits for the duration of a ``with`` block."""
        return with_lease(self, permit_count, timeout_seconds)

    def currently_leased(self) -> int:
        """Return the number of permits held across all instances."""
        return currently_leased(self)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"namespace={self._namespace!r} "
            f"capacity={self._capacity} "
            f"lease_expiration_seconds={self._lease_expiration_seconds}>"
        )
