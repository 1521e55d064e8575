"""In-process counting semaphore.

Permits are tracked in a single counter guarded by a mutex, and waiters
park on a condition variable. Releasing wakes every waiter because the
freed permits may fit a different-sized request than the first one woken.
"""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager
from typing import Optional

from pottery import ContextTimer

from .exceptions import ForeignLeaseError, LeaseReleasedError
from .lease import Lease, new_lease_id
from .leasing import currently_leased, with_lease
from .logger import NullLogger, SemaphoreLogger


class LocalSemaphore:
    """Counting semaphore for threads of a single process.

    Usage:
        >>> sem = LocalSemaphore(5)
        >>> lease = sem.acquire(2)
        >>> sem.available_permits()
        3
        >>> sem.release(lease)

        >>> # Or scoped
        >>> with sem.with_lease(2) as lease:
        ...     pass

    Args:
        capacity: Maximum number of permits that may be held at once
        logger: Receives debug messages (default: NullLogger)
    """

    def __init__(self, capacity: int, *, logger: Optional[SemaphoreLogger] = None) -> None:
        if capacity < 1:
            raise ValueError(f"Capacity must be positive, got {capacity}")

        self._capacity = int(capacity)
        self._reserved = 0
        self._outstanding: set[str] = set()
        self._mutex = threading.Lock()
        self._condition = threading.Condition(self._mutex)
        self._logger: SemaphoreLogger = logger if logger is not None else NullLogger()

    @property
    def capacity(self) -> int:
        """Return the maximum number of permits."""
        return self._capacity

    def _check_permits(self, permits: int) -> int:
        permits = int(permits)
        if permits < 1:
            raise ValueError(f"Permits must be at least 1, got {permits}")
        return permits

    def _reserve(self, permits: int) -> Optional[Lease]:
        # Caller must hold self._mutex.
        if self._capacity - self._reserved < permits:
            return None
        self._reserved += permits
        lease = Lease(semaphore=self, id=new_lease_id(), permits=permits)
        self._outstanding.add(lease.id)
        return lease

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

        with self._condition:
            while True:
                lease = self._reserve(permits)
                if lease is not None:
                    self._logger.debug(
                        lazy=lambda: f"Acquired {permits} permits, "
                        f"now {self._reserved}/{self._capacity}"
                    )
                    return lease
                self._logger.debug(
                    lazy=lambda: f"Unable to acquire {permits} permits, "
                    f"{self._reserved}/{self._capacity} in use, waiting"
                )
                self._condition.wait()

    def try_acquire(self, permits: int = 1, timeout: Optional[float] = None) -> Optional[Lease]:
        """Acquire ``permits`` if they become available within ``timeout``.

        With no ``timeout`` a single non-blocking attempt is made. Asking for
        more than the capacity returns None instead of raising.

        Returns:
            The lease, or None if the permits could not be acquired in time
        """
        permits = self._check_permits(permits)
        if permits > self._capacity:
            return None

        with ContextTimer() as timer, self._condition:
            while True:
                lease = self._reserve(permits)
                if lease is not None:
                    self._logger.debug(
                        lazy=lambda: f"Acquired {permits} permits (try), "
                        f"now {self._reserved}/{self._capacity}"
                    )
                    return lease
                if timeout is None:
                    return None
                remaining = timeout - timer.elapsed() / 1000
                if remaining <= 0:
                    return None
                self._condition.wait(remaining)

    def release(self, lease: Lease) -> None:
        """Return the permits held by ``lease`` and wake all waiters.

        Raises:
            ForeignLeaseError: if ``lease`` was issued by another semaphore
            LeaseReleasedError: if ``lease`` was already released
        """
        if not lease.belongs_to(self):
            raise ForeignLeaseError(lease, self)

        with self._condition:
            if lease.id not in self._outstanding:
                raise LeaseReleasedError(lease)
            self._outstanding.discard(lease.id)
            self._reserved -= lease.permits
            self._logger.debug(
                lazy=lambda: f"Released {lease.permits} permits (lease: {lease.id}), "
                f"now {self._reserved}/{self._capacity}"
            )
            self._condition.notify_all()

    def available_permits(self) -> int:
        """Return the number of permits that can be acquired right now."""
        with self._mutex:
            return self._capacity - self._reserved

    def drain_permits(self) -> Optional[Lease]:
        """Acquire every permit that is available right now as a single lease.

        Returns:
            A lease for the drained permits, or None if none were available
        """
        with self._mutex:
            available = self._capacity - self._reserved
            if available <= 0:
                return None
            lease = self._reserve(available)
        self._logger.debug(lazy=lambda: f"Drained {available} permits")
        return lease

    def with_lease(
        self, permit_count: int = 1, timeout_seconds: float = 30
    ) -> AbstractContextManager[Optional[Lease]]:
        """Hold ``permit_count`` permits for the duration of a ``with`` block."""
        return with_lease(self, permit_count, timeout_seconds)

    def currently_leased(self) -> int:
        """Return the number of permits currently held."""
        return currently_leased(self)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"available={self.available_permits()}/{self._capacity}>"
        )
