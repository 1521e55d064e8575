"""Scoped leases: acquire permits around a block and always give them back.

``with_lease`` works with any semaphore that offers ``capacity``,
``try_acquire``, ``release`` and ``available_permits``:

    >>> with with_lease(sem, 3, timeout_seconds=10) as lease:
    ...     call_the_metered_api()

Asking for zero permits runs the block with ``lease = None`` and reserves
nothing.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Awaitable, Optional, Protocol

from pottery import ContextTimer

from .exceptions import LeaseTimeout
from .lease import Lease


class LeasingSemaphore(Protocol):
    @property
    def capacity(self) -> int: ...

    def try_acquire(self, permits: int = 1, timeout: Optional[float] = None) -> Optional[Lease]: ...

    def release(self, lease: Lease) -> None: ...

    def available_permits(self) -> int: ...


class AIOLeasingSemaphore(Protocol):
    @property
    def capacity(self) -> int: ...

    def try_acquire(
        self, permits: int = 1, timeout: Optional[float] = None
    ) -> Awaitable[Optional[Lease]]: ...

    def release(self, lease: Lease) -> Awaitable[None]: ...

    def available_permits(self) -> Awaitable[int]: ...


def _check_permit_count(permit_count: int, capacity: int) -> None:
    if permit_count < 0:
        raise ValueError(f"Permit count must be non-negative, got {permit_count}")
    if permit_count > capacity:
        raise ValueError(
            f"Cannot lease {permit_count} permits as capacity is only {capacity}"
        )


@contextmanager
def with_lease(
    semaphore: LeasingSemaphore,
    permit_count: int = 1,
    timeout_seconds: float = 30,
) -> Iterator[Optional[Lease]]:
    """Hold ``permit_count`` permits from ``semaphore`` for the ``with`` block.

    Raises:
        ValueError: if ``permit_count`` is negative or above capacity
        LeaseTimeout: if the permits are not available within
            ``timeout_seconds``; the block is not run
    """
    _check_permit_count(permit_count, semaphore.capacity)

    if permit_count == 0:
        yield None
        return

    lease: Optional[Lease] = None
    with ContextTimer() as timer:
        while lease is None:
            remaining = timeout_seconds - timer.elapsed() / 1000
            if remaining <= 0:
                raise LeaseTimeout(permit_count, timeout_seconds, semaphore)
            lease = semaphore.try_acquire(permit_count, timeout=remaining)

    try:
        yield lease
    finally:
        semaphore.release(lease)


@asynccontextmanager
async def aio_with_lease(
    semaphore: AIOLeasingSemaphore,
    permit_count: int = 1,
    timeout_seconds: float = 30,
) -> AsyncIterator[Optional[Lease]]:
    """Async twin of :func:`with_lease` for coroutine-based semaphores."""
    _check_permit_count(permit_count, semaphore.capacity)

    if permit_count == 0:
        yield None
        return

    lease: Optional[Lease] = None
    with ContextTimer() as timer:
        while lease is None:
            remaining = timeout_seconds - timer.elapsed() / 1000
            if remaining <= 0:
                raise LeaseTimeout(permit_count, timeout_seconds, semaphore)
            lease = await semaphore.try_acquire(permit_count, timeout=remaining)

    try:
        yield lease
    finally:
        await semaphore.release(lease)


def currently_leased(semaphore: LeasingSemaphore) -> int:
    """Return the number of permits currently held against ``semaphore``."""
    return semaphore.capacity - semaphore.available_permits()


async def aio_currently_leased(semaphore: AIOLeasingSemaphore) -> int:
    return semaphore.capacity - await semaphore.available_permits()
