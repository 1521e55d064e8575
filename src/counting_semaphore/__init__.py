"""Counting semaphores that lease out a quantity of permits.

This package provides an in-process semaphore for threads and a
distributed semaphore coordinated through Redis Lua scripts. Both hand out
``Lease`` objects that must be released back to the issuing semaphore.

Example usage (in-process):

    >>> from counting_semaphore import LocalSemaphore
    >>>
    >>> sem = LocalSemaphore(5)
    >>> with sem.with_lease(2) as lease:
    ...     # At most 5 permits are held at once
    ...     pass

Example usage (distributed):

    >>> from redis import Redis
    >>> from counting_semaphore import RedisSemaphore
    >>>
    >>> sem = RedisSemaphore(20, 'api-quota', redis=Redis())
    >>> lease = sem.acquire(3)
    >>> try:
    ...     pass
    ... finally:
    ...     sem.release(lease)

Example usage (async):

    >>> import asyncio
    >>> from redis.asyncio import Redis
    >>> from counting_semaphore import AIORedisSemaphore
    >>>
    >>> async def main():
    ...     sem = AIORedisSemaphore(20, 'api-quota', redis=Redis())
    ...     async with sem.with_lease(3):
    ...         pass
    >>> asyncio.run(main())
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from typing import Final

from .aiosemaphore import AIORedisSemaphore
from .exceptions import ForeignLeaseError, LeaseReleasedError, LeaseTimeout, SemaphoreError
from .lease import Lease
from .leasing import aio_currently_leased, aio_with_lease, currently_leased, with_lease
from .local import LocalSemaphore
from .logger import NullLogger, SemaphoreLogger, StdlibLogger
from .pool import AIONullPool, NullPool
from .semaphore import RedisSemaphore

__all__: Final[tuple[str, ...]] = (
    "AIONullPool",
    "AIORedisSemaphore",
    "ForeignLeaseError",
    "Lease",
    "LeaseReleasedError",
    "LeaseTimeout",
    "LocalSemaphore",
    "NullLogger",
    "NullPool",
    "RedisSemaphore",
    "SemaphoreError",
    "SemaphoreLogger",
    "StdlibLogger",
    "aio_currently_leased",
    "aio_with_lease",
    "currently_leased",
    "with_lease",
)

try:
    __version__ = version("counting-semaphore")
except PackageNotFoundError:
    __version__ = "unknown"
