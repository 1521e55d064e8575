"""Uniform access to a Redis client, whether bare or pooled.

The Redis semaphores talk to Redis only through ``borrow()``, a context
manager that lends a client for the duration of one call. A pool-like
object that already has ``borrow()`` is used as is; a bare client is
wrapped in a ``NullPool`` that always lends the same client; a
:class:`redis.ConnectionPool` is wrapped in a client that draws from it.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any, AsyncContextManager, ContextManager, Protocol, Union

import redis as redis_sync
import redis.asyncio as redis_async

if TYPE_CHECKING:
    from redis import Redis
    from redis.asyncio import Redis as AIORedis


class ClientPool(Protocol):
    def borrow(self) -> ContextManager[Redis]: ...


class AIOClientPool(Protocol):
    def borrow(self) -> AsyncContextManager[AIORedis]: ...


class NullPool:
    """Lends the one wrapped client to every caller."""

    def __init__(self, client: Redis) -> None:
        self.client = client

    @contextmanager
    def borrow(self) -> Iterator[Redis]:
        yield self.client

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} client={self.client!r}>"


class AIONullPool:
    """Async twin of :class:`NullPool`."""

    def __init__(self, client: AIORedis) -> None:
        self.client = client

    @asynccontextmanager
    async def borrow(self) -> AsyncIterator[AIORedis]:
        yield self.client

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} client={self.client!r}>"


def wrap_client(redis: Union[Redis, redis_sync.ConnectionPool, ClientPool, None]) -> ClientPool:
    """Return a ``borrow()``-capable pool for ``redis``.

    ``None`` connects to a default local Redis.
    """
    if redis is None:
        return NullPool(redis_sync.Redis())
    if isinstance(redis, redis_sync.ConnectionPool):
        return NullPool(redis_sync.Redis(connection_pool=redis))
    if _has_borrow(redis):
        return redis  # type: ignore[return-value]
    return NullPool(redis)  # type: ignore[arg-type]


def wrap_aio_client(
    redis: Union[AIORedis, redis_async.ConnectionPool, AIOClientPool, None],
) -> AIOClientPool:
    """Async twin of :func:`wrap_client`."""
    if redis is None:
        return AIONullPool(redis_async.Redis())
    if isinstance(redis, redis_async.ConnectionPool):
        return AIONullPool(redis_async.Redis(connection_pool=redis))
    if _has_borrow(redis):
        return redis  # type: ignore[return-value]
    return AIONullPool(redis)  # type: ignore[arg-type]


def _has_borrow(obj: Any) -> bool:
    return callable(getattr(obj, "borrow", None))
