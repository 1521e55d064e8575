"""Lua scripts that own every mutation of the distributed semaphore state.

State for a namespace ``ns`` lives in three kinds of keys:

- ``ns:leases:<id>`` holds the permit count of one lease, with a TTL
- ``ns:lease_set`` is the set of lease keys that may still be alive
- ``ns:waiting_queue`` is a short list used only to wake blocked waiters

Usage is the sum of the lease keys that still exist, so a lease whose
holder crashed stops counting once its TTL runs out. Each script prunes
dead members from the lease set while it sums.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any, Final, Sequence

from redis.exceptions import NoScriptError

if TYPE_CHECKING:
    from redis import Redis
    from redis.asyncio import Redis as AIORedis

    from .logger import SemaphoreLogger


class Script:
    """A Lua script run by SHA1 digest, falling back to its body.

    The digest is computed once. When Redis does not have the script cached
    (``NOSCRIPT``), the body is sent with ``EVAL``, which also caches it for
    subsequent ``EVALSHA`` calls. Any other Redis error propagates.
    """

    __slots__ = ("name", "body", "sha")

    def __init__(self, name: str, body: str) -> None:
        self.name = name
        self.body = body
        self.sha = hashlib.sha1(body.encode()).hexdigest()

    def __call__(
        self,
        redis: Redis,
        keys: Sequence[str],
        args: Sequence[Any],
        logger: SemaphoreLogger | None = None,
    ) -> Any:
        try:
            return redis.evalsha(self.sha, len(keys), *keys, *args)
        except NoScriptError as error:
            if logger is not None:
                logger.debug(lazy=lambda: f"🚦Script {self.name} not cached, using EVAL: {error}")
            return redis.eval(self.body, len(keys), *keys, *args)

    async def aio_call(
        self,
        redis: AIORedis,
        keys: Sequence[str],
        args: Sequence[Any],
        logger: SemaphoreLogger | None = None,
    ) -> Any:
        try:
            return await redis.evalsha(self.sha, len(keys), *keys, *args)
        except NoScriptError as error:
            if logger is not None:
                logger.debug(lazy=lambda: f"🚦Script {self.name} not cached, using EVAL: {error}")
            return await redis.eval(self.body, len(keys), *keys, *args)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} sha={self.sha}>"


# KEYS: lease_key, lease_set_key
# ARGV: capacity, permits, expiration_seconds
# Returns {1, lease_key, usage_after} on success, {0, '', usage} otherwise.
ACQUIRE_LEASE: Final[Script] = Script(
    "acquire_lease",
    """
local lease_key = KEYS[1]
local lease_set_key = KEYS[2]
local capacity = tonumber(ARGV[1])
local permits = tonumber(ARGV[2])
local expiration_seconds = tonumber(ARGV[3])

local usage = 0
for _, key in ipairs(redis.call('SMEMBERS', lease_set_key)) do
  local value = redis.call('GET', key)
  local held = value and tonumber(value)
  if held then
    usage = usage + held
  else
    if value then
      redis.call('DEL', key)
    end
    redis.call('SREM', lease_set_key, key)
  end
end

if capacity - usage >= permits then
  redis.call('SET', lease_key, permits, 'EX', expiration_seconds)
  redis.call('SADD', lease_set_key, lease_key)
  redis.call('EXPIRE', lease_set_key, expiration_seconds * 4)
  return {1, lease_key, usage + permits}
end
return {0, '', usage}
""",
)

# KEYS: lease_key, queue_key, lease_set_key
# ARGV: permits, max_signals
# Returns 1 whether or not the lease key still existed.
RELEASE_LEASE: Final[Script] = Script(
    "release_lease",
    """
local lease_key = KEYS[1]
local queue_key = KEYS[2]
local lease_set_key = KEYS[3]
local permits = ARGV[1]
local max_signals = tonumber(ARGV[2])

redis.call('DEL', lease_key)
redis.call('SREM', lease_set_key, lease_key)
redis.call('LPUSH', queue_key, 'permits:' .. permits)
redis.call('LTRIM', queue_key, 0, max_signals - 1)
return 1
""",
)

# KEYS: lease_set_key
# ARGV: expiration_seconds
# Returns the summed permits of the leases that are still alive.
GET_USAGE: Final[Script] = Script(
    "get_usage",
    """
local lease_set_key = KEYS[1]
local expiration_seconds = tonumber(ARGV[1])

local usage = 0
local alive = false
for _, key in ipairs(redis.call('SMEMBERS', lease_set_key)) do
  local value = redis.call('GET', key)
  local held = value and tonumber(value)
  if held then
    usage = usage + held
    alive = true
  else
    if value then
      redis.call('DEL', key)
    end
    redis.call('SREM', lease_set_key, key)
  end
end

if alive then
  redis.call('EXPIRE', lease_set_key, expiration_seconds * 4)
end
return usage
""",
)


def decode(value: Any) -> Any:
    """Decode a bytes reply; clients built with ``decode_responses`` return str."""
    if isinstance(value, bytes):
        return value.decode()
    return value
