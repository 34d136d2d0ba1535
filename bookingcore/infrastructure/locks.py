"""
Redis-based distributed lock.

Held by the assignment sweeper so that only one API process reverts
timed-out assignments per cycle.  The lock only serialises sweeps; the
correctness of each reversion still rests on the booking's version guard.

Acquire is ``SET NX EX`` with a per-instance token; release is a Lua
check-and-delete so an expired holder never deletes a successor's lock.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(self, client: aioredis.Redis, key: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try once; ``True`` if this instance now holds the lock."""
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> bool:
        """Delete the key only if it still carries our token."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
