"""
Redis-based distributed lock.

Keeps the offer-expiry sweep single-instance across API processes.  It
never guards ride state: rides are protected by compare-and-swap writes.

Acquire is ``SET NX PX``; release and extend are Lua scripts that only
act while the stored token is still ours, so a lock that expired and was
taken over by another worker is never deleted or prolonged by us.
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

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    """Raised by the context manager when another worker holds the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: float = 30
    ):
        self.redis = client
        self.key = f"rideoffer:lock:{name}"
        self.ttl_ms = int(ttl_seconds * 1000)
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        """Try once; never blocks.  Returns True on success."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, px=self.ttl_ms)
        )
        return self.held

    async def extend(self) -> bool:
        """Reset the TTL if we still own the lock."""
        if not self.held:
            return False
        extended = await self.redis.eval(
            _EXTEND_SCRIPT, 1, self.key, self.token, self.ttl_ms
        )
        self.held = bool(extended)
        return self.held

    async def release(self) -> None:
        if not self.held:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Lock {self.key} is held by another worker")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
