"""Redis-backed login throttle shared by every API worker."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from .throttle import throttle_key

logger = logging.getLogger(__name__)

# Prune, count and record in one round trip so concurrent workers cannot
# both squeeze through the last free slot.
_RECORD_ATTEMPT = """
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local max_attempts = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)
if redis.call('ZCARD', key) >= max_attempts then
    return 0
end
redis.call('ZADD', key, now_ms, ARGV[4])
redis.call('PEXPIRE', key, window_ms)
return 1
"""


def _scripting_unavailable(exc: ResponseError) -> bool:
    # Servers disagree on quoting the command name, so match words only.
    message = str(exc).lower()
    return "unknown command" in message and "eval" in message


class RedisLoginThrottle:
    """Sliding window of login attempts per email, stored as Redis sorted sets."""

    def __init__(
        self,
        client: Redis,
        *,
        max_attempts: int,
        window_seconds: float,
        namespace: str = "backoffice",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._window_ms = int(window_seconds * 1000)
        self._namespace = namespace
        self._clock = clock
        self._record = client.register_script(_RECORD_ATTEMPT)
        self._scripting = True

    def _key(self, email: str) -> str:
        return f"{self._namespace}:{throttle_key(email)}"

    async def allow(self, email: str) -> bool:
        """Record an attempt for ``email`` unless its window is already full."""
        key = self._key(email)
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}:{uuid.uuid4().hex}"
        if self._scripting:
            try:
                result = await self._record(
                    keys=[key], args=[now_ms, self._window_ms, self._max_attempts, member]
                )
                return int(result) == 1
            except ResponseError as exc:
                if not _scripting_unavailable(exc):
                    raise
                logger.warning("redis has no script support, throttling with plain commands")
                self._scripting = False
        return await self._allow_without_script(key, now_ms, member)

    async def reset(self, email: str) -> None:
        await self._client.delete(self._key(email))

    async def _allow_without_script(self, key: str, now_ms: int, member: str) -> bool:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, "-inf", now_ms - self._window_ms)
            pipe.zcard(key)
            _, current = await pipe.execute()
        if current >= self._max_attempts:
            return False
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {member: now_ms})
            pipe.pexpire(key, self._window_ms)
            await pipe.execute()
        return True
