"""
Overlap lock - at most one classification run at a time

SET key token NX EX ttl to acquire; release deletes only if the token still
matches, so a run whose lock expired cannot free a successor's lock. The TTL
caps worst-case run duration.
"""
import time
import uuid
from typing import Callable, Dict, Optional, Protocol, Tuple

import structlog

logger = structlog.get_logger()

CLASSIFICATION_LOCK_KEY = "fodmap:classification_job_lock"

_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class OverlapLock(Protocol):

    async def acquire(self, key: str, ttl_seconds: int) -> Optional[str]:
        """Token if acquired, None if another holder has it"""
        ...

    async def release(self, key: str, token: str) -> bool:
        ...


class RedisOverlapLock:

    def __init__(self, client):
        self._client = client
        self._release = client.register_script(_RELEASE_SCRIPT)

    async def acquire(self, key: str, ttl_seconds: int) -> Optional[str]:
        token = uuid.uuid4().hex
        acquired = await self._client.set(key, token, nx=True, ex=ttl_seconds)
        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        return bool(await self._release(keys=[key], args=[token]))


class InMemoryOverlapLock:
    """Single-process lock with an injectable clock (development and tests)"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._held: Dict[str, Tuple[str, float]] = {}

    async def acquire(self, key: str, ttl_seconds: int) -> Optional[str]:
        held = self._held.get(key)
        if held is not None and self._clock() < held[1]:
            return None
        token = uuid.uuid4().hex
        self._held[key] = (token, self._clock() + ttl_seconds)
        return token

    async def release(self, key: str, token: str) -> bool:
        held = self._held.get(key)
        if held is None or held[0] != token:
            return False
        del self._held[key]
        return True

    def is_held(self, key: str) -> bool:
        held = self._held.get(key)
        return held is not None and self._clock() < held[1]
