"""
Rate limiter for the external text-generation API

A fixed window of N calls per W seconds, shared by every process that talks
to the API (background job and request-path classification). The window is a
counter with a TTL; reservation is a single atomic step so concurrent callers
never overshoot the ceiling.

Two policies, chosen by the call site:
- REJECT: budget exhausted → caller falls back to UNKNOWN immediately
- WAIT:   poll until budget frees up, bounded by a number of attempts
"""
import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

import structlog

from packages.common.metrics import RATE_LIMIT_REJECTIONS

logger = structlog.get_logger()

RATE_LIMIT_KEY = "fodmap:ai_api_calls"

# Reserve one call if the window has room; start the TTL on the first call.
# Returns the new count, or -1 when the window is full.
_RESERVE_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return -1
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return current
"""


class RateLimitPolicy(str, Enum):
    REJECT = "reject"
    WAIT = "wait"


class RateWindow(Protocol):
    """Counter + expiry representing calls made in the current window"""

    async def try_reserve(self, max_calls: int, window_seconds: int) -> bool:
        """Atomically count one call if the window has room"""
        ...

    async def current(self) -> int:
        """Calls counted in the live window"""
        ...


class RedisRateWindow:
    """Window shared across processes through Redis"""

    def __init__(self, client, key: str = RATE_LIMIT_KEY):
        self._client = client
        self._key = key
        self._reserve = client.register_script(_RESERVE_SCRIPT)

    async def try_reserve(self, max_calls: int, window_seconds: int) -> bool:
        count = await self._reserve(keys=[self._key], args=[max_calls, window_seconds])
        return int(count) != -1

    async def current(self) -> int:
        value = await self._client.get(self._key)
        return int(value) if value else 0


class InMemoryRateWindow:
    """Single-process window with an injectable clock (development and tests)"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._count = 0
        self._expires_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _expire(self) -> None:
        if self._expires_at is not None and self._clock() >= self._expires_at:
            self._count = 0
            self._expires_at = None

    async def try_reserve(self, max_calls: int, window_seconds: int) -> bool:
        async with self._lock:
            self._expire()
            if self._count >= max_calls:
                return False
            self._count += 1
            if self._count == 1:
                self._expires_at = self._clock() + window_seconds
            return True

    async def current(self) -> int:
        async with self._lock:
            self._expire()
            return self._count


class RateLimiter:
    """
    Gates every external call against a shared RateWindow.

    Usage:
        limiter = RateLimiter(RedisRateWindow(redis), max_calls=15, window_seconds=60)
        if await limiter.acquire(RateLimitPolicy.REJECT):
            ...  # make the call
    """

    def __init__(
        self,
        window: RateWindow,
        max_calls: int = 15,
        window_seconds: int = 60,
        wait_attempts: int = 12,
        poll_interval_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.window = window
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.wait_attempts = wait_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep

    async def acquire(self, policy: RateLimitPolicy = RateLimitPolicy.REJECT) -> bool:
        """
        Reserve budget for one external call.

        Returns:
            True if the call may proceed, False if the budget stayed exhausted
        """
        if await self.window.try_reserve(self.max_calls, self.window_seconds):
            return True

        if policy is RateLimitPolicy.WAIT:
            for attempt in range(1, self.wait_attempts + 1):
                logger.info("rate_limit_waiting",
                            attempt=attempt,
                            max_attempts=self.wait_attempts,
                            poll_seconds=self.poll_interval_seconds)
                await self._sleep(self.poll_interval_seconds)
                if await self.window.try_reserve(self.max_calls, self.window_seconds):
                    return True

        RATE_LIMIT_REJECTIONS.inc()
        logger.warning("rate_limit_exhausted",
                       policy=policy.value,
                       max_calls=self.max_calls,
                       window_seconds=self.window_seconds,
                       current_calls=await self.window.current())
        return False
