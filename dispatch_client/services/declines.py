"""
Decline de-duplication.

Declining (or timing out on) a request is local to this driver: the backend
is not told, so the same request keeps coming back from the poller. The
ledger remembers declines so the request is not offered again to the same
driver, either for `window` seconds or, with no window, until the driver
goes offline.
"""
import math
from typing import Optional, Protocol

import redis.asyncio as aioredis

from dispatch_client.redis_client import declined_key, declined_set_key
from dispatch_client.services.timers import Clock


class DeclineLedger(Protocol):
    async def record(self, driver_id: str, request_id: str) -> None: ...

    async def is_suppressed(self, driver_id: str, request_id: str) -> bool: ...

    async def clear(self, driver_id: str) -> None: ...


class InMemoryDeclineLedger:
    def __init__(self, clock: Clock, window: Optional[float] = None) -> None:
        self._clock = clock
        self.window = window
        self._declined: dict[str, dict[str, float]] = {}

    async def record(self, driver_id: str, request_id: str) -> None:
        self._declined.setdefault(driver_id, {})[request_id] = self._clock.now_ms()

    async def is_suppressed(self, driver_id: str, request_id: str) -> bool:
        declined_at = self._declined.get(driver_id, {}).get(request_id)
        if declined_at is None:
            return False
        if self.window is None:
            return True
        if self._clock.now_ms() - declined_at < self.window * 1000:
            return True
        del self._declined[driver_id][request_id]
        return False

    async def clear(self, driver_id: str) -> None:
        self._declined.pop(driver_id, None)


class RedisDeclineLedger:
    def __init__(self, redis: aioredis.Redis, window: Optional[float] = None) -> None:
        self._redis = redis
        self.window = window

    async def record(self, driver_id: str, request_id: str) -> None:
        if self.window is None:
            await self._redis.sadd(declined_set_key(driver_id), request_id)
        else:
            await self._redis.setex(declined_key(driver_id, request_id), max(1, math.ceil(self.window)), "1")

    async def is_suppressed(self, driver_id: str, request_id: str) -> bool:
        if self.window is None:
            return bool(await self._redis.sismember(declined_set_key(driver_id), request_id))
        return bool(await self._redis.exists(declined_key(driver_id, request_id)))

    async def clear(self, driver_id: str) -> None:
        keys = [declined_set_key(driver_id)]
        async for key in self._redis.scan_iter(match=declined_key(driver_id, "*")):
            keys.append(key)
        await self._redis.delete(*keys)
