import redis.asyncio as aioredis
from dispatch_client.config import get_settings

settings = get_settings()

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Decline keys
# ---------------------------------------------------------------------------

def declined_key(driver_id: str, request_id: str) -> str:
    """Per-request key, used when declines expire after a window."""
    return f"driver:{driver_id}:declined:{request_id}"


def declined_set_key(driver_id: str) -> str:
    """Set of every request declined during the current session."""
    return f"driver:{driver_id}:declined"
