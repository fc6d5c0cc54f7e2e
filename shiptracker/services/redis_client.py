"""
Redis client for the optional stats mirror.

- The proxy periodically writes its status snapshot to a key with a short expiry.
- Readiness pings Redis when a URL is configured.
"""
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from shiptracker.core.config import settings

logger = logging.getLogger("shiptracker.redis")

_redis: Optional[redis.Redis] = None


def redis_enabled() -> bool:
    return bool(settings.REDIS_URL.strip())


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def write_stats(stats: dict[str, Any]) -> None:
    """Mirror the status snapshot under a key that expires after STATS_TTL_SEC."""
    r = await get_redis()
    await r.set(
        settings.REDIS_STATS_KEY,
        json.dumps(stats, default=str),
        ex=settings.STATS_TTL_SEC,
    )


async def read_stats() -> Optional[dict[str, Any]]:
    """Read the last mirrored snapshot, or None if absent or unreadable."""
    r = await get_redis()
    raw = await r.get(settings.REDIS_STATS_KEY)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return None
