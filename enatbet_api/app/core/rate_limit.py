"""
Fixed-window request rate limiting.

Counters live in Redis (``INCR`` + ``EXPIRE``) when ``REDIS_URL`` is
configured so that all workers share them; otherwise each process keeps
its own counters in memory.  Limits are grouped into named buckets and
keyed by client IP.  Use in a route as::

    @router.post("/create-payment", dependencies=[Depends(rate_limiter("payment"))])
"""

import logging
import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

import redis
from fastapi import HTTPException, Request, status

from .config import settings

logger = logging.getLogger(__name__)

# bucket -> (max requests, window seconds)
RATE_LIMITS: Dict[str, Tuple[int, int]] = {
    "auth": (5, 15 * 60),
    "api": (100, 60 * 60),
    "payment": (10, 60 * 60),
    "public": (1000, 60 * 60),
}

CLEANUP_INTERVAL = 60

_redis_client: Optional[redis.Redis] = None
_memory: Dict[str, Dict[str, int]] = {}
_lock = Lock()
_last_cleanup = 0


def get_redis_client() -> Optional[redis.Redis]:
    global _redis_client
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
    return _redis_client


def reset() -> None:
    """Forget all in-memory counters."""
    with _lock:
        _memory.clear()


def _cleanup(now: int) -> None:
    global _last_cleanup
    if now - _last_cleanup < CLEANUP_INTERVAL:
        return
    expired = [key for key, entry in _memory.items() if now >= entry["reset_at"]]
    for key in expired:
        del _memory[key]
    _last_cleanup = now


def _hit_memory(key: str, window: int) -> Tuple[int, int]:
    now = int(time.time())
    with _lock:
        _cleanup(now)
        entry = _memory.get(key)
        if entry is None or now >= entry["reset_at"]:
            entry = {"count": 0, "reset_at": now + window}
            _memory[key] = entry
        entry["count"] += 1
        return entry["count"], entry["reset_at"] - now


def _hit_redis(client: redis.Redis, key: str, window: int) -> Tuple[int, int]:
    pipe = client.pipeline()
    pipe.incr(key)
    pipe.ttl(key)
    count, ttl = pipe.execute()
    if ttl is None or ttl < 0:
        client.expire(key, window)
        ttl = window
    return int(count), int(ttl)


def hit(key: str, window: int) -> Tuple[int, int]:
    """Count one request against ``key`` and return ``(count, seconds_until_reset)``."""
    client = get_redis_client()
    if client is not None:
        try:
            return _hit_redis(client, key, window)
        except redis.RedisError as exc:
            logger.warning("Redis rate limit store unavailable, counting in memory: %s", exc)
    return _hit_memory(key, window)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limiter(bucket: str) -> Callable:
    """Create a dependency enforcing the limits of ``bucket``."""
    limit, window = RATE_LIMITS[bucket]

    async def _dependency(request: Request) -> None:
        if not settings.rate_limit_enabled:
            return
        key = f"ratelimit:{bucket}:{client_ip(request)}"
        count, retry_after = hit(key, window)
        if count > limit:
            logger.warning("Rate limit exceeded for %s (%d/%d)", key, count, limit)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={
                    "Retry-After": str(max(retry_after, 1)),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _dependency
