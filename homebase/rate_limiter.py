"""
Per-IP request throttling for upload-target issuance and contract signing.

Windows are counted in process memory and written through to Redis every few
seconds, so a restarted or scaled-out API picks up where the others left off
without a Redis round trip per request. While Redis is unreachable the windows
are simply counted in memory.
"""

import logging
import os
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_retry_at = 0.0

# key -> {"count": int, "reset_time": int, "last_redis_sync": int}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()

SYNC_INTERVAL = 10  # seconds between write-throughs to Redis
CLEANUP_INTERVAL = 60  # seconds between sweeps of finished windows
REDIS_RETRY_INTERVAL = 60  # seconds to wait after a failed connection
last_cleanup_time = 0


def _mask_redis_url(redis_url: str) -> str:
    if "@" not in redis_url:
        return "****"
    credentials, host = redis_url.rsplit("@", 1)
    return f"{credentials.split(':', 1)[0]}:****@{host}"


def _connect() -> redis.Redis:
    options = {
        "decode_responses": True,
        "socket_connect_timeout": 5,
        "socket_timeout": 10,
        "retry_on_timeout": True,
        "health_check_interval": 30,
        "max_connections": 20,
    }

    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        logger.info(f"📡 Rate limiter using Redis URL {_mask_redis_url(redis_url)}")
        return redis.from_url(redis_url, **options)

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    use_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"
    logger.info(f"📡 Rate limiter using Redis at {host}:{port}{' (SSL)' if use_ssl else ''}")
    return redis.Redis(
        host=host,
        port=port,
        password=os.getenv("REDIS_PASSWORD"),
        db=int(os.getenv("REDIS_DB", "0")),
        ssl=use_ssl,
        **options,
    )


def get_redis_client() -> Optional[redis.Redis]:
    """
    Shared Redis client, connecting on first use.

    Returns None while Redis is unreachable; another attempt is made once
    REDIS_RETRY_INTERVAL has passed.
    """
    global redis_client, redis_retry_at

    if redis_client is not None:
        return redis_client
    if time.time() < redis_retry_at:
        return None

    try:
        client = _connect()
        client.ping()
    except (redis.RedisError, OSError, ValueError) as e:
        redis_retry_at = time.time() + REDIS_RETRY_INTERVAL
        logger.warning(f"⚠️ Redis unavailable, rate limiting from memory only: {e}")
        return None

    redis_client = client
    logger.info("✅ Redis connected for rate limiting")
    return redis_client


def cleanup_expired_cache() -> None:
    """Drop windows that have finished, at most once per CLEANUP_INTERVAL"""
    global last_cleanup_time
    now = int(time.time())
    if now - last_cleanup_time < CLEANUP_INTERVAL:
        return

    with cache_lock:
        finished = [key for key, entry in memory_cache.items() if now >= entry["reset_time"]]
        for key in finished:
            del memory_cache[key]
    if finished:
        logger.debug(f"🧹 Dropped {len(finished)} finished rate limit windows")

    last_cleanup_time = now


def _load_window(key: str, now: int, window_seconds: int, client: Optional[redis.Redis]) -> dict:
    """Start counting a key, resuming another instance's window from Redis if there is one"""
    if client is not None:
        try:
            count = client.get(key)
            remaining = client.ttl(key)
            if count and remaining > 0:
                return {"count": int(count), "reset_time": now + remaining, "last_redis_sync": now}
        except redis.RedisError as e:
            logger.warning(f"⚠️ Could not read {key} from Redis, counting in memory: {e}")

    return {"count": 0, "reset_time": now + window_seconds, "last_redis_sync": now}


def _write_through(key: str, entry: dict, now: int, window_seconds: int, client: redis.Redis) -> None:
    try:
        client.set(key, entry["count"], ex=window_seconds)
        entry["last_redis_sync"] = now
    except redis.RedisError as e:
        logger.warning(f"⚠️ Could not write {key} to Redis: {e}")


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: Optional[redis.Redis] = None
) -> tuple[bool, int, int]:
    """
    Count one request against a fixed window.

    Returns:
        (allowed, requests counted in the window, seconds until the window resets)
    """
    now = int(time.time())
    cleanup_expired_cache()

    with cache_lock:
        entry = memory_cache.get(key)
        if entry is None:
            entry = memory_cache[key] = _load_window(key, now, window_seconds, client)
        elif now >= entry["reset_time"]:
            entry.update(count=0, reset_time=now + window_seconds, last_redis_sync=0)

        allowed = entry["count"] < limit
        if allowed:
            entry["count"] += 1

        if client is not None and now - entry["last_redis_sync"] >= SYNC_INTERVAL:
            _write_through(key, entry, now, window_seconds, client)

        return allowed, entry["count"], max(0, entry["reset_time"] - now)


def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the peer address"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit_dependency(
    request: Request,
    limit: int,
    window_seconds: int,
    key_prefix: str = "rate_limit",
    use_ip: bool = True,
):
    """Raise 429 once ``limit`` requests have been made in the current window"""
    key = f"{key_prefix}:{get_client_ip(request) if use_ip else 'global'}"
    allowed, count, retry_after = check_rate_limit(key, limit, window_seconds, get_redis_client())

    if not allowed:
        logger.warning(f"🚫 Rate limit hit for {key}: {count}/{limit} in {window_seconds}s")
        raise HTTPException(
            status_code=429,
            detail={
                "message": f"Too many requests. Try again in {retry_after} seconds.",
                "retry_after": retry_after,
                "limit": limit,
                "window_seconds": window_seconds,
            },
            headers={"Retry-After": str(retry_after)},
        )

    request.state.rate_limit_remaining = limit - count


def create_rate_limiter(
    limit: int, window_seconds: int, key_prefix: str = "rate_limit", use_ip: bool = True
):
    """
    Build a dependency enforcing one limit, e.g.

        rate_limit_sign = create_rate_limiter(limit=20, window_seconds=3600, key_prefix="proposal_sign")
    """

    async def rate_limiter(request: Request):
        return await rate_limit_dependency(request, limit, window_seconds, key_prefix, use_ip)

    return rate_limiter
