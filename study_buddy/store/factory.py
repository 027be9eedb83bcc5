"""
Study Buddy Matchmaker - Store Selection

The backend is chosen exactly once, at startup, and injected everywhere.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from study_buddy.config import Settings
from study_buddy.errors import BackendUnavailable
from study_buddy.store.base import SharedStore
from study_buddy.store.memory import MemoryStore
from study_buddy.store.redis_store import RedisStore

logger = logging.getLogger(__name__)

BACKEND_CHOICES = ("auto", "redis", "memory")


async def connect_redis(settings: Settings) -> RedisStore:
    """
    Open a Redis client and verify it answers PING.

    Raises:
        BackendUnavailable: if Redis cannot be reached.
    """
    client = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT_SECONDS,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        await client.aclose()
        raise BackendUnavailable(f"Redis unreachable at {settings.REDIS_URL}: {exc}") from exc
    return RedisStore(client)


async def resolve_store(settings: Settings) -> SharedStore:
    """
    Pick the shared store backend for this process.

    "auto" prefers Redis and degrades to the in-process store; "redis"
    refuses to start without Redis; "memory" never contacts Redis.
    """
    mode = settings.STORAGE_BACKEND.lower()
    if mode not in BACKEND_CHOICES:
        raise ValueError(f"STORAGE_BACKEND must be one of {BACKEND_CHOICES}, got {mode!r}")

    if mode == "memory":
        logger.info("Using in-memory storage")
        return MemoryStore()

    try:
        store = await connect_redis(settings)
    except BackendUnavailable as exc:
        if mode == "redis":
            raise
        logger.warning("Redis not available, using in-memory storage (%s)", exc)
        return MemoryStore()

    logger.info("Connected to Redis at %s", settings.REDIS_URL)
    return store
