"""
Study Buddy Matchmaker - Redis Store

Durable backend shared by every process pointed at the same Redis. Native
key expiry handles TTLs; list pops are single atomic commands so an
interrupted matchmaker drain never loses an entry it has not yet popped.
"""

import functools
import json
import math
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from study_buddy.errors import BackendUnavailable
from study_buddy.store import keys
from study_buddy.store.base import SharedStore


def _translate_errors(func):
    """Surface Redis failures as BackendUnavailable instead of swallowing them"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            raise BackendUnavailable(f"Redis operation {func.__name__} failed: {exc}") from exc

    return wrapper


class RedisStore(SharedStore):
    """SharedStore backed by redis.asyncio (client must use decode_responses=True)"""

    name = "redis"

    def __init__(self, client: redis.Redis):
        self.redis = client

    # -- key/value ------------------------------------------------------

    @_translate_errors
    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.get(key)
        return json.loads(raw) if raw is not None else None

    @_translate_errors
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        serialized = json.dumps(value)
        if ttl_seconds:
            await self.redis.setex(key, ttl_seconds, serialized)
        else:
            await self.redis.set(key, serialized)

    @_translate_errors
    async def delete(self, key: str) -> None:
        await self.redis.delete(key)

    @_translate_errors
    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    # -- wait queue -----------------------------------------------------

    @_translate_errors
    async def push_waiting(self, entry: Dict[str, Any]) -> None:
        raw = json.dumps(entry)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(keys.WAIT_MEMBERS_KEY, entry["user"]["id"], raw)
            pipe.rpush(keys.WAIT_QUEUE_KEY, raw)
            await pipe.execute()

    @_translate_errors
    async def pop_waiting(self) -> Optional[Dict[str, Any]]:
        raw = await self.redis.rpop(keys.WAIT_QUEUE_KEY)
        if raw is None:
            return None
        entry = json.loads(raw)
        await self.redis.hdel(keys.WAIT_MEMBERS_KEY, entry["user"]["id"])
        return entry

    @_translate_errors
    async def remove_waiting(self, user_id: str) -> bool:
        raw = await self.redis.hget(keys.WAIT_MEMBERS_KEY, user_id)
        if raw is None:
            return False
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(keys.WAIT_QUEUE_KEY, 0, raw)
            pipe.hdel(keys.WAIT_MEMBERS_KEY, user_id)
            removed, _ = await pipe.execute()
        return removed > 0

    @_translate_errors
    async def queue_length(self) -> int:
        return await self.redis.llen(keys.WAIT_QUEUE_KEY)

    # -- reports --------------------------------------------------------

    @_translate_errors
    async def append_report(self, report: Dict[str, Any]) -> None:
        # Appending at the tail keeps every report at a fixed index
        await self.redis.rpush(keys.REPORTS_KEY, json.dumps(report))

    @_translate_errors
    async def read_reports(self, start: int, count: int) -> List[Dict[str, Any]]:
        if count <= 0:
            return []
        raw_reports = await self.redis.lrange(keys.REPORTS_KEY, start, start + count - 1)
        return [json.loads(raw) for raw in raw_reports]

    @_translate_errors
    async def report_count(self) -> int:
        return await self.redis.llen(keys.REPORTS_KEY)

    # -- polling inboxes ------------------------------------------------

    @_translate_errors
    async def append_event(self, key: str, event: Dict[str, Any], ttl_seconds: int) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, json.dumps(event))
            pipe.expire(key, ttl_seconds)
            await pipe.execute()

    @_translate_errors
    async def drain_events(self, key: str) -> List[Dict[str, Any]]:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrange(key, 0, -1)
            pipe.delete(key)
            raw_events, _ = await pipe.execute()
        return [json.loads(raw) for raw in raw_events]

    # -- rate limiting --------------------------------------------------

    @_translate_errors
    async def record_hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now - window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.expire(key, window_seconds)
            _, _, count, _ = await pipe.execute()

        if count <= limit:
            return True, 0

        await self.redis.zrem(key, member)
        oldest = await self.redis.zrange(key, 0, 0, withscores=True)
        if not oldest:
            return False, 1
        _, oldest_score = oldest[0]
        return False, max(1, math.ceil(oldest_score + window_seconds - now))

    @_translate_errors
    async def peek_hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        now = time.time()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now - window_seconds)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, count, oldest = await pipe.execute()

        if count < limit:
            return True, 0
        if not oldest:
            return False, 1
        _, oldest_score = oldest[0]
        return False, max(1, math.ceil(oldest_score + window_seconds - now))

    # -- lifecycle ------------------------------------------------------

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.redis.aclose()
