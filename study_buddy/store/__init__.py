"""Shared store backends and startup selection"""

from study_buddy.store.base import SharedStore
from study_buddy.store.factory import resolve_store
from study_buddy.store.memory import MemoryStore
from study_buddy.store.redis_store import RedisStore

__all__ = ["SharedStore", "MemoryStore", "RedisStore", "resolve_store"]
