"""
Study Buddy Matchmaker - Process-Local Store

Fallback backend used when Redis is unreachable at startup. Values are kept
serialized so callers never share mutable objects with the store; expiry is
checked on access and swept by purge_expired().
"""

import json
import math
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from study_buddy.store.base import SharedStore


class MemoryStore(SharedStore):
    """Single-process implementation of SharedStore"""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._queue: List[str] = []
        self._reports: List[str] = []
        self._inboxes: Dict[str, Tuple[List[str], float]] = {}
        self._hits: Dict[str, Deque[float]] = {}

    def _deadline(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    def _expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and deadline <= self._clock()

    # -- key/value ------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        item = self._values.get(key)
        if item is None:
            return None
        raw, deadline = item
        if self._expired(deadline):
            del self._values[key]
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self._values[key] = (json.dumps(value), self._deadline(ttl_seconds))

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    # -- wait queue -----------------------------------------------------

    async def push_waiting(self, entry: Dict[str, Any]) -> None:
        self._queue.append(json.dumps(entry))

    async def pop_waiting(self) -> Optional[Dict[str, Any]]:
        if not self._queue:
            return None
        return json.loads(self._queue.pop())

    async def remove_waiting(self, user_id: str) -> bool:
        before = len(self._queue)
        self._queue = [raw for raw in self._queue if json.loads(raw)["user"]["id"] != user_id]
        return len(self._queue) != before

    async def queue_length(self) -> int:
        return len(self._queue)

    # -- reports --------------------------------------------------------

    async def append_report(self, report: Dict[str, Any]) -> None:
        self._reports.append(json.dumps(report))

    async def read_reports(self, start: int, count: int) -> List[Dict[str, Any]]:
        return [json.loads(raw) for raw in self._reports[start:start + count]]

    async def report_count(self) -> int:
        return len(self._reports)

    # -- polling inboxes ------------------------------------------------

    async def append_event(self, key: str, event: Dict[str, Any], ttl_seconds: int) -> None:
        events, deadline = self._inboxes.get(key, ([], None))
        if self._expired(deadline):
            events = []
        events.append(json.dumps(event))
        self._inboxes[key] = (events, self._deadline(ttl_seconds))

    async def drain_events(self, key: str) -> List[Dict[str, Any]]:
        events, deadline = self._inboxes.pop(key, ([], None))
        if self._expired(deadline):
            return []
        return [json.loads(raw) for raw in events]

    # -- rate limiting --------------------------------------------------

    def _window(self, key: str, window_seconds: int) -> Deque[float]:
        now = self._clock()
        hits = self._hits.setdefault(key, deque())
        while hits and now - hits[0] >= window_seconds:
            hits.popleft()
        return hits

    def _retry_after(self, hits: Deque[float], window_seconds: int) -> int:
        return max(1, math.ceil(hits[0] + window_seconds - self._clock()))

    async def record_hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        hits = self._window(key, window_seconds)
        if len(hits) >= limit:
            return False, self._retry_after(hits, window_seconds)
        hits.append(self._clock())
        return True, 0

    async def peek_hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        hits = self._window(key, window_seconds)
        if len(hits) >= limit:
            return False, self._retry_after(hits, window_seconds)
        return True, 0

    # -- lifecycle ------------------------------------------------------

    async def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, (_, deadline) in self._values.items() if deadline is not None and deadline <= now]
        for key in stale:
            del self._values[key]
        stale_inboxes = [k for k, (_, deadline) in self._inboxes.items() if deadline is not None and deadline <= now]
        for key in stale_inboxes:
            del self._inboxes[key]
        empty_hits = [k for k, hits in self._hits.items() if not hits]
        for key in empty_hits:
            del self._hits[key]
        return len(stale) + len(stale_inboxes)
