"""
Study Buddy Matchmaker - Shared Store Interface

Sole owner of session, wait-queue, block-list, report and rate-limit state.
Values are JSON-compatible structures; each backend serializes them itself.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple


class SharedStore(ABC):
    """
    Key-value store with optional expiry plus the list primitives the
    matchmaker, report archive and polling transport need.

    The wait queue pops the most recently pushed entry (stack order) on
    every backend.
    """

    name = "abstract"

    # -- key/value ------------------------------------------------------

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or expired"""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store value; a ttl replaces any previous expiry"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    # -- wait queue -----------------------------------------------------

    @abstractmethod
    async def push_waiting(self, entry: Dict[str, Any]) -> None:
        """Push a wait entry ({"user": {...}, "enqueuedAt": ...})"""

    @abstractmethod
    async def pop_waiting(self) -> Optional[Dict[str, Any]]:
        """Atomically remove and return the most recently pushed entry"""

    @abstractmethod
    async def remove_waiting(self, user_id: str) -> bool:
        """Remove the entry for user_id; True if one was removed"""

    @abstractmethod
    async def queue_length(self) -> int:
        ...

    # -- reports --------------------------------------------------------

    @abstractmethod
    async def append_report(self, report: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def read_reports(self, start: int, count: int) -> List[Dict[str, Any]]:
        """Return up to count reports from position start (0 is the oldest); never removes"""

    @abstractmethod
    async def report_count(self) -> int:
        ...

    # -- polling inboxes ------------------------------------------------

    @abstractmethod
    async def append_event(self, key: str, event: Dict[str, Any], ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def drain_events(self, key: str) -> List[Dict[str, Any]]:
        """Atomically read and clear a list of queued events"""

    # -- rate limiting --------------------------------------------------

    @abstractmethod
    async def record_hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Count one request against a sliding window.

        Returns (allowed, retry_after_seconds). Rejected requests are not
        counted.
        """

    @abstractmethod
    async def peek_hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """Same answer as record_hit would give, without counting anything"""

    # -- lifecycle ------------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def purge_expired(self) -> int:
        """Drop expired entries; backends with native expiry return 0"""
        return 0

    async def close(self) -> None:
        pass
