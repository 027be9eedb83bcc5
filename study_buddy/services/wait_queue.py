"""
Study Buddy Matchmaker - Wait Queue

Users waiting for a partner, layered on the shared store. A user has at
most one live entry: joining again replaces the previous one.
"""

import logging
from typing import Optional

from study_buddy.schemas import User, WaitEntry
from study_buddy.store.base import SharedStore

logger = logging.getLogger(__name__)


class WaitQueue:
    def __init__(self, store: SharedStore):
        self.store = store

    async def enqueue(self, user: User) -> WaitEntry:
        """Add user, dropping any earlier entry with the same id"""
        if await self.store.remove_waiting(user.id):
            logger.info("Replaced existing queue entry for user %s", user.id)
        entry = WaitEntry(user=user)
        await self.store.push_waiting(entry.to_wire())
        return entry

    async def requeue(self, entry: WaitEntry) -> None:
        """Put a drained entry back unchanged (keeps its enqueuedAt)"""
        await self.store.push_waiting(entry.to_wire())

    async def pop(self) -> Optional[WaitEntry]:
        raw = await self.store.pop_waiting()
        return WaitEntry.model_validate(raw) if raw is not None else None

    async def remove(self, user_id: str) -> bool:
        return await self.store.remove_waiting(user_id)

    async def length(self) -> int:
        return await self.store.queue_length()
