"""
Study Buddy Matchmaker - Block List

Directed (blocker, blocked) relations with a fixed expiry, checked in both
directions when pairing. Blocking never ends an open session by itself.
"""

import logging

from study_buddy.store import keys
from study_buddy.store.base import SharedStore

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_TTL_SECONDS = 30 * 24 * 60 * 60


class BlockList:
    def __init__(self, store: SharedStore, ttl_seconds: int = DEFAULT_BLOCK_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def block(self, blocker_id: str, blocked_id: str) -> None:
        """Record the relation; blocking again restarts the expiry clock"""
        await self.store.set(keys.block_key(blocker_id, blocked_id), True, self.ttl_seconds)
        logger.info("User %s blocked %s", blocker_id, blocked_id)

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        if await self.store.exists(keys.block_key(user_a, user_b)):
            return True
        return await self.store.exists(keys.block_key(user_b, user_a))
