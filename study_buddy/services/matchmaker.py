"""
Study Buddy Matchmaker - Pairing Algorithm

Drains a bounded snapshot of the wait queue, scores each waiting user by
the number of tags shared with the candidate, consumes the best one and
puts every other drained entry back.
"""

import logging
from typing import List, Optional, Tuple

from study_buddy.schemas import User, WaitEntry, match_score
from study_buddy.services.blocklist import BlockList
from study_buddy.services.wait_queue import WaitQueue

logger = logging.getLogger(__name__)


class Matchmaker:
    def __init__(self, queue: WaitQueue, blocklist: BlockList):
        self.queue = queue
        self.blocklist = blocklist

    async def find_match(self, candidate: User) -> Optional[User]:
        """
        Return the waiting user sharing the most tags with candidate.

        Ties go to the first entry popped. Self-entries, blocked pairs and
        zero-overlap entries are never returned. The caller enqueues the
        candidate when this returns None.
        """
        budget = await self.queue.length()
        logger.debug("Finding match for user %s with tags %s (queue length %d)", candidate.id, candidate.tags, budget)

        drained: List[WaitEntry] = []
        best: Optional[Tuple[int, WaitEntry]] = None
        winner: Optional[WaitEntry] = None

        try:
            for _ in range(budget):
                entry = await self.queue.pop()
                if entry is None:
                    break
                drained.append(entry)
                other = entry.user

                if other.id == candidate.id or await self.blocklist.is_blocked(candidate.id, other.id):
                    logger.debug("Skipping user %s (self-match or blocked)", other.id)
                    continue

                score = match_score(candidate.tags, other.tags)
                if score == 0:
                    continue
                if best is None or score > best[0]:
                    best = (score, entry)

            if best is not None:
                winner = best[1]
        finally:
            # Restore the untouched entries in their original stack order
            leftovers = [entry for entry in drained if entry is not winner]
            for entry in reversed(leftovers):
                await self.queue.requeue(entry)

        if winner is None:
            logger.debug("No match for user %s", candidate.id)
            return None

        logger.info("Matched user %s with %s (score %d)", candidate.id, winner.user.id, best[0])
        return winner.user
