"""
Study Buddy Matchmaker - Rate Limiter

Per-address sliding windows, one per route class. Counters live in the
shared store so every process behind the same Redis enforces one budget.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable

from study_buddy.config import Settings
from study_buddy.errors import RateLimited
from study_buddy.store import keys
from study_buddy.store.base import SharedStore

logger = logging.getLogger(__name__)

API = "api"
MATCH = "match"
REPORT = "report"


@dataclass(frozen=True)
class RatePolicy:
    name: str
    limit: int
    window_seconds: int


class RateLimiter:
    def __init__(self, store: SharedStore, policies: Dict[str, RatePolicy]):
        self.store = store
        self.policies = policies

    @classmethod
    def from_settings(cls, store: SharedStore, settings: Settings) -> "RateLimiter":
        return cls(store, {
            API: RatePolicy(API, settings.RATE_LIMIT_API_REQUESTS, settings.RATE_LIMIT_API_WINDOW_SECONDS),
            MATCH: RatePolicy(MATCH, settings.RATE_LIMIT_MATCH_REQUESTS, settings.RATE_LIMIT_MATCH_WINDOW_SECONDS),
            REPORT: RatePolicy(REPORT, settings.RATE_LIMIT_REPORT_REQUESTS, settings.RATE_LIMIT_REPORT_WINDOW_SECONDS),
        })

    async def check(self, policy_name: str, address: str) -> None:
        """
        Count one request from address against policy_name.

        Raises:
            RateLimited: the window is full; nothing was recorded.
        """
        await self.check_all([policy_name], address)

    async def check_all(self, policy_names: Iterable[str], address: str) -> None:
        """
        Count one request against every named policy, or against none.

        All windows are checked before any hit is recorded, so a request
        rejected by one policy leaves the others untouched.

        Raises:
            RateLimited: for the rejecting policy with the longest wait.
        """
        policies = [self.policies[name] for name in policy_names]

        rejected = None
        for policy in policies:
            allowed, retry_after = await self.store.peek_hit(
                keys.rate_limit_key(policy.name, address), policy.limit, policy.window_seconds
            )
            if not allowed and (rejected is None or retry_after > rejected.retry_after):
                rejected = RateLimited(policy.name, retry_after)
        if rejected is not None:
            logger.warning("Rate limit %s exceeded by %s (retry after %ss)", rejected.policy, address, rejected.retry_after)
            raise rejected

        for policy in policies:
            allowed, retry_after = await self.store.record_hit(
                keys.rate_limit_key(policy.name, address), policy.limit, policy.window_seconds
            )
            if not allowed:
                # Another request filled the window between the check and the hit
                logger.warning("Rate limit %s exceeded by %s (retry after %ss)", policy.name, address, retry_after)
                raise RateLimited(policy.name, retry_after)
