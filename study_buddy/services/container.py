"""
Study Buddy Matchmaker - Service Wiring

Builds the object graph once the shared store backend has been chosen.
"""

from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from study_buddy.config import Settings
from study_buddy.services.abuse import AbuseService
from study_buddy.services.blocklist import BlockList
from study_buddy.services.matchmaker import Matchmaker
from study_buddy.services.moderation import ContentModerator
from study_buddy.services.rate_limiter import RateLimiter
from study_buddy.services.registry import ConnectionRegistry
from study_buddy.services.session_manager import SessionManager
from study_buddy.services.wait_queue import WaitQueue
from study_buddy.store.base import SharedStore


@dataclass
class Services:
    settings: Settings
    store: SharedStore
    registry: ConnectionRegistry
    queue: WaitQueue
    blocklist: BlockList
    matchmaker: Matchmaker
    sessions: SessionManager
    abuse: AbuseService
    rate_limiter: RateLimiter
    db_sessions: sessionmaker


def build_services(settings: Settings, store: SharedStore, db_sessions: sessionmaker) -> Services:
    registry = ConnectionRegistry()
    queue = WaitQueue(store)
    blocklist = BlockList(store, settings.BLOCK_TTL_SECONDS)
    matchmaker = Matchmaker(queue, blocklist)
    sessions = SessionManager(
        store,
        registry,
        queue,
        matchmaker,
        moderator=ContentModerator(),
        session_ttl_seconds=settings.SESSION_TTL_SECONDS,
        match_timeout_seconds=settings.MATCH_TIMEOUT_SECONDS,
    )
    return Services(
        settings=settings,
        store=store,
        registry=registry,
        queue=queue,
        blocklist=blocklist,
        matchmaker=matchmaker,
        sessions=sessions,
        abuse=AbuseService(store, blocklist),
        rate_limiter=RateLimiter.from_settings(store, settings),
        db_sessions=db_sessions,
    )
