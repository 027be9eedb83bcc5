"""
Study Buddy Matchmaker - Reports and Blocks

Request/response operations for flagging a partner. Reports are
append-only; blocks only affect future pairing.
"""

import logging
from typing import Any, Dict, List, Optional

from study_buddy.errors import UnknownSession
from study_buddy.schemas import Report, Session
from study_buddy.services.blocklist import BlockList
from study_buddy.store import keys
from study_buddy.store.base import SharedStore

logger = logging.getLogger(__name__)


class InvalidBlockTarget(ValueError):
    """The user to block is not a member of the session"""


class AbuseService:
    def __init__(self, store: SharedStore, blocklist: BlockList):
        self.store = store
        self.blocklist = blocklist

    async def submit_report(self, session_id: str, reason: str,
                            messages: Optional[List[Dict[str, Any]]] = None,
                            ip: Optional[str] = None) -> Report:
        report = Report(session_id=session_id, reason=reason, messages=messages or [], ip=ip)
        await self.store.append_report(report.to_wire())
        logger.info("Report %s received for session %s from %s: %s", report.id, session_id, ip, reason)
        return report

    async def block_from_session(self, session_id: str, blocked_user_id: str) -> str:
        """
        Block blocked_user_id on behalf of the other session member.

        Returns the blocker's id.

        Raises:
            UnknownSession: session expired or never existed.
            InvalidBlockTarget: blocker cannot be resolved from the session.
        """
        raw = await self.store.get(keys.session_key(session_id))
        if raw is None:
            raise UnknownSession(session_id)
        session = Session.model_validate(raw)

        blocker = session.peer_of(blocked_user_id)
        if blocker is None:
            raise InvalidBlockTarget(f"User {blocked_user_id} is not in session {session_id}")

        await self.blocklist.block(blocker.id, blocked_user_id)
        return blocker.id
