"""
Study Buddy Matchmaker - Error Taxonomy

Every failure is scoped to the request or connection that triggered it.
"""

from typing import Optional


class StudyBuddyError(Exception):
    """Base class for all service errors"""

    code = "INTERNAL_ERROR"


class MalformedInput(StudyBuddyError):
    """Inbound envelope could not be parsed or is missing fields"""

    code = "INVALID_MESSAGE"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class UnknownSession(StudyBuddyError):
    """Operation references a session that is no longer in the store"""

    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class RateLimited(StudyBuddyError):
    """Client address exceeded a rate-limit policy"""

    code = "RATE_LIMITED"

    def __init__(self, policy: str, retry_after: int):
        super().__init__(f"Rate limit exceeded for {policy}")
        self.policy = policy
        self.retry_after = retry_after


class BackendUnavailable(StudyBuddyError):
    """Durable shared store could not be reached"""

    code = "STORAGE_ERROR"


class PeerUnreachable(StudyBuddyError):
    """Channel for a peer has closed; the event has nowhere to go"""

    code = "PEER_UNREACHABLE"
