"""Shared store key layout"""

SESSION_KEY = "session:{session_id}"
WAIT_QUEUE_KEY = "matchingQueue"
WAIT_MEMBERS_KEY = "matchingQueue:members"  # user id -> serialized wait entry
BLOCK_KEY = "blocked:{blocker_id}:{blocked_id}"
REPORTS_KEY = "reports"
INBOX_KEY = "inbox:{user_id}"
RATE_LIMIT_KEY = "ratelimit:{policy}:{address}"
USER_SESSION_KEY = "userSession:{user_id}"  # latest session a user was matched into


def session_key(session_id: str) -> str:
    return SESSION_KEY.format(session_id=session_id)


def block_key(blocker_id: str, blocked_id: str) -> str:
    return BLOCK_KEY.format(blocker_id=blocker_id, blocked_id=blocked_id)


def inbox_key(user_id: str) -> str:
    return INBOX_KEY.format(user_id=user_id)


def rate_limit_key(policy: str, address: str) -> str:
    return RATE_LIMIT_KEY.format(policy=policy, address=address)


def user_session_key(user_id: str) -> str:
    return USER_SESSION_KEY.format(user_id=user_id)
