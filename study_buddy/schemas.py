"""
Study Buddy Matchmaker - Domain Records

Pydantic models for the records kept in the shared store. Field names are
snake_case in Python and camelCase on the wire, matching the browser client.
"""

import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SYSTEM_SENDER = "system"


def now_ms() -> int:
    """Current time in epoch milliseconds (wire timestamp format)"""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class WireModel(BaseModel):
    """Base for records serialized with camelCase keys"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class User(WireModel):
    """Client-supplied, ephemeral participant"""

    id: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)

    def normalized_tags(self) -> set:
        return {tag.lower() for tag in self.tags}


class WaitEntry(WireModel):
    user: User
    enqueued_at: int = Field(default_factory=now_ms)


class Message(WireModel):
    id: str = Field(default_factory=new_id)
    content: str
    sender_id: str = Field(..., alias="userId")
    timestamp: int = Field(default_factory=now_ms)
    kind: Literal["message", "system"] = Field("message", alias="type")


class VideoRequest(WireModel):
    requester_id: str
    status: Literal["pending", "accepted", "declined"] = "pending"


class Session(WireModel):
    """
    A matched pair of users.

    Always holds exactly two users; messages are append-only.
    """

    id: str = Field(default_factory=new_id)
    users: List[User] = Field(..., min_length=2, max_length=2)
    shared_tags: List[str] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    messages: List[Message] = Field(default_factory=list)
    video_request: Optional[VideoRequest] = Field(None, alias="videoRequested")

    def peer_of(self, user_id: str) -> Optional[User]:
        """Return the other participant, or None if user_id is not a member"""
        if not any(u.id == user_id for u in self.users):
            return None
        for user in self.users:
            if user.id != user_id:
                return user
        return None

    def has_member(self, user_id: str) -> bool:
        return any(u.id == user_id for u in self.users)


class Report(WireModel):
    """Write-once abuse report"""

    id: str = Field(default_factory=new_id)
    session_id: str
    reason: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)
    ip: Optional[str] = None


def shared_tags(tags_a: List[str], tags_b: List[str]) -> List[str]:
    """
    Case-insensitive intersection of two tag lists.

    Ordering and casing follow tags_a; duplicates in tags_a (ignoring case)
    are reported once.
    """
    other = {tag.lower() for tag in tags_b}
    seen = set()
    result = []
    for tag in tags_a:
        key = tag.lower()
        if key in other and key not in seen:
            seen.add(key)
            result.append(tag)
    return result


def match_score(tags_a: List[str], tags_b: List[str]) -> int:
    """Number of distinct tags two users share, ignoring case"""
    return len({t.lower() for t in tags_a} & {t.lower() for t in tags_b})
