"""
Study Buddy Matchmaker - Wire Protocol

Every frame is an envelope {type, payload}. Inbound envelopes form a closed
tagged union discriminated on "type"; anything outside it is rejected as
malformed before reaching the session manager.
"""

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from study_buddy.errors import MalformedInput
from study_buddy.schemas import Message, Session, User, WireModel


# -----------------------
# Client -> server
# -----------------------

class JoinQueuePayload(WireModel):
    user: User


class EmptyPayload(WireModel):
    model_config = ConfigDict(extra="ignore")


class ChatDraft(WireModel):
    model_config = ConfigDict(extra="ignore")

    content: str
    id: Optional[str] = None


class ChatMessagePayload(WireModel):
    """Accepts {content} or the browser client's {message: {content, id}}"""

    model_config = ConfigDict(extra="ignore")

    content: Optional[str] = None
    message: Optional[ChatDraft] = None

    @model_validator(mode="after")
    def _require_content(self):
        if self.content is None and self.message is None:
            raise ValueError("chat_message requires content")
        return self

    def text(self) -> str:
        return self.content if self.content is not None else self.message.content

    def client_message_id(self) -> Optional[str]:
        return self.message.id if self.message is not None else None


class VideoRequestPayload(WireModel):
    model_config = ConfigDict(extra="ignore")

    requester_id: Optional[str] = None
    offer: Any = None


class VideoResponsePayload(WireModel):
    # Signaling payloads are opaque; unknown keys are relayed untouched
    model_config = ConfigDict(extra="allow")

    accepted: Optional[bool] = None


class JoinQueue(BaseModel):
    type: Literal["join_queue"]
    payload: JoinQueuePayload


class LeaveQueue(BaseModel):
    type: Literal["leave_queue"]
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class ChatMessageIn(BaseModel):
    type: Literal["chat_message"]
    payload: ChatMessagePayload


class VideoRequestIn(BaseModel):
    type: Literal["video_request"]
    payload: VideoRequestPayload = Field(default_factory=VideoRequestPayload)


class VideoResponseIn(BaseModel):
    type: Literal["video_response"]
    payload: VideoResponsePayload = Field(default_factory=VideoResponsePayload)


class SessionEndedIn(BaseModel):
    type: Literal["session_ended"]
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


InboundEnvelope = Annotated[
    Union[JoinQueue, LeaveQueue, ChatMessageIn, VideoRequestIn, VideoResponseIn, SessionEndedIn],
    Field(discriminator="type"),
]

INBOUND_TYPES = frozenset(
    ["join_queue", "leave_queue", "chat_message", "video_request", "video_response", "session_ended"]
)

_inbound_adapter = TypeAdapter(InboundEnvelope)


def parse_envelope(data: Any):
    """
    Validate a decoded frame into one inbound envelope variant.

    Raises:
        MalformedInput: unknown type, missing fields or wrong shapes.
    """
    if not isinstance(data, dict):
        raise MalformedInput("Invalid message format")
    if data.get("type") not in INBOUND_TYPES:
        raise MalformedInput("Unknown message type", code="UNKNOWN_MESSAGE_TYPE")
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise MalformedInput(f"Invalid {data['type']} payload: {location} {first.get('msg')}") from exc


def parse_frame(frame: Union[str, bytes]):
    """Decode a JSON frame (text, or UTF-8 bytes) and validate it"""
    try:
        data = json.loads(frame)
    except (TypeError, ValueError) as exc:
        raise MalformedInput("Invalid message format") from exc
    return parse_envelope(data)


# -----------------------
# Server -> client
# -----------------------

ServerEventType = Literal[
    "match_found",
    "chat_message",
    "video_request",
    "video_response",
    "user_disconnected",
    "session_ended",
    "error",
    "queue_left",
]


class ServerEvent(BaseModel):
    """Outbound envelope; build instances with the constructors below"""

    type: ServerEventType
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


def match_found(session: Session) -> ServerEvent:
    return ServerEvent(type="match_found", payload={"session": session.to_wire()})


def chat_message(message: Message) -> ServerEvent:
    return ServerEvent(type="chat_message", payload={"message": message.to_wire()})


def video_request(requester_id: str, offer: Any) -> ServerEvent:
    return ServerEvent(type="video_request", payload={"requesterId": requester_id, "offer": offer})


def video_response(payload: Dict[str, Any]) -> ServerEvent:
    return ServerEvent(type="video_response", payload=payload)


def user_disconnected() -> ServerEvent:
    return ServerEvent(type="user_disconnected")


def session_ended() -> ServerEvent:
    return ServerEvent(type="session_ended")


def queue_left(success: bool = True) -> ServerEvent:
    return ServerEvent(type="queue_left", payload={"success": success})


def error(message: str, code: Optional[str] = None) -> ServerEvent:
    payload: Dict[str, Any] = {"message": message}
    if code:
        payload["code"] = code
    return ServerEvent(type="error", payload=payload)
