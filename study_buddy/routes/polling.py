"""
Study Buddy Matchmaker - HTTP Polling Transport

For clients that cannot hold a WebSocket open. Outbound events are parked
in a per-user inbox in the shared store and collected by polling; inbound
envelopes arrive as POST bodies. The session manager cannot tell the two
transports apart.

Only /poll/connect and /match count against rate limits; /poll/events and
/poll/send are the transport itself and are polled every few seconds.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import Field

from study_buddy.dependencies import client_address, get_services, rate_limit
from study_buddy.schemas import User, WireModel
from study_buddy.services import rate_limiter
from study_buddy.services.channels import MailboxChannel
from study_buddy.services.container import Services
from study_buddy.services.registry import ConnectionState

router = APIRouter(prefix="/poll")
match_router = APIRouter()


class PollConnectRequest(WireModel):
    user_id: str = Field(..., min_length=1)


class PollConnection(WireModel):
    connection_id: str


class PollMatchRequest(WireModel):
    connection_id: str
    user: User


class PollSendRequest(WireModel):
    connection_id: str
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class PollEvents(WireModel):
    events: List[Dict[str, Any]]


def _polling_state(services: Services, connection_id: str) -> ConnectionState:
    state = services.registry.get(connection_id)
    if state is None or not isinstance(state.channel, MailboxChannel):
        raise HTTPException(status_code=404, detail="Connection not found")
    state.touch()
    return state


@router.post("/connect", response_model=PollConnection, dependencies=[Depends(rate_limit(rate_limiter.API))])
async def connect(body: PollConnectRequest, request: Request, services: Services = Depends(get_services)):
    """Open a polling connection bound to one user id"""
    channel = MailboxChannel(services.store, body.user_id, services.settings.POLL_INBOX_TTL_SECONDS)
    # Events left over from an earlier polling connection are stale
    await channel.collect()
    state = services.registry.register(channel, address=client_address(request))
    services.registry.bind_user(state, body.user_id)
    return PollConnection(connection_id=state.connection_id)


@match_router.post(
    "/match",
    status_code=202,
    dependencies=[Depends(rate_limit(rate_limiter.API, rate_limiter.MATCH))],
)
async def start_matching(body: PollMatchRequest, services: Services = Depends(get_services)):
    """Join the matching queue; the outcome arrives as a polled event"""
    state = _polling_state(services, body.connection_id)
    if state.user_id != body.user.id:
        raise HTTPException(status_code=400, detail="User does not own this connection")
    await services.sessions.handle_data(
        state.connection_id, {"type": "join_queue", "payload": {"user": body.user.to_wire()}}
    )
    return {"accepted": True}


@router.post("/send", status_code=202)
async def send(body: PollSendRequest, services: Services = Depends(get_services)):
    """Submit any other inbound envelope (chat, signaling, leave, end)"""
    state = _polling_state(services, body.connection_id)
    if body.type == "join_queue":
        raise HTTPException(status_code=400, detail="Use /api/match to join the queue")
    await services.sessions.handle_data(state.connection_id, {"type": body.type, "payload": body.payload})
    return {"accepted": True}


@router.get("/events", response_model=PollEvents)
async def events(connection_id: str = Query(..., alias="connectionId"), services: Services = Depends(get_services)):
    """Return and clear every event queued for this connection"""
    state = _polling_state(services, connection_id)
    await services.sessions.refresh(state.connection_id)
    return PollEvents(events=await state.channel.collect())


@router.post("/disconnect")
async def disconnect(body: PollConnection, services: Services = Depends(get_services)):
    if services.registry.get(body.connection_id) is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    await services.sessions.disconnect(body.connection_id)
    return {"success": True}
