"""
Study Buddy Matchmaker - Connection Registry

Per-process routing table from transport connections to the user and
session they belong to. It holds routing hints only: losing it means live
notifications cannot be delivered, never that session data is lost.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from study_buddy.errors import PeerUnreachable
from study_buddy.protocol import ServerEvent
from study_buddy.services.channels import Channel

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    MATCHED = "matched"
    ENDED = "ended"


@dataclass
class ConnectionState:
    connection_id: str
    channel: Channel
    address: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    status: ConnectionStatus = ConnectionStatus.IDLE
    join_token: Optional[str] = None
    connected_at: float = field(default_factory=time.monotonic)
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def enter_session(self, session_id: str) -> None:
        self.session_id = session_id
        self.status = ConnectionStatus.MATCHED
        self.join_token = None

    def leave_session(self) -> None:
        self.session_id = None
        self.status = ConnectionStatus.ENDED


class ConnectionRegistry:
    """Empty at start; entries are added on connect and removed on close"""

    def __init__(self) -> None:
        self._connections: Dict[str, ConnectionState] = {}
        self._by_user: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, channel: Channel, address: Optional[str] = None,
                 connection_id: Optional[str] = None) -> ConnectionState:
        state = ConnectionState(connection_id=connection_id or str(uuid.uuid4()), channel=channel, address=address)
        self._connections[state.connection_id] = state
        logger.info("Client %s connected via %s from %s", state.connection_id, channel.kind, address)
        return state

    def unregister(self, connection_id: str) -> Optional[ConnectionState]:
        state = self._connections.pop(connection_id, None)
        if state is None:
            return None
        if state.user_id and self._by_user.get(state.user_id) == connection_id:
            del self._by_user[state.user_id]
        logger.info("Client %s disconnected", connection_id)
        return state

    def get(self, connection_id: str) -> Optional[ConnectionState]:
        return self._connections.get(connection_id)

    def bind_user(self, state: ConnectionState, user_id: str) -> None:
        """Route events for user_id to this connection (latest binding wins)"""
        if state.user_id and state.user_id != user_id and self._by_user.get(state.user_id) == state.connection_id:
            del self._by_user[state.user_id]
        state.user_id = user_id
        self._by_user[user_id] = state.connection_id

    def find_by_user(self, user_id: str) -> Optional[ConnectionState]:
        connection_id = self._by_user.get(user_id)
        return self._connections.get(connection_id) if connection_id else None

    def idle_connections(self, kind: str, idle_seconds: float) -> List[ConnectionState]:
        cutoff = time.monotonic() - idle_seconds
        return [s for s in self._connections.values() if s.channel.kind == kind and s.last_seen < cutoff]

    async def send(self, state: ConnectionState, event: ServerEvent) -> bool:
        """Best-effort delivery; a closed channel is logged and dropped"""
        try:
            await state.channel.send(event.to_wire())
        except PeerUnreachable as exc:
            logger.warning("Dropped %s for connection %s: %s", event.type, state.connection_id, exc)
            return False
        return True

    async def notify(self, user_id: str, event: ServerEvent) -> bool:
        state = self.find_by_user(user_id)
        if state is None:
            logger.info("User %s has no live connection here; dropped %s", user_id, event.type)
            return False
        return await self.send(state, event)
