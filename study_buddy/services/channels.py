"""
Study Buddy Matchmaker - Delivery Channels

A channel is the only thing a transport has to provide: a way to push one
event to one connection.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from fastapi import WebSocket, WebSocketDisconnect

from study_buddy.errors import PeerUnreachable
from study_buddy.store import keys
from study_buddy.store.base import SharedStore


class Channel(ABC):
    kind = "abstract"

    @abstractmethod
    async def send(self, event: Dict[str, Any]) -> None:
        """Deliver event or raise PeerUnreachable"""


class WebSocketChannel(Channel):
    """Push channel over an accepted FastAPI WebSocket"""

    kind = "websocket"

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, event: Dict[str, Any]) -> None:
        try:
            await self.websocket.send_json(event)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise PeerUnreachable(str(exc) or "websocket closed") from exc


class MailboxChannel(Channel):
    """
    Polling channel: events are appended to a per-user inbox in the shared
    store and collected by GET /api/poll/events.
    """

    kind = "poll"

    def __init__(self, store: SharedStore, user_id: str, ttl_seconds: int):
        self.store = store
        self.inbox_key = keys.inbox_key(user_id)
        self.ttl_seconds = ttl_seconds

    async def send(self, event: Dict[str, Any]) -> None:
        await self.store.append_event(self.inbox_key, event, self.ttl_seconds)

    async def collect(self):
        return await self.store.drain_events(self.inbox_key)
