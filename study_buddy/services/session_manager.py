"""
Study Buddy Matchmaker - Session Manager

Owns the per-connection state machine

    idle -> queued -> matched(session) -> ended

and routes chat and video-signaling traffic between the two members of a
session. It never talks to a transport directly: every outbound event goes
through ConnectionRegistry.send/notify, so WebSocket and polling clients
share one implementation.
"""

import asyncio
import logging
import uuid
from typing import Optional, Set, Union

from study_buddy import protocol
from study_buddy.errors import BackendUnavailable, MalformedInput, UnknownSession
from study_buddy.protocol import (
    ChatMessagePayload,
    JoinQueuePayload,
    VideoRequestPayload,
    VideoResponsePayload,
)
from study_buddy.schemas import (
    SYSTEM_SENDER,
    Message,
    Session,
    User,
    VideoRequest,
    new_id,
    shared_tags,
)
from study_buddy.services.matchmaker import Matchmaker
from study_buddy.services.moderation import ContentModerator
from study_buddy.services.registry import ConnectionRegistry, ConnectionState, ConnectionStatus
from study_buddy.services.wait_queue import WaitQueue
from study_buddy.store import keys
from study_buddy.store.base import SharedStore

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No matches found. Try selecting more subjects or try again later."


class SessionManager:
    def __init__(
        self,
        store: SharedStore,
        registry: ConnectionRegistry,
        queue: WaitQueue,
        matchmaker: Matchmaker,
        moderator: Optional[ContentModerator] = None,
        session_ttl_seconds: int = 3600,
        match_timeout_seconds: float = 60.0,
    ):
        self.store = store
        self.registry = registry
        self.queue = queue
        self.matchmaker = matchmaker
        self.moderator = moderator or ContentModerator()
        self.session_ttl_seconds = session_ttl_seconds
        self.match_timeout_seconds = match_timeout_seconds
        self._timers: Set[asyncio.Task] = set()
        self._handlers = {
            "join_queue": self._join_queue,
            "leave_queue": self._leave_queue,
            "chat_message": self._chat_message,
            "video_request": self._video_request,
            "video_response": self._video_response,
            "session_ended": self._session_ended,
        }

    # ------------------------------------------------------------------
    # Entry points used by transports
    # ------------------------------------------------------------------

    async def handle_frame(self, connection_id: str, frame: Union[str, bytes]) -> None:
        """Parse a raw frame and dispatch it"""
        try:
            envelope = protocol.parse_frame(frame)
        except MalformedInput as exc:
            await self._reply_error(connection_id, str(exc), exc.code)
            return
        await self.handle(connection_id, envelope)

    async def handle_data(self, connection_id: str, data) -> None:
        """Validate an already-decoded envelope and dispatch it"""
        try:
            envelope = protocol.parse_envelope(data)
        except MalformedInput as exc:
            await self._reply_error(connection_id, str(exc), exc.code)
            return
        await self.handle(connection_id, envelope)

    async def handle(self, connection_id: str, envelope) -> None:
        state = self.registry.get(connection_id)
        if state is None:
            return
        state.touch()

        handler = self._handlers[envelope.type]
        try:
            await self._adopt_remote_match(state)
            await handler(state, envelope.payload)
        except UnknownSession as exc:
            logger.debug("Ignoring %s from %s: %s", envelope.type, connection_id, exc)
        except BackendUnavailable as exc:
            logger.error("Storage failure handling %s from %s: %s", envelope.type, connection_id, exc)
            await self.registry.send(state, protocol.error("Storage temporarily unavailable", exc.code))

    async def disconnect(self, connection_id: str) -> None:
        """Connection closed: drop queue entry, tell the peer, forget routing"""
        state = self.registry.unregister(connection_id)
        if state is None or not state.user_id:
            return

        try:
            if state.status == ConnectionStatus.QUEUED:
                await self.queue.remove(state.user_id)
                logger.info("User %s left matching queue on disconnect", state.user_id)

            elif state.status == ConnectionStatus.MATCHED and state.session_id:
                session = await self._load(state.session_id)
                peer = session.peer_of(state.user_id)
                if peer:
                    await self.registry.notify(peer.id, protocol.user_disconnected())
        except UnknownSession:
            pass
        except BackendUnavailable as exc:
            logger.error("Storage failure while disconnecting %s: %s", connection_id, exc)

    async def refresh(self, connection_id: str) -> None:
        """Pick up a match made by another process for a queued connection"""
        state = self.registry.get(connection_id)
        if state is not None:
            await self._adopt_remote_match(state)

    async def shutdown(self) -> None:
        for task in list(self._timers):
            task.cancel()
        if self._timers:
            await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Session:
        return await self._load(session_id)

    async def create_session(self, first: User, second: User) -> Session:
        """Build and persist a session; shared tags follow first's casing and order"""
        tags = shared_tags(first.tags, second.tags)
        greeting = Message(
            content=f"You've been matched! You both study: {', '.join(tags)}",
            sender_id=SYSTEM_SENDER,
            kind="system",
        )
        session = Session(users=[first, second], shared_tags=tags, messages=[greeting])
        await self._save(session)
        for user in session.users:
            await self.store.set(keys.user_session_key(user.id), session.id, self.session_ttl_seconds)
        logger.info("Created session %s for %s and %s (shared: %s)", session.id, first.id, second.id, tags)
        return session

    async def _load(self, session_id: str) -> Session:
        raw = await self.store.get(keys.session_key(session_id))
        if raw is None:
            raise UnknownSession(session_id)
        return Session.model_validate(raw)

    async def _save(self, session: Session) -> None:
        # Every write restarts the TTL so idle sessions expire from last activity
        await self.store.set(keys.session_key(session.id), session.to_wire(), self.session_ttl_seconds)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _join_queue(self, state: ConnectionState, payload: JoinQueuePayload) -> None:
        if state.status == ConnectionStatus.MATCHED:
            await self.registry.send(state, protocol.error("Leave your current session before matching again", "ALREADY_IN_SESSION"))
            return

        user = payload.user
        if state.user_id and state.user_id != user.id and await self.queue.remove(state.user_id):
            logger.info("Connection %s switched from user %s to %s", state.connection_id, state.user_id, user.id)
        self.registry.bind_user(state, user.id)
        logger.info("User %s joined matching queue with tags %s", user.id, user.tags)

        await self.queue.remove(user.id)
        # Only a session created after this join may be adopted later
        await self.store.delete(keys.user_session_key(user.id))
        match = await self.matchmaker.find_match(user)

        if match is None:
            await self.queue.enqueue(user)
            state.status = ConnectionStatus.QUEUED
            state.session_id = None
            state.join_token = uuid.uuid4().hex
            self._arm_no_match_timer(state.connection_id, state.join_token)
            return

        session = await self.create_session(user, match)
        state.enter_session(session.id)

        peer_state = self.registry.find_by_user(match.id)
        if peer_state is None:
            logger.warning("Matched user %s has no live connection in this process", match.id)
        else:
            if peer_state.status == ConnectionStatus.MATCHED:
                logger.warning(
                    "Duplicate match: user %s moved from session %s to %s",
                    match.id, peer_state.session_id, session.id,
                )
            peer_state.enter_session(session.id)

        event = protocol.match_found(session)
        await self.registry.send(state, event)
        await self.registry.notify(match.id, event)

    async def _leave_queue(self, state: ConnectionState, payload) -> None:
        if state.user_id and await self.queue.remove(state.user_id):
            logger.info("User %s left matching queue", state.user_id)
        if state.status == ConnectionStatus.QUEUED:
            state.status = ConnectionStatus.IDLE
            state.join_token = None
        await self.registry.send(state, protocol.queue_left(True))

    async def _chat_message(self, state: ConnectionState, payload: ChatMessagePayload) -> None:
        session = await self._active_session(state)
        if session is None:
            return

        moderated = self.moderator.moderate(payload.text())
        if moderated.flagged:
            logger.warning(
                "Flagged message (%s) session=%s user=%s original=%r cleaned=%r",
                moderated.reason, session.id, state.user_id, moderated.original, moderated.content,
            )

        message = Message(
            id=payload.client_message_id() or new_id(),
            content=moderated.content,
            sender_id=state.user_id,
        )
        session.messages.append(message)
        await self._save(session)

        peer = session.peer_of(state.user_id)
        if peer:
            await self.registry.notify(peer.id, protocol.chat_message(message))

    async def _video_request(self, state: ConnectionState, payload: VideoRequestPayload) -> None:
        session = await self._active_session(state)
        if session is None:
            return

        if session.video_request is not None and session.video_request.status == "pending":
            await self.registry.send(state, protocol.error("A video request is already pending", "VIDEO_REQUEST_PENDING"))
            return

        session.video_request = VideoRequest(requester_id=state.user_id, status="pending")
        await self._save(session)

        peer = session.peer_of(state.user_id)
        if peer:
            await self.registry.notify(peer.id, protocol.video_request(state.user_id, payload.offer))

    async def _video_response(self, state: ConnectionState, payload: VideoResponsePayload) -> None:
        session = await self._active_session(state)
        if session is None:
            return

        peer = session.peer_of(state.user_id)
        if payload.accepted is True:
            requester = session.video_request.requester_id if session.video_request else (peer.id if peer else state.user_id)
            session.video_request = VideoRequest(requester_id=requester, status="accepted")
        elif payload.accepted is False:
            session.video_request = None
        await self._save(session)

        if peer:
            forwarded = payload.model_dump(by_alias=True, exclude_unset=True)
            await self.registry.notify(peer.id, protocol.video_response(forwarded))

    async def _session_ended(self, state: ConnectionState, payload) -> None:
        session_id = state.session_id
        if not session_id:
            return
        # The stored record is left to expire; the peer may still read it
        state.leave_session()

        session = await self._load(session_id)
        peer = session.peer_of(state.user_id)
        if peer is None:
            return

        peer_state = self.registry.find_by_user(peer.id)
        if peer_state is not None and peer_state.session_id == session_id:
            peer_state.leave_session()
        await self.registry.notify(peer.id, protocol.session_ended())
        logger.info("User %s ended session %s", state.user_id, session_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _active_session(self, state: ConnectionState) -> Optional[Session]:
        if state.status != ConnectionStatus.MATCHED or not state.session_id:
            logger.debug("Connection %s is not in a session", state.connection_id)
            return None
        session = await self._load(state.session_id)
        if not session.has_member(state.user_id):
            logger.warning("User %s is not a member of session %s", state.user_id, session.id)
            return None
        return session

    async def _adopt_remote_match(self, state: ConnectionState) -> bool:
        """
        Move a queued connection into the session another process matched
        it into. That process could not reach this connection, so the
        match_found notice is delivered here.
        """
        if state.status != ConnectionStatus.QUEUED or not state.user_id:
            return False
        session_id = await self.store.get(keys.user_session_key(state.user_id))
        if session_id is None:
            return False
        try:
            session = await self._load(session_id)
        except UnknownSession:
            return False
        if not session.has_member(state.user_id):
            return False

        state.enter_session(session.id)
        logger.info("User %s was matched into session %s by another process", state.user_id, session.id)
        await self.registry.send(state, protocol.match_found(session))
        return True

    async def _reply_error(self, connection_id: str, message: str, code: Optional[str]) -> None:
        state = self.registry.get(connection_id)
        if state is not None:
            await self.registry.send(state, protocol.error(message, code))

    def _arm_no_match_timer(self, connection_id: str, token: str) -> None:
        task = asyncio.create_task(self._no_match_after(connection_id, token))
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def _no_match_after(self, connection_id: str, token: str) -> None:
        await asyncio.sleep(self.match_timeout_seconds)
        # A stale timer must do nothing: the user may have matched, left or re-joined
        state = self.registry.get(connection_id)
        if state is None or state.status != ConnectionStatus.QUEUED or state.join_token != token:
            return
        try:
            if await self._adopt_remote_match(state):
                return
            await self.registry.send(state, protocol.error(NO_MATCH_MESSAGE, "MATCHING_TIMEOUT"))
        except BackendUnavailable as exc:
            logger.error("Could not deliver no-match notice to %s: %s", connection_id, exc)
