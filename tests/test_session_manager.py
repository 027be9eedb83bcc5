import asyncio

import pytest
from sqlalchemy.orm import sessionmaker

from study_buddy.errors import BackendUnavailable, UnknownSession
from study_buddy.schemas import User
from study_buddy.services.container import build_services
from study_buddy.services.registry import ConnectionStatus
from study_buddy.store import keys
from tests.conftest import RecordingChannel, join


async def matched_pair(services, connect, tags_x=("CS",), tags_y=("CS",)):
    x_id, x = connect()
    y_id, y = connect()
    await services.sessions.handle_data(x_id, join("X", list(tags_x)))
    await services.sessions.handle_data(y_id, join("Y", list(tags_y)))
    session_id = x.of_type("match_found")[0]["payload"]["session"]["id"]
    return x_id, x, y_id, y, session_id


async def stored_session(services, session_id):
    return await services.sessions.get_session(session_id)


async def test_two_users_with_same_tag_are_matched(services, connect):
    x_id, x = connect()
    y_id, y = connect()

    await services.sessions.handle_data(x_id, join("X", ["CS"]))
    assert await services.queue.length() == 1
    assert x.events == []
    assert services.registry.get(x_id).status == ConnectionStatus.QUEUED

    await services.sessions.handle_data(y_id, join("Y", ["CS"]))

    x_found = x.of_type("match_found")
    y_found = y.of_type("match_found")
    assert len(x_found) == len(y_found) == 1
    assert x_found[0]["payload"]["session"]["id"] == y_found[0]["payload"]["session"]["id"]
    assert await services.queue.length() == 0
    assert services.registry.get(x_id).status == ConnectionStatus.MATCHED
    assert services.registry.get(y_id).status == ConnectionStatus.MATCHED


async def test_session_shared_tags_follow_joiner_casing(services, connect):
    first_id, _ = connect()
    joiner_id, joiner = connect()
    await services.sessions.handle_data(first_id, join("U2", ["math", "bio"]))
    await services.sessions.handle_data(joiner_id, join("U1", ["CS", "Math"]))

    session = joiner.of_type("match_found")[0]["payload"]["session"]
    assert session["sharedTags"] == ["Math"]
    assert len(session["messages"]) == 1
    greeting = session["messages"][0]
    assert greeting["type"] == "system"
    assert greeting["userId"] == "system"
    assert "Math" in greeting["content"]
    assert "videoRequested" not in session


async def test_session_is_stored_with_ttl(services, connect, clock):
    *_, session_id = await matched_pair(services, connect)
    assert await services.store.exists(keys.session_key(session_id))
    clock.advance(services.settings.SESSION_TTL_SECONDS)
    assert not await services.store.exists(keys.session_key(session_id))


async def test_activity_refreshes_session_ttl(services, connect, clock):
    x_id, _, _, _, session_id = await matched_pair(services, connect)
    clock.advance(services.settings.SESSION_TTL_SECONDS - 10)
    await services.sessions.handle_data(x_id, {"type": "chat_message", "payload": {"content": "still here"}})
    clock.advance(20)
    assert await services.store.exists(keys.session_key(session_id))


async def test_unmatched_users_stay_queued(services, connect):
    a_id, a = connect()
    b_id, b = connect()
    await services.sessions.handle_data(a_id, join("A", ["Art"]))
    await services.sessions.handle_data(b_id, join("B", ["CS"]))
    assert await services.queue.length() == 2
    assert a.events == b.events == []


async def test_rejoining_replaces_queue_entry(services, connect):
    a_id, _ = connect()
    await services.sessions.handle_data(a_id, join("A", ["Art"]))
    await services.sessions.handle_data(a_id, join("A", ["History"]))
    assert await services.queue.length() == 1
    entry = await services.queue.pop()
    assert entry.user.tags == ["History"]


async def test_blocked_users_are_not_paired(services, connect):
    await services.blocklist.block("X", "Y")
    x_id, x = connect()
    y_id, y = connect()
    await services.sessions.handle_data(x_id, join("X", ["CS"]))
    await services.sessions.handle_data(y_id, join("Y", ["CS"]))
    assert x.of_type("match_found") == []
    assert await services.queue.length() == 2


async def test_join_while_in_session_is_rejected(services, connect):
    x_id, x, *_ = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, join("X", ["CS"]))
    assert x.of_type("error")[-1]["payload"]["code"] == "ALREADY_IN_SESSION"
    assert await services.queue.length() == 0


async def test_leave_queue_removes_entry(services, connect):
    a_id, a = connect()
    await services.sessions.handle_data(a_id, join("A", ["CS"]))
    await services.sessions.handle_data(a_id, {"type": "leave_queue"})
    assert await services.queue.length() == 0
    assert a.of_type("queue_left") == [{"type": "queue_left", "payload": {"success": True}}]
    assert services.registry.get(a_id).status == ConnectionStatus.IDLE


async def test_leave_queue_when_not_queued_still_succeeds(services, connect):
    a_id, a = connect()
    await services.sessions.handle_data(a_id, {"type": "leave_queue", "payload": {}})
    await services.sessions.handle_data(a_id, {"type": "leave_queue", "payload": {}})
    assert [e["payload"]["success"] for e in a.of_type("queue_left")] == [True, True]


async def test_chat_is_relayed_to_peer_only(services, connect):
    x_id, x, _, y, session_id = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "chat_message", "payload": {"content": "hello friend"}})

    relayed = y.of_type("chat_message")
    assert len(relayed) == 1
    message = relayed[0]["payload"]["message"]
    assert message["content"] == "hello friend"
    assert message["userId"] == "X"
    assert message["type"] == "message"
    assert x.of_type("chat_message") == []

    session = await stored_session(services, session_id)
    assert [m.content for m in session.messages][1:] == ["hello friend"]


async def test_chat_accepts_browser_client_shape(services, connect):
    x_id, _, _, y, _ = await matched_pair(services, connect)
    await services.sessions.handle_data(
        x_id, {"type": "chat_message", "payload": {"message": {"id": "m-1", "content": "hi"}}}
    )
    message = y.of_type("chat_message")[0]["payload"]["message"]
    assert message["id"] == "m-1"
    assert message["content"] == "hi"


async def test_chat_is_cleaned_but_still_delivered(services, connect):
    x_id, _, _, y, _ = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "chat_message", "payload": {"content": "shit this proof"}})
    await services.sessions.handle_data(
        x_id, {"type": "chat_message", "payload": {"content": "call me at 555-123-4567"}}
    )

    contents = [e["payload"]["message"]["content"] for e in y.of_type("chat_message")]
    assert len(contents) == 2
    assert "shit" not in contents[0]
    assert contents[0].endswith("this proof")
    assert contents[1] == "call me at 555-123-4567"


async def test_chat_outside_session_is_ignored(services, connect):
    a_id, a = connect()
    await services.sessions.handle_data(a_id, {"type": "chat_message", "payload": {"content": "anyone?"}})
    assert a.events == []


async def test_chat_on_expired_session_is_ignored(services, connect, clock):
    x_id, x, _, y, _ = await matched_pair(services, connect)
    clock.advance(services.settings.SESSION_TTL_SECONDS + 1)
    before = len(x.events), len(y.events)
    await services.sessions.handle_data(x_id, {"type": "chat_message", "payload": {"content": "hello?"}})
    assert (len(x.events), len(y.events)) == before


async def test_video_request_is_forwarded_and_recorded(services, connect):
    x_id, _, _, y, session_id = await matched_pair(services, connect)
    offer = {"type": "offer", "sdp": "v=0"}
    await services.sessions.handle_data(
        x_id, {"type": "video_request", "payload": {"requesterId": "spoofed", "offer": offer}}
    )

    forwarded = y.of_type("video_request")[0]["payload"]
    assert forwarded == {"requesterId": "X", "offer": offer}
    session = await stored_session(services, session_id)
    assert session.video_request.requester_id == "X"
    assert session.video_request.status == "pending"


async def test_second_video_request_while_pending_is_rejected(services, connect):
    x_id, _, y_id, y, _ = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "video_request", "payload": {"offer": {}}})
    await services.sessions.handle_data(y_id, {"type": "video_request", "payload": {"offer": {}}})

    assert y.of_type("error")[-1]["payload"]["code"] == "VIDEO_REQUEST_PENDING"


async def test_video_response_accept_is_relayed(services, connect):
    x_id, x, y_id, _, session_id = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "video_request", "payload": {"offer": {"sdp": "o"}}})
    await services.sessions.handle_data(
        y_id, {"type": "video_response", "payload": {"accepted": True, "answer": {"sdp": "a"}}}
    )

    assert x.of_type("video_response")[0]["payload"] == {"accepted": True, "answer": {"sdp": "a"}}
    session = await stored_session(services, session_id)
    assert session.video_request.status == "accepted"
    assert session.video_request.requester_id == "X"


async def test_video_response_decline_clears_request(services, connect):
    x_id, _, y_id, _, session_id = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "video_request", "payload": {"offer": {}}})
    await services.sessions.handle_data(y_id, {"type": "video_response", "payload": {"accepted": False}})

    session = await stored_session(services, session_id)
    assert session.video_request is None
    await services.sessions.handle_data(y_id, {"type": "video_request", "payload": {"offer": {}}})
    assert (await stored_session(services, session_id)).video_request.requester_id == "Y"


async def test_ice_candidates_pass_through(services, connect):
    x_id, _, _, y, session_id = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "video_response", "payload": {"candidate": {"c": 1}}})
    assert y.of_type("video_response")[0]["payload"] == {"candidate": {"c": 1}}
    assert (await stored_session(services, session_id)).video_request is None


async def test_session_ended_clears_both_sides(services, connect):
    x_id, x, y_id, y, session_id = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "session_ended"})

    assert y.of_type("session_ended") == [{"type": "session_ended", "payload": {}}]
    assert x.of_type("session_ended") == []
    for conn_id in (x_id, y_id):
        state = services.registry.get(conn_id)
        assert state.status == ConnectionStatus.ENDED
        assert state.session_id is None
    # Record stays until its TTL runs out
    assert await services.store.exists(keys.session_key(session_id))


async def test_ended_users_can_match_again(services, connect):
    x_id, x, y_id, _, first_session = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "session_ended"})
    await services.sessions.handle_data(x_id, join("X", ["CS"]))
    await services.sessions.handle_data(y_id, join("Y", ["CS"]))

    sessions = [e["payload"]["session"]["id"] for e in x.of_type("match_found")]
    assert len(sessions) == 2
    assert sessions[1] != first_session


async def test_disconnect_while_matched_notifies_peer(services, connect):
    x_id, _, y_id, y, _ = await matched_pair(services, connect)
    await services.sessions.disconnect(x_id)

    assert y.of_type("user_disconnected") == [{"type": "user_disconnected", "payload": {}}]
    assert services.registry.get(x_id) is None
    assert services.registry.find_by_user("X") is None


async def test_disconnect_while_queued_removes_entry(services, connect):
    a_id, _ = connect()
    await services.sessions.handle_data(a_id, join("A", ["CS"]))
    await services.sessions.disconnect(a_id)
    assert await services.queue.length() == 0


async def test_disconnect_of_unknown_connection_is_noop(services):
    await services.sessions.disconnect("nope")


async def test_closed_peer_channel_is_dropped(services, connect):
    x_id, _, _, y, _ = await matched_pair(services, connect)
    y.closed = True
    await services.sessions.handle_data(x_id, {"type": "chat_message", "payload": {"content": "hi"}})
    assert y.of_type("chat_message") == []


async def test_malformed_json_gets_error(services, connect):
    a_id, a = connect()
    await services.sessions.handle_frame(a_id, "{not json")
    assert a.events == [{"type": "error", "payload": {"message": "Invalid message format", "code": "INVALID_MESSAGE"}}]


async def test_unknown_type_gets_error(services, connect):
    a_id, a = connect()
    await services.sessions.handle_frame(a_id, '{"type": "dance", "payload": {}}')
    assert a.events[0]["payload"]["code"] == "UNKNOWN_MESSAGE_TYPE"


async def test_missing_fields_get_error_and_no_state_change(services, connect):
    a_id, a = connect()
    await services.sessions.handle_data(a_id, {"type": "join_queue", "payload": {"user": {"tags": ["CS"]}}})
    assert a.events[0]["type"] == "error"
    assert await services.queue.length() == 0
    assert services.registry.get(a_id).status == ConnectionStatus.IDLE


async def test_storage_failure_is_reported_to_sender(services, connect, monkeypatch):
    await services.queue.enqueue(User(id="waiting", tags=["Art"]))
    a_id, a = connect()

    async def broken(*args, **kwargs):
        raise BackendUnavailable("redis down")

    monkeypatch.setattr(services.store, "pop_waiting", broken)
    await services.sessions.handle_data(a_id, join("A", ["CS"]))
    assert [e["payload"]["code"] for e in a.events] == ["STORAGE_ERROR"]


async def test_no_match_notice_after_timeout(services, connect):
    services.sessions.match_timeout_seconds = 0.05
    a_id, a = connect()
    await services.sessions.handle_data(a_id, join("A", ["CS"]))
    await asyncio.sleep(0.2)

    notices = a.of_type("error")
    assert len(notices) == 1
    assert notices[0]["payload"]["code"] == "MATCHING_TIMEOUT"
    # Still waiting after the notice
    assert await services.queue.length() == 1


async def test_no_match_notice_skipped_once_matched(services, connect):
    services.sessions.match_timeout_seconds = 0.05
    x_id, x, _, y, _ = await matched_pair(services, connect)
    await asyncio.sleep(0.2)
    assert x.of_type("error") == []
    assert y.of_type("error") == []


async def test_stale_timer_from_earlier_join_is_ignored(services, connect):
    services.sessions.match_timeout_seconds = 0.2
    a_id, a = connect()
    await services.sessions.handle_data(a_id, join("A", ["CS"]))
    await asyncio.sleep(0.1)
    await services.sessions.handle_data(a_id, {"type": "leave_queue"})
    await services.sessions.handle_data(a_id, join("A", ["CS"]))
    await asyncio.sleep(0.15)
    # First timer has fired by now; it belonged to the superseded join
    assert a.of_type("error") == []
    await asyncio.sleep(0.2)
    assert len(a.of_type("error")) == 1


async def test_create_session_persists_record(services):
    session = await services.sessions.create_session(User(id="a", tags=["AI"]), User(id="b", tags=["ai"]))
    assert [u.id for u in session.users] == ["a", "b"]
    assert session.shared_tags == ["AI"]
    assert (await services.sessions.get_session(session.id)).shared_tags == ["AI"]
    with pytest.raises(UnknownSession):
        await services.sessions.get_session("missing")


async def test_switching_user_on_a_queued_connection_drops_old_entry(services, connect):
    a_id, _ = connect()
    await services.sessions.handle_data(a_id, join("first", ["CS"]))
    await services.sessions.handle_data(a_id, join("second", ["Art"]))

    assert await services.queue.length() == 1
    assert (await services.queue.pop()).user.id == "second"
    assert services.registry.find_by_user("first") is None


@pytest.fixture
async def other_process(settings, store):
    """A second service instance sharing the same store, like a second worker on one Redis"""
    svc = build_services(settings, store, sessionmaker())
    yield svc
    await svc.sessions.shutdown()


def connect_to(svc):
    channel = RecordingChannel()
    state = svc.registry.register(channel, address="127.0.0.1")
    return state.connection_id, channel


async def test_match_made_elsewhere_is_adopted_on_next_frame(services, other_process):
    x_id, x = connect_to(services)
    y_id, y = connect_to(other_process)
    await services.sessions.handle_data(x_id, join("X", ["CS"]))
    await other_process.sessions.handle_data(y_id, join("Y", ["CS"]))

    session_id = y.of_type("match_found")[0]["payload"]["session"]["id"]
    assert x.events == []

    await services.sessions.handle_data(x_id, {"type": "chat_message", "payload": {"content": "hi"}})

    state = services.registry.get(x_id)
    assert state.status == ConnectionStatus.MATCHED
    assert state.session_id == session_id
    assert x.of_type("match_found")[0]["payload"]["session"]["id"] == session_id
    session = await services.sessions.get_session(session_id)
    assert [m.content for m in session.messages][1:] == ["hi"]


async def test_match_made_elsewhere_suppresses_no_match_notice(services, other_process):
    services.sessions.match_timeout_seconds = 0.05
    x_id, x = connect_to(services)
    y_id, _ = connect_to(other_process)
    await services.sessions.handle_data(x_id, join("X", ["CS"]))
    await other_process.sessions.handle_data(y_id, join("Y", ["CS"]))
    await asyncio.sleep(0.2)

    assert x.of_type("error") == []
    assert len(x.of_type("match_found")) == 1
    assert services.registry.get(x_id).status == ConnectionStatus.MATCHED


async def test_earlier_session_is_not_adopted_after_rejoining(services, connect):
    x_id, x, *_ = await matched_pair(services, connect)
    await services.sessions.handle_data(x_id, {"type": "session_ended"})
    await services.sessions.handle_data(x_id, join("X", ["Art"]))
    await services.sessions.refresh(x_id)

    assert services.registry.get(x_id).status == ConnectionStatus.QUEUED
    assert len(x.of_type("match_found")) == 1
