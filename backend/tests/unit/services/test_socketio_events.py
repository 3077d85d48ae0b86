"""
Tests for the Socket.io queue notification handlers.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from socketio.exceptions import ConnectionRefusedError as SocketConnectionRefused

from matchqueue.core.security import create_access_token
from matchqueue.services.notifications.pubsub import InMemoryPubSub
from matchqueue.services.notifications.topics import (
    CHAT_STARTED,
    USER_JOINED_QUEUE,
    USER_LEFT_QUEUE,
    queue_position_topic,
)
from matchqueue.services.socketio import events


@pytest.fixture
def mock_server():
    server = MagicMock()
    server.emit_to = AsyncMock()
    server.get_session = AsyncMock(return_value={"user_id": "alice"})
    server.save_session = AsyncMock()
    with patch.object(events, "socketio_server", server):
        yield server


@pytest.fixture
def memory_pubsub():
    pubsub = InMemoryPubSub()
    with patch.object(events, "get_pubsub", return_value=pubsub):
        yield pubsub


class SlowPubSub(InMemoryPubSub):
    """In-memory pub/sub whose subscribe yields to other handlers first."""

    async def subscribe(self, topic):
        await asyncio.sleep(0.01)
        return await super().subscribe(topic)


@pytest.fixture
def slow_pubsub():
    pubsub = SlowPubSub()
    with patch.object(events, "get_pubsub", return_value=pubsub):
        yield pubsub


@pytest.fixture(autouse=True)
def clear_relays():
    yield
    events._relays.clear()


async def wait_for_emit(server, event, timeout=1):
    """Wait until ``event`` has been emitted and return its payload."""

    async def poll():
        while True:
            for call in server.emit_to.await_args_list:
                if call.args[1] == event:
                    return call.args[2]
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout=timeout)


class TestExtractToken:
    """Tests for locating the access token on a connection."""

    def test_auth_payload(self):
        assert events._extract_token({}, {"token": "abc"}) == "abc"

    def test_authorization_header(self):
        environ = {"HTTP_AUTHORIZATION": "Bearer abc"}

        assert events._extract_token(environ, None) == "abc"

    def test_query_string(self):
        environ = {"QUERY_STRING": "EIO=4&transport=websocket&token=abc"}

        assert events._extract_token(environ, None) == "abc"

    def test_auth_payload_wins(self):
        environ = {"HTTP_AUTHORIZATION": "Bearer header"}

        assert events._extract_token(environ, {"token": "payload"}) == "payload"

    def test_missing(self):
        assert events._extract_token({"HTTP_AUTHORIZATION": "Basic xyz"}, {}) is None


class TestConnect:
    """Tests for connection authentication."""

    @pytest.mark.asyncio
    async def test_valid_token_saves_session(self, mock_server):
        token = create_access_token({"sub": "alice"})

        await events.handle_connect("sid1", {}, {"token": token})

        mock_server.save_session.assert_awaited_once()
        sid, session = mock_server.save_session.call_args.args
        assert sid == "sid1"
        assert session["user_id"] == "alice"
        assert "connected_at" in session

    @pytest.mark.asyncio
    async def test_missing_token_is_refused(self, mock_server):
        with pytest.raises(SocketConnectionRefused):
            await events.handle_connect("sid1", {}, None)

        mock_server.save_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_token_is_refused(self, mock_server):
        with pytest.raises(SocketConnectionRefused):
            await events.handle_connect("sid1", {"QUERY_STRING": "token=garbage"})


class TestSubscribeQueue:
    """Tests for relaying queue notifications to a connection."""

    @pytest.mark.asyncio
    async def test_requires_authenticated_session(self, mock_server, memory_pubsub):
        mock_server.get_session.return_value = {}

        await events.handle_subscribe_queue("sid1")

        mock_server.emit_to.assert_awaited_once()
        assert mock_server.emit_to.call_args.args[:2] == ("sid1", "queue_error")
        assert ("sid1", events.QUEUE_CHANNEL) not in events._relays

    @pytest.mark.asyncio
    async def test_relays_position_updates(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")
        assert mock_server.emit_to.call_args.args[:2] == ("sid1", "queue_subscribed")

        await memory_pubsub.publish(
            queue_position_topic("alice"), {"user_id": "alice", "position": 1}
        )

        payload = await wait_for_emit(mock_server, events.QUEUE_POSITION_EVENT)
        assert payload == {"user_id": "alice", "position": 1}
        call = next(
            c
            for c in mock_server.emit_to.await_args_list
            if c.args[1] == events.QUEUE_POSITION_EVENT
        )
        assert call.args[0] == "sid1"

        await events.handle_unsubscribe_queue("sid1")

    @pytest.mark.asyncio
    async def test_relays_only_own_chats(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")

        await memory_pubsub.publish(
            CHAT_STARTED, {"chat_id": "other", "participants": ["bob", "carol"]}
        )
        await memory_pubsub.publish(
            CHAT_STARTED, {"chat_id": "mine", "participants": ["alice", "bob"]}
        )

        payload = await wait_for_emit(mock_server, events.CHAT_STARTED_EVENT)
        assert payload["chat_id"] == "mine"
        emitted = [
            c.args[2]["chat_id"]
            for c in mock_server.emit_to.await_args_list
            if c.args[1] == events.CHAT_STARTED_EVENT
        ]
        assert emitted == ["mine"]

        await events.handle_unsubscribe_queue("sid1")

    @pytest.mark.asyncio
    async def test_subscribing_twice_keeps_one_relay(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")
        await events.handle_subscribe_queue("sid1")

        assert memory_pubsub.subscriber_count(queue_position_topic("alice")) == 1
        assert memory_pubsub.subscriber_count(CHAT_STARTED) == 1

        await events.handle_unsubscribe_queue("sid1")


class TestUnsubscribe:
    """Tests for tearing relays down."""

    @pytest.mark.asyncio
    async def test_unsubscribe_closes_subscriptions(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")
        relays = events._relays[("sid1", events.QUEUE_CHANNEL)]
        tasks = [task for task, _ in relays]

        await events.handle_unsubscribe_queue("sid1")

        assert all(task.done() for task in tasks)
        assert ("sid1", events.QUEUE_CHANNEL) not in events._relays
        assert memory_pubsub.subscriber_count(queue_position_topic("alice")) == 0
        assert memory_pubsub.subscriber_count(CHAT_STARTED) == 0

    @pytest.mark.asyncio
    async def test_disconnect_unsubscribes(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")

        await events.handle_disconnect("sid1")

        assert ("sid1", events.QUEUE_CHANNEL) not in events._relays
        assert memory_pubsub.subscriber_count(CHAT_STARTED) == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_without_subscription(self, mock_server):
        await events.handle_unsubscribe_queue("unknown")

        assert not events._relays


class TestConcurrentSubscribe:
    """Tests for subscribe requests that overlap other handlers."""

    @pytest.mark.asyncio
    async def test_simultaneous_subscribes_open_one_relay(self, mock_server, slow_pubsub):
        await asyncio.gather(
            events.handle_subscribe_queue("sid1"),
            events.handle_subscribe_queue("sid1"),
        )

        assert slow_pubsub.subscriber_count(queue_position_topic("alice")) == 1
        assert slow_pubsub.subscriber_count(CHAT_STARTED) == 1
        acks = [
            c
            for c in mock_server.emit_to.await_args_list
            if c.args[1] == "queue_subscribed"
        ]
        assert len(acks) == 1

        await events.handle_disconnect("sid1")

        assert slow_pubsub.subscriber_count(queue_position_topic("alice")) == 0
        assert slow_pubsub.subscriber_count(CHAT_STARTED) == 0

    @pytest.mark.asyncio
    async def test_disconnect_while_subscribing(self, mock_server, slow_pubsub):
        key = ("sid1", events.QUEUE_CHANNEL)
        subscribing = asyncio.create_task(events.handle_subscribe_queue("sid1"))
        while key not in events._relays:
            await asyncio.sleep(0)

        await events.handle_disconnect("sid1")
        await subscribing

        assert key not in events._relays
        assert slow_pubsub.subscriber_count(queue_position_topic("alice")) == 0
        assert slow_pubsub.subscriber_count(CHAT_STARTED) == 0
        assert "queue_subscribed" not in [
            c.args[1] for c in mock_server.emit_to.await_args_list
        ]

    @pytest.mark.asyncio
    async def test_failed_subscribe_closes_opened_streams(self, mock_server):
        pubsub = InMemoryPubSub()
        subscribe = pubsub.subscribe

        async def failing_subscribe(topic):
            if topic == CHAT_STARTED:
                raise ConnectionError("pub/sub down")
            return await subscribe(topic)

        pubsub.subscribe = failing_subscribe
        with patch.object(events, "get_pubsub", return_value=pubsub):
            with pytest.raises(ConnectionError):
                await events.handle_subscribe_queue("sid1")

        assert not events._relays
        assert pubsub.subscriber_count(queue_position_topic("alice")) == 0


class TestQueueActivity:
    """Tests for relaying every join and leave to a connection."""

    @pytest.mark.asyncio
    async def test_requires_authenticated_session(self, mock_server, memory_pubsub):
        mock_server.get_session.return_value = None

        await events.handle_subscribe_queue_activity("sid1")

        assert mock_server.emit_to.call_args.args[:2] == ("sid1", "queue_error")
        assert not events._relays
        assert memory_pubsub.subscriber_count(USER_JOINED_QUEUE) == 0

    @pytest.mark.asyncio
    async def test_relays_joins_and_leaves(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue_activity("sid1")
        assert mock_server.emit_to.call_args.args[:2] == (
            "sid1",
            "queue_activity_subscribed",
        )

        await memory_pubsub.publish(
            USER_JOINED_QUEUE, {"user_id": "bob", "action": "joined", "position": 1}
        )
        await memory_pubsub.publish(
            USER_LEFT_QUEUE, {"user_id": "bob", "action": "left", "reason": "dequeued"}
        )

        joined = await wait_for_emit(mock_server, events.USER_JOINED_EVENT)
        left = await wait_for_emit(mock_server, events.USER_LEFT_EVENT)
        assert joined["user_id"] == "bob"
        assert left["reason"] == "dequeued"

        await events.handle_unsubscribe_queue_activity("sid1")

    @pytest.mark.asyncio
    async def test_independent_of_queue_subscription(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")
        await events.handle_subscribe_queue_activity("sid1")

        await events.handle_unsubscribe_queue_activity("sid1")

        assert memory_pubsub.subscriber_count(USER_JOINED_QUEUE) == 0
        assert memory_pubsub.subscriber_count(USER_LEFT_QUEUE) == 0
        assert memory_pubsub.subscriber_count(CHAT_STARTED) == 1
        assert ("sid1", events.QUEUE_CHANNEL) in events._relays

        await events.handle_unsubscribe_queue("sid1")

    @pytest.mark.asyncio
    async def test_subscribing_twice_keeps_one_relay(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue_activity("sid1")
        await events.handle_subscribe_queue_activity("sid1")

        assert memory_pubsub.subscriber_count(USER_JOINED_QUEUE) == 1
        assert memory_pubsub.subscriber_count(USER_LEFT_QUEUE) == 1

        await events.handle_unsubscribe_queue_activity("sid1")

    @pytest.mark.asyncio
    async def test_disconnect_closes_every_relay(self, mock_server, memory_pubsub):
        await events.handle_subscribe_queue("sid1")
        await events.handle_subscribe_queue_activity("sid1")

        await events.handle_disconnect("sid1")

        assert not events._relays
        assert memory_pubsub.subscriber_count(USER_JOINED_QUEUE) == 0
        assert memory_pubsub.subscriber_count(CHAT_STARTED) == 0


def test_handlers_are_registered():
    """Importing the package registers every queue event handler."""
    from matchqueue.services.socketio import socketio_server

    handlers = socketio_server.sio.handlers["/"]

    assert handlers["connect"] is events.handle_connect
    assert handlers["disconnect"] is events.handle_disconnect
    assert handlers["subscribe_queue"] is events.handle_subscribe_queue
    assert handlers["unsubscribe_queue"] is events.handle_unsubscribe_queue
    assert handlers["subscribe_queue_activity"] is events.handle_subscribe_queue_activity
    assert (
        handlers["unsubscribe_queue_activity"]
        is events.handle_unsubscribe_queue_activity
    )


class TestSocketIOServer:
    """Tests for the server wrapper."""

    def test_singleton(self):
        from matchqueue.services.socketio.server import SocketIOServer, socketio_server

        assert SocketIOServer() is socketio_server
        assert socketio_server.online

    def test_no_client_manager_without_redis_url(self):
        from matchqueue.services.socketio import socketio_server

        assert socketio_server.client_manager is None

    @pytest.mark.asyncio
    async def test_emit_to_targets_one_connection(self):
        from matchqueue.services.socketio import socketio_server

        with patch.object(socketio_server.sio, "emit", AsyncMock()) as emit:
            await socketio_server.emit_to("sid1", "chat_started", {"chat_id": "1"})

        emit.assert_awaited_once_with("chat_started", {"chat_id": "1"}, to="sid1")
