"""
Socket.io event handlers for realtime queue notifications.

A client authenticates when it connects and then calls ``subscribe_queue``
to receive its own position updates and the chats it is paired into, or
``subscribe_queue_activity`` to watch every join and leave. Each
subscription is a set of relay tasks owned by the connection; they are
cancelled on the matching unsubscribe or on disconnect.
"""

import asyncio
import logging
import urllib.parse
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from socketio.exceptions import ConnectionRefusedError as SocketConnectionRefused

from matchqueue.core.security import authenticate
from matchqueue.services.notifications.pubsub import Subscription, get_pubsub
from matchqueue.services.notifications.topics import (
    USER_JOINED_QUEUE,
    USER_LEFT_QUEUE,
    subscribe_chat_started,
    subscribe_position_updates,
)
from matchqueue.services.queue.exceptions import NotAuthorized
from matchqueue.services.socketio.server import socketio_server
from matchqueue.utils.datetime_helper import utc_now

# Configure logger
logger = logging.getLogger(__name__)

QUEUE_POSITION_EVENT = "queue_position_updated"
CHAT_STARTED_EVENT = "chat_started"
USER_JOINED_EVENT = "user_joined_queue"
USER_LEFT_EVENT = "user_left_queue"

QUEUE_CHANNEL = "queue"
ACTIVITY_CHANNEL = "queue_activity"

# Socket event name and the coroutine that opens its subscription
Stream = Tuple[str, Callable[[], Awaitable[Subscription]]]

# (sid, channel) -> (relay task, subscription) pairs for that connection
_relays: Dict[Tuple[str, str], List[Tuple[asyncio.Task, Subscription]]] = {}


def _extract_token(environ: Dict[str, Any], auth: Optional[Dict[str, Any]]) -> Optional[str]:
    if auth and auth.get("token"):
        return auth["token"]

    header = environ.get("HTTP_AUTHORIZATION", "")
    if header.startswith("Bearer "):
        return header[7:]

    params = dict(urllib.parse.parse_qsl(environ.get("QUERY_STRING", "")))
    return params.get("token")


async def handle_connect(
    sid: str, environ: Dict[str, Any], auth: Optional[Dict[str, Any]] = None
) -> None:
    """
    Authenticate a connecting client.

    Raises:
        SocketConnectionRefused: If the token is missing or invalid
    """
    try:
        user_id = authenticate(_extract_token(environ, auth))
    except NotAuthorized as e:
        logger.warning(f"Rejected socket {sid}: {e.message}")
        raise SocketConnectionRefused("Not authorized")

    await socketio_server.save_session(
        sid, {"user_id": user_id, "connected_at": utc_now().isoformat()}
    )
    logger.info(f"Client connected: {sid}, user_id: {user_id}")


async def _relay(sid: str, subscription, event: str) -> None:
    try:
        async for payload in subscription:
            await socketio_server.emit_to(sid, event, payload)
    finally:
        await subscription.close()


async def _close_relays(relays: List[Tuple[asyncio.Task, Subscription]]) -> None:
    for task, _ in relays:
        task.cancel()
    await asyncio.gather(*(task for task, _ in relays), return_exceptions=True)
    # A task cancelled before it first ran never reaches its finally block
    for _, subscription in relays:
        await subscription.close()


async def _start_relays(sid: str, channel: str, streams: List[Stream]) -> bool:
    """
    Open every stream of ``channel`` and relay it to ``sid``.

    The slot is claimed before the first await, so a repeated subscribe is a
    no-op and an unsubscribe or disconnect that lands while subscriptions are
    still opening closes them instead of leaving them behind.

    Returns:
        True if the relays were started by this call
    """
    key = (sid, channel)
    if key in _relays:
        return False
    relays: List[Tuple[asyncio.Task, Subscription]] = []
    _relays[key] = relays

    try:
        for event, open_subscription in streams:
            subscription = await open_subscription()
            relays.append(
                (asyncio.create_task(_relay(sid, subscription, event)), subscription)
            )
    except BaseException:
        if _relays.get(key) is relays:
            del _relays[key]
        await _close_relays(relays)
        raise

    if _relays.get(key) is not relays:
        await _close_relays(relays)
        return False
    return True


async def _stop_relays(sid: str, channel: str) -> bool:
    relays = _relays.pop((sid, channel), None)
    if relays is None:
        return False
    await _close_relays(relays)
    return True


async def _authenticated_user(sid: str) -> Optional[str]:
    session = await socketio_server.get_session(sid)
    user_id = session.get("user_id") if session else None

    if not user_id:
        await socketio_server.emit_to(
            sid,
            "queue_error",
            {"status": "error", "message": "Authentication required"},
        )
    return user_id


async def handle_subscribe_queue(sid: str, data: Optional[Dict[str, Any]] = None) -> None:
    """
    Start relaying the caller's queue notifications to this connection.
    """
    user_id = await _authenticated_user(sid)
    if not user_id:
        return

    pubsub = get_pubsub()
    started = await _start_relays(
        sid,
        QUEUE_CHANNEL,
        [
            (QUEUE_POSITION_EVENT, lambda: subscribe_position_updates(pubsub, user_id)),
            (CHAT_STARTED_EVENT, lambda: subscribe_chat_started(pubsub, user_id)),
        ],
    )
    if not started:
        return

    await socketio_server.emit_to(
        sid,
        "queue_subscribed",
        {"status": "subscribed", "user_id": user_id, "timestamp": utc_now().isoformat()},
    )
    logger.info(f"Client {sid} subscribed to queue updates for {user_id}")


async def handle_unsubscribe_queue(sid: str, data: Optional[Dict[str, Any]] = None) -> None:
    """Stop relaying queue notifications to this connection."""
    if await _stop_relays(sid, QUEUE_CHANNEL):
        logger.info(f"Client {sid} unsubscribed from queue updates")


async def handle_subscribe_queue_activity(
    sid: str, data: Optional[Dict[str, Any]] = None
) -> None:
    """
    Start relaying every join and leave in the queue to this connection.

    Meant for admin dashboards; any authenticated connection may subscribe.
    """
    user_id = await _authenticated_user(sid)
    if not user_id:
        return

    pubsub = get_pubsub()
    started = await _start_relays(
        sid,
        ACTIVITY_CHANNEL,
        [
            (USER_JOINED_EVENT, lambda: pubsub.subscribe(USER_JOINED_QUEUE)),
            (USER_LEFT_EVENT, lambda: pubsub.subscribe(USER_LEFT_QUEUE)),
        ],
    )
    if not started:
        return

    await socketio_server.emit_to(
        sid,
        "queue_activity_subscribed",
        {"status": "subscribed", "timestamp": utc_now().isoformat()},
    )
    logger.info(f"Client {sid} subscribed to queue activity")


async def handle_unsubscribe_queue_activity(
    sid: str, data: Optional[Dict[str, Any]] = None
) -> None:
    """Stop relaying queue activity to this connection."""
    if await _stop_relays(sid, ACTIVITY_CHANNEL):
        logger.info(f"Client {sid} unsubscribed from queue activity")


async def handle_disconnect(sid: str, *args) -> None:
    """Handle client disconnection event."""
    for channel in (QUEUE_CHANNEL, ACTIVITY_CHANNEL):
        await _stop_relays(sid, channel)
    logger.info(f"Client disconnected: {sid}")


def register_handlers():
    """Register all event handlers with the Socket.io server."""
    socketio_server.on("connect", handle_connect)
    socketio_server.on("disconnect", handle_disconnect)
    socketio_server.on("subscribe_queue", handle_subscribe_queue)
    socketio_server.on("unsubscribe_queue", handle_unsubscribe_queue)
    socketio_server.on("subscribe_queue_activity", handle_subscribe_queue_activity)
    socketio_server.on("unsubscribe_queue_activity", handle_unsubscribe_queue_activity)
