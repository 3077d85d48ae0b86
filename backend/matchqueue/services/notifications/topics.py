"""
Queue notification topics and per-user subscriptions.

Position updates go to one topic per user. Pairings go to a single topic
and each subscriber keeps only the chats whose participant list contains
its own user id (exact match).
"""

from matchqueue.services.notifications.pubsub import (
    FilteredSubscription,
    PubSub,
    Subscription,
)

CHAT_STARTED = "CHAT_STARTED"
USER_JOINED_QUEUE = "USER_JOINED_QUEUE"
USER_LEFT_QUEUE = "USER_LEFT_QUEUE"
QUEUE_POSITION_PREFIX = "QUEUE_POSITION_"


def queue_position_topic(user_id: str) -> str:
    return f"{QUEUE_POSITION_PREFIX}{user_id}"


async def subscribe_position_updates(pubsub: PubSub, user_id: str) -> Subscription:
    """Position updates addressed to ``user_id``."""
    subscription = await pubsub.subscribe(queue_position_topic(user_id))
    # Guard against a shared channel carrying someone else's update
    return FilteredSubscription(
        subscription, lambda payload: payload.get("user_id") == user_id
    )


async def subscribe_chat_started(pubsub: PubSub, user_id: str) -> Subscription:
    """Chats started with ``user_id`` as a participant."""
    subscription = await pubsub.subscribe(CHAT_STARTED)
    return FilteredSubscription(
        subscription, lambda payload: user_id in (payload.get("participants") or [])
    )
