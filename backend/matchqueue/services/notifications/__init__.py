"""
Queue notification package.

Provides the pub/sub backends and the topics the pairing engine publishes to.
"""

from matchqueue.services.notifications.pubsub import (
    PubSub,
    InMemoryPubSub,
    RedisPubSub,
    Subscription,
    get_pubsub,
)
from matchqueue.services.notifications.topics import (
    CHAT_STARTED,
    USER_JOINED_QUEUE,
    USER_LEFT_QUEUE,
    queue_position_topic,
    subscribe_position_updates,
    subscribe_chat_started,
)

__all__ = [
    "PubSub",
    "InMemoryPubSub",
    "RedisPubSub",
    "Subscription",
    "get_pubsub",
    "CHAT_STARTED",
    "USER_JOINED_QUEUE",
    "USER_LEFT_QUEUE",
    "queue_position_topic",
    "subscribe_position_updates",
    "subscribe_chat_started",
]
