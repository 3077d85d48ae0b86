"""
Redis connection configuration and management for pub/sub and Socket.io.
"""

import os
from typing import Optional
import redis.asyncio as redis
import logging

logger = logging.getLogger(__name__)

# Redis connection URLs from environment
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
SOCKETIO_REDIS_URL = os.getenv("SOCKETIO_REDIS_URL", "redis://redis:6379/1")

# Global Redis connection instance for queue notifications
_redis_pubsub: Optional[redis.Redis] = None


def get_redis_pubsub() -> redis.Redis:
    """
    Returns the Redis client used to publish and subscribe to queue topics.

    The client connects lazily on first command, so this is safe to call
    while wiring up the application.
    """
    global _redis_pubsub

    if _redis_pubsub is None:
        _redis_pubsub = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=50,
            retry_on_timeout=True,
        )
        logger.info("Redis pub/sub client created")

    return _redis_pubsub


async def close_redis_connections():
    """
    Closes Redis connections gracefully during application shutdown.
    """
    global _redis_pubsub

    if _redis_pubsub:
        await _redis_pubsub.aclose()
        _redis_pubsub = None
        logger.info("Redis pub/sub connection closed")


async def health_check_redis() -> dict:
    """
    Performs a health check on the pub/sub Redis connection.

    Returns status information for monitoring and debugging.
    """
    status = {"status": "disconnected", "error": None}

    try:
        await get_redis_pubsub().ping()
        status["status"] = "connected"
    except Exception as e:
        status["error"] = str(e)

    return status
