"""
Socket.io server for queue notifications and its FastAPI mount.

Clients connect here to receive their own queue position updates and the
chats they are paired into. With ``SOCKETIO_REDIS_URL`` set, emits are
routed through Redis so any worker can reach any connection.
"""

import json
import os
import socketio
import logging
from typing import Optional, Dict, Any, Callable
from fastapi import FastAPI

# Configure logger
logger = logging.getLogger(__name__)

# Socket.io configuration from environment variables
SOCKETIO_CORS_ORIGINS = os.getenv(
    "SOCKETIO_CORS_ORIGINS", '["http://localhost:3000", "https://localhost"]'
)
SOCKETIO_PING_TIMEOUT = int(os.getenv("SOCKETIO_PING_TIMEOUT", "60"))
SOCKETIO_PING_INTERVAL = int(os.getenv("SOCKETIO_PING_INTERVAL", "25"))
SOCKETIO_MAX_HTTP_BUFFER_SIZE = int(
    os.getenv("SOCKETIO_MAX_HTTP_BUFFER_SIZE", "1000000")
)
# Empty runs a single worker without a Redis manager
SOCKETIO_REDIS_URL = os.getenv("SOCKETIO_REDIS_URL", "redis://redis:6379/1")


def _client_manager() -> Optional[socketio.AsyncRedisManager]:
    if not SOCKETIO_REDIS_URL:
        return None
    return socketio.AsyncRedisManager(SOCKETIO_REDIS_URL)


class SocketIOServer:
    """Process-wide Socket.io server relaying queue events to connections."""

    _instance: Optional["SocketIOServer"] = None
    _initialized: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        try:
            self.client_manager = _client_manager()
            self.sio = socketio.AsyncServer(
                async_mode="asgi",
                client_manager=self.client_manager,
                cors_allowed_origins=json.loads(SOCKETIO_CORS_ORIGINS),
                ping_timeout=SOCKETIO_PING_TIMEOUT,
                ping_interval=SOCKETIO_PING_INTERVAL,
                max_http_buffer_size=SOCKETIO_MAX_HTTP_BUFFER_SIZE,
                logger=False,
                engineio_logger=False,
            )
            self.app = socketio.ASGIApp(self.sio)
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid Socket.IO configuration: {e}")
            raise

        self._initialized = True
        logger.info(
            "Socket.IO server initialized"
            + (" with Redis client manager" if self.client_manager else "")
        )

    @property
    def online(self) -> bool:
        return self._initialized

    def mount_to_fastapi(self, fastapi_app: FastAPI, path: str = "/ws") -> None:
        """Serve Socket.io under ``path``.

        The application's lifespan is expected to await ``shutdown_event()``.
        """
        fastapi_app.mount(path, self.app)
        logger.info(f"Socket.IO server mounted to FastAPI at path: {path}")

    async def shutdown_event(self) -> None:
        """Disconnect every client when the FastAPI application shuts down."""
        logger.info("Socket.IO server shutting down")
        await self.sio.shutdown()

    def on(self, event: str, handler: Callable) -> None:
        self.sio.on(event, handler)

    async def emit_to(self, sid: str, event: str, data: Any = None) -> None:
        """Emit an event to a single connection.

        Args:
            sid: Session ID of the receiving client
            event: Event name to emit
            data: JSON-serializable payload
        """
        await self.sio.emit(event, data, to=sid)

    async def get_session(self, sid: str) -> Dict[str, Any]:
        return await self.sio.get_session(sid)

    async def save_session(self, sid: str, session: Dict[str, Any]) -> None:
        await self.sio.save_session(sid, session)


# Singleton instance for use throughout the application
socketio_server = SocketIOServer()
