"""
Socket.io integration package for realtime queue notifications.
"""

from matchqueue.services.socketio.server import socketio_server
from matchqueue.services.socketio.events import register_handlers

__all__ = [
    "socketio_server",
    "register_handlers",
]

# Ensure event handlers are registered when package is imported
register_handlers()
