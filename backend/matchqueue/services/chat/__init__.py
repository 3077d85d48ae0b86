"""
Chat services package initialization.
"""

from matchqueue.services.chat.chat_factory import create_chat

__all__ = [
    "create_chat",
]
