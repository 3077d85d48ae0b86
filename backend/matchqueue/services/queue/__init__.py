"""
Queue-pairing services package initialization.
"""

from matchqueue.services.queue.engine import PairingEngine, get_pairing_engine
from matchqueue.services.queue.store import QueueStore
from matchqueue.services.queue.sweeper import QueueSweeper

__all__ = [
    "PairingEngine",
    "get_pairing_engine",
    "QueueStore",
    "QueueSweeper",
]
