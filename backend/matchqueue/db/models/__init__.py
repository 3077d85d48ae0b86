from matchqueue.db.models.queue_entry import QueueEntry
from matchqueue.db.models.queue_lock import QueueLock
from matchqueue.db.models.chat import Chat

__all__ = [
    "QueueEntry",
    "QueueLock",
    "Chat",
]
