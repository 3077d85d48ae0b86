"""
Queue-pairing engine.

Users wait in a FIFO queue until a second user arrives; the newcomer is
paired with the longest-waiting entry and both get a new chat. Positions
are never stored: they are recomputed from ``(joined_at, id)`` ordering on
every read, so there is no counter to drift out of sync with the table.

Mutations run under one asyncio.Lock per process and inside one database
transaction each. Across processes the database arbitrates: every mutating
transaction starts by taking the queue lock row, so workers see each
other's committed changes before reading the queue. Deletes report whether
they removed anything and ``user_id`` is unique, and those conflicts are
retried.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from matchqueue.db.models import QueueEntry
from matchqueue.schemas.queue import (
    ChatStartedEvent,
    DequeueResponse,
    NotInQueueResponse,
    PairedResponse,
    QueuedResponse,
    QueueEntryResponse,
    QueueMembershipEvent,
    QueuePositionUpdate,
)
from matchqueue.services.chat.chat_factory import create_chat
from matchqueue.services.notifications.pubsub import PubSub
from matchqueue.services.notifications.topics import (
    CHAT_STARTED,
    USER_JOINED_QUEUE,
    USER_LEFT_QUEUE,
    queue_position_topic,
)
from matchqueue.services.queue.exceptions import (
    AlreadyInQueue,
    DuplicateUser,
    NotAuthorized,
    PairingRaceLost,
    StoreUnavailable,
)
from matchqueue.services.queue.store import QueueStore
from matchqueue.utils.datetime_helper import make_aware, seconds_ago, utc_now

# Configure logger
logger = logging.getLogger(__name__)

PAIRING_MAX_RETRIES = int(os.getenv("PAIRING_MAX_RETRIES", "3"))
QUEUE_ENTRY_TTL_SECONDS = int(os.getenv("QUEUE_ENTRY_TTL_SECONDS", "1800"))

ChatFactory = Callable[[Session, List[str]], Awaitable[str]]


@dataclass
class _Outbox:
    """Events collected inside the lock and published after it is released."""

    events: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    def add(self, topic: str, model) -> None:
        self.events.append((topic, model.model_dump(mode="json")))


class PairingEngine:
    """Enqueues, pairs and dequeues users on top of the queue store."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        pubsub: PubSub,
        chat_factory: ChatFactory = create_chat,
        max_retries: int = PAIRING_MAX_RETRIES,
        entry_ttl_seconds: int = QUEUE_ENTRY_TTL_SECONDS,
        clock: Callable = utc_now,
        store_class=QueueStore,
    ):
        self.session_factory = session_factory
        self.pubsub = pubsub
        self.chat_factory = chat_factory
        self.max_retries = max(1, max_retries)
        self.entry_ttl_seconds = entry_ttl_seconds
        self.clock = clock
        self.store_class = store_class
        self._lock = asyncio.Lock()

    async def initiate_chat(self, user_id: str):
        """
        Pair the caller with the longest-waiting user, or queue them.

        Args:
            user_id: Authenticated caller

        Returns:
            PairedResponse if a partner was waiting, QueuedResponse otherwise

        Raises:
            NotAuthorized: If user_id is empty
            AlreadyInQueue: If the caller is already waiting
            StoreUnavailable: If the store fails or every retry lost a race
        """
        if not user_id:
            raise NotAuthorized()

        return await self._run_mutation(
            f"pairing user {user_id}",
            lambda outbox: self._initiate(user_id, outbox),
        )

    async def _run_mutation(
        self, description: str, mutation: Callable[[_Outbox], Awaitable[Any]]
    ):
        """Run ``mutation`` under the lock, retrying lost races, then publish."""
        for attempt in range(1, self.max_retries + 1):
            outbox = _Outbox()
            try:
                async with self._lock:
                    result = await mutation(outbox)
            except PairingRaceLost as e:
                logger.warning(
                    f"Queue race lost while {description} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )
                continue

            await self._publish(outbox)
            return result

        raise StoreUnavailable(
            f"Gave up {description} after {self.max_retries} attempts"
        )

    async def _initiate(self, user_id: str, outbox: _Outbox):
        with self.session_factory() as db:
            store = self.store_class(db)

            async with store.transaction():
                await store.lock_queue()

                if await store.find_by_user(user_id) is not None:
                    raise AlreadyInQueue()

                oldest = await store.find_oldest(for_update=True)

                if oldest is None:
                    try:
                        entry = await store.insert(user_id, make_aware(self.clock()))
                    except DuplicateUser as e:
                        raise PairingRaceLost(str(e)) from e
                    position = await store.count_joined_at_or_before(entry)
                else:
                    partner = await store.delete_by_id(oldest.id)
                    if partner is None:
                        raise PairingRaceLost(f"Queue entry {oldest.id} already taken")
                    participants = [partner.user_id, user_id]
                    chat_id = await self.chat_factory(db, participants)

            if oldest is None:
                logger.info(f"User {user_id} joined the queue at position {position}")
                outbox.add(
                    USER_JOINED_QUEUE,
                    QueueMembershipEvent(
                        user_id=user_id,
                        action="joined",
                        position=position,
                        timestamp=make_aware(entry.joined_at),
                    ),
                )
                outbox.add(
                    queue_position_topic(user_id),
                    QueuePositionUpdate(user_id=user_id, position=position),
                )
                return QueuedResponse(position=position)

            logger.info(f"Paired {partner.user_id} with {user_id} in chat {chat_id}")
            outbox.add(
                CHAT_STARTED,
                ChatStartedEvent(
                    chat_id=chat_id, participants=participants, created_at=utc_now()
                ),
            )
            outbox.add(
                USER_LEFT_QUEUE,
                QueueMembershipEvent(
                    user_id=partner.user_id,
                    action="left",
                    reason="paired",
                    timestamp=utc_now(),
                ),
            )
            # The oldest entry is gone, so everyone still waiting moved up one
            remaining = await store.list_all_ordered()
            self._renumber(remaining, 0, outbox)
            return PairedResponse(chat_id=chat_id)

    async def dequeue_user(self, user_id: str):
        """
        Remove the caller from the queue.

        Returns:
            DequeueResponse, or NotInQueueResponse if the caller had no entry
        """
        if not user_id:
            raise NotAuthorized()

        removed = await self._run_mutation(
            f"removing user {user_id}",
            lambda outbox: self._dequeue(user_id, outbox),
        )
        return DequeueResponse() if removed else NotInQueueResponse()

    async def _dequeue(self, user_id: str, outbox: _Outbox) -> bool:
        with self.session_factory() as db:
            return await self._remove(
                self.store_class(db), user_id, "dequeued", outbox
            )

    async def evict_expired(self, now=None) -> int:
        """
        Remove entries that have waited longer than the configured TTL.

        Each eviction is handled like the user dequeuing themselves: the
        users behind them are renumbered and notified.

        Returns:
            Number of entries evicted
        """
        if self.entry_ttl_seconds <= 0:
            return 0

        cutoff = seconds_ago(self.entry_ttl_seconds, now or self.clock())
        outbox = _Outbox()
        evicted = 0

        async with self._lock:
            with self.session_factory() as db:
                store = self.store_class(db)
                for entry in await store.list_expired(cutoff):
                    try:
                        removed = await self._remove(
                            store, entry.user_id, "expired", outbox
                        )
                    except PairingRaceLost as e:
                        # Left for the next sweep
                        logger.warning(f"Could not evict {entry.user_id}: {e}")
                        continue
                    if removed:
                        evicted += 1

        if evicted:
            logger.info(f"Evicted {evicted} expired queue entries")
            await self._publish(outbox)
        return evicted

    async def _remove(
        self, store: QueueStore, user_id: str, reason: str, outbox: _Outbox
    ) -> bool:
        """Delete one user's entry and queue the notifications it causes."""
        async with store.transaction():
            await store.lock_queue()

            entry = await store.find_by_user(user_id)
            if entry is None:
                return False
            old_position = await store.count_joined_at_or_before(entry)
            if await store.delete_by_id(entry.id) is None:
                return False

        logger.info(f"User {user_id} left the queue ({reason})")
        outbox.add(
            USER_LEFT_QUEUE,
            QueueMembershipEvent(
                user_id=user_id, action="left", reason=reason, timestamp=utc_now()
            ),
        )

        # Read after the commit so the published positions are post-removal
        remaining = await store.list_all_ordered()
        self._renumber(remaining, old_position - 1, outbox)
        return True

    def _renumber(
        self, ordered: List[QueueEntry], first_index: int, outbox: _Outbox
    ) -> None:
        for index, entry in enumerate(ordered[first_index:], start=first_index + 1):
            outbox.add(
                queue_position_topic(entry.user_id),
                QueuePositionUpdate(user_id=entry.user_id, position=index),
            )

    async def queue_position(self, user_id: str):
        """
        Return the caller's current 1-based position.

        Returns:
            QueuedResponse, or NotInQueueResponse if the caller has no entry
        """
        if not user_id:
            raise NotAuthorized()

        with self.session_factory() as db:
            store = self.store_class(db)
            async with store.transaction():
                entry = await store.find_by_user(user_id)
                if entry is None:
                    return NotInQueueResponse()
                position = await store.count_joined_at_or_before(entry)

        return QueuedResponse(position=position)

    async def list_queue(self) -> List[QueueEntryResponse]:
        """Snapshot of everyone waiting, oldest first."""
        with self.session_factory() as db:
            store = self.store_class(db)
            async with store.transaction():
                entries = await store.list_all_ordered()

        return [
            QueueEntryResponse(
                id=entry.id,
                user_id=entry.user_id,
                joined_at=make_aware(entry.joined_at),
                position=index,
            )
            for index, entry in enumerate(entries, start=1)
        ]

    async def _publish(self, outbox: _Outbox) -> None:
        for topic, payload in outbox.events:
            try:
                await self.pubsub.publish(topic, payload)
            except Exception as e:
                # Subscribers are best effort; the queue change is committed
                logger.error(f"Failed to publish to {topic}: {e}")


_engine: Optional[PairingEngine] = None


def get_pairing_engine() -> PairingEngine:
    """
    Returns the process-wide pairing engine.

    A single instance per process is required: its lock is what serializes
    queue mutations between concurrent requests.
    """
    global _engine

    if _engine is None:
        from matchqueue.db.session import SessionLocal
        from matchqueue.services.notifications.pubsub import get_pubsub

        _engine = PairingEngine(SessionLocal, get_pubsub())

    return _engine
