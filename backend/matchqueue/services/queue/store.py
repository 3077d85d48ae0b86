"""
Queue store over SQLAlchemy.

This module is the only place that reads or writes the ``queueentry`` and
``queuelock`` tables. Every method is a coroutine so callers treat each store
call as a suspension point, and every mutation the engine needs can be
grouped with ``transaction()`` into one commit after ``lock_queue()``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from matchqueue.db.models import QueueEntry, QueueLock
from matchqueue.services.queue.exceptions import (
    DuplicateUser,
    PairingRaceLost,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure / deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

# Primary key of the row in ``queuelock`` that mutations serialize on
QUEUE_LOCK_ID = 1


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


class QueueStore:
    """Ordered store of waiting users bound to one database session."""

    def __init__(self, db: Session):
        self.db = db

    @asynccontextmanager
    async def transaction(self):
        """
        Commit everything done inside the block as one unit.

        Raises:
            PairingRaceLost: The database aborted the transaction because of a
                concurrent writer
            StoreUnavailable: The database could not be reached
        """
        try:
            yield self
            self.db.commit()
        except DBAPIError as e:
            self.db.rollback()
            if _sqlstate(e) in RETRYABLE_SQLSTATES:
                raise PairingRaceLost(str(e.orig)) from e
            if isinstance(e, (OperationalError, InterfaceError)):
                logger.error(f"Queue store unavailable: {e}")
                raise StoreUnavailable(str(e.orig)) from e
            raise
        except BaseException:
            self.db.rollback()
            raise

    async def lock_queue(self) -> None:
        """
        Take the queue-wide write lock until the transaction ends.

        Call it before a mutating transaction reads the queue. On PostgreSQL
        the update holds a row lock, so a second worker waits here until the
        first commits and then reads the queue as it left it. On SQLite the
        update takes the database write lock with the same effect.

        Raises:
            PairingRaceLost: Another worker created the lock row first
        """
        bumped = (
            self.db.query(QueueLock)
            .filter(QueueLock.id == QUEUE_LOCK_ID)
            .update(
                {QueueLock.version: QueueLock.version + 1}, synchronize_session=False
            )
        )
        if bumped:
            return

        # Databases created without migrations start with no lock row
        self.db.add(QueueLock(id=QUEUE_LOCK_ID, version=1))
        try:
            self.db.flush()
        except IntegrityError as e:
            raise PairingRaceLost("Queue lock row was created concurrently") from e

    def _ordered(self):
        return self.db.query(QueueEntry).order_by(
            QueueEntry.joined_at.asc(), QueueEntry.id.asc()
        )

    async def insert(self, user_id: str, joined_at: datetime) -> QueueEntry:
        """
        Add a user to the queue.

        Raises:
            DuplicateUser: The user already has an entry
        """
        entry = QueueEntry(user_id=user_id, joined_at=joined_at)
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise DuplicateUser(f"User {user_id} already has a queue entry") from e
        return entry

    async def delete_by_user(self, user_id: str) -> Optional[QueueEntry]:
        entry = await self.find_by_user(user_id)
        if entry is None:
            return None
        return await self._delete(entry)

    async def delete_by_id(self, entry_id: int) -> Optional[QueueEntry]:
        entry = self.db.get(QueueEntry, entry_id)
        if entry is None:
            return None
        return await self._delete(entry)

    async def _delete(self, entry: QueueEntry) -> Optional[QueueEntry]:
        # Conditional delete: zero rows means another writer got there first
        deleted = (
            self.db.query(QueueEntry)
            .filter(QueueEntry.id == entry.id)
            .delete(synchronize_session=False)
        )
        if not deleted:
            return None
        self.db.expunge(entry)
        return entry

    async def find_oldest(self, for_update: bool = False) -> Optional[QueueEntry]:
        """
        Return the longest-waiting entry.

        With ``for_update`` the row is locked for the rest of the transaction
        and rows already locked by other transactions are skipped.
        """
        query = self._ordered()
        if for_update:
            query = query.with_for_update(skip_locked=True)
        return query.first()

    async def find_by_user(self, user_id: str) -> Optional[QueueEntry]:
        return self.db.query(QueueEntry).filter(QueueEntry.user_id == user_id).first()

    async def count_joined_at_or_before(self, entry: QueueEntry) -> int:
        """Count entries ordered at or before ``entry``, i.e. its 1-based position."""
        return (
            self.db.query(func.count(QueueEntry.id))
            .filter(
                or_(
                    QueueEntry.joined_at < entry.joined_at,
                    and_(
                        QueueEntry.joined_at == entry.joined_at,
                        QueueEntry.id <= entry.id,
                    ),
                )
            )
            .scalar()
        )

    async def count(self) -> int:
        return self.db.query(func.count(QueueEntry.id)).scalar()

    async def list_all_ordered(self) -> List[QueueEntry]:
        return self._ordered().all()

    async def list_expired(self, cutoff: datetime) -> List[QueueEntry]:
        """Entries that joined before ``cutoff``, oldest first."""
        return self._ordered().filter(QueueEntry.joined_at < cutoff).all()
