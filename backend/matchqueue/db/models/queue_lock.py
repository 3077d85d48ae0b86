from sqlalchemy import Column, Integer

from matchqueue.db.base import Base


class QueueLock(Base):
    """Single row every queue mutation updates first.

    The update holds a write lock on the row until the transaction ends, so
    mutations from different workers run one at a time.
    """

    id = Column(Integer, primary_key=True, autoincrement=False)

    # Bumped by every mutation
    version = Column(Integer, default=0, nullable=False)
