from sqlalchemy import Column, DateTime, Integer, String

from matchqueue.db.base import Base


class QueueEntry(Base):
    """A user waiting to be paired into a chat.

    Position is not stored. It is the rank of (joined_at, id) among the rows
    currently in the table.
    """

    # Integer key so equal joined_at values still order by insertion
    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(String(64), unique=True, index=True, nullable=False)
    joined_at = Column(DateTime(timezone=True), index=True, nullable=False)

    def __repr__(self):
        return f"<QueueEntry id={self.id} user_id={self.user_id!r}>"
