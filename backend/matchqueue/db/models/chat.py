from sqlalchemy import Column, JSON

from matchqueue.db.base import Base, TimestampMixin


class Chat(Base, TimestampMixin):
    """Chat created when two queued users are paired."""

    participants = Column(JSON, default=list, nullable=False)
