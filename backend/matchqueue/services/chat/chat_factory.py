"""
Chat creation for paired users.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from matchqueue.db.models import Chat

logger = logging.getLogger(__name__)


async def create_chat(db: Session, participant_ids: List[str]) -> str:
    """
    Create a chat for the given participants.

    The chat is flushed but not committed, so it becomes visible together
    with whatever else the caller's transaction does.

    Args:
        db: Database session owned by the caller
        participant_ids: User IDs of the chat members, in pairing order

    Returns:
        ID of the new chat
    """
    if len(participant_ids) < 2:
        raise ValueError("A chat needs at least two participants")

    chat = Chat(participants=list(participant_ids))
    db.add(chat)
    db.flush()

    logger.info(f"Created chat {chat.id} for participants {participant_ids}")
    return str(chat.id)
