"""
Pydantic models for queue results and queue notifications.

Results returned to callers are a tagged union discriminated by ``kind``;
each variant carries only the fields that are valid for it.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class PairedResponse(BaseModel):
    """The caller was matched with the longest-waiting user."""

    kind: Literal["paired"] = "paired"
    status: str = "Paired"
    chat_id: str


class QueuedResponse(BaseModel):
    """The caller is waiting at ``position`` (1-based)."""

    kind: Literal["queued"] = "queued"
    status: str = "Queue"
    position: int = Field(..., ge=1)


class NotInQueueResponse(BaseModel):
    """The caller has no queue entry."""

    kind: Literal["not_in_queue"] = "not_in_queue"
    status: str = "User is not in the queue"
    position: int = 0


class DequeueResponse(BaseModel):
    """The caller's entry was removed."""

    kind: Literal["left"] = "left"
    status: str = "User left from queue"
    position: int = 0


PairingResult = Annotated[
    Union[PairedResponse, QueuedResponse], Field(discriminator="kind")
]
PositionResult = Annotated[
    Union[QueuedResponse, NotInQueueResponse], Field(discriminator="kind")
]
LeaveResult = Annotated[
    Union[DequeueResponse, NotInQueueResponse], Field(discriminator="kind")
]


class QueueEntryResponse(BaseModel):
    """Queue listing row."""

    id: int
    user_id: str
    joined_at: datetime
    position: int

    class Config:
        from_attributes = True


class QueuePositionUpdate(BaseModel):
    """Payload published on a user's position topic."""

    user_id: str
    position: int


class ChatStartedEvent(BaseModel):
    """Payload published when two users are paired."""

    chat_id: str
    participants: List[str]
    created_at: datetime


class QueueMembershipEvent(BaseModel):
    """Payload for users joining or leaving the queue."""

    user_id: str
    action: Literal["joined", "left"]
    reason: Optional[Literal["paired", "dequeued", "expired"]] = None
    position: Optional[int] = None
    timestamp: datetime
