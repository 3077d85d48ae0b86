"""
REST API endpoints for the pairing queue.

Each endpoint resolves the caller and hands off to the pairing engine;
realtime notifications are delivered over Socket.io.
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException, status

from matchqueue.dependencies import get_current_user_id, pairing_engine_dependency
from matchqueue.schemas.queue import (
    LeaveResult,
    PairingResult,
    PositionResult,
    QueueEntryResponse,
)
from matchqueue.services.queue.engine import PairingEngine
from matchqueue.services.queue.exceptions import (
    AlreadyInQueue,
    NotAuthorized,
    StoreUnavailable,
)

router = APIRouter(prefix="/api/queue", tags=["queue"])


def _store_unavailable(e: StoreUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": e.code, "message": "Queue is temporarily unavailable"},
        headers={"Retry-After": "1"},
    )


@router.post("/initiate", response_model=PairingResult)
async def initiate_chat(
    user_id: str = Depends(get_current_user_id),
    engine: PairingEngine = Depends(pairing_engine_dependency),
):
    """
    Pair the caller with the longest-waiting user, or add them to the queue.
    """
    try:
        return await engine.initiate_chat(user_id)
    except NotAuthorized as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": e.code, "message": e.message},
        )
    except AlreadyInQueue as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": e.code, "message": e.message},
        )
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.post("/dequeue", response_model=LeaveResult)
async def dequeue_user(
    user_id: str = Depends(get_current_user_id),
    engine: PairingEngine = Depends(pairing_engine_dependency),
):
    """
    Remove the caller from the queue.

    Returns position 0 whether or not the caller was waiting; ``kind`` tells
    the two cases apart.
    """
    try:
        return await engine.dequeue_user(user_id)
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.get("/position", response_model=PositionResult)
async def queue_position(
    user_id: str = Depends(get_current_user_id),
    engine: PairingEngine = Depends(pairing_engine_dependency),
):
    """Return the caller's current position in the queue."""
    try:
        return await engine.queue_position(user_id)
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.get("", response_model=List[QueueEntryResponse])
async def list_queue(engine: PairingEngine = Depends(pairing_engine_dependency)):
    """List everyone currently waiting, oldest first."""
    try:
        return await engine.list_queue()
    except StoreUnavailable as e:
        raise _store_unavailable(e)
