from fastapi import APIRouter, Depends, Query, Request

from auth import Authenticator
from backend import RedisBackend, redis_backend
from constants import HISTORY_PAGE_SIZE, HISTORY_MAX_PAGE_SIZE
from membership import RoomResolver, RoomTarget
from relay import populate_message
from schemas.messages import HistoryResponse
from logging_config import get_logger

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/messages", tags=["messages"])


def get_backend() -> RedisBackend:
    return redis_backend


async def current_user(request: Request, backend: RedisBackend = Depends(get_backend)) -> dict:
    # Unauthorized propagates to the ChatError handler as a 401
    return await Authenticator(backend).authenticate(request.headers)


async def _history(backend: RedisBackend, user: dict, target: RoomTarget, limit: int) -> HistoryResponse:
    room_id = await RoomResolver(backend).authorize(user["_id"], target)
    stored = await backend.get_room_messages(room_id, limit=limit)
    messages = [await populate_message(backend, m) for m in stored]
    logger.info(f"History fetch for {room_id} by {user['_id']}: {len(messages)} messages")
    return HistoryResponse(roomId=room_id, messages=messages)


@messages_router.get("/dm/{other_user_id}", response_model=HistoryResponse)
async def get_dm_messages(
    other_user_id: str,
    limit: int = Query(HISTORY_PAGE_SIZE, ge=1, le=HISTORY_MAX_PAGE_SIZE),
    user: dict = Depends(current_user),
    backend: RedisBackend = Depends(get_backend),
):
    """Latest messages of the direct conversation with a friend, oldest first."""
    return await _history(backend, user, RoomTarget.dm(other_user_id), limit)


@messages_router.get("/group/{group_id}", response_model=HistoryResponse)
async def get_group_messages(
    group_id: str,
    limit: int = Query(HISTORY_PAGE_SIZE, ge=1, le=HISTORY_MAX_PAGE_SIZE),
    user: dict = Depends(current_user),
    backend: RedisBackend = Depends(get_backend),
):
    """Latest messages of a group the caller belongs to, oldest first."""
    return await _history(backend, user, RoomTarget.group(group_id), limit)
