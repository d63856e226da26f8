"""
API endpoints for conversations between guests and hosts.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from enatbet_api.app.core.rate_limit import rate_limiter
from enatbet_api.app.core.security import get_current_user
from enatbet_api.app.schemas.message import ConversationRead, MessageCreate, MessageRead, MessageSent
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.message_service import MessageService

router = APIRouter()


@router.get("/conversations", response_model=List[ConversationRead], summary="List conversations")
async def list_conversations(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[ConversationRead]:
    return await MessageService.list_conversations(current_user, limit=limit, offset=offset)


@router.post(
    "",
    response_model=MessageSent,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
    dependencies=[Depends(rate_limiter("api"))],
)
async def send_message(
    data: MessageCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> MessageSent:
    """Send to an existing conversation, or start one with ``recipient_id`` about ``listing_id``."""
    try:
        return await MessageService.send_message(data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.get(
    "/conversations/{conversation_id}",
    response_model=List[MessageRead],
    summary="Messages of a conversation",
)
async def list_messages(
    conversation_id: int,
    limit: int = Query(50, ge=1, le=100),
    before_id: Optional[int] = Query(None, description="Return messages older than this id"),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[MessageRead]:
    try:
        return await MessageService.list_messages(conversation_id, current_user, limit=limit, before_id=before_id)
    except ValueError as e:
        raise http_error(e)


@router.post(
    "/conversations/{conversation_id}/read",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Mark a conversation as read",
)
async def mark_read(
    conversation_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> None:
    try:
        await MessageService.mark_read(conversation_id, current_user)
    except ValueError as e:
        raise http_error(e)
