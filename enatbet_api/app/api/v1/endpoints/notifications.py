"""
API endpoints for in-app notifications.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from enatbet_api.app.core.security import get_current_user
from enatbet_api.app.schemas.message import NotificationRead
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.notification_service import NotificationService

router = APIRouter()


@router.get("", response_model=List[NotificationRead], summary="List notifications")
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[NotificationRead]:
    return await NotificationService.list_notifications(
        current_user["user_id"], unread_only=unread_only, limit=limit, offset=offset
    )


@router.post("/read-all", summary="Mark all notifications as read")
async def mark_all_read(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, int]:
    return {"updated": await NotificationService.mark_all_read(current_user["user_id"])}


@router.post("/{notification_id}/read", response_model=NotificationRead, summary="Mark a notification as read")
async def mark_read(
    notification_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> NotificationRead:
    try:
        return await NotificationService.mark_read(current_user["user_id"], notification_id)
    except ValueError as e:
        raise http_error(e)
