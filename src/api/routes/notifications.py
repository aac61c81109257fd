"""
Notification endpoints
======================

GET   /api/v1/notifications                  -- latest 100 plus unread count
PATCH /api/v1/notifications/{id}/read        -- mark one read
PATCH /api/v1/notifications/read-all         -- mark all read
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_notifications, get_principal
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    MarkedReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from src.domain.entities import Principal
from src.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse, summary="My notifications")
@limiter.limit(RATE_LIMIT)
async def list_notifications(
    request: Request,
    principal: Principal = Depends(get_principal),
    notifications: NotificationService = Depends(get_notifications),
):
    items, unread = await notifications.list_for(principal.user_id)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in items],
        unread_count=unread,
    )


@router.patch(
    "/read-all",
    response_model=MarkedReadResponse,
    summary="Mark all notifications read",
)
@limiter.limit(RATE_LIMIT)
async def mark_all_read(
    request: Request,
    principal: Principal = Depends(get_principal),
    notifications: NotificationService = Depends(get_notifications),
):
    return MarkedReadResponse(updated=await notifications.mark_all_read(principal.user_id))


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification read",
)
@limiter.limit(RATE_LIMIT)
async def mark_read(
    request: Request,
    notification_id: int,
    principal: Principal = Depends(get_principal),
    notifications: NotificationService = Depends(get_notifications),
):
    return await notifications.mark_read(notification_id, principal.user_id)
