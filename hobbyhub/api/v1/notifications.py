from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.db.session import get_db
from hobbyhub.schemas.common import Envelope, MessageResponse
from hobbyhub.schemas.notification import NotificationOut
from hobbyhub.services.auth import AuthUser, get_current_user
from hobbyhub.services.notifications import (
    list_notifications,
    mark_all_notifications_read,
    mark_notification_read,
    to_notification_out,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=Envelope[list[NotificationOut]])
async def get_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    unread_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[list[NotificationOut]]:
    rows = await list_notifications(db, user_id=current_user.user_id, limit=limit, unread_only=unread_only)
    return Envelope(data=[to_notification_out(x) for x in rows])


@router.post("/read-all", response_model=Envelope[MessageResponse])
async def read_all_notifications(
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[MessageResponse]:
    updated = await mark_all_notifications_read(db, user_id=current_user.user_id)
    return Envelope(data=MessageResponse(message=f"{updated} notifications marked as read"))


@router.post("/{notification_id}/read", response_model=Envelope[NotificationOut])
async def read_notification(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[NotificationOut]:
    row = await mark_notification_read(db, user_id=current_user.user_id, notification_id=notification_id)
    return Envelope(data=to_notification_out(row))
