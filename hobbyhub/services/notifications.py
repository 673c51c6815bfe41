from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.core.errors import NotFound
from hobbyhub.models.common import as_utc
from hobbyhub.models.notification import Notification
from hobbyhub.schemas.notification import NotificationOut, NotificationPayload, notification_payload_adapter
from hobbyhub.services.ws import FanoutMessage

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    *,
    user_id: int,
    title: str,
    body: str,
    payload: NotificationPayload,
) -> Notification:
    # Part of the caller's transaction: flushed for an id, committed by the caller.
    row = Notification(
        user_id=user_id,
        kind=payload.kind,
        title=title,
        body=body,
        payload=payload.model_dump(mode="json"),
    )
    db.add(row)
    await db.flush()
    return row


def parse_payload(row: Notification) -> NotificationPayload | None:
    try:
        return notification_payload_adapter.validate_python(row.payload or {})
    except ValidationError:
        logger.warning("Notification %s has an unreadable payload (kind=%s)", row.id, row.kind)
        return None


def to_notification_out(row: Notification) -> NotificationOut:
    created_at = as_utc(row.created_at)
    return NotificationOut(
        id=row.id,
        kind=row.kind,
        title=row.title,
        body=row.body,
        payload=parse_payload(row),
        is_read=bool(row.is_read),
        created_at=created_at.isoformat() if created_at else "",
    )


def notification_message(row: Notification) -> FanoutMessage:
    return FanoutMessage(
        scope="user",
        target_id=row.user_id,
        event_type="notification",
        payload=to_notification_out(row).model_dump(mode="json"),
    )


async def list_notifications(
    db: AsyncSession,
    *,
    user_id: int,
    limit: int = 50,
    unread_only: bool = False,
) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def mark_notification_read(db: AsyncSession, *, user_id: int, notification_id: int) -> Notification:
    row = (
        await db.execute(
            select(Notification).where(and_(Notification.id == notification_id, Notification.user_id == user_id))
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFound("Notification not found")
    if not row.is_read:
        row.is_read = True
        await db.commit()
    return row


async def mark_all_notifications_read(db: AsyncSession, *, user_id: int) -> int:
    result = await db.execute(
        update(Notification)
        .where(and_(Notification.user_id == user_id, Notification.is_read.is_(False)))
        .values(is_read=True)
    )
    await db.commit()
    return int(result.rowcount or 0)
