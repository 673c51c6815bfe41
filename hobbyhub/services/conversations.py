"""Group conversation provisioning for events.

One room per event, created on the first accepted participant. Active
membership (``left_at IS NULL``) mirrors the event's JOINED participants plus
the host. Rooms are never deleted and leaving is a soft mark so the timeline
stays attributable. None of these helpers commit; they run inside the
transition that calls them.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.models.chat import ChatMember, ChatMessage, ChatRoom
from hobbyhub.models.common import utcnow
from hobbyhub.models.event import Event

logger = logging.getLogger(__name__)


async def get_event_conversation(db: AsyncSession, event_id: int) -> ChatRoom | None:
    return (await db.execute(select(ChatRoom).where(ChatRoom.event_id == event_id))).scalar_one_or_none()


async def _member_entry(db: AsyncSession, room_id: int, user_id: int) -> ChatMember | None:
    return (
        await db.execute(
            select(ChatMember).where(and_(ChatMember.room_id == room_id, ChatMember.user_id == user_id))
        )
    ).scalar_one_or_none()


async def ensure_event_conversation(db: AsyncSession, event: Event) -> tuple[ChatRoom, bool]:
    room = await get_event_conversation(db, event.id)
    if room is not None:
        return room, False

    try:
        async with db.begin_nested():
            room = ChatRoom(
                room_type="group",
                title=event.title,
                created_by_user_id=event.host_user_id,
                event_id=event.id,
            )
            db.add(room)
            await db.flush()
            db.add(ChatMember(room_id=room.id, user_id=event.host_user_id, member_role="owner"))
    except IntegrityError:
        # Another transaction provisioned the room first.
        room = await get_event_conversation(db, event.id)
        if room is None:
            raise
        return room, False

    logger.info("Provisioned conversation %s for event %s", room.id, event.id)
    return room, True


async def add_conversation_member(db: AsyncSession, room: ChatRoom, user_id: int) -> bool:
    member = await _member_entry(db, room.id, user_id)
    if member is None:
        db.add(ChatMember(room_id=room.id, user_id=user_id, member_role="member"))
        await db.flush()
        return True
    if member.left_at is not None:
        member.left_at = None
        return True
    return False


async def remove_conversation_member(db: AsyncSession, room_id: int, user_id: int) -> bool:
    member = await _member_entry(db, room_id, user_id)
    if member is None or member.left_at is not None:
        return False
    member.left_at = utcnow()
    return True


async def post_system_message(db: AsyncSession, room_id: int, content: str) -> ChatMessage:
    row = ChatMessage(room_id=room_id, sender_user_id=None, content=content, is_system=True)
    db.add(row)
    await db.flush()
    return row


async def active_member_ids(db: AsyncSession, room_id: int) -> set[int]:
    rows = (
        await db.execute(
            select(ChatMember.user_id).where(and_(ChatMember.room_id == room_id, ChatMember.left_at.is_(None)))
        )
    ).scalars().all()
    return set(rows)


async def is_active_member(db: AsyncSession, room_id: int, user_id: int) -> bool:
    member = await _member_entry(db, room_id, user_id)
    return member is not None and member.left_at is None
