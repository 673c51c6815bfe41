from __future__ import annotations

from datetime import datetime

from hobbyhub.models.common import as_utc
from hobbyhub.models.event import Event, EventJoinRequest
from hobbyhub.models.swipe import Swipe
from hobbyhub.models.user import Friendship, User
from hobbyhub.schemas.event import EventOut, EventStatsOut, JoinRequestOut
from hobbyhub.schemas.swipe import FriendshipOut, SwipeOut
from hobbyhub.schemas.user import UserMiniOut


def as_iso(value: datetime | None) -> str:
    if value is None:
        return ""
    return as_utc(value).isoformat()


def to_user_mini(user: User) -> UserMiniOut:
    return UserMiniOut(id=user.id, display_name=user.display_name, age=user.age, gender=user.gender)


def to_swipe_out(swipe: Swipe) -> SwipeOut:
    return SwipeOut(
        id=swipe.id,
        user_id=swipe.user_id,
        target_id=swipe.target_id,
        action=swipe.action,
        expires_at=as_iso(swipe.expires_at) or None,
        created_at=as_iso(swipe.created_at),
    )


def to_friendship_out(row: Friendship | None) -> FriendshipOut | None:
    if row is None:
        return None
    return FriendshipOut(
        id=row.id,
        user_low_id=row.user_low_id,
        user_high_id=row.user_high_id,
        created_at=as_iso(row.created_at),
    )


def to_request_out(row: EventJoinRequest) -> JoinRequestOut:
    return JoinRequestOut(
        id=row.id,
        event_id=row.event_id,
        user_id=row.user_id,
        status=row.status,
        message=row.message,
        created_at=as_iso(row.created_at),
        responded_at=as_iso(row.responded_at) or None,
    )


def to_event_out(
    event: Event,
    *,
    participant_count: int = 0,
    conversation_id: int | None = None,
    stats: dict | None = None,
) -> EventOut:
    return EventOut(
        id=event.id,
        host_user_id=event.host_user_id,
        title=event.title,
        description=event.description,
        hobby_id=event.hobby_id,
        location_id=event.location_id,
        starts_at=as_iso(event.starts_at),
        duration_minutes=event.duration_minutes,
        min_participants=event.min_participants,
        max_participants=event.max_participants,
        status=event.status,
        age_min=event.age_min,
        age_max=event.age_max,
        gender_restriction=event.gender_restriction,
        participant_count=participant_count,
        conversation_id=conversation_id,
        stats=EventStatsOut(**stats) if stats else None,
    )
