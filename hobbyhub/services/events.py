"""Join-request state machine for capacity-bounded events.

Per (event, user) pair: NONE -> PENDING -> ACCEPTED | REJECTED, and back to
NONE when an accepted participant leaves (the rows are deleted). Capacity is
enforced at acceptance against a fresh count taken while the event row is
locked, so concurrent accepts on one event are serialized. Requests are
non-binding and only optionally pre-checked against capacity.

Each transition commits once and only then hands its fan-out messages to the
publisher.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.core.config import settings
from hobbyhub.core.errors import (
    AlreadyParticipant,
    AuthorizationDenied,
    Conflict,
    DuplicatePendingRequest,
    EventFull,
    EventPast,
    IneligibleByPolicy,
    NotFound,
    PreviouslyRejected,
    RequestNotPending,
    ValidationFailed,
)
from hobbyhub.models.chat import ChatRoom
from hobbyhub.models.common import as_utc, utcnow
from hobbyhub.models.event import (
    EVENT_COMPLETED,
    EVENT_FULL,
    EVENT_ONGOING,
    EVENT_OPEN,
    EVENT_STATUSES,
    PARTICIPANT_JOINED,
    REQUEST_ACCEPTED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    Event,
    EventJoinRequest,
    EventParticipant,
)
from hobbyhub.models.user import User
from hobbyhub.schemas.event import EventCreate
from hobbyhub.schemas.notification import (
    JoinRequestPayload,
    ParticipantAddedPayload,
    RequestAcceptedPayload,
    RequestRejectedPayload,
)
from hobbyhub.services.conversations import (
    add_conversation_member,
    ensure_event_conversation,
    get_event_conversation,
    post_system_message,
    remove_conversation_member,
)
from hobbyhub.services.notifications import create_notification, notification_message
from hobbyhub.services.swipes import get_user
from hobbyhub.services.ws import FanoutMessage, FanoutPublisher, fanout

logger = logging.getLogger(__name__)

ACCEPTING_REQUEST_STATUSES = (EVENT_OPEN, EVENT_FULL)


@dataclass(slots=True)
class AcceptResult:
    request: EventJoinRequest
    event: Event
    participant: EventParticipant
    conversation: ChatRoom
    participant_count: int
    outbox: list[FanoutMessage] = field(default_factory=list)


@dataclass(slots=True)
class LeaveResult:
    event: Event
    participant_count: int


def event_ends_at(event: Event) -> datetime:
    minutes = event.duration_minutes or settings.event_default_duration_minutes
    return as_utc(event.starts_at) + timedelta(minutes=max(int(minutes), 1))


def event_stats(event: Event, joined: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    starts_at = as_utc(event.starts_at)
    return {
        "fill_percentage": round(joined / event.max_participants * 100, 2) if event.max_participants else 0.0,
        "is_past_event": starts_at < now,
        "is_upcoming": starts_at > now,
        "days_until_event": math.ceil((starts_at - now).total_seconds() / 86400),
        "has_minimum_participants": joined >= event.min_participants,
    }


async def get_event(db: AsyncSession, event_id: int, *, for_update: bool = False) -> Event:
    stmt = select(Event).where(Event.id == event_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    event = (await db.execute(stmt)).scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")
    return event


async def joined_count(db: AsyncSession, event_id: int) -> int:
    return int(
        (
            await db.execute(
                select(func.count())
                .select_from(EventParticipant)
                .where(and_(EventParticipant.event_id == event_id, EventParticipant.status == PARTICIPANT_JOINED))
            )
        ).scalar_one()
        or 0
    )


async def get_participant(db: AsyncSession, event_id: int, user_id: int) -> EventParticipant | None:
    return (
        await db.execute(
            select(EventParticipant).where(
                and_(EventParticipant.event_id == event_id, EventParticipant.user_id == user_id)
            )
        )
    ).scalar_one_or_none()


async def get_pair_request(db: AsyncSession, event_id: int, user_id: int) -> EventJoinRequest | None:
    return (
        await db.execute(
            select(EventJoinRequest).where(
                and_(EventJoinRequest.event_id == event_id, EventJoinRequest.user_id == user_id)
            )
        )
    ).scalar_one_or_none()


def _require_host(event: Event, acting_user_id: int, detail: str) -> None:
    if event.host_user_id != acting_user_id:
        raise AuthorizationDenied(detail)


def check_eligibility(event: Event, user: User) -> None:
    if event.age_min is not None and user.age is not None and user.age < event.age_min:
        raise IneligibleByPolicy("Below minimum age requirement")
    if event.age_max is not None and user.age is not None and user.age > event.age_max:
        raise IneligibleByPolicy("Above maximum age requirement")
    restriction = (event.gender_restriction or "").strip().lower()
    if restriction and (user.gender or "").strip().lower() != restriction:
        raise IneligibleByPolicy("Gender restriction applies")


async def create_event(db: AsyncSession, *, host_user_id: int, data: EventCreate) -> Event:
    await get_user(db, host_user_id)
    starts_at = as_utc(data.starts_at)
    if starts_at <= utcnow():
        raise ValidationFailed("Event must start in the future")

    event = Event(
        host_user_id=host_user_id,
        title=data.title.strip(),
        description=(data.description or "").strip() or None,
        hobby_id=data.hobby_id,
        location_id=data.location_id,
        starts_at=starts_at,
        duration_minutes=data.duration_minutes,
        min_participants=data.min_participants,
        max_participants=data.max_participants,
        status=data.status,
        age_min=data.age_min,
        age_max=data.age_max,
        gender_restriction=(data.gender_restriction or "").strip().lower() or None,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)
    logger.info("Event %s created by host %s (max=%s)", event.id, host_user_id, event.max_participants)
    return event


async def set_event_status(db: AsyncSession, *, event_id: int, acting_user_id: int, status: str) -> Event:
    if status not in EVENT_STATUSES:
        raise ValidationFailed("Unknown event status")
    event = await get_event(db, event_id, for_update=True)
    _require_host(event, acting_user_id, "Only the host can change the event status")
    if status == EVENT_FULL and await joined_count(db, event.id) < event.max_participants:
        raise ValidationFailed("Event cannot be marked full below capacity")
    if event.status != status:
        logger.info("Event %s status %s -> %s by host", event.id, event.status, status)
        event.status = status
    await db.commit()
    return event


async def request_join(
    db: AsyncSession,
    *,
    event_id: int,
    user_id: int,
    message: str | None = None,
    now: datetime | None = None,
    publisher: FanoutPublisher | None = None,
) -> EventJoinRequest:
    now = now or utcnow()
    event = await get_event(db, event_id)
    user = await get_user(db, user_id)

    if await get_participant(db, event.id, user.id) is not None:
        raise AlreadyParticipant("You are already a participant of this event")

    existing = await get_pair_request(db, event.id, user.id)
    if existing is not None and existing.status == REQUEST_PENDING:
        raise DuplicatePendingRequest("You already have a pending request for this event")
    if existing is not None and existing.status == REQUEST_REJECTED and settings.rejected_request_blocks_rerequest:
        raise PreviouslyRejected("Your previous request to join this event was declined")

    if event.host_user_id == user.id:
        raise IneligibleByPolicy("Cannot join your own event")
    if event.status not in ACCEPTING_REQUEST_STATUSES:
        raise IneligibleByPolicy("Event is not accepting join requests")
    if as_utc(event.starts_at) <= now:
        raise EventPast("Event has already passed")
    check_eligibility(event, user)

    if settings.request_time_capacity_check and await joined_count(db, event.id) >= event.max_participants:
        raise EventFull("Event is full")

    host = await get_user(db, event.host_user_id)
    clean_message = (message or "").strip() or None
    try:
        if existing is not None:
            # Stale ACCEPTED row (participant since left) or a REJECTED row the policy lets go of.
            await db.delete(existing)
            await db.flush()

        req = EventJoinRequest(event_id=event.id, user_id=user.id, status=REQUEST_PENDING, message=clean_message)
        db.add(req)
        await db.flush()

        notif = await create_notification(
            db,
            user_id=host.id,
            title="New join request",
            body=f'{user.display_name} wants to join "{event.title}"',
            payload=JoinRequestPayload(
                event_id=event.id,
                request_id=req.id,
                requester_id=user.id,
                requester_name=user.display_name,
                message=clean_message,
            ),
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicatePendingRequest("You already have a pending request for this event") from exc

    logger.info("Join request %s created: user %s -> event %s", req.id, user.id, event.id)
    (publisher or fanout).dispatch(
        [
            notification_message(notif),
            FanoutMessage(
                scope="user",
                target_id=host.id,
                event_type="event-join-request",
                payload={
                    "event_id": event.id,
                    "request_id": req.id,
                    "user_id": user.id,
                    "user_name": user.display_name,
                    "message": clean_message,
                },
            ),
        ]
    )
    return req


async def _admit(
    db: AsyncSession,
    *,
    event: Event,
    req: EventJoinRequest,
    user: User,
    current_count: int,
    added_by_user_id: int | None,
) -> AcceptResult:
    if await get_participant(db, event.id, user.id) is not None:
        raise AlreadyParticipant("User is already a participant of this event")

    try:
        req.status = REQUEST_ACCEPTED
        req.responded_at = utcnow()
        participant = EventParticipant(event_id=event.id, user_id=user.id, status=PARTICIPANT_JOINED)
        db.add(participant)
        await db.flush()

        room, _ = await ensure_event_conversation(db, event)
        if await add_conversation_member(db, room, user.id):
            await post_system_message(db, room.id, f"{user.display_name} joined")

        new_count = current_count + 1
        if new_count >= event.max_participants and event.status == EVENT_OPEN:
            event.status = EVENT_FULL

        if added_by_user_id is None:
            notif = await create_notification(
                db,
                user_id=user.id,
                title="Join request accepted",
                body=f'Your request to join "{event.title}" has been accepted',
                payload=RequestAcceptedPayload(event_id=event.id, request_id=req.id, conversation_id=room.id),
            )
        else:
            notif = await create_notification(
                db,
                user_id=user.id,
                title="Added to event",
                body=f'You have been added to "{event.title}"',
                payload=ParticipantAddedPayload(
                    event_id=event.id,
                    request_id=req.id,
                    conversation_id=room.id,
                    added_by_user_id=added_by_user_id,
                ),
            )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise AlreadyParticipant("User is already a participant of this event") from exc

    logger.info(
        "User %s admitted to event %s (request=%s, %s/%s, status=%s)",
        user.id,
        event.id,
        req.id,
        new_count,
        event.max_participants,
        event.status,
    )
    outbox = [
        notification_message(notif),
        FanoutMessage(
            scope="user",
            target_id=user.id,
            event_type="event-request-accepted",
            payload={"event_id": event.id, "request_id": req.id, "conversation_id": room.id},
        ),
        FanoutMessage(
            scope="event",
            target_id=event.id,
            event_type="event-joined",
            payload={
                "event_id": event.id,
                "user_id": user.id,
                "user_name": user.display_name,
                "participant_count": new_count,
                "event_status": event.status,
            },
        ),
        FanoutMessage(
            scope="conversation",
            target_id=room.id,
            event_type="chat-member-joined",
            payload={"conversation_id": room.id, "user_id": user.id, "user_name": user.display_name},
        ),
    ]
    return AcceptResult(
        request=req,
        event=event,
        participant=participant,
        conversation=room,
        participant_count=new_count,
        outbox=outbox,
    )


async def accept_request(
    db: AsyncSession,
    *,
    event_id: int,
    request_id: int,
    acting_user_id: int,
    publisher: FanoutPublisher | None = None,
) -> AcceptResult:
    event = await get_event(db, event_id, for_update=True)
    _require_host(event, acting_user_id, "Only the host can accept join requests")

    # Authoritative count, read under the event row lock.
    current = await joined_count(db, event.id)
    if current >= event.max_participants:
        raise EventFull("Event is full")

    req = (await db.execute(select(EventJoinRequest).where(EventJoinRequest.id == request_id))).scalar_one_or_none()
    if req is None:
        raise NotFound("Join request not found")
    if req.event_id != event.id:
        raise ValidationFailed("Join request does not belong to this event")
    if req.status != REQUEST_PENDING:
        raise RequestNotPending("Request already processed")

    user = await get_user(db, req.user_id)
    result = await _admit(db, event=event, req=req, user=user, current_count=current, added_by_user_id=None)
    (publisher or fanout).dispatch(result.outbox)
    return result


async def add_participant(
    db: AsyncSession,
    *,
    event_id: int,
    user_id: int,
    acting_user_id: int,
    publisher: FanoutPublisher | None = None,
) -> AcceptResult:
    event = await get_event(db, event_id, for_update=True)
    _require_host(event, acting_user_id, "Only the host can add participants")
    user = await get_user(db, user_id)
    if user.id == event.host_user_id:
        raise IneligibleByPolicy("The host cannot be added as a participant")
    if await get_participant(db, event.id, user.id) is not None:
        raise AlreadyParticipant("User is already a participant of this event")

    current = await joined_count(db, event.id)
    if current >= event.max_participants:
        raise EventFull("Event is full")

    req = await get_pair_request(db, event.id, user.id)
    if req is None or req.status != REQUEST_PENDING:
        if req is not None:
            await db.delete(req)
            await db.flush()
        req = EventJoinRequest(event_id=event.id, user_id=user.id, status=REQUEST_PENDING)
        db.add(req)
        await db.flush()

    result = await _admit(
        db,
        event=event,
        req=req,
        user=user,
        current_count=current,
        added_by_user_id=acting_user_id,
    )
    (publisher or fanout).dispatch(result.outbox)
    return result


async def reject_request(
    db: AsyncSession,
    *,
    event_id: int,
    request_id: int,
    acting_user_id: int,
    publisher: FanoutPublisher | None = None,
) -> EventJoinRequest:
    event = await get_event(db, event_id)
    _require_host(event, acting_user_id, "Only the host can reject join requests")

    req = (await db.execute(select(EventJoinRequest).where(EventJoinRequest.id == request_id))).scalar_one_or_none()
    if req is None:
        raise NotFound("Join request not found")
    if req.event_id != event.id:
        raise ValidationFailed("Join request does not belong to this event")
    if req.status != REQUEST_PENDING:
        raise RequestNotPending("Request already processed")

    req.status = REQUEST_REJECTED
    req.responded_at = utcnow()
    notif = await create_notification(
        db,
        user_id=req.user_id,
        title="Join request declined",
        body=f'Your request to join "{event.title}" has been declined',
        payload=RequestRejectedPayload(event_id=event.id, request_id=req.id),
    )
    await db.commit()

    logger.info("Join request %s rejected for event %s", req.id, event.id)
    (publisher or fanout).dispatch(
        [
            notification_message(notif),
            FanoutMessage(
                scope="user",
                target_id=req.user_id,
                event_type="event-request-rejected",
                payload={"event_id": event.id, "request_id": req.id},
            ),
        ]
    )
    return req


async def leave_event(
    db: AsyncSession,
    *,
    event_id: int,
    user_id: int,
    now: datetime | None = None,
    publisher: FanoutPublisher | None = None,
) -> LeaveResult:
    now = now or utcnow()
    event = await get_event(db, event_id, for_update=True)
    participant = await get_participant(db, event.id, user_id)
    if participant is None or participant.status != PARTICIPANT_JOINED:
        raise Conflict("You are not a participant of this event")
    if as_utc(event.starts_at) <= now:
        raise EventPast("Cannot leave an event that has already started")

    user = await get_user(db, user_id)
    await db.delete(participant)
    await db.execute(
        delete(EventJoinRequest).where(
            and_(EventJoinRequest.event_id == event.id, EventJoinRequest.user_id == user_id)
        )
    )
    await db.flush()

    remaining = await joined_count(db, event.id)
    if event.status == EVENT_FULL and remaining < event.max_participants:
        event.status = EVENT_OPEN

    room = await get_event_conversation(db, event.id)
    if room is not None and await remove_conversation_member(db, room.id, user_id):
        await post_system_message(db, room.id, f"{user.display_name} left")
    await db.commit()

    logger.info("User %s left event %s (%s/%s, status=%s)", user_id, event.id, remaining, event.max_participants, event.status)
    outbox = [
        FanoutMessage(
            scope="event",
            target_id=event.id,
            event_type="event-left",
            payload={
                "event_id": event.id,
                "user_id": user_id,
                "user_name": user.display_name,
                "participant_count": remaining,
                "event_status": event.status,
            },
        )
    ]
    if room is not None:
        outbox.append(
            FanoutMessage(
                scope="conversation",
                target_id=room.id,
                event_type="chat-member-left",
                payload={"conversation_id": room.id, "user_id": user_id, "user_name": user.display_name},
            )
        )
    (publisher or fanout).dispatch(outbox)
    return LeaveResult(event=event, participant_count=remaining)


async def list_pending_requests(
    db: AsyncSession,
    *,
    event_id: int,
    acting_user_id: int,
) -> list[EventJoinRequest]:
    event = await get_event(db, event_id)
    _require_host(event, acting_user_id, "Only the host can view join requests")
    rows = (
        await db.execute(
            select(EventJoinRequest)
            .where(and_(EventJoinRequest.event_id == event.id, EventJoinRequest.status == REQUEST_PENDING))
            .order_by(EventJoinRequest.created_at.desc(), EventJoinRequest.id.desc())
        )
    ).scalars().all()
    return list(rows)


async def sync_event_statuses(db: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    started = 0
    completed = 0
    rows = (
        await db.execute(select(Event).where(Event.status.in_([EVENT_OPEN, EVENT_FULL, EVENT_ONGOING])))
    ).scalars().all()
    for event in rows:
        if event_ends_at(event) <= now:
            new_status = EVENT_COMPLETED
        elif as_utc(event.starts_at) <= now:
            new_status = EVENT_ONGOING
        else:
            continue
        if new_status == event.status:
            continue
        event.status = new_status
        if new_status == EVENT_COMPLETED:
            completed += 1
        else:
            started += 1
    if started or completed:
        await db.commit()
        logger.info("Event status sync: %s started, %s completed", started, completed)
    return {"events_started": started, "events_completed": completed}
