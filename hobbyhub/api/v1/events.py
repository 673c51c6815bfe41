from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.api.v1.deps import to_event_out, to_request_out
from hobbyhub.db.session import get_db
from hobbyhub.schemas.common import Envelope
from hobbyhub.schemas.event import (
    AcceptResultOut,
    EventCreate,
    EventOut,
    EventStatusUpdate,
    JoinRequestCreate,
    JoinRequestOut,
    LeaveResultOut,
    ParticipantAddIn,
)
from hobbyhub.services.auth import AuthUser, get_current_user
from hobbyhub.services.conversations import get_event_conversation
from hobbyhub.services.events import (
    accept_request,
    add_participant,
    create_event,
    event_stats,
    get_event,
    joined_count,
    leave_event,
    list_pending_requests,
    reject_request,
    request_join,
    set_event_status,
)
from hobbyhub.services.ws import FanoutPublisher, get_publisher

router = APIRouter(prefix="/events", tags=["events"])


async def _event_detail(db: AsyncSession, event_id: int) -> EventOut:
    event = await get_event(db, event_id)
    count = await joined_count(db, event.id)
    room = await get_event_conversation(db, event.id)
    return to_event_out(
        event,
        participant_count=count,
        conversation_id=room.id if room else None,
        stats=event_stats(event, count),
    )


@router.post("", response_model=Envelope[EventOut])
async def create_event_route(
    payload: EventCreate,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[EventOut]:
    event = await create_event(db, host_user_id=current_user.user_id, data=payload)
    return Envelope(data=await _event_detail(db, event.id), message="Event created")


@router.get("/{event_id}", response_model=Envelope[EventOut])
async def get_event_route(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[EventOut]:
    return Envelope(data=await _event_detail(db, event_id))


@router.patch("/{event_id}/status", response_model=Envelope[EventOut])
async def update_event_status(
    event_id: int,
    payload: EventStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[EventOut]:
    await set_event_status(db, event_id=event_id, acting_user_id=current_user.user_id, status=payload.status)
    return Envelope(data=await _event_detail(db, event_id), message="Event status updated")


@router.post("/{event_id}/join", response_model=Envelope[JoinRequestOut])
async def join_event(
    event_id: int,
    payload: JoinRequestCreate | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    publisher: FanoutPublisher = Depends(get_publisher),
) -> Envelope[JoinRequestOut]:
    req = await request_join(
        db,
        event_id=event_id,
        user_id=current_user.user_id,
        message=payload.message if payload else None,
        publisher=publisher,
    )
    return Envelope(data=to_request_out(req), message="Join request sent")


@router.delete("/{event_id}/join", response_model=Envelope[LeaveResultOut])
async def leave_event_route(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    publisher: FanoutPublisher = Depends(get_publisher),
) -> Envelope[LeaveResultOut]:
    result = await leave_event(db, event_id=event_id, user_id=current_user.user_id, publisher=publisher)
    return Envelope(
        data=LeaveResultOut(participant_count=result.participant_count, event_status=result.event.status),
        message="Successfully left the event",
    )


@router.get("/{event_id}/requests", response_model=Envelope[list[JoinRequestOut]])
async def get_join_requests(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[list[JoinRequestOut]]:
    rows = await list_pending_requests(db, event_id=event_id, acting_user_id=current_user.user_id)
    return Envelope(data=[to_request_out(x) for x in rows])


@router.post("/{event_id}/requests/{request_id}/accept", response_model=Envelope[AcceptResultOut])
async def accept_join_request(
    event_id: int,
    request_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    publisher: FanoutPublisher = Depends(get_publisher),
) -> Envelope[AcceptResultOut]:
    result = await accept_request(
        db,
        event_id=event_id,
        request_id=request_id,
        acting_user_id=current_user.user_id,
        publisher=publisher,
    )
    return Envelope(
        data=AcceptResultOut(
            request=to_request_out(result.request),
            participant_count=result.participant_count,
            event_status=result.event.status,
            conversation_id=result.conversation.id,
        ),
        message="Join request accepted",
    )


@router.post("/{event_id}/requests/{request_id}/reject", response_model=Envelope[JoinRequestOut])
async def reject_join_request(
    event_id: int,
    request_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    publisher: FanoutPublisher = Depends(get_publisher),
) -> Envelope[JoinRequestOut]:
    req = await reject_request(
        db,
        event_id=event_id,
        request_id=request_id,
        acting_user_id=current_user.user_id,
        publisher=publisher,
    )
    return Envelope(data=to_request_out(req), message="Join request rejected")


@router.post("/{event_id}/participants", response_model=Envelope[AcceptResultOut])
async def add_event_participant(
    event_id: int,
    payload: ParticipantAddIn,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    publisher: FanoutPublisher = Depends(get_publisher),
) -> Envelope[AcceptResultOut]:
    result = await add_participant(
        db,
        event_id=event_id,
        user_id=payload.user_id,
        acting_user_id=current_user.user_id,
        publisher=publisher,
    )
    return Envelope(
        data=AcceptResultOut(
            request=to_request_out(result.request),
            participant_count=result.participant_count,
            event_status=result.event.status,
            conversation_id=result.conversation.id,
        ),
        message="Participant added",
    )
