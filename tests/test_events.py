from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from hobbyhub.core.config import settings
from hobbyhub.core.errors import (
    AlreadyParticipant,
    AuthorizationDenied,
    Conflict,
    DuplicatePendingRequest,
    EventFull,
    EventPast,
    IneligibleByPolicy,
    PreviouslyRejected,
    RequestNotPending,
)
from hobbyhub.models import ChatMessage, Event, EventJoinRequest, EventParticipant, Notification
from hobbyhub.models.common import as_utc
from hobbyhub.models.event import (
    EVENT_COMPLETED,
    EVENT_DRAFT,
    EVENT_FULL,
    EVENT_ONGOING,
    EVENT_OPEN,
    REQUEST_ACCEPTED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
)
import hobbyhub.services.events as event_service
from hobbyhub.services.conversations import active_member_ids, get_event_conversation
from hobbyhub.services.events import (
    accept_request,
    add_participant,
    event_stats,
    joined_count,
    leave_event,
    list_pending_requests,
    reject_request,
    request_join,
    set_event_status,
    sync_event_statuses,
)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest_asyncio.fixture
async def crew(make_user):
    host = await make_user("Hana", age=30)
    a = await make_user("Ari", age=25)
    b = await make_user("Bea", age=27)
    c = await make_user("Cal", age=29)
    return host, a, b, c


@pytest.mark.asyncio
async def test_capacity_is_enforced_at_acceptance(db, crew, make_event, publisher, redis_fake) -> None:
    host, a, b, c = crew
    event = await make_event(host, max_participants=2)

    reqs = [
        await request_join(db, event_id=event.id, user_id=u.id, publisher=publisher)
        for u in (a, b, c)
    ]
    assert [r.status for r in reqs] == [REQUEST_PENDING] * 3

    await accept_request(db, event_id=event.id, request_id=reqs[0].id, acting_user_id=host.id, publisher=publisher)
    result = await accept_request(
        db, event_id=event.id, request_id=reqs[1].id, acting_user_id=host.id, publisher=publisher
    )
    assert result.participant_count == 2
    assert result.event.status == EVENT_FULL

    with pytest.raises(EventFull):
        await accept_request(db, event_id=event.id, request_id=reqs[2].id, acting_user_id=host.id, publisher=publisher)
    await publisher.drain()

    assert await joined_count(db, event.id) == 2
    assert reqs[2].status == REQUEST_PENDING
    room = await get_event_conversation(db, event.id)
    assert await active_member_ids(db, room.id) == {host.id, a.id, b.id}

    assert "event-joined" in redis_fake.types_for(f"event:{event.id}")
    assert "chat-member-joined" in redis_fake.types_for(f"conversation:{room.id}")
    assert "event-request-accepted" in redis_fake.types_for(f"user:{a.id}")
    assert redis_fake.types_for(f"user:{host.id}").count("event-join-request") == 3


@pytest.mark.asyncio
async def test_accepting_twice_writes_nothing(db, crew, make_event, publisher) -> None:
    host, a, _, _ = crew
    event = await make_event(host, max_participants=3)
    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=publisher)
    before = (await _count(db, EventParticipant), await _count(db, Notification), await _count(db, ChatMessage))

    with pytest.raises(RequestNotPending):
        await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=publisher)
    await publisher.drain()

    after = (await _count(db, EventParticipant), await _count(db, Notification), await _count(db, ChatMessage))
    assert after == before
    assert req.status == REQUEST_ACCEPTED


@pytest.mark.asyncio
async def test_only_host_can_respond(db, crew, make_event, publisher) -> None:
    host, a, b, _ = crew
    event = await make_event(host)
    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)

    with pytest.raises(AuthorizationDenied):
        await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=b.id, publisher=publisher)
    with pytest.raises(AuthorizationDenied):
        await reject_request(db, event_id=event.id, request_id=req.id, acting_user_id=b.id, publisher=publisher)
    with pytest.raises(AuthorizationDenied):
        await list_pending_requests(db, event_id=event.id, acting_user_id=a.id)
    await publisher.drain()

    pending = await list_pending_requests(db, event_id=event.id, acting_user_id=host.id)
    assert [r.id for r in pending] == [req.id]


@pytest.mark.asyncio
async def test_request_validation_order(db, crew, make_event, make_user, publisher) -> None:
    host, a, _, _ = crew
    event = await make_event(host)

    with pytest.raises(IneligibleByPolicy, match="Cannot join your own event"):
        await request_join(db, event_id=event.id, user_id=host.id, publisher=publisher)

    await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    with pytest.raises(DuplicatePendingRequest):
        await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)

    past = await make_event(host, starts_at=datetime.now(timezone.utc) - timedelta(hours=1))
    with pytest.raises(EventPast, match="Event has already passed"):
        await request_join(db, event_id=past.id, user_id=a.id, publisher=publisher)

    draft = await make_event(host, status=EVENT_DRAFT)
    with pytest.raises(IneligibleByPolicy):
        await request_join(db, event_id=draft.id, user_id=a.id, publisher=publisher)
    await publisher.drain()


@pytest.mark.asyncio
async def test_eligibility_rules(db, make_user, make_event, publisher) -> None:
    host = await make_user("Hana")
    teen = await make_user("Tom", age=16, gender="male")
    senior = await make_user("Sam", age=70, gender="female")
    event = await make_event(host, age_min=18, age_max=65)
    women_only = await make_event(host, gender_restriction="female")

    with pytest.raises(IneligibleByPolicy, match="Below minimum age requirement"):
        await request_join(db, event_id=event.id, user_id=teen.id, publisher=publisher)
    with pytest.raises(IneligibleByPolicy, match="Above maximum age requirement"):
        await request_join(db, event_id=event.id, user_id=senior.id, publisher=publisher)
    with pytest.raises(IneligibleByPolicy, match="Gender restriction applies"):
        await request_join(db, event_id=women_only.id, user_id=teen.id, publisher=publisher)

    req = await request_join(db, event_id=women_only.id, user_id=senior.id, publisher=publisher)
    await publisher.drain()
    assert req.status == REQUEST_PENDING


@pytest.mark.asyncio
async def test_rejected_request_blocks_rerequest(db, crew, make_event, publisher, monkeypatch) -> None:
    host, a, _, _ = crew
    event = await make_event(host)
    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    rejected = await reject_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=publisher)
    assert rejected.status == REQUEST_REJECTED

    with pytest.raises(PreviouslyRejected):
        await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)

    monkeypatch.setattr(settings, "rejected_request_blocks_rerequest", False)
    again = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    await publisher.drain()

    assert again.status == REQUEST_PENDING
    rows = (await db.execute(select(EventJoinRequest).where(EventJoinRequest.user_id == a.id))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_leave_reopens_event_and_clears_requests(db, crew, make_event, publisher, redis_fake) -> None:
    host, a, b, _ = crew
    event = await make_event(host, max_participants=2)
    for user in (a, b):
        req = await request_join(db, event_id=event.id, user_id=user.id, publisher=publisher)
        await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=publisher)
    assert event.status == EVENT_FULL

    result = await leave_event(db, event_id=event.id, user_id=b.id, publisher=publisher)
    await publisher.drain()

    assert result.participant_count == 1
    assert result.event.status == EVENT_OPEN
    room = await get_event_conversation(db, event.id)
    assert await active_member_ids(db, room.id) == {host.id, a.id}
    assert "event-left" in redis_fake.types_for(f"event:{event.id}")
    assert "chat-member-left" in redis_fake.types_for(f"conversation:{room.id}")

    # The stale ACCEPTED request is gone, so a fresh request is allowed.
    again = await request_join(db, event_id=event.id, user_id=b.id, publisher=publisher)
    await accept_request(db, event_id=event.id, request_id=again.id, acting_user_id=host.id, publisher=publisher)
    await publisher.drain()
    assert await active_member_ids(db, room.id) == {host.id, a.id, b.id}

    with pytest.raises(AlreadyParticipant):
        await request_join(db, event_id=event.id, user_id=b.id, publisher=publisher)


@pytest.mark.asyncio
async def test_leave_requires_participation_and_future_event(db, crew, make_event, publisher) -> None:
    host, a, b, _ = crew
    event = await make_event(host)
    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=publisher)

    with pytest.raises(Conflict, match="You are not a participant of this event"):
        await leave_event(db, event_id=event.id, user_id=b.id, publisher=publisher)
    with pytest.raises(EventPast):
        await leave_event(
            db,
            event_id=event.id,
            user_id=a.id,
            now=as_utc(event.starts_at) + timedelta(minutes=5),
            publisher=publisher,
        )
    await publisher.drain()
    assert await joined_count(db, event.id) == 1


@pytest.mark.asyncio
async def test_manual_status_is_not_overridden(db, crew, make_event, publisher) -> None:
    host, a, _, _ = crew
    event = await make_event(host, max_participants=1)
    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    await set_event_status(db, event_id=event.id, acting_user_id=host.id, status=EVENT_DRAFT)

    result = await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=publisher)
    assert result.participant_count == 1
    assert result.event.status == EVENT_DRAFT

    left = await leave_event(db, event_id=event.id, user_id=a.id, publisher=publisher)
    await publisher.drain()
    assert left.event.status == EVENT_DRAFT


@pytest.mark.asyncio
async def test_host_direct_add_behaves_like_acceptance(db, crew, make_event, publisher) -> None:
    host, a, b, _ = crew
    event = await make_event(host, max_participants=1)

    with pytest.raises(AuthorizationDenied):
        await add_participant(db, event_id=event.id, user_id=b.id, acting_user_id=a.id, publisher=publisher)

    result = await add_participant(db, event_id=event.id, user_id=a.id, acting_user_id=host.id, publisher=publisher)
    assert result.request.status == REQUEST_ACCEPTED
    assert result.event.status == EVENT_FULL

    notif = (await db.execute(select(Notification).where(Notification.user_id == a.id))).scalar_one()
    assert notif.kind == "event_participant_added"
    assert notif.payload["added_by_user_id"] == host.id

    with pytest.raises(EventFull):
        await add_participant(db, event_id=event.id, user_id=b.id, acting_user_id=host.id, publisher=publisher)
    await publisher.drain()


@pytest.mark.asyncio
async def test_fanout_failure_does_not_undo_commit(db, crew, make_event, failing_publisher) -> None:
    host, a, _, _ = crew
    broken = failing_publisher
    event = await make_event(host)

    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=broken)
    result = await accept_request(db, event_id=event.id, request_id=req.id, acting_user_id=host.id, publisher=broken)
    await broken.drain()

    assert result.participant_count == 1
    assert await joined_count(db, event.id) == 1
    assert await _count(db, Notification) == 2


@pytest.mark.asyncio
async def test_sync_event_statuses(db, make_user, make_event) -> None:
    host = await make_user("Hana")
    now = datetime.now(timezone.utc)
    upcoming = await make_event(host)
    started = await make_event(host, starts_at=now - timedelta(minutes=30), duration_minutes=90)
    finished = await make_event(host, starts_at=now - timedelta(hours=5), duration_minutes=60, status=EVENT_FULL)
    draft = await make_event(host, starts_at=now - timedelta(hours=5), status=EVENT_DRAFT)

    summary = await sync_event_statuses(db, now=now)

    assert summary == {"events_started": 1, "events_completed": 1}
    assert upcoming.status == EVENT_OPEN
    assert started.status == EVENT_ONGOING
    assert finished.status == EVENT_COMPLETED
    assert draft.status == EVENT_DRAFT


def test_event_stats() -> None:
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    event = Event(
        host_user_id=1,
        title="x",
        starts_at=now + timedelta(days=2, hours=1),
        min_participants=2,
        max_participants=4,
    )
    stats = event_stats(event, 1, now)

    assert stats["fill_percentage"] == 25.0
    assert stats["is_upcoming"] is True
    assert stats["is_past_event"] is False
    assert stats["days_until_event"] == 3
    assert stats["has_minimum_participants"] is False


@pytest.mark.asyncio
async def test_concurrent_duplicate_request_maps_to_duplicate_pending(db, crew, make_event, publisher, monkeypatch) -> None:
    host, a, _, _ = crew
    event = await make_event(host)

    async def concurrent_request(session, event_id, user_id):
        session.add(EventJoinRequest(event_id=event_id, user_id=user_id, status=REQUEST_PENDING))
        await session.flush()
        return None

    monkeypatch.setattr(event_service, "get_pair_request", concurrent_request)
    with pytest.raises(DuplicatePendingRequest):
        await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    await publisher.drain()

    assert await _count(db, Notification) == 0
    assert await _count(db, EventJoinRequest) == 0


@pytest.mark.asyncio
async def test_concurrent_admission_maps_to_already_participant(db, crew, make_event, publisher, monkeypatch) -> None:
    host, a, _, _ = crew
    event = await make_event(host, max_participants=3)
    req = await request_join(db, event_id=event.id, user_id=a.id, publisher=publisher)
    event_id, request_id, host_id = event.id, req.id, host.id

    async def concurrent_participant(session, ev_id, user_id):
        session.add(EventParticipant(event_id=ev_id, user_id=user_id))
        await session.flush()
        return None

    monkeypatch.setattr(event_service, "get_participant", concurrent_participant)
    with pytest.raises(AlreadyParticipant):
        await accept_request(db, event_id=event_id, request_id=request_id, acting_user_id=host_id, publisher=publisher)
    await publisher.drain()

    status = (
        await db.execute(select(EventJoinRequest.status).where(EventJoinRequest.id == request_id))
    ).scalar_one()
    assert status == REQUEST_PENDING
    assert await _count(db, EventParticipant) == 0
    assert await _count(db, ChatMessage) == 0
    assert await _count(db, Notification) == 1
