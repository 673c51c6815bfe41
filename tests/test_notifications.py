import pytest

from hobbyhub.models import Notification
from hobbyhub.schemas.notification import JoinRequestPayload, MatchPayload
from hobbyhub.services.notifications import (
    create_notification,
    list_notifications,
    notification_message,
    parse_payload,
    to_notification_out,
)


@pytest.mark.asyncio
async def test_payload_is_read_back_as_tagged_model(db, make_user) -> None:
    alice = await make_user("Alice")
    row = await create_notification(
        db,
        user_id=alice.id,
        title="New Match!",
        body="You and Bob are now friends!",
        payload=MatchPayload(friendship_id=3, friend_id=9),
    )
    await db.commit()

    out = to_notification_out(row)
    assert row.kind == "match"
    assert isinstance(out.payload, MatchPayload)
    assert out.payload.friend_id == 9

    message = notification_message(row)
    assert message.channel == f"user:{alice.id}"
    assert message.payload["payload"] == {"kind": "match", "friendship_id": 3, "friend_id": 9}


@pytest.mark.asyncio
async def test_join_request_payload_keeps_optional_message(db, make_user) -> None:
    host = await make_user("Hana")
    await create_notification(
        db,
        user_id=host.id,
        title="New join request",
        body="Gus wants to join",
        payload=JoinRequestPayload(event_id=1, request_id=2, requester_id=5, requester_name="Gus"),
    )
    await db.commit()

    (row,) = await list_notifications(db, user_id=host.id)
    payload = parse_payload(row)
    assert isinstance(payload, JoinRequestPayload)
    assert payload.message is None


@pytest.mark.asyncio
async def test_unknown_payload_kind_reads_as_none(db, make_user) -> None:
    alice = await make_user("Alice")
    row = Notification(user_id=alice.id, kind="legacy", title="t", body="b", payload={"kind": "legacy", "x": 1})
    db.add(row)
    await db.commit()

    assert parse_payload(row) is None
    out = to_notification_out(row)
    assert out.payload is None
    assert out.kind == "legacy"
