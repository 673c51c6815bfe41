from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class MatchPayload(BaseModel):
    kind: Literal["match"] = "match"
    friendship_id: int
    friend_id: int


class JoinRequestPayload(BaseModel):
    kind: Literal["event_join_request"] = "event_join_request"
    event_id: int
    request_id: int
    requester_id: int
    requester_name: str
    message: str | None = None


class RequestAcceptedPayload(BaseModel):
    kind: Literal["event_request_accepted"] = "event_request_accepted"
    event_id: int
    request_id: int
    conversation_id: int


class RequestRejectedPayload(BaseModel):
    kind: Literal["event_request_rejected"] = "event_request_rejected"
    event_id: int
    request_id: int


class ParticipantAddedPayload(BaseModel):
    kind: Literal["event_participant_added"] = "event_participant_added"
    event_id: int
    request_id: int
    conversation_id: int
    added_by_user_id: int


NotificationPayload = Annotated[
    Union[
        MatchPayload,
        JoinRequestPayload,
        RequestAcceptedPayload,
        RequestRejectedPayload,
        ParticipantAddedPayload,
    ],
    Field(discriminator="kind"),
]

notification_payload_adapter: TypeAdapter[NotificationPayload] = TypeAdapter(NotificationPayload)


class NotificationOut(BaseModel):
    id: int
    kind: str
    title: str
    body: str
    payload: NotificationPayload | None = None
    is_read: bool
    created_at: str
