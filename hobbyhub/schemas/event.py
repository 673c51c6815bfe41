from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

EventStatusLiteral = Literal["DRAFT", "OPEN", "FULL", "ONGOING", "COMPLETED", "CANCELLED"]


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    hobby_id: int | None = None
    location_id: int | None = None
    starts_at: datetime
    duration_minutes: int | None = Field(default=None, ge=1)
    min_participants: int = Field(default=1, ge=1)
    max_participants: int = Field(ge=1)
    age_min: int | None = Field(default=None, ge=0)
    age_max: int | None = Field(default=None, ge=0)
    gender_restriction: str | None = None
    status: Literal["DRAFT", "OPEN"] = "OPEN"

    @model_validator(mode="after")
    def _check_bounds(self) -> "EventCreate":
        if self.min_participants > self.max_participants:
            raise ValueError("min_participants cannot exceed max_participants")
        if self.age_min is not None and self.age_max is not None and self.age_min > self.age_max:
            raise ValueError("age_min cannot exceed age_max")
        return self


class EventStatusUpdate(BaseModel):
    status: EventStatusLiteral


class EventStatsOut(BaseModel):
    fill_percentage: float
    is_past_event: bool
    is_upcoming: bool
    days_until_event: int
    has_minimum_participants: bool


class EventOut(BaseModel):
    id: int
    host_user_id: int
    title: str
    description: str | None = None
    hobby_id: int | None = None
    location_id: int | None = None
    starts_at: str
    duration_minutes: int | None = None
    min_participants: int
    max_participants: int
    status: str
    age_min: int | None = None
    age_max: int | None = None
    gender_restriction: str | None = None
    participant_count: int = 0
    conversation_id: int | None = None
    stats: EventStatsOut | None = None


class JoinRequestCreate(BaseModel):
    message: str | None = Field(default=None, max_length=500)


class JoinRequestOut(BaseModel):
    id: int
    event_id: int
    user_id: int
    status: str
    message: str | None = None
    created_at: str
    responded_at: str | None = None


class ParticipantAddIn(BaseModel):
    user_id: int


class AcceptResultOut(BaseModel):
    request: JoinRequestOut
    participant_count: int
    event_status: str
    conversation_id: int


class LeaveResultOut(BaseModel):
    participant_count: int
    event_status: str
