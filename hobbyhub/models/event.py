from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hobbyhub.db.base import Base
from hobbyhub.models.common import TimestampMixin, utcnow

EVENT_DRAFT = "DRAFT"
EVENT_OPEN = "OPEN"
EVENT_FULL = "FULL"
EVENT_ONGOING = "ONGOING"
EVENT_COMPLETED = "COMPLETED"
EVENT_CANCELLED = "CANCELLED"
EVENT_STATUSES = (EVENT_DRAFT, EVENT_OPEN, EVENT_FULL, EVENT_ONGOING, EVENT_COMPLETED, EVENT_CANCELLED)

REQUEST_PENDING = "PENDING"
REQUEST_ACCEPTED = "ACCEPTED"
REQUEST_REJECTED = "REJECTED"

PARTICIPANT_JOINED = "JOINED"


class Event(TimestampMixin, Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("min_participants >= 1", name="ck_event_min_participants"),
        CheckConstraint("max_participants >= min_participants", name="ck_event_capacity_bounds"),
        Index("ix_events_status_starts", "status", "starts_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    host_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    hobby_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    location_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_participants: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EVENT_OPEN, nullable=False)
    age_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    age_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender_restriction: Mapped[str | None] = mapped_column(String(20), nullable=True)


class EventJoinRequest(TimestampMixin, Base):
    __tablename__ = "event_join_requests"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_join_request"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(20), default=REQUEST_PENDING, nullable=False)
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EventParticipant(Base):
    __tablename__ = "event_participants"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_participant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(20), default=PARTICIPANT_JOINED, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
