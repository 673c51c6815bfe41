"""Domain error taxonomy for the participation and matching engine.

Every transition produces exactly one outcome: a committed result or one of
these errors. They are raised before any write is flushed, or after the
transaction has been rolled back, so a caller never observes a partial write.
The API layer renders them into the ``{"success": false, "error": ...}``
envelope.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class EngineError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        for key, value in self.extra.items():
            body[key] = value.isoformat() if isinstance(value, datetime) else value
        return body


class ValidationFailed(EngineError):
    status_code = 400
    code = "validation_failed"


class AuthorizationDenied(EngineError):
    status_code = 403
    code = "forbidden"


class NotFound(EngineError):
    status_code = 404
    code = "not_found"


class Conflict(EngineError):
    status_code = 400
    code = "conflict"


class AlreadyParticipant(Conflict):
    code = "already_participant"


class DuplicatePendingRequest(Conflict):
    code = "duplicate_pending_request"


class PreviouslyRejected(Conflict):
    code = "previously_rejected"


class IneligibleByPolicy(Conflict):
    code = "ineligible"


class RequestNotPending(Conflict):
    code = "request_not_pending"


class EventFull(Conflict):
    code = "event_full"


class EventPast(Conflict):
    code = "event_past"


class CooldownActive(Conflict):
    code = "cooldown_active"

    def __init__(self, message: str, *, expires_at: datetime) -> None:
        super().__init__(message, expires_at=expires_at)
        self.expires_at = expires_at
