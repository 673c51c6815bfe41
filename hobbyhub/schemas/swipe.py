from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class SwipeCreate(BaseModel):
    target_id: int
    action: Literal["LIKE", "NOPE"]


class SwipeOut(BaseModel):
    id: int
    user_id: int
    target_id: int
    action: str
    expires_at: str | None = None
    created_at: str


class FriendshipOut(BaseModel):
    id: int
    user_low_id: int
    user_high_id: int
    created_at: str


class SwipeResultOut(BaseModel):
    swipe: SwipeOut
    is_match: bool
    friendship: FriendshipOut | None = None


class SwipeStatusOut(BaseModel):
    swipe: SwipeOut | None = None
    is_expired: bool = False
