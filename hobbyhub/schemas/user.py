from __future__ import annotations

from pydantic import BaseModel, Field


class UserMiniOut(BaseModel):
    id: int
    display_name: str
    age: int | None = None
    gender: str | None = None


class RecommendedUserOut(BaseModel):
    user: UserMiniOut
    compatibility_score: float
    shared_hobby_ids: list[int] = Field(default_factory=list)
    shared_location_ids: list[int] = Field(default_factory=list)


class MutualMatchOut(BaseModel):
    friendship_id: int
    created_at: str
    friend: UserMiniOut


class LikeReceivedOut(BaseModel):
    swipe_id: int
    liked_at: str
    user: UserMiniOut
