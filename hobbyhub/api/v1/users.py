from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.api.v1.deps import as_iso, to_user_mini
from hobbyhub.core.config import settings
from hobbyhub.db.session import get_db
from hobbyhub.schemas.common import Envelope, MessageResponse
from hobbyhub.schemas.user import LikeReceivedOut, MutualMatchOut, RecommendedUserOut
from hobbyhub.services.auth import AuthUser, get_current_user
from hobbyhub.services.recommendations import recommend_users
from hobbyhub.services.swipes import list_likes_received, list_mutual_matches, remove_mutual_match

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/matches", response_model=Envelope[list[RecommendedUserOut]])
async def get_matches(
    limit: int = Query(default=10, ge=1, le=100),
    scoring: str = Query(default="swipe", pattern="^(swipe|general)$"),
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[list[RecommendedUserOut]]:
    weights = settings.swipe_weights if scoring == "swipe" else settings.general_weights
    rows = await recommend_users(db, user_id=current_user.user_id, limit=limit, weights=weights)
    return Envelope(
        data=[
            RecommendedUserOut(
                user=to_user_mini(user),
                compatibility_score=item.score,
                shared_hobby_ids=item.shared_hobby_ids,
                shared_location_ids=item.shared_location_ids,
            )
            for item, user in rows
        ]
    )


@router.get("/mutual-matches", response_model=Envelope[list[MutualMatchOut]])
async def get_mutual_matches(
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[list[MutualMatchOut]]:
    rows = await list_mutual_matches(db, user_id=current_user.user_id)
    return Envelope(
        data=[
            MutualMatchOut(friendship_id=row.id, created_at=as_iso(row.created_at), friend=to_user_mini(friend))
            for row, friend in rows
        ]
    )


@router.delete("/mutual-matches/{friendship_id}", response_model=Envelope[MessageResponse])
async def delete_mutual_match(
    friendship_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[MessageResponse]:
    await remove_mutual_match(db, user_id=current_user.user_id, friendship_id=friendship_id)
    return Envelope(data=MessageResponse(message="Match removed"))


@router.get("/likes-received", response_model=Envelope[list[LikeReceivedOut]])
async def get_likes_received(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[list[LikeReceivedOut]]:
    rows = await list_likes_received(db, user_id=current_user.user_id, limit=limit)
    return Envelope(
        data=[
            LikeReceivedOut(swipe_id=swipe.id, liked_at=as_iso(swipe.created_at), user=to_user_mini(user))
            for swipe, user in rows
        ]
    )
