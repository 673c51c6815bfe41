from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.api.v1.deps import to_friendship_out, to_swipe_out
from hobbyhub.db.session import get_db
from hobbyhub.schemas.common import Envelope
from hobbyhub.schemas.swipe import SwipeCreate, SwipeResultOut, SwipeStatusOut
from hobbyhub.services.auth import AuthUser, get_current_user
from hobbyhub.services.swipes import record_swipe, swipe_status
from hobbyhub.services.ws import FanoutPublisher, get_publisher

router = APIRouter(prefix="/swipe", tags=["swipe"])


@router.post("", response_model=Envelope[SwipeResultOut])
async def create_swipe(
    payload: SwipeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    publisher: FanoutPublisher = Depends(get_publisher),
) -> Envelope[SwipeResultOut]:
    result = await record_swipe(
        db,
        user_id=current_user.user_id,
        target_id=payload.target_id,
        action=payload.action,
        publisher=publisher,
    )
    return Envelope(
        data=SwipeResultOut(
            swipe=to_swipe_out(result.swipe),
            is_match=result.is_match,
            friendship=to_friendship_out(result.friendship),
        ),
        message="It's a match!" if result.is_match else "Swipe recorded",
    )


@router.get("/status", response_model=Envelope[SwipeStatusOut])
async def get_swipe_status(
    target_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> Envelope[SwipeStatusOut]:
    swipe, is_expired = await swipe_status(db, user_id=current_user.user_id, target_id=target_id)
    return Envelope(
        data=SwipeStatusOut(swipe=to_swipe_out(swipe) if swipe else None, is_expired=is_expired),
    )
