from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.core.config import settings
from hobbyhub.core.weights import ScoreWeights
from hobbyhub.models.common import utcnow
from hobbyhub.models.swipe import Swipe
from hobbyhub.models.user import Friendship, User, UserHobby, UserLocation, UserReview
from hobbyhub.services.scoring import RankedCandidate, ScoringProfile, rank_candidates
from hobbyhub.services.swipes import get_user


async def load_profiles(db: AsyncSession, users: list[User]) -> dict[int, ScoringProfile]:
    user_ids = [u.id for u in users]
    if not user_ids:
        return {}

    hobbies: dict[int, set[int]] = defaultdict(set)
    for user_id, hobby_id in (
        await db.execute(select(UserHobby.user_id, UserHobby.hobby_id).where(UserHobby.user_id.in_(user_ids)))
    ).all():
        hobbies[user_id].add(hobby_id)

    locations: dict[int, set[int]] = defaultdict(set)
    for user_id, location_id in (
        await db.execute(
            select(UserLocation.user_id, UserLocation.location_id).where(UserLocation.user_id.in_(user_ids))
        )
    ).all():
        locations[user_id].add(location_id)

    ratings: dict[int, list[int]] = defaultdict(list)
    for user_id, rating in (
        await db.execute(
            select(UserReview.reviewee_user_id, UserReview.rating).where(UserReview.reviewee_user_id.in_(user_ids))
        )
    ).all():
        ratings[user_id].append(rating)

    return {
        u.id: ScoringProfile(
            user_id=u.id,
            hobby_ids=frozenset(hobbies[u.id]),
            location_ids=frozenset(locations[u.id]),
            age=u.age,
            ratings=tuple(ratings[u.id]),
        )
        for u in users
    }


async def _excluded_user_ids(db: AsyncSession, user_id: int, now: datetime) -> set[int]:
    excluded = {user_id}
    friendships = (
        await db.execute(
            select(Friendship.user_low_id, Friendship.user_high_id).where(
                or_(Friendship.user_low_id == user_id, Friendship.user_high_id == user_id)
            )
        )
    ).all()
    for low, high in friendships:
        excluded.add(high if low == user_id else low)

    swiped = (
        await db.execute(
            select(Swipe.target_id).where(
                and_(
                    Swipe.user_id == user_id,
                    or_(Swipe.expires_at.is_(None), Swipe.expires_at > now),
                )
            )
        )
    ).scalars().all()
    excluded.update(swiped)
    return excluded


async def recommend_users(
    db: AsyncSession,
    *,
    user_id: int,
    limit: int = 10,
    weights: ScoreWeights | None = None,
    min_score: float | None = None,
    now: datetime | None = None,
) -> list[tuple[RankedCandidate, User]]:
    me = await get_user(db, user_id)
    my_profile = (await load_profiles(db, [me]))[me.id]
    if not my_profile.hobby_ids and not my_profile.location_ids:
        return []

    excluded = await _excluded_user_ids(db, user_id, now or utcnow())
    overlap_ids = select(UserHobby.user_id).where(UserHobby.hobby_id.in_(sorted(my_profile.hobby_ids)))
    overlap_locations = select(UserLocation.user_id).where(UserLocation.location_id.in_(sorted(my_profile.location_ids)))
    candidates = (
        await db.execute(
            select(User).where(
                and_(
                    User.is_active.is_(True),
                    User.id.not_in(sorted(excluded)),
                    or_(User.id.in_(overlap_ids), User.id.in_(overlap_locations)),
                )
            )
        )
    ).scalars().all()
    if not candidates:
        return []

    profiles = await load_profiles(db, list(candidates))
    user_map = {u.id: u for u in candidates}
    ranked = rank_candidates(
        my_profile,
        profiles.values(),
        weights or settings.swipe_weights,
        min_score=settings.match_min_score if min_score is None else min_score,
        limit=limit,
    )
    return [(item, user_map[item.profile.user_id]) for item in ranked]
