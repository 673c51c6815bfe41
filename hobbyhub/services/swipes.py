from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hobbyhub.core.config import settings
from hobbyhub.core.errors import AuthorizationDenied, Conflict, CooldownActive, NotFound, ValidationFailed
from hobbyhub.models.common import as_utc, utcnow
from hobbyhub.models.swipe import SWIPE_LIKE, SWIPE_NOPE, Swipe
from hobbyhub.models.user import Friendship, User
from hobbyhub.schemas.notification import MatchPayload
from hobbyhub.services.notifications import create_notification, notification_message
from hobbyhub.services.ws import FanoutMessage, FanoutPublisher, fanout

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SwipeResult:
    swipe: Swipe
    is_match: bool
    friendship: Friendship | None = None
    created_friendship: bool = False


def normalize_pair(a: int, b: int) -> tuple[int, int]:
    return (a, b) if a < b else (b, a)


def is_swipe_live(swipe: Swipe, now: datetime) -> bool:
    expires_at = as_utc(swipe.expires_at)
    return expires_at is None or expires_at > now


async def get_user(db: AsyncSession, user_id: int, *, detail: str = "User not found") -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFound(detail)
    return user


def pair_lock_statement(user_a_id: int, user_b_id: int):
    low, high = normalize_pair(user_a_id, user_b_id)
    return (
        select(User)
        .where(User.id.in_((low, high)))
        .order_by(User.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def lock_pair(db: AsyncSession, user_a_id: int, user_b_id: int) -> dict[int, User]:
    # Both directions of a pair serialize on the same two rows, taken in id order.
    rows = (await db.execute(pair_lock_statement(user_a_id, user_b_id))).scalars().all()
    return {u.id: u for u in rows}


async def get_swipe(db: AsyncSession, user_id: int, target_id: int) -> Swipe | None:
    return (
        await db.execute(select(Swipe).where(and_(Swipe.user_id == user_id, Swipe.target_id == target_id)))
    ).scalar_one_or_none()


async def get_friendship(db: AsyncSession, user_a_id: int, user_b_id: int) -> Friendship | None:
    low, high = normalize_pair(user_a_id, user_b_id)
    return (
        await db.execute(
            select(Friendship).where(and_(Friendship.user_low_id == low, Friendship.user_high_id == high))
        )
    ).scalar_one_or_none()


async def ensure_friendship(db: AsyncSession, user_a_id: int, user_b_id: int) -> tuple[Friendship, bool]:
    existing = await get_friendship(db, user_a_id, user_b_id)
    if existing is not None:
        return existing, False

    low, high = normalize_pair(user_a_id, user_b_id)
    try:
        async with db.begin_nested():
            row = Friendship(user_low_id=low, user_high_id=high)
            db.add(row)
    except IntegrityError:
        # Lost the race against the reverse swipe: return the winner's row.
        winner = await get_friendship(db, low, high)
        if winner is None:
            raise
        return winner, False
    return row, True


async def _resolve_match(
    db: AsyncSession,
    actor: User,
    target: User,
    now: datetime,
) -> tuple[bool, Friendship | None, bool, list[FanoutMessage]]:
    reverse = await get_swipe(db, target.id, actor.id)
    if reverse is None or reverse.action != SWIPE_LIKE or not is_swipe_live(reverse, now):
        return False, None, False, []

    friendship, created = await ensure_friendship(db, actor.id, target.id)
    outbox: list[FanoutMessage] = []
    if created:
        for me, friend in ((actor, target), (target, actor)):
            notif = await create_notification(
                db,
                user_id=me.id,
                title="New Match!",
                body=f"You and {friend.display_name} are now friends!",
                payload=MatchPayload(friendship_id=friendship.id, friend_id=friend.id),
            )
            outbox.append(notification_message(notif))
            outbox.append(
                FanoutMessage(
                    scope="user",
                    target_id=me.id,
                    event_type="match-found",
                    payload={
                        "friendship_id": friendship.id,
                        "friend_id": friend.id,
                        "friend_name": friend.display_name,
                    },
                )
            )
    return True, friendship, created, outbox


async def record_swipe(
    db: AsyncSession,
    *,
    user_id: int,
    target_id: int,
    action: str,
    now: datetime | None = None,
    publisher: FanoutPublisher | None = None,
) -> SwipeResult:
    action = str(action or "").strip().upper()
    if action not in (SWIPE_LIKE, SWIPE_NOPE):
        raise ValidationFailed("Invalid action. Must be LIKE or NOPE")
    if user_id == target_id:
        raise ValidationFailed("Cannot swipe on yourself")

    now = now or utcnow()
    users = await lock_pair(db, user_id, target_id)
    actor = users.get(user_id)
    if actor is None:
        raise NotFound("User not found")
    target = users.get(target_id)
    if target is None:
        raise NotFound("Target user not found")
    existing = await get_swipe(db, user_id, target_id)
    outbox: list[FanoutMessage] = []

    try:
        if existing is not None and existing.action == SWIPE_LIKE:
            is_match, friendship, created, outbox = await _resolve_match(db, actor, target, now)
            await db.commit()
            (publisher or fanout).dispatch(outbox)
            return SwipeResult(
                swipe=existing,
                is_match=is_match,
                friendship=friendship,
                created_friendship=created,
            )

        if existing is not None:
            expires_at = as_utc(existing.expires_at)
            if is_swipe_live(existing, now):
                raise CooldownActive("You already passed on this user. Try again later.", expires_at=expires_at)
            await db.delete(existing)
            # The replacement reuses the same unique pair, so the delete must hit the store first.
            await db.flush()

        swipe = Swipe(
            user_id=user_id,
            target_id=target_id,
            action=action,
            expires_at=now + timedelta(days=settings.swipe_nope_cooldown_days) if action == SWIPE_NOPE else None,
            created_at=now,
        )
        db.add(swipe)
        await db.flush()

        is_match = False
        created = False
        friendship = None
        if action == SWIPE_LIKE:
            is_match, friendship, created, outbox = await _resolve_match(db, actor, target, now)
            if not is_match:
                outbox.append(
                    FanoutMessage(
                        scope="user",
                        target_id=target.id,
                        event_type="new-like",
                        payload={
                            "liker_id": actor.id,
                            "liker_name": actor.display_name,
                            "created_at": now.isoformat(),
                        },
                    )
                )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict("Swipe already recorded for this user") from exc

    logger.info("Swipe %s recorded: %s -> %s (%s, match=%s)", swipe.id, user_id, target_id, action, is_match)
    (publisher or fanout).dispatch(outbox)
    return SwipeResult(
        swipe=swipe,
        is_match=is_match,
        friendship=friendship,
        created_friendship=created,
    )


async def swipe_status(
    db: AsyncSession,
    *,
    user_id: int,
    target_id: int,
    now: datetime | None = None,
) -> tuple[Swipe | None, bool]:
    swipe = await get_swipe(db, user_id, target_id)
    if swipe is None:
        return None, False
    if not is_swipe_live(swipe, now or utcnow()):
        return None, True
    return swipe, False


async def list_mutual_matches(db: AsyncSession, *, user_id: int) -> list[tuple[Friendship, User]]:
    rows = (
        await db.execute(
            select(Friendship)
            .where(or_(Friendship.user_low_id == user_id, Friendship.user_high_id == user_id))
            .order_by(Friendship.created_at.desc(), Friendship.id.desc())
        )
    ).scalars().all()
    if not rows:
        return []
    friend_ids = [r.user_high_id if r.user_low_id == user_id else r.user_low_id for r in rows]
    users = (await db.execute(select(User).where(User.id.in_(friend_ids)))).scalars().all()
    user_map = {u.id: u for u in users}
    out: list[tuple[Friendship, User]] = []
    for row, friend_id in zip(rows, friend_ids):
        friend = user_map.get(friend_id)
        if friend is not None:
            out.append((row, friend))
    return out


async def remove_mutual_match(db: AsyncSession, *, user_id: int, friendship_id: int) -> None:
    row = (await db.execute(select(Friendship).where(Friendship.id == friendship_id))).scalar_one_or_none()
    if row is None:
        raise NotFound("Match not found")
    if user_id not in (row.user_low_id, row.user_high_id):
        raise AuthorizationDenied("Not your match")

    low, high = row.user_low_id, row.user_high_id
    await db.delete(row)
    await db.execute(
        delete(Swipe).where(
            or_(
                and_(Swipe.user_id == low, Swipe.target_id == high),
                and_(Swipe.user_id == high, Swipe.target_id == low),
            )
        )
    )
    await db.commit()
    logger.info("Match %s removed by user %s", friendship_id, user_id)


async def purge_expired_swipes(db: AsyncSession, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    result = await db.execute(
        delete(Swipe).where(and_(Swipe.action == SWIPE_NOPE, Swipe.expires_at.is_not(None), Swipe.expires_at <= now))
    )
    await db.commit()
    return int(result.rowcount or 0)


async def list_likes_received(
    db: AsyncSession,
    *,
    user_id: int,
    now: datetime | None = None,
    limit: int = 50,
) -> list[tuple[Swipe, User]]:
    now = now or utcnow()
    already_swiped = select(Swipe.target_id).where(
        and_(
            Swipe.user_id == user_id,
            or_(Swipe.expires_at.is_(None), Swipe.expires_at > now),
        )
    )
    rows = (
        await db.execute(
            select(Swipe, User)
            .join(User, User.id == Swipe.user_id)
            .where(
                and_(
                    Swipe.target_id == user_id,
                    Swipe.action == SWIPE_LIKE,
                    Swipe.user_id.not_in(already_swiped),
                )
            )
            .order_by(Swipe.created_at.desc())
            .limit(limit)
        )
    ).all()
    return [(swipe, user) for swipe, user in rows]
