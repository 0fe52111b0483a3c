"""
mealdrop.services.sponsorship_service — Flash Sponsorship Goal Engine
======================================================================

Records drops toward time-boxed restaurant goals and releases the pledged
meals exactly once when a goal is reached.

One :func:`record_drop` call is one transaction:

  1. Lock the sponsorship row (``SELECT … FOR UPDATE``) and reject it unless
     it is ACTIVE.
  2. Reject a repeated (sponsorship, user, post) drop.
  3. Insert the drop and ``current_drops += 1`` through the counter store.
  4. Flip ``is_completed`` false→true with a conditional UPDATE guarded by
     ``NOT is_completed AND current_drops >= target_drops``.  Only the caller
     whose UPDATE matched runs the cascade: a community-level
     ``sponsorship_bonus`` donation of ``total_meals_pledged`` referenced by
     the sponsorship id, in the same transaction.  A sponsorship that
     pledged no meals still completes; it just credits nothing.

Two users racing on the goal-reaching drop are ordered by the row lock; the
second sees ``is_completed`` already true.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealdrop.constants import RECENT_DROPS_LIMIT, TOP_CONTRIBUTORS_LIMIT
from mealdrop.database.counters import Counter, compare_and_set, increment
from mealdrop.database.engine import get_session
from mealdrop.database.models import (
    DonationSource,
    FlashSponsorship,
    SponsorshipDrop,
    User,
)
from mealdrop.engine.clock import as_utc, utcnow
from mealdrop.engine.sponsorship import (
    SponsorshipState,
    calculate_progress,
    goal_reached,
    sponsorship_state,
)
from mealdrop.errors import DuplicateDrop, SponsorshipInactive, SponsorshipNotFound
from mealdrop.services import meal_ledger
from mealdrop.services.meal_ledger import DonationResult

logger = logging.getLogger(__name__)


@dataclass
class DropResult:
    """Outcome of :func:`record_drop`."""

    drop_id: str
    sponsorship_id: str
    current_drops: int
    target_drops: int
    goal_reached: bool = False
    bonus: DonationResult | None = None
    meals_pledged: int = 0

    @property
    def message(self) -> str:
        if self.goal_reached:
            return f"Goal reached! {self.meals_pledged} meals will be donated!"
        return "Drop recorded! Keep going!"

    def to_dict(self) -> dict:
        return {
            "drop_id": self.drop_id,
            "sponsorship_id": self.sponsorship_id,
            "current_drops": self.current_drops,
            "target_drops": self.target_drops,
            "goal_reached": self.goal_reached,
            "meals_pledged": self.meals_pledged,
            "bonus_event_id": self.bonus.event_id if self.bonus else None,
            "message": self.message,
        }


def _lock_sponsorship(session: Session, sponsorship_id: str) -> FlashSponsorship:
    sponsorship = session.scalar(
        select(FlashSponsorship)
        .where(FlashSponsorship.id == sponsorship_id)
        .with_for_update()
    )
    if sponsorship is None:
        raise SponsorshipNotFound(
            f"No sponsorship {sponsorship_id}", sponsorship_id=sponsorship_id
        )
    return sponsorship


def _complete_if_reached(
    session: Session, sponsorship: FlashSponsorship, current_drops: int, now: datetime
) -> tuple[bool, DonationResult | None]:
    """Run the completion cascade if this caller wins the false→true flip.

    Returns ``(won, bonus)``; *bonus* is None when nothing was pledged.
    """
    if not goal_reached(current_drops, sponsorship.target_drops):
        return False, None

    won = compare_and_set(
        session,
        FlashSponsorship,
        sponsorship.id,
        FlashSponsorship.is_completed.is_(False),
        FlashSponsorship.current_drops >= FlashSponsorship.target_drops,
        is_completed=True,
        completed_at=now,
        total_meals_donated=FlashSponsorship.total_meals_pledged,
    )
    if not won:
        return False, None

    if sponsorship.total_meals_pledged <= 0:
        logger.info("Sponsorship %s completed with no meals pledged", sponsorship.id)
        return True, None

    bonus = meal_ledger.apply_donation(
        session,
        user_id=None,
        meal_count=sponsorship.total_meals_pledged,
        source=DonationSource.SPONSORSHIP_BONUS,
        reference_id=sponsorship.id,
    )
    logger.info(
        "Sponsorship %s completed — %d meals credited to the community total",
        sponsorship.id, sponsorship.total_meals_pledged,
    )
    return True, bonus


def record_drop(
    engine: Engine,
    sponsorship_id: str,
    user_id: str,
    post_id: str | None = None,
    *,
    now: datetime | None = None,
) -> DropResult:
    """Record one user's drop toward a sponsorship.

    Raises
    ------
    SponsorshipNotFound
    SponsorshipInactive
        Scheduled, expired or already completed.
    DuplicateDrop
        A drop for this (sponsorship, user, post) already exists.
    AccountNotFound
    """
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        sponsorship = _lock_sponsorship(session, sponsorship_id)
        state = sponsorship_state(
            is_completed=sponsorship.is_completed,
            starts_at=sponsorship.starts_at,
            ends_at=sponsorship.ends_at,
            now=now,
        )
        if state is not SponsorshipState.ACTIVE:
            logger.warning("Drop rejected: sponsorship %s is %s", sponsorship_id, state)
            raise SponsorshipInactive(
                f"Sponsorship {sponsorship_id} is {state.value}",
                sponsorship_id=sponsorship_id,
                state=state.value,
            )

        meal_ledger.require_user(session, user_id)

        if post_id is not None:
            existing = session.scalar(
                select(SponsorshipDrop.id).where(
                    SponsorshipDrop.sponsorship_id == sponsorship_id,
                    SponsorshipDrop.user_id == user_id,
                    SponsorshipDrop.post_id == post_id,
                )
            )
            if existing is not None:
                raise DuplicateDrop(
                    f"Post {post_id} already counted for sponsorship {sponsorship_id}",
                    sponsorship_id=sponsorship_id,
                    post_id=post_id,
                )

        drop = SponsorshipDrop(
            sponsorship_id=sponsorship_id,
            user_id=user_id,
            post_id=post_id,
            created_at=now,
        )
        try:
            with session.begin_nested():
                session.add(drop)
                session.flush()
        except IntegrityError:
            raise DuplicateDrop(
                f"Post {post_id} already counted for sponsorship {sponsorship_id}",
                sponsorship_id=sponsorship_id,
                post_id=post_id,
            ) from None

        current = increment(session, Counter(FlashSponsorship.current_drops, sponsorship_id), 1)
        completed, bonus = _complete_if_reached(session, sponsorship, current, now)

        result = DropResult(
            drop_id=drop.id,
            sponsorship_id=sponsorship_id,
            current_drops=current,
            target_drops=sponsorship.target_drops,
            goal_reached=completed,
            bonus=bonus,
            meals_pledged=sponsorship.total_meals_pledged,
        )

    logger.info(
        "Drop recorded: sponsorship=%s user=%s post=%s drops=%d/%d",
        sponsorship_id, user_id, post_id, result.current_drops, result.target_drops,
    )
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _sponsorship_dict(s: FlashSponsorship, now: datetime) -> dict:
    progress = calculate_progress(
        current_drops=s.current_drops,
        target_drops=s.target_drops,
        meals_per_drop=s.meals_per_drop,
        is_completed=s.is_completed,
        starts_at=s.starts_at,
        ends_at=s.ends_at,
        now=now,
    )
    return {
        "id": s.id,
        "restaurant_id": s.restaurant_id,
        "title": s.title,
        "description": s.description,
        "charity_name": s.charity_name,
        "target_drops": s.target_drops,
        "current_drops": s.current_drops,
        "meals_per_drop": s.meals_per_drop,
        "bonus_meals": s.bonus_meals,
        "total_meals_pledged": s.total_meals_pledged,
        "total_meals_donated": s.total_meals_donated,
        "is_completed": s.is_completed,
        "starts_at": as_utc(s.starts_at).isoformat(),
        "ends_at": as_utc(s.ends_at).isoformat(),
        **progress.to_dict(),
    }


def _user_drop_counts(session: Session, user_id: str) -> dict[str, int]:
    rows = session.execute(
        select(SponsorshipDrop.sponsorship_id, func.count().label("cnt"))
        .where(SponsorshipDrop.user_id == user_id)
        .group_by(SponsorshipDrop.sponsorship_id)
    ).all()
    return {row.sponsorship_id: row.cnt for row in rows}


def list_sponsorships(
    engine: Engine,
    *,
    user_id: str | None = None,
    restaurant_id: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Open sponsorships (not completed, not ended), soonest ending first."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        stmt = select(FlashSponsorship).where(
            FlashSponsorship.is_completed.is_(False),
            FlashSponsorship.ends_at > now,
        )
        if restaurant_id is not None:
            stmt = stmt.where(FlashSponsorship.restaurant_id == restaurant_id)

        rows = session.scalars(stmt.order_by(FlashSponsorship.ends_at)).all()
        drops = _user_drop_counts(session, user_id) if user_id else {}

        return [
            {**_sponsorship_dict(s, now), "user_drop_count": drops.get(s.id, 0)}
            for s in rows
        ]


def get_sponsorship(
    engine: Engine,
    sponsorship_id: str,
    *,
    user_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Sponsorship detail with recent drops and top contributors."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        s = session.get(FlashSponsorship, sponsorship_id)
        if s is None:
            raise SponsorshipNotFound(
                f"No sponsorship {sponsorship_id}", sponsorship_id=sponsorship_id
            )

        recent = session.execute(
            select(SponsorshipDrop, User.username)
            .join(User, User.id == SponsorshipDrop.user_id)
            .where(SponsorshipDrop.sponsorship_id == sponsorship_id)
            .order_by(SponsorshipDrop.created_at.desc(), SponsorshipDrop.id.desc())
            .limit(RECENT_DROPS_LIMIT)
        ).all()

        top = session.execute(
            select(User.id, User.username, func.count(SponsorshipDrop.id).label("drop_count"))
            .join(SponsorshipDrop, SponsorshipDrop.user_id == User.id)
            .where(SponsorshipDrop.sponsorship_id == sponsorship_id)
            .group_by(User.id, User.username)
            .order_by(func.count(SponsorshipDrop.id).desc(), User.id)
            .limit(TOP_CONTRIBUTORS_LIMIT)
        ).all()

        user_drop_count = 0
        if user_id is not None:
            user_drop_count = session.scalar(
                select(func.count()).select_from(SponsorshipDrop).where(
                    SponsorshipDrop.sponsorship_id == sponsorship_id,
                    SponsorshipDrop.user_id == user_id,
                )
            ) or 0

        return {
            **_sponsorship_dict(s, now),
            "user_drop_count": user_drop_count,
            "recent_drops": [
                {
                    "id": drop.id,
                    "user_id": drop.user_id,
                    "username": username,
                    "post_id": drop.post_id,
                    "created_at": as_utc(drop.created_at).isoformat(),
                }
                for drop, username in recent
            ],
            "top_contributors": [
                {"id": row.id, "username": row.username, "drop_count": row.drop_count}
                for row in top
            ],
        }
