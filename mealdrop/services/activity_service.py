"""
mealdrop.services.activity_service — Post Activity
===================================================

When the request layer decides a post counts, it hands the ledger one intent:
"user U posted P at time T".  Everything that follows from it commits or
rolls back together:

  1. the post-triggered donation (``source=post``, ``reference=P``),
  2. the streak update,
  3. the coin award for posting,
  4. optionally, meals the user chose to donate from their balance.

The donation event is the idempotency anchor: a replayed post finds it and
applies nothing else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine, select

from mealdrop.database.counters import compare_and_set
from mealdrop.database.engine import get_session
from mealdrop.database.models import DonationSource, User
from mealdrop.engine.clock import activity_day, as_utc, utcnow
from mealdrop.engine.streaks import next_streak
from mealdrop.errors import AccountNotFound, StorageUnavailable
from mealdrop.services.coin_service import CoinAwardResult, apply_coin_award
from mealdrop.services.meal_ledger import DonationResult, apply_donation, apply_spend

logger = logging.getLogger(__name__)


@dataclass
class ActivityResult:
    post_id: str
    donation: DonationResult
    current_streak: int
    coins: CoinAwardResult | None = None
    meals_donated_from_balance: int = 0
    meals_available: int | None = None

    @property
    def applied(self) -> bool:
        return self.donation.applied

    def to_dict(self) -> dict:
        return {
            "post_id": self.post_id,
            "applied": self.applied,
            "donation": self.donation.to_dict(),
            "current_streak": self.current_streak,
            "coins_awarded": self.coins.amount if self.coins and self.coins.applied else 0,
            "coin_balance": self.coins.coin_balance if self.coins else None,
            "meals_donated_from_balance": self.meals_donated_from_balance,
            "meals_available": self.meals_available,
        }


def record_post_activity(
    engine: Engine,
    user_id: str,
    post_id: str,
    *,
    at: datetime | None = None,
    timezone: str = "UTC",
    meals: int = 1,
    coins: int = 0,
    donate_from_balance: int = 0,
) -> ActivityResult:
    """Apply every ledger effect of one post in a single transaction.

    Raises
    ------
    AccountNotFound
    InvalidAmount
    InsufficientBalance
        *donate_from_balance* exceeds ``meals_available`` after the post's
        own donation; nothing from this call is kept.
    """
    at = as_utc(at or utcnow())
    today = activity_day(at, timezone)

    with get_session(engine) as session:
        donation = apply_donation(
            session,
            user_id=user_id,
            meal_count=meals,
            source=DonationSource.POST,
            reference_id=post_id,
        )

        user = session.scalar(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if user is None:
            raise AccountNotFound(f"No account for user {user_id}", user_id=user_id)

        if not donation.applied:
            return ActivityResult(
                post_id=post_id,
                donation=donation,
                current_streak=user.current_streak,
                meals_available=donation.meals_available,
            )

        streak = next_streak(user.last_activity_date, today, user.current_streak)
        advanced = compare_and_set(
            session,
            User,
            user_id,
            User.last_activity_date == user.last_activity_date,
            User.current_streak == user.current_streak,
            current_streak=streak,
            last_activity_date=today,
            updated_at=at,
        )
        if not advanced:
            raise StorageUnavailable(f"Streak for user {user_id} changed concurrently")

        result = ActivityResult(
            post_id=post_id,
            donation=donation,
            current_streak=streak,
            meals_available=donation.meals_available,
        )

        if coins > 0:
            result.coins = apply_coin_award(
                session,
                user_id=user_id,
                amount=coins,
                reason="post",
                reference_id=post_id,
            )

        if donate_from_balance > 0:
            result.meals_available = apply_spend(session, user_id, donate_from_balance)
            result.meals_donated_from_balance = donate_from_balance

    logger.info(
        "Post activity: user=%s post=%s meals=%d streak=%d coins=%d",
        user_id, post_id, meals, result.current_streak,
        result.coins.amount if result.coins else 0,
    )
    return result
