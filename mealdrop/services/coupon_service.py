"""
mealdrop.services.coupon_service — Coupon Claims
=================================================

Users spend coins on finite-supply restaurant coupons.

:func:`claim_coupon` is one transaction.  The coin debit
(``coin_balance >= coin_cost``) and the supply bump
(``claimed_count + 1 <= total_quantity``) are each a guarded single-statement
UPDATE; if either guard fails the transaction rolls back, so a coupon is never
oversold and a balance never goes negative, however many claimants race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealdrop.database.counters import (
    Counter,
    compare_and_decrement,
    compare_and_increment_if_below,
    compare_and_set,
    increment,
)
from mealdrop.database.engine import get_session
from mealdrop.database.models import Coupon, CouponStatus, User, UserCoupon
from mealdrop.engine.clock import as_utc, utcnow
from mealdrop.errors import (
    AlreadyClaimed,
    AlreadyUsed,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
    InsufficientCoins,
    SoldOut,
)
from mealdrop.services.meal_ledger import require_user

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    user_coupon_id: str
    coupon_id: str
    coins_spent: int
    coin_balance: int
    claimed_count: int
    remaining: int | None

    def to_dict(self) -> dict:
        return {
            "user_coupon_id": self.user_coupon_id,
            "coupon_id": self.coupon_id,
            "coins_spent": self.coins_spent,
            "coin_balance": self.coin_balance,
            "claimed_count": self.claimed_count,
            "remaining": self.remaining,
        }


def _is_expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is not None and as_utc(expires_at) <= now


def _lock_coupon(session: Session, coupon_id: str) -> Coupon:
    coupon = session.scalar(
        select(Coupon).where(Coupon.id == coupon_id).with_for_update()
    )
    if coupon is None:
        raise CouponNotFound(f"No coupon {coupon_id}", coupon_id=coupon_id)
    return coupon


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------
def claim_coupon(
    engine: Engine, user_id: str, coupon_id: str, *, now: datetime | None = None
) -> ClaimResult:
    """Spend ``coin_cost`` coins to claim one unit of a coupon.

    Checks, in order: inactive, expired, sold out, already claimed,
    insufficient coins.
    """
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        coupon = _lock_coupon(session, coupon_id)

        if not coupon.is_active:
            raise CouponInactive(f"Coupon {coupon_id} is no longer active")
        if _is_expired(coupon.expires_at, now):
            raise CouponExpired(f"Coupon {coupon_id} has expired")
        if coupon.total_quantity is not None and coupon.claimed_count >= coupon.total_quantity:
            raise SoldOut(f"Coupon {coupon_id} is sold out")

        require_user(session, user_id)
        already = session.scalar(
            select(UserCoupon.id).where(
                UserCoupon.user_id == user_id, UserCoupon.coupon_id == coupon_id
            )
        )
        if already is not None:
            raise AlreadyClaimed(f"User {user_id} already claimed coupon {coupon_id}")

        balance, paid = compare_and_decrement(
            session, Counter(User.coin_balance, user_id), coupon.coin_cost
        )
        if not paid:
            logger.warning(
                "Insufficient coins: user=%s coupon=%s cost=%d balance=%d",
                user_id, coupon_id, coupon.coin_cost, balance,
            )
            raise InsufficientCoins(user_id, coupon.coin_cost, balance)

        counter = Counter(Coupon.claimed_count, coupon_id)
        if coupon.total_quantity is None:
            claimed = increment(session, counter, 1)
        else:
            claimed, accepted = compare_and_increment_if_below(
                session, counter, 1, coupon.total_quantity
            )
            if not accepted:
                # Raising rolls back the coin debit above.
                raise SoldOut(f"Coupon {coupon_id} is sold out")

        claim = UserCoupon(
            user_id=user_id,
            coupon_id=coupon_id,
            status=CouponStatus.ACTIVE.value,
            claimed_at=now,
            expires_at=coupon.expires_at,
        )
        try:
            with session.begin_nested():
                session.add(claim)
                session.flush()
        except IntegrityError:
            raise AlreadyClaimed(
                f"User {user_id} already claimed coupon {coupon_id}"
            ) from None

        result = ClaimResult(
            user_coupon_id=claim.id,
            coupon_id=coupon_id,
            coins_spent=coupon.coin_cost,
            coin_balance=balance,
            claimed_count=claimed,
            remaining=(
                coupon.total_quantity - claimed if coupon.total_quantity is not None else None
            ),
        )

    logger.info(
        "Coupon claimed: user=%s coupon=%s cost=%d claimed=%d",
        user_id, coupon_id, result.coins_spent, result.claimed_count,
    )
    return result


# ---------------------------------------------------------------------------
# Use
# ---------------------------------------------------------------------------
def use_coupon(
    engine: Engine,
    user_coupon_id: str,
    user_id: str | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """Mark a claim as used (``active → used``).

    With *user_id* the claim must belong to that user; a claim owned by
    someone else is reported as not found.
    """
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        claim = session.get(UserCoupon, user_coupon_id)
        if claim is None or (user_id is not None and claim.user_id != user_id):
            raise CouponNotFound(f"No claimed coupon {user_coupon_id}")

        if claim.status == CouponStatus.USED.value:
            raise AlreadyUsed(f"Coupon {user_coupon_id} was already used")
        if claim.status == CouponStatus.EXPIRED.value or _is_expired(claim.expires_at, now):
            raise CouponExpired(f"Coupon {user_coupon_id} has expired")

        won = compare_and_set(
            session,
            UserCoupon,
            user_coupon_id,
            UserCoupon.status == CouponStatus.ACTIVE.value,
            status=CouponStatus.USED.value,
            used_at=now,
        )
        if not won:
            # Used by a concurrent request between our read and write.
            raise AlreadyUsed(f"Coupon {user_coupon_id} was already used")

    logger.info("Coupon claim %s used", user_coupon_id)
    return {
        "user_coupon_id": user_coupon_id,
        "status": CouponStatus.USED.value,
        "used_at": now.isoformat(),
    }


def expire_claims(engine: Engine, *, now: datetime | None = None) -> int:
    """Batch job: move active claims past ``expires_at`` to ``expired``.

    Returns the number of claims expired.
    """
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        result = session.execute(
            update(UserCoupon)
            .where(
                UserCoupon.status == CouponStatus.ACTIVE.value,
                UserCoupon.expires_at.is_not(None),
                UserCoupon.expires_at <= now,
            )
            .values(status=CouponStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
    if count:
        logger.info("Expired %d coupon claims", count)
    return count


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _coupon_dict(c: Coupon) -> dict:
    return {
        "id": c.id,
        "restaurant_id": c.restaurant_id,
        "title": c.title,
        "description": c.description,
        "coin_cost": c.coin_cost,
        "total_quantity": c.total_quantity,
        "claimed_count": c.claimed_count,
        "remaining": (
            c.total_quantity - c.claimed_count if c.total_quantity is not None else None
        ),
        "expires_at": as_utc(c.expires_at).isoformat() if c.expires_at else None,
        "is_active": c.is_active,
    }


def list_coupons(
    engine: Engine,
    *,
    user_id: str | None = None,
    restaurant_id: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Active, unexpired coupons, cheapest first."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        stmt = select(Coupon).where(
            Coupon.is_active.is_(True),
            or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
        )
        if restaurant_id is not None:
            stmt = stmt.where(Coupon.restaurant_id == restaurant_id)
        coupons = session.scalars(stmt.order_by(Coupon.coin_cost, Coupon.id)).all()

        claimed: set[str] = set()
        if user_id is not None:
            claimed = set(session.scalars(
                select(UserCoupon.coupon_id).where(UserCoupon.user_id == user_id)
            ).all())

        return [{**_coupon_dict(c), "is_claimed": c.id in claimed} for c in coupons]


def list_user_coupons(engine: Engine, user_id: str) -> list[dict]:
    """A user's claims, newest first."""
    with Session(engine) as session:
        rows = session.execute(
            select(UserCoupon, Coupon)
            .join(Coupon, Coupon.id == UserCoupon.coupon_id)
            .where(UserCoupon.user_id == user_id)
            .order_by(UserCoupon.claimed_at.desc(), UserCoupon.id)
        ).all()
        return [
            {
                "id": claim.id,
                "status": claim.status,
                "claimed_at": as_utc(claim.claimed_at).isoformat(),
                "used_at": as_utc(claim.used_at).isoformat() if claim.used_at else None,
                "expires_at": as_utc(claim.expires_at).isoformat() if claim.expires_at else None,
                "coupon": _coupon_dict(coupon),
            }
            for claim, coupon in rows
        ]
