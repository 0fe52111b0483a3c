"""
mealdrop.services.meal_ledger — Meal Balance Ledger
====================================================

Owns per-user meal balances and the global donation total.

Conservation: for all time

* ``users.meals_donated_total == sum(donation_events.meal_count)`` per user
* ``global_stats.total_meals_donated == sum(donation_events.meal_count)``

Both hold because a donation event and every counter it moves are written in
one transaction, and the event's ``idempotency_key`` is UNIQUE.  A replay
(same source, reference and user) finds the existing event and changes
nothing.

Session-level functions (``apply_*``) compose into a caller's transaction;
engine-level functions open their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealdrop.constants import (
    DEFAULT_PAGE_SIZE,
    GLOBAL_STATS_ID,
    MAX_PAGE_SIZE,
    idempotency_key,
)
from mealdrop.database.counters import Counter, compare_and_decrement, increment, read
from mealdrop.database.engine import get_session
from mealdrop.database.models import (
    DonationEvent,
    DonationSource,
    GlobalStats,
    SponsorshipDrop,
    Team,
    User,
    UserCoupon,
)
from mealdrop.database.seed import ensure_global_stats
from mealdrop.engine.clock import as_utc, utcnow
from mealdrop.errors import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    PaymentNotVerified,
    TeamNotFound,
)
from mealdrop.services.payments import PaymentVerifier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class DonationResult:
    """Outcome of a donation request.

    ``applied`` is False for an idempotent replay; the balances are then the
    current values, unchanged by this call.
    """

    event_id: str
    user_id: str | None
    meal_count: int
    source: str
    reference_id: str
    applied: bool
    global_total: int
    meals_donated_total: int | None = None
    meals_available: int | None = None

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "meal_count": self.meal_count,
            "source": self.source,
            "reference_id": self.reference_id,
            "applied": self.applied,
            "global_total": self.global_total,
            "meals_donated_total": self.meals_donated_total,
            "meals_available": self.meals_available,
        }


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
def require_user(session: Session, user_id: str) -> User:
    """Fetch the balance record or raise :class:`AccountNotFound`."""
    user = session.get(User, user_id)
    if user is None:
        raise AccountNotFound(f"No account for user {user_id}", user_id=user_id)
    return user


def user_snapshot(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "team_id": user.team_id,
        "meals_donated_total": user.meals_donated_total,
        "meals_available": user.meals_available,
        "coin_balance": user.coin_balance,
        "coin_lifetime_earned": user.coin_lifetime_earned,
        "current_streak": user.current_streak,
        "last_activity_date": (
            user.last_activity_date.isoformat() if user.last_activity_date else None
        ),
    }


def open_account(
    engine: Engine, user_id: str, username: str, team_id: str | None = None
) -> tuple[dict, bool]:
    """Create the balance record with every counter at zero.

    Returns ``(snapshot, created)``.  Calling again for an existing account
    returns it untouched.
    """
    with get_session(engine) as session:
        existing = session.get(User, user_id)
        if existing is not None:
            return user_snapshot(existing), False

        if team_id is not None and session.get(Team, team_id) is None:
            raise TeamNotFound(f"No team {team_id}", team_id=team_id)

        user = User(id=user_id, username=username, team_id=team_id)
        try:
            with session.begin_nested():
                session.add(user)
                session.flush()
        except IntegrityError:
            # Opened by a concurrent request.
            return user_snapshot(require_user(session, user_id)), False

        if team_id is not None:
            increment(session, Counter(Team.member_count, team_id), 1)

        logger.info("Opened account %s (%s)", user_id, username)
        return user_snapshot(user), True


# ---------------------------------------------------------------------------
# Donations
# ---------------------------------------------------------------------------
def _find_event(session: Session, key: str) -> DonationEvent | None:
    return session.scalar(select(DonationEvent).where(DonationEvent.idempotency_key == key))


def _replayed(session: Session, event: DonationEvent, requested_meals: int) -> DonationResult:
    if event.meal_count != requested_meals:
        logger.warning(
            "Donation replay %s asked for %d meals; original applied %d",
            event.idempotency_key, requested_meals, event.meal_count,
        )
    else:
        logger.info("Donation replay %s — already applied", event.idempotency_key)

    result = DonationResult(
        event_id=event.id,
        user_id=event.user_id,
        meal_count=event.meal_count,
        source=event.source,
        reference_id=event.reference_id,
        applied=False,
        global_total=read(session, Counter(GlobalStats.total_meals_donated, GLOBAL_STATS_ID)),
    )
    if event.user_id is not None:
        result.meals_donated_total = read(session, Counter(User.meals_donated_total, event.user_id))
        result.meals_available = read(session, Counter(User.meals_available, event.user_id))
    return result


def apply_donation(
    session: Session,
    *,
    user_id: str | None,
    meal_count: int,
    source: DonationSource | str,
    reference_id: str,
    amount_cents: int = 0,
) -> DonationResult:
    """Record a donation inside the caller's transaction.

    With a *user_id* the user's ``meals_donated_total`` and
    ``meals_available`` rise with the global total (and their team's).
    Without one the credit is community-level: only the global total moves.
    """
    if meal_count <= 0:
        raise InvalidAmount(f"meal_count must be positive, got {meal_count}")
    source = DonationSource(source)

    key = idempotency_key(source.value, reference_id, user_id)
    existing = _find_event(session, key)
    if existing is not None:
        return _replayed(session, existing, meal_count)

    user = require_user(session, user_id) if user_id is not None else None
    ensure_global_stats(session)

    event = DonationEvent(
        idempotency_key=key,
        user_id=user_id,
        meal_count=meal_count,
        amount_cents=amount_cents,
        source=source.value,
        reference_id=reference_id,
        created_at=utcnow(),
    )
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(event)
            session.flush()
    except IntegrityError:
        # A concurrent request inserted the same key and committed first.
        existing = _find_event(session, key)
        if existing is None:
            raise
        return _replayed(session, existing, meal_count)

    result = DonationResult(
        event_id=event.id,
        user_id=user_id,
        meal_count=meal_count,
        source=source.value,
        reference_id=reference_id,
        applied=True,
        global_total=increment(
            session, Counter(GlobalStats.total_meals_donated, GLOBAL_STATS_ID), meal_count
        ),
    )

    if user is not None:
        result.meals_donated_total = increment(
            session, Counter(User.meals_donated_total, user.id), meal_count
        )
        result.meals_available = increment(
            session, Counter(User.meals_available, user.id), meal_count
        )
        if result.meals_donated_total == meal_count:
            # First donation ever for this user.
            increment(session, Counter(GlobalStats.total_contributors, GLOBAL_STATS_ID), 1)
        # Re-read under the row lock taken above; a concurrent team switch
        # either finished before it or waits for this commit.
        team_id = session.scalar(select(User.team_id).where(User.id == user.id))
        if team_id is not None:
            increment(session, Counter(Team.total_meals, team_id), meal_count)

    logger.info(
        "Donation applied: %s meals=%d user=%s global=%d",
        key, meal_count, user_id, result.global_total,
    )
    return result


def record_donation(
    engine: Engine,
    user_id: str | None,
    meal_count: int,
    source: DonationSource | str,
    reference_id: str,
    *,
    amount_cents: int = 0,
) -> DonationResult:
    """Idempotently record a donation in its own transaction."""
    with get_session(engine) as session:
        return apply_donation(
            session,
            user_id=user_id,
            meal_count=meal_count,
            source=source,
            reference_id=reference_id,
            amount_cents=amount_cents,
        )


def purchase_meals(
    engine: Engine,
    user_id: str,
    meal_count: int,
    payment_ref: str,
    *,
    meal_price_cents: int = 100,
    verifier: PaymentVerifier | None = None,
) -> DonationResult:
    """Credit meals bought with a verified payment.

    The payment reference is the idempotency reference, so a retried
    purchase webhook credits the meals once.
    """
    if meal_count <= 0:
        raise InvalidAmount(f"meal_count must be positive, got {meal_count}")
    amount_cents = meal_count * meal_price_cents

    if verifier is not None and not verifier.verify(payment_ref, amount_cents):
        raise PaymentNotVerified(
            f"Payment {payment_ref} could not be verified", payment_ref=payment_ref
        )

    return record_donation(
        engine,
        user_id,
        meal_count,
        DonationSource.PURCHASE,
        payment_ref,
        amount_cents=amount_cents,
    )


# ---------------------------------------------------------------------------
# Spending
# ---------------------------------------------------------------------------
def apply_spend(session: Session, user_id: str, meal_count: int) -> int:
    """Debit ``meals_available`` inside the caller's transaction.

    Returns the new balance.  The guard ``meals_available >= meal_count`` is
    evaluated by the store in the same statement as the debit.
    """
    if meal_count <= 0:
        raise InvalidAmount(f"meal_count must be positive, got {meal_count}")
    require_user(session, user_id)

    balance, accepted = compare_and_decrement(
        session, Counter(User.meals_available, user_id), meal_count
    )
    if not accepted:
        logger.warning(
            "Insufficient meals: user=%s requested=%d available=%d",
            user_id, meal_count, balance,
        )
        raise InsufficientBalance(user_id, meal_count, balance)
    return balance


def spend_available_meals(engine: Engine, user_id: str, meal_count: int) -> int:
    """Spend meals from the user's balance; returns the remaining balance."""
    with get_session(engine) as session:
        remaining = apply_spend(session, user_id, meal_count)
    logger.info("User %s spent %d meals (remaining %d)", user_id, meal_count, remaining)
    return remaining


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_global_stats(engine: Engine) -> dict:
    """Community totals with goal progress (0.0 – 1.0+)."""
    with Session(engine) as session:
        stats = session.get(GlobalStats, GLOBAL_STATS_ID)
        if stats is None:
            return {
                "total_meals_donated": 0,
                "goal_target": 0,
                "total_contributors": 0,
                "progress": 0.0,
            }
        return {
            "total_meals_donated": stats.total_meals_donated,
            "goal_target": stats.goal_target,
            "total_contributors": stats.total_contributors,
            "progress": stats.total_meals_donated / max(stats.goal_target, 1),
        }


def get_personal_stats(engine: Engine, user_id: str) -> dict:
    with Session(engine) as session:
        user = require_user(session, user_id)
        drop_count = session.scalar(
            select(func.count()).select_from(SponsorshipDrop)
            .where(SponsorshipDrop.user_id == user_id)
        ) or 0
        coupons_claimed = session.scalar(
            select(func.count()).select_from(UserCoupon)
            .where(UserCoupon.user_id == user_id)
        ) or 0
        team = None
        if user.team is not None:
            team = {
                "id": user.team.id,
                "name": user.team.name,
                "total_meals": user.team.total_meals,
                "member_count": user.team.member_count,
            }
        return {
            "stats": {
                **user_snapshot(user),
                "sponsorship_drops": drop_count,
                "coupons_claimed": coupons_claimed,
            },
            "team": team,
        }


def _event_dict(ev: DonationEvent) -> dict:
    return {
        "id": ev.id,
        "meal_count": ev.meal_count,
        "amount_cents": ev.amount_cents,
        "source": ev.source,
        "reference_id": ev.reference_id,
        "created_at": as_utc(ev.created_at).isoformat() if ev.created_at else None,
    }


def list_donations(
    engine: Engine,
    user_id: str,
    *,
    cursor: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    """Newest-first donation history with keyset pagination.

    *cursor* is the id of the last event of the previous page.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    with Session(engine) as session:
        stmt = select(DonationEvent).where(DonationEvent.user_id == user_id)

        if cursor is not None:
            anchor = session.get(DonationEvent, cursor)
            if anchor is not None and anchor.user_id == user_id:
                stmt = stmt.where(or_(
                    DonationEvent.created_at < anchor.created_at,
                    and_(
                        DonationEvent.created_at == anchor.created_at,
                        DonationEvent.id < anchor.id,
                    ),
                ))

        rows = session.scalars(
            stmt.order_by(DonationEvent.created_at.desc(), DonationEvent.id.desc())
            .limit(limit + 1)
        ).all()

        has_more = len(rows) > limit
        rows = rows[:limit]
        return {
            "donations": [_event_dict(ev) for ev in rows],
            "next_cursor": rows[-1].id if has_more else None,
        }


def leaderboard(engine: Engine, limit: int = 50) -> list[dict]:
    """Users ranked by lifetime meals donated."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    with Session(engine) as session:
        users = session.scalars(
            select(User)
            .order_by(User.meals_donated_total.desc(), User.id)
            .limit(limit)
        ).all()
        return [
            {
                "rank": index + 1,
                "id": u.id,
                "username": u.username,
                "meals_donated_total": u.meals_donated_total,
                "current_streak": u.current_streak,
            }
            for index, u in enumerate(users)
        ]
