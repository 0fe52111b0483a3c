"""
mealdrop.services.coin_service — Coin Awards
=============================================

Coins are earned for activity and spent on coupons.  An award is keyed by
(reason, reference, user) exactly like a donation, so a retried award is a
no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealdrop.constants import idempotency_key
from mealdrop.database.counters import Counter, increment, read
from mealdrop.database.engine import get_session
from mealdrop.database.models import CoinAward, User
from mealdrop.engine.clock import utcnow
from mealdrop.errors import InvalidAmount
from mealdrop.services.meal_ledger import require_user

logger = logging.getLogger(__name__)


@dataclass
class CoinAwardResult:
    award_id: str
    user_id: str
    amount: int
    applied: bool
    coin_balance: int
    coin_lifetime_earned: int

    def to_dict(self) -> dict:
        return {
            "award_id": self.award_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "applied": self.applied,
            "coin_balance": self.coin_balance,
            "coin_lifetime_earned": self.coin_lifetime_earned,
        }


def _find_award(session: Session, key: str) -> CoinAward | None:
    return session.scalar(select(CoinAward).where(CoinAward.idempotency_key == key))


def _replayed(session: Session, award: CoinAward) -> CoinAwardResult:
    logger.info("Coin award replay %s — already applied", award.idempotency_key)
    return CoinAwardResult(
        award_id=award.id,
        user_id=award.user_id,
        amount=award.amount,
        applied=False,
        coin_balance=read(session, Counter(User.coin_balance, award.user_id)),
        coin_lifetime_earned=read(session, Counter(User.coin_lifetime_earned, award.user_id)),
    )


def apply_coin_award(
    session: Session,
    *,
    user_id: str,
    amount: int,
    reason: str,
    reference_id: str,
) -> CoinAwardResult:
    """Award coins inside the caller's transaction."""
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")

    key = idempotency_key(reason, reference_id, user_id)
    existing = _find_award(session, key)
    if existing is not None:
        return _replayed(session, existing)

    require_user(session, user_id)
    award = CoinAward(
        idempotency_key=key,
        user_id=user_id,
        amount=amount,
        reason=reason,
        reference_id=reference_id,
        created_at=utcnow(),
    )
    try:
        with session.begin_nested():
            session.add(award)
            session.flush()
    except IntegrityError:
        existing = _find_award(session, key)
        if existing is None:
            raise
        return _replayed(session, existing)

    balance = increment(session, Counter(User.coin_balance, user_id), amount)
    lifetime = increment(session, Counter(User.coin_lifetime_earned, user_id), amount)
    logger.info("Awarded %d coins to %s (%s)", amount, user_id, key)

    return CoinAwardResult(
        award_id=award.id,
        user_id=user_id,
        amount=amount,
        applied=True,
        coin_balance=balance,
        coin_lifetime_earned=lifetime,
    )


def award_coins(
    engine: Engine, user_id: str, amount: int, reason: str, reference_id: str
) -> CoinAwardResult:
    """Idempotently award *amount* coins in its own transaction."""
    with get_session(engine) as session:
        return apply_coin_award(
            session,
            user_id=user_id,
            amount=amount,
            reason=reason,
            reference_id=reference_id,
        )
