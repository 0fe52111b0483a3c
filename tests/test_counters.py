"""
tests/test_counters.py — Atomic Counter Primitives
===================================================
Single-statement increment / guarded increment / guarded decrement /
compare-and-set against a real SQLite store.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from mealdrop.database.counters import (
    Counter,
    CounterNotFound,
    compare_and_decrement,
    compare_and_increment_if_below,
    compare_and_set,
    increment,
    read,
)
from mealdrop.database.engine import get_session
from mealdrop.database.models import Coupon, FlashSponsorship, User


@pytest.fixture
def engine(db_engine, make_user):
    make_user(db_engine, "u1")
    return db_engine


def _value(engine, attribute, key) -> int:
    with Session(engine) as session:
        return read(session, Counter(attribute, key))


class TestIncrement:

    def test_returns_new_value(self, engine):
        with get_session(engine) as session:
            assert increment(session, Counter(User.coin_balance, "u1"), 5) == 5
            assert increment(session, Counter(User.coin_balance, "u1"), 3) == 8
        assert _value(engine, User.coin_balance, "u1") == 8

    def test_missing_row_raises(self, engine):
        with pytest.raises(CounterNotFound):
            with get_session(engine) as session:
                increment(session, Counter(User.coin_balance, "ghost"), 1)

    def test_rolled_back_with_transaction(self, engine):
        with pytest.raises(RuntimeError):
            with get_session(engine) as session:
                increment(session, Counter(User.meals_available, "u1"), 4)
                raise RuntimeError("boom")
        assert _value(engine, User.meals_available, "u1") == 0


class TestCompareAndIncrementIfBelow:

    @pytest.fixture
    def coupon(self, engine, make_coupon):
        return make_coupon(engine, "c1", total_quantity=2)

    def test_accepts_up_to_ceiling(self, engine, coupon):
        counter = Counter(Coupon.claimed_count, coupon)
        with get_session(engine) as session:
            assert compare_and_increment_if_below(session, counter, 1, 2) == (1, True)
            assert compare_and_increment_if_below(session, counter, 1, 2) == (2, True)

    def test_rejects_past_ceiling_without_writing(self, engine, coupon):
        counter = Counter(Coupon.claimed_count, coupon)
        with get_session(engine) as session:
            compare_and_increment_if_below(session, counter, 2, 2)
            assert compare_and_increment_if_below(session, counter, 1, 2) == (2, False)
        assert _value(engine, Coupon.claimed_count, coupon) == 2


class TestCompareAndDecrement:

    def test_accepts_down_to_floor(self, engine):
        counter = Counter(User.coin_balance, "u1")
        with get_session(engine) as session:
            increment(session, counter, 10)
            assert compare_and_decrement(session, counter, 10) == (0, True)

    def test_rejects_below_floor(self, engine):
        counter = Counter(User.coin_balance, "u1")
        with get_session(engine) as session:
            increment(session, counter, 3)
            assert compare_and_decrement(session, counter, 4) == (3, False)
        assert _value(engine, User.coin_balance, "u1") == 3


class TestCompareAndSet:

    def test_only_first_transition_wins(self, engine, make_sponsorship):
        sid = make_sponsorship(engine, "s1", target_drops=1, current_drops=1)
        guard = (
            FlashSponsorship.is_completed.is_(False),
            FlashSponsorship.current_drops >= FlashSponsorship.target_drops,
        )
        with get_session(engine) as session:
            assert compare_and_set(session, FlashSponsorship, sid, *guard, is_completed=True)
            assert not compare_and_set(session, FlashSponsorship, sid, *guard, is_completed=True)

    def test_guard_not_met(self, engine, make_sponsorship):
        sid = make_sponsorship(engine, "s1", target_drops=5, current_drops=4)
        with get_session(engine) as session:
            won = compare_and_set(
                session, FlashSponsorship, sid,
                FlashSponsorship.current_drops >= FlashSponsorship.target_drops,
                is_completed=True,
            )
        assert won is False
        with Session(engine) as session:
            assert session.get(FlashSponsorship, sid).is_completed is False
