"""
tests/test_activity_service.py — Post Activity
===============================================
One post = donation + streak + coins (+ optional balance donation), all in
one transaction, replay-safe.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mealdrop.database.models import CoinAward, DonationEvent, User
from mealdrop.errors import AccountNotFound, InsufficientBalance
from mealdrop.services.activity_service import record_post_activity


@pytest.fixture
def engine(db_engine, make_user):
    make_user(db_engine, "u1")
    return db_engine


def _at(day: int, hour: int = 12) -> datetime:
    return datetime(2026, 3, day, hour, 0, tzinfo=UTC)


def _user(engine) -> User:
    with Session(engine) as session:
        return session.get(User, "u1")


class TestRecordPostActivity:

    def test_first_post(self, engine):
        result = record_post_activity(engine, "u1", "p1", at=_at(5), meals=2, coins=10)

        assert result.applied is True
        assert result.current_streak == 1
        assert result.coins.coin_balance == 10
        user = _user(engine)
        assert user.meals_donated_total == 2
        assert user.last_activity_date == date(2026, 3, 5)

    def test_streak_across_days(self, engine):
        record_post_activity(engine, "u1", "p1", at=_at(5))
        record_post_activity(engine, "u1", "p2", at=_at(5, 18))
        assert _user(engine).current_streak == 1

        assert record_post_activity(engine, "u1", "p3", at=_at(6)).current_streak == 2
        assert record_post_activity(engine, "u1", "p4", at=_at(9)).current_streak == 1

    def test_replayed_post_applies_nothing(self, engine):
        record_post_activity(engine, "u1", "p1", at=_at(5), coins=10)
        replay = record_post_activity(engine, "u1", "p1", at=_at(6), coins=10)

        assert replay.applied is False
        assert replay.current_streak == 1
        user = _user(engine)
        assert user.coin_balance == 10
        assert user.meals_donated_total == 1
        assert user.last_activity_date == date(2026, 3, 5)

    def test_donate_from_balance(self, engine):
        record_post_activity(engine, "u1", "p1", at=_at(5), meals=3)
        result = record_post_activity(
            engine, "u1", "p2", at=_at(6), meals=1, donate_from_balance=2
        )
        assert result.meals_available == 2
        assert result.meals_donated_from_balance == 2

    def test_failed_balance_donation_rolls_back_everything(self, engine):
        with pytest.raises(InsufficientBalance):
            record_post_activity(
                engine, "u1", "p1", at=_at(5), meals=1, coins=10, donate_from_balance=5
            )

        user = _user(engine)
        assert (user.meals_donated_total, user.coin_balance, user.current_streak) == (0, 0, 0)
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(DonationEvent)) == 0
            assert session.scalar(select(func.count()).select_from(CoinAward)) == 0

    def test_streak_day_follows_timezone(self, engine):
        # 23:30 UTC on the 5th is already the 6th in Tokyo.
        record_post_activity(engine, "u1", "p1", at=_at(5, 1), timezone="Asia/Tokyo")
        result = record_post_activity(
            engine, "u1", "p2", at=datetime(2026, 3, 5, 23, 30, tzinfo=UTC),
            timezone="Asia/Tokyo",
        )
        assert result.current_streak == 2

    def test_concurrent_same_day_posts_advance_streak_once(self, file_engine, make_user):
        make_user(file_engine, "u1")
        record_post_activity(file_engine, "u1", "p0", at=_at(4))

        def _post(n):
            return record_post_activity(file_engine, "u1", f"p{n}", at=_at(5, 8 + n))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(_post, range(1, 9)))

        assert {r.current_streak for r in results} == {2}
        user = _user(file_engine)
        assert user.current_streak == 2
        assert user.last_activity_date == date(2026, 3, 5)
        assert user.meals_donated_total == 9

    def test_unknown_user(self, engine):
        with pytest.raises(AccountNotFound):
            record_post_activity(engine, "ghost", "p1")
