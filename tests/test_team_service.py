"""
tests/test_team_service.py — Team Membership
=============================================
Join / leave keep ``member_count`` and ``total_meals`` equal to the sum over
current members, including when a donation races a team switch.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.orm import Session

from mealdrop.database.models import Team, User
from mealdrop.errors import (
    AccountNotFound,
    AlreadyTeamMember,
    NotTeamMember,
    TeamNotFound,
)
from mealdrop.services import meal_ledger, team_service


@pytest.fixture
def engine(db_engine, make_team, make_user):
    make_team(db_engine, "t1", "Night Owls")
    make_team(db_engine, "t2", "Early Birds")
    make_user(db_engine, "u1", team_id="t1")
    make_user(db_engine, "u2")
    return db_engine


def _team(engine, team_id: str) -> Team:
    with Session(engine) as session:
        return session.get(Team, team_id)


def _counts(engine, team_id: str) -> tuple[int, int]:
    team = _team(engine, team_id)
    return team.member_count, team.total_meals


class TestJoinTeam:

    def test_switch_moves_members_and_meals(self, engine):
        meal_ledger.record_donation(engine, "u1", 7, "post", "p1")
        assert _counts(engine, "t1") == (1, 7)

        result = team_service.join_team(engine, "u1", "t2")

        assert result["previous_team_id"] == "t1"
        assert result["team_total_meals"] == 7
        assert _counts(engine, "t1") == (0, 0)
        assert _counts(engine, "t2") == (1, 7)
        with Session(engine) as session:
            assert session.get(User, "u1").team_id == "t2"

    def test_first_join(self, engine):
        meal_ledger.record_donation(engine, "u2", 3, "post", "p1")
        team_service.join_team(engine, "u2", "t1")
        assert _counts(engine, "t1") == (2, 3)

    def test_later_donations_credit_new_team(self, engine):
        team_service.join_team(engine, "u1", "t2")
        meal_ledger.record_donation(engine, "u1", 4, "post", "p1")
        assert _counts(engine, "t1") == (0, 0)
        assert _counts(engine, "t2") == (1, 4)

    def test_already_member(self, engine):
        with pytest.raises(AlreadyTeamMember):
            team_service.join_team(engine, "u1", "t1")
        assert _counts(engine, "t1") == (1, 0)

    def test_unknown_team(self, engine):
        with pytest.raises(TeamNotFound):
            team_service.join_team(engine, "u1", "nope")

    def test_unknown_user(self, engine):
        with pytest.raises(AccountNotFound):
            team_service.join_team(engine, "ghost", "t1")


class TestLeaveTeam:

    def test_leave_decrements_both_counters(self, engine):
        meal_ledger.record_donation(engine, "u1", 5, "post", "p1")
        team_service.leave_team(engine, "u1", "t1")

        assert _counts(engine, "t1") == (0, 0)
        with Session(engine) as session:
            assert session.get(User, "u1").team_id is None

    def test_not_a_member(self, engine):
        with pytest.raises(NotTeamMember):
            team_service.leave_team(engine, "u2", "t1")
        assert _counts(engine, "t1") == (1, 0)


class TestConcurrentSwitch:

    def test_donations_racing_a_switch_credit_one_team(self, file_engine, make_team, make_user):
        make_team(file_engine, "t1", "Night Owls")
        make_team(file_engine, "t2", "Early Birds")
        make_user(file_engine, "u1", team_id="t1")

        def _work(n):
            if n == 5:
                return team_service.join_team(file_engine, "u1", "t2")
            return meal_ledger.record_donation(file_engine, "u1", 1, "post", f"p{n}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(_work, range(12)))

        with Session(file_engine) as session:
            user = session.get(User, "u1")
            t1, t2 = session.get(Team, "t1"), session.get(Team, "t2")
            assert user.team_id == "t2"
            assert user.meals_donated_total == 11
            assert (t1.member_count, t1.total_meals) == (0, 0)
            assert (t2.member_count, t2.total_meals) == (1, 11)


class TestTeamReads:

    def test_leaderboard_ranks_by_total_meals(self, engine):
        meal_ledger.record_donation(engine, "u1", 2, "post", "p1")
        team_service.join_team(engine, "u2", "t2")
        meal_ledger.record_donation(engine, "u2", 9, "post", "p2")

        board = team_service.team_leaderboard(engine)

        assert [(t["rank"], t["id"], t["total_meals"]) for t in board] == [
            (1, "t2", 9),
            (2, "t1", 2),
        ]

    def test_get_team_lists_top_members(self, engine):
        meal_ledger.record_donation(engine, "u1", 2, "post", "p1")
        detail = team_service.get_team(engine, "t1")
        assert detail["team"]["member_count"] == 1
        assert [m["id"] for m in detail["top_members"]] == ["u1"]

    def test_create_team_is_idempotent_by_name(self, engine):
        team, created = team_service.create_team(engine, "Lunch Club", team_id="t3")
        again, created_again = team_service.create_team(engine, "Lunch Club")
        assert created is True and created_again is False
        assert again["id"] == team["id"] == "t3"
