"""
mealdrop.services.team_service — Team Membership
=================================================

A team's ``total_meals`` is the sum of its current members'
``meals_donated_total`` and ``member_count`` is their number.  Membership
changes move both counters in the same transaction as the user's
``team_id``:

* join: leave the previous team (if any), then add the user's lifetime
  meals and one member to the new team,
* leave: subtract them from the current team.

The user row is locked first, the same order :func:`apply_donation` takes
its locks in, so a donation racing a switch credits exactly one team.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealdrop.constants import MAX_PAGE_SIZE, TEAM_TOP_MEMBERS_LIMIT
from mealdrop.database.counters import Counter, compare_and_decrement, increment
from mealdrop.database.engine import get_session
from mealdrop.database.models import Team, User
from mealdrop.errors import (
    AccountNotFound,
    AlreadyTeamMember,
    LedgerError,
    NotTeamMember,
    TeamNotFound,
)

logger = logging.getLogger(__name__)


def _team_dict(team: Team) -> dict:
    return {
        "id": team.id,
        "name": team.name,
        "member_count": team.member_count,
        "total_meals": team.total_meals,
    }


def _require_team(session: Session, team_id: str) -> Team:
    team = session.get(Team, team_id)
    if team is None:
        raise TeamNotFound(f"No team {team_id}", team_id=team_id)
    return team


def _lock_user(session: Session, user_id: str) -> User:
    user = session.scalar(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if user is None:
        raise AccountNotFound(f"No account for user {user_id}", user_id=user_id)
    return user


def _detach(session: Session, team_id: str, meals: int) -> None:
    """Remove one member carrying *meals* from the team's counters."""
    _, members_ok = compare_and_decrement(session, Counter(Team.member_count, team_id), 1)
    _, meals_ok = compare_and_decrement(session, Counter(Team.total_meals, team_id), meals)
    if not (members_ok and meals_ok):
        logger.error(
            "Team %s counters below a member's contribution (meals=%d)", team_id, meals
        )
        raise LedgerError(f"Team {team_id} counters are inconsistent", team_id=team_id)


def create_team(engine: Engine, name: str, team_id: str | None = None) -> tuple[dict, bool]:
    """Create an empty team.  Returns ``(team, created)``."""
    with get_session(engine) as session:
        existing = session.scalar(select(Team).where(Team.name == name))
        if existing is not None:
            return _team_dict(existing), False

        team = Team(id=team_id, name=name) if team_id else Team(name=name)
        try:
            with session.begin_nested():
                session.add(team)
                session.flush()
        except IntegrityError:
            existing = session.scalar(select(Team).where(Team.name == name))
            if existing is None:
                raise
            return _team_dict(existing), False

        logger.info("Created team %s (%s)", team.id, name)
        return _team_dict(team), True


def join_team(engine: Engine, user_id: str, team_id: str) -> dict:
    """Move *user_id* into *team_id*, carrying their lifetime meals along.

    Raises
    ------
    TeamNotFound
    AccountNotFound
    AlreadyTeamMember
    """
    with get_session(engine) as session:
        _require_team(session, team_id)
        user = _lock_user(session, user_id)
        if user.team_id == team_id:
            raise AlreadyTeamMember(
                f"User {user_id} is already in team {team_id}", team_id=team_id
            )

        previous = user.team_id
        meals = user.meals_donated_total
        if previous is not None:
            _detach(session, previous, meals)

        user.team_id = team_id
        session.flush()
        increment(session, Counter(Team.member_count, team_id), 1)
        total = increment(session, Counter(Team.total_meals, team_id), meals)

    logger.info(
        "User %s joined team %s (from %s, meals=%d)", user_id, team_id, previous, meals
    )
    return {"user_id": user_id, "team_id": team_id, "previous_team_id": previous,
            "team_total_meals": total}


def leave_team(engine: Engine, user_id: str, team_id: str) -> dict:
    """Remove *user_id* from *team_id*.

    Raises
    ------
    AccountNotFound
    NotTeamMember
        The user is not currently in *team_id*.
    """
    with get_session(engine) as session:
        user = _lock_user(session, user_id)
        if user.team_id != team_id:
            raise NotTeamMember(
                f"User {user_id} is not in team {team_id}", team_id=team_id
            )

        meals = user.meals_donated_total
        _detach(session, team_id, meals)
        user.team_id = None
        session.flush()

    logger.info("User %s left team %s (meals=%d)", user_id, team_id, meals)
    return {"user_id": user_id, "team_id": None, "previous_team_id": team_id}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_team(engine: Engine, team_id: str) -> dict:
    with Session(engine) as session:
        team = _require_team(session, team_id)
        members = session.scalars(
            select(User)
            .where(User.team_id == team_id)
            .order_by(User.meals_donated_total.desc(), User.id)
            .limit(TEAM_TOP_MEMBERS_LIMIT)
        ).all()
        return {
            "team": _team_dict(team),
            "top_members": [
                {"id": u.id, "username": u.username,
                 "meals_donated_total": u.meals_donated_total}
                for u in members
            ],
        }


def team_leaderboard(engine: Engine, limit: int = 20) -> list[dict]:
    """Teams ranked by total meals."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    with Session(engine) as session:
        teams = session.scalars(
            select(Team).order_by(Team.total_meals.desc(), Team.id).limit(limit)
        ).all()
        return [{"rank": index + 1, **_team_dict(t)} for index, t in enumerate(teams)]
