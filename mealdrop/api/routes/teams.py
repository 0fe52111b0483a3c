"""
mealdrop.api.routes.teams — Team membership and leaderboard
============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine

from mealdrop.api.deps import get_current_user, get_engine
from mealdrop.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from mealdrop.services import team_service

router = APIRouter(prefix="/teams", tags=["teams"])


@router.get("/leaderboard")
def team_leaderboard(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    engine: Engine = Depends(get_engine),
):
    return {"leaderboard": team_service.team_leaderboard(engine, limit)}


@router.get("/{team_id}")
def get_team(team_id: str, engine: Engine = Depends(get_engine)):
    return team_service.get_team(engine, team_id)


@router.post("/{team_id}/join")
def join_team(
    team_id: str,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return team_service.join_team(engine, user_id, team_id)


@router.delete("/{team_id}/leave")
def leave_team(
    team_id: str,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return team_service.leave_team(engine, user_id, team_id)
