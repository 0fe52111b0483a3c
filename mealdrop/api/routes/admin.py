"""
mealdrop.api.routes.admin — Admin endpoints (JWT‑protected)
============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from mealdrop.api.deps import get_current_admin, get_engine
from mealdrop.services import coin_service, coupon_service, meal_ledger, team_service

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AccountCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    username: str = Field(..., min_length=1, max_length=100)
    team_id: str | None = None


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    team_id: str | None = Field(None, max_length=64)


class CoinAwardRequest(BaseModel):
    user_id: str
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=50)
    reference_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/accounts")
def open_account(
    body: AccountCreate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    account, created = meal_ledger.open_account(
        engine, body.user_id, body.username, team_id=body.team_id
    )
    return {"account": account, "created": created}


@router.post("/coins/award")
def award_coins(
    body: CoinAwardRequest,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    result = coin_service.award_coins(
        engine, body.user_id, body.amount, body.reason, body.reference_id
    )
    return result.to_dict()


@router.post("/coupons/expire")
def expire_coupons(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return {"expired": coupon_service.expire_claims(engine)}


@router.post("/teams")
def create_team(
    body: TeamCreate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    team, created = team_service.create_team(engine, body.name, team_id=body.team_id)
    return {"team": team, "created": created}
