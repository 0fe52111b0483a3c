"""
mealdrop.api.routes.impact — Donations, balances and stats
===========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from mealdrop.api.deps import (
    get_config,
    get_current_user,
    get_engine,
    get_payment_verifier,
)
from mealdrop.config import MealdropConfig
from mealdrop.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from mealdrop.services import activity_service, meal_ledger
from mealdrop.services.payments import PaymentVerifier

router = APIRouter(prefix="/impact", tags=["impact"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PostActivity(BaseModel):
    donate_from_balance: int = Field(0, ge=0)


class PurchaseRequest(BaseModel):
    meal_count: int = Field(..., gt=0)
    payment_ref: str = Field(..., min_length=1)


class SpendRequest(BaseModel):
    meal_count: int = Field(..., gt=0)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/global")
def global_stats(engine: Engine = Depends(get_engine)):
    return meal_ledger.get_global_stats(engine)


@router.get("/personal")
def personal_stats(
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return meal_ledger.get_personal_stats(engine, user_id)


@router.get("/donations")
def donation_history(
    cursor: str | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return meal_ledger.list_donations(engine, user_id, cursor=cursor, limit=limit)


@router.get("/leaderboard/global")
def global_leaderboard(
    limit: int | None = Query(None, ge=1, le=MAX_PAGE_SIZE),
    engine: Engine = Depends(get_engine),
    cfg: MealdropConfig = Depends(get_config),
):
    return {"users": meal_ledger.leaderboard(engine, limit or cfg.leaderboard_size)}


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
@router.post("/posts/{post_id}")
def record_post(
    post_id: str,
    body: PostActivity | None = None,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: MealdropConfig = Depends(get_config),
):
    """Apply the donation, streak and coins earned by one post."""
    result = activity_service.record_post_activity(
        engine,
        user_id,
        post_id,
        timezone=cfg.streak_timezone,
        meals=cfg.meals_per_post,
        coins=cfg.coins_per_post,
        donate_from_balance=body.donate_from_balance if body else 0,
    )
    return result.to_dict()


@router.post("/donations")
def purchase(
    body: PurchaseRequest,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: MealdropConfig = Depends(get_config),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    result = meal_ledger.purchase_meals(
        engine,
        user_id,
        body.meal_count,
        body.payment_ref,
        meal_price_cents=cfg.meal_price_cents,
        verifier=verifier,
    )
    return result.to_dict()


@router.post("/spend")
def spend(
    body: SpendRequest,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    remaining = meal_ledger.spend_available_meals(engine, user_id, body.meal_count)
    return {"meals_available": remaining}
