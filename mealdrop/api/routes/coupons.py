"""
mealdrop.api.routes.coupons — Coin-for-coupon endpoints
========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine

from mealdrop.api.deps import get_current_user, get_engine, get_optional_user
from mealdrop.services import coupon_service

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.get("")
def list_available(
    restaurant_id: str | None = Query(None),
    user_id: str | None = Depends(get_optional_user),
    engine: Engine = Depends(get_engine),
):
    return {
        "coupons": coupon_service.list_coupons(
            engine, user_id=user_id, restaurant_id=restaurant_id
        )
    }


@router.get("/mine")
def my_coupons(
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return {"coupons": coupon_service.list_user_coupons(engine, user_id)}


@router.post("/{coupon_id}/claim")
def claim(
    coupon_id: str,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return coupon_service.claim_coupon(engine, user_id, coupon_id).to_dict()


@router.post("/{user_coupon_id}/use")
def use(
    user_coupon_id: str,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    """Redeem a claimed coupon; the id is the caller's claim id."""
    return coupon_service.use_coupon(engine, user_coupon_id, user_id)
