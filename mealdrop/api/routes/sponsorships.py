"""
mealdrop.api.routes.sponsorships — Flash sponsorship endpoints
===============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from mealdrop.api.deps import get_current_user, get_engine, get_optional_user
from mealdrop.services import sponsorship_service

router = APIRouter(prefix="/sponsorships", tags=["sponsorships"])


class DropRequest(BaseModel):
    post_id: str | None = None


@router.get("")
def list_active(
    user_id: str | None = Depends(get_optional_user),
    engine: Engine = Depends(get_engine),
):
    return {"sponsorships": sponsorship_service.list_sponsorships(engine, user_id=user_id)}


@router.get("/restaurant/{restaurant_id}")
def list_for_restaurant(
    restaurant_id: str,
    user_id: str | None = Depends(get_optional_user),
    engine: Engine = Depends(get_engine),
):
    return {
        "sponsorships": sponsorship_service.list_sponsorships(
            engine, user_id=user_id, restaurant_id=restaurant_id
        )
    }


@router.get("/{sponsorship_id}")
def detail(
    sponsorship_id: str,
    user_id: str | None = Depends(get_optional_user),
    engine: Engine = Depends(get_engine),
):
    return sponsorship_service.get_sponsorship(engine, sponsorship_id, user_id=user_id)


@router.post("/{sponsorship_id}/drop")
def drop(
    sponsorship_id: str,
    body: DropRequest | None = None,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    result = sponsorship_service.record_drop(
        engine, sponsorship_id, user_id, post_id=body.post_id if body else None
    )
    return result.to_dict()
