"""
mealdrop.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn mealdrop.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from mealdrop.api.deps import get_config, get_engine  # noqa: E402
from mealdrop.api.routes.admin import router as admin_router  # noqa: E402
from mealdrop.api.routes.coupons import router as coupons_router  # noqa: E402
from mealdrop.api.routes.impact import router as impact_router  # noqa: E402
from mealdrop.api.routes.sponsorships import router as sponsorships_router  # noqa: E402
from mealdrop.api.routes.teams import router as teams_router  # noqa: E402
from mealdrop.database.seed import seed_global_stats  # noqa: E402
from mealdrop.errors import LedgerError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine and seed global stats."""
    engine = get_engine()
    cfg = get_config()
    seed_global_stats(engine, goal_target=cfg.global_goal_target)
    logger.info("Mealdrop API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Mealdrop API shutting down")


app = FastAPI(
    title="Mealdrop Incentive Ledger API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Mount routers
app.include_router(impact_router, prefix="/api")
app.include_router(sponsorships_router, prefix="/api")
app.include_router(coupons_router, prefix="/api")
app.include_router(teams_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
