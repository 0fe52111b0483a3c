"""
mealdrop.database.seed — Global Stats Seeder
=============================================

Creates the ``global_stats`` singleton row on first startup.  Idempotent —
an existing row is never overwritten, so the running total survives
restarts and redeploys.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealdrop.constants import DEFAULT_GOAL_TARGET, GLOBAL_STATS_ID
from mealdrop.database.engine import get_session
from mealdrop.database.models import GlobalStats

logger = logging.getLogger(__name__)


def ensure_global_stats(session: Session, goal_target: int = DEFAULT_GOAL_TARGET) -> None:
    """Insert the singleton row inside the current transaction if missing.

    Two instances seeding at once both try the INSERT; the loser's SAVEPOINT
    rolls back on the primary key conflict and its outer transaction goes on.
    """
    if session.get(GlobalStats, GLOBAL_STATS_ID) is not None:
        return
    try:
        with session.begin_nested():
            session.add(GlobalStats(
                id=GLOBAL_STATS_ID,
                total_meals_donated=0,
                goal_target=goal_target,
                total_contributors=0,
            ))
            session.flush()
    except IntegrityError:
        logger.debug("Global stats row created concurrently")


def seed_global_stats(engine: Engine, goal_target: int = DEFAULT_GOAL_TARGET) -> None:
    """Ensure the singleton exists (startup hook)."""
    with get_session(engine) as session:
        ensure_global_stats(session, goal_target=goal_target)
    logger.info("Global stats row verified (goal=%d).", goal_target)
