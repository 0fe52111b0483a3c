"""
mealdrop.engine.streaks — Posting Streak Calculation
=====================================================

Pure function, no DB I/O.  The caller persists the result together with
``last_activity_date = today`` in the same transaction as the donation
recorded for that activity.
"""

from __future__ import annotations

from datetime import date


def next_streak(last_activity_date: date | None, today: date, current_streak: int) -> int:
    """Streak after activity on *today*.

    * same day as the last activity → unchanged (several posts, one day)
    * exactly the next day          → ``current_streak + 1``
    * anything else                 → ``1`` (gap, first activity, or a
      *today* earlier than the last recorded day)
    """
    if last_activity_date is None:
        return 1

    gap = (today - last_activity_date).days
    if gap == 0:
        return current_streak
    if gap == 1:
        return current_streak + 1
    return 1
