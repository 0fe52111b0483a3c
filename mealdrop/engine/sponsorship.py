"""
mealdrop.engine.sponsorship — Flash Sponsorship State Machine
==============================================================

Pure functions over sponsorship field values; no DB I/O.

States::

    SCHEDULED ──starts_at──▶ ACTIVE ──target reached──▶ COMPLETED (terminal)
                                │
                                └──────ends_at────────▶ EXPIRED   (terminal)

``is_completed`` wins over the clock: a sponsorship completed a second
before it ended stays COMPLETED forever.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from mealdrop.engine.clock import as_utc, utcnow


class SponsorshipState(enum.StrEnum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


def sponsorship_state(
    *,
    is_completed: bool,
    starts_at: datetime,
    ends_at: datetime,
    now: datetime | None = None,
) -> SponsorshipState:
    """Classify a sponsorship at *now* (defaults to the current UTC time)."""
    now = as_utc(now or utcnow())
    if is_completed:
        return SponsorshipState.COMPLETED
    if now >= as_utc(ends_at):
        return SponsorshipState.EXPIRED
    if now < as_utc(starts_at):
        return SponsorshipState.SCHEDULED
    return SponsorshipState.ACTIVE


def goal_reached(current_drops: int, target_drops: int) -> bool:
    return current_drops >= target_drops


def pledged_meals(target_drops: int, meals_per_drop: int, bonus_meals: int) -> int:
    """Meals a sponsor commits: one allotment per target drop plus the bonus."""
    return target_drops * meals_per_drop + bonus_meals


# ---------------------------------------------------------------------------
# Progress (display read model)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SponsorshipProgress:
    state: SponsorshipState
    progress: int               # percent, 0..100
    drops_remaining: int
    current_meals: int
    time_remaining_seconds: int

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "progress": self.progress,
            "drops_remaining": self.drops_remaining,
            "current_meals": self.current_meals,
            "time_remaining_seconds": self.time_remaining_seconds,
        }


def calculate_progress(
    *,
    current_drops: int,
    target_drops: int,
    meals_per_drop: int,
    is_completed: bool,
    starts_at: datetime,
    ends_at: datetime,
    now: datetime | None = None,
) -> SponsorshipProgress:
    now = as_utc(now or utcnow())
    percent = round(current_drops / target_drops * 100) if target_drops > 0 else 100
    remaining = as_utc(ends_at) - now
    return SponsorshipProgress(
        state=sponsorship_state(
            is_completed=is_completed, starts_at=starts_at, ends_at=ends_at, now=now
        ),
        progress=min(percent, 100),
        drops_remaining=max(target_drops - current_drops, 0),
        current_meals=current_drops * meals_per_drop,
        time_remaining_seconds=max(int(remaining.total_seconds()), 0),
    )
