"""
mealdrop.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for product tuning (streak timezone, coin rewards,
meal pricing, global goal).  Secrets and the database URL are *not* here;
they come from the environment (``DATABASE_URL``, ``JWT_SECRET``).

Usage::

    from mealdrop.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.streak_timezone)   # "UTC"
    print(cfg.coins_per_post)    # 10
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from mealdrop.constants import DEFAULT_GOAL_TARGET
from mealdrop.engine.clock import resolve_timezone


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MealdropConfig:
    """Immutable configuration loaded from ``config.yaml``.

    ``streak_timezone`` fixes which calendar day an activity belongs to.
    Every service instance must agree on it, so it is configuration rather
    than whatever the server's local clock happens to be.
    """

    app_name: str = "mealdrop"
    streak_timezone: str = "UTC"
    global_goal_target: int = DEFAULT_GOAL_TARGET

    # Activity rewards
    meals_per_post: int = 1
    coins_per_post: int = 10

    # Purchases
    meal_price_cents: int = 100
    trust_payment_refs: bool = False

    # Display
    leaderboard_size: int = 50


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> MealdropConfig:
    """Read *path* and return a :class:`MealdropConfig` instance.

    Missing keys fall back to the dataclass defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value is out of range or the timezone is unknown.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = MealdropConfig()
    cfg = MealdropConfig(
        app_name=str(raw.get("app_name", defaults.app_name)),
        streak_timezone=str(raw.get("streak_timezone", defaults.streak_timezone)),
        global_goal_target=int(raw.get("global_goal_target", defaults.global_goal_target)),
        meals_per_post=int(raw.get("meals_per_post", defaults.meals_per_post)),
        coins_per_post=int(raw.get("coins_per_post", defaults.coins_per_post)),
        meal_price_cents=int(raw.get("meal_price_cents", defaults.meal_price_cents)),
        trust_payment_refs=bool(raw.get("trust_payment_refs", defaults.trust_payment_refs)),
        leaderboard_size=int(raw.get("leaderboard_size", defaults.leaderboard_size)),
    )
    validate_config(cfg)
    return cfg


def validate_config(cfg: MealdropConfig) -> None:
    """Raise :class:`ValueError` if *cfg* cannot drive the ledger."""
    resolve_timezone(cfg.streak_timezone)

    if cfg.meals_per_post < 1:
        raise ValueError("meals_per_post must be >= 1")
    if cfg.coins_per_post < 0:
        raise ValueError("coins_per_post must be >= 0")
    if cfg.meal_price_cents < 0:
        raise ValueError("meal_price_cents must be >= 0")
    if cfg.global_goal_target < 1:
        raise ValueError("global_goal_target must be >= 1")
