"""
mealdrop — Incentive Ledger for a Dish-Sharing Donation Feed
=============================================================
Turns user activity into charitable meal donations.  This package owns every
numeric guarantee the product makes: meal balances, the global donation
total, posting streaks, flash-sponsorship goals and the coin-for-coupon
economy.  Feed, profile and map plumbing live elsewhere and call in here.

Package layout::

    mealdrop/
    ├── __main__.py        # CLI: init-db, expire
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared constants + idempotency key format
    ├── errors.py          # LedgerError taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session helper
    │   ├── models.py      # All ORM models
    │   ├── counters.py    # Atomic counter primitives (UPDATE … RETURNING)
    │   └── seed.py        # Global stats singleton seeder
    ├── engine/
    │   ├── clock.py       # UTC helpers + activity-day resolution
    │   ├── streaks.py     # Posting streak calculation
    │   └── sponsorship.py # Flash sponsorship state machine + progress
    ├── services/
    │   ├── meal_ledger.py         # Donations, purchases, meal spending
    │   ├── sponsorship_service.py # Drops + exactly-once goal completion
    │   ├── coin_service.py        # Idempotent coin awards
    │   ├── coupon_service.py      # Coupon claim / use / expiry
    │   ├── activity_service.py    # Post activity (donation + streak + coins)
    │   ├── team_service.py        # Team join / leave + team leaderboard
    │   └── payments.py            # Payment verification collaborator
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, config, JWT identity
        └── routes/        # Impact, sponsorship, coupon, team, admin endpoints
"""

__version__ = "0.1.0"
