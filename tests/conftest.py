"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from datetime import timedelta

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of mealdrop.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from mealdrop.database.engine import configure_sqlite, create_db_engine, get_session, init_db  # noqa: E402
from mealdrop.database.models import Coupon, FlashSponsorship, Team  # noqa: E402
from mealdrop.engine.clock import utcnow  # noqa: E402
from mealdrop.engine.sponsorship import pledged_meals  # noqa: E402
from mealdrop.services.meal_ledger import open_account  # noqa: E402

TEST_GOAL_TARGET = 1000


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all tables and the global stats row.

    Uses StaticPool so every session (and the TestClient's worker threads)
    shares the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    init_db(engine, goal_target=TEST_GOAL_TARGET)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that race real threads.

    Each thread gets its own connection; ``BEGIN IMMEDIATE`` serialises
    their transactions the way row locks do on PostgreSQL.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine, goal_target=TEST_GOAL_TARGET)
    yield engine
    engine.dispose()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_user():
    """Open an account; usable against any engine fixture."""

    def _make(engine: Engine, user_id: str = "u1", username: str | None = None,
              team_id: str | None = None) -> str:
        open_account(engine, user_id, username or f"user-{user_id}", team_id=team_id)
        return user_id

    return _make


@pytest.fixture
def make_team():
    def _make(engine: Engine, team_id: str = "t1", name: str = "Night Owls") -> str:
        with get_session(engine) as session:
            session.add(Team(id=team_id, name=name))
        return team_id

    return _make


@pytest.fixture
def make_sponsorship():
    """Create an ACTIVE sponsorship (started an hour ago, ends in an hour)."""

    def _make(
        engine: Engine,
        sponsorship_id: str = "s1",
        *,
        target_drops: int = 3,
        current_drops: int = 0,
        meals_per_drop: int = 2,
        bonus_meals: int = 10,
        starts_at=None,
        ends_at=None,
        is_completed: bool = False,
        restaurant_id: str = "r1",
    ) -> str:
        now = utcnow()
        with get_session(engine) as session:
            session.add(FlashSponsorship(
                id=sponsorship_id,
                restaurant_id=restaurant_id,
                title=f"Flash {sponsorship_id}",
                target_drops=target_drops,
                current_drops=current_drops,
                meals_per_drop=meals_per_drop,
                bonus_meals=bonus_meals,
                total_meals_pledged=pledged_meals(target_drops, meals_per_drop, bonus_meals),
                is_completed=is_completed,
                starts_at=starts_at or now - timedelta(hours=1),
                ends_at=ends_at or now + timedelta(hours=1),
            ))
        return sponsorship_id

    return _make


@pytest.fixture
def make_coupon():
    def _make(
        engine: Engine,
        coupon_id: str = "c1",
        *,
        coin_cost: int = 50,
        total_quantity: int | None = None,
        claimed_count: int = 0,
        expires_at=None,
        is_active: bool = True,
        restaurant_id: str = "r1",
    ) -> str:
        with get_session(engine) as session:
            session.add(Coupon(
                id=coupon_id,
                restaurant_id=restaurant_id,
                title=f"Coupon {coupon_id}",
                coin_cost=coin_cost,
                total_quantity=total_quantity,
                claimed_count=claimed_count,
                expires_at=expires_at,
                is_active=is_active,
            ))
        return coupon_id

    return _make


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
def make_token(sub: str = "u1", *, is_admin: bool = False) -> str:
    """Create a provider JWT.  Usable as both a fixture helper and a factory."""
    import jwt

    from mealdrop.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, "is_admin": is_admin}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def admin_token():
    return make_token("admin-1", is_admin=True)


@pytest.fixture
def client(db_engine):
    """TestClient bound to the in-memory engine and default config."""
    from fastapi.testclient import TestClient

    from mealdrop.api import main
    from mealdrop.config import MealdropConfig

    main.app.dependency_overrides[main.get_engine] = lambda: db_engine
    main.app.dependency_overrides[main.get_config] = lambda: MealdropConfig()
    yield TestClient(main.app, raise_server_exceptions=False)
    main.app.dependency_overrides.clear()
