"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Auth guards, error mapping and the main request flows through the
TestClient, backed by the in-memory engine.
"""

from __future__ import annotations

import pytest

from conftest import make_token
from mealdrop.config import MealdropConfig
from mealdrop.errors import StorageUnavailable


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_token(db_engine, make_user):
    make_user(db_engine, "u1")
    return make_token("u1")


@pytest.fixture
def trusted_refs(client):
    """Serve requests with a config that accepts forwarded payment ids."""
    from mealdrop.api import main

    main.app.dependency_overrides[main.get_config] = (
        lambda: MealdropConfig(trust_payment_refs=True)
    )


# ===========================================================================
# Health & auth
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestAuthGuards:

    @pytest.mark.parametrize("endpoint", ["/api/impact/personal", "/api/coupons/mine"])
    def test_rejects_no_auth(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    def test_rejects_invalid_token(self, client):
        resp = client.get("/api/impact/personal", headers=_auth("not.a.jwt"))
        assert resp.status_code == 401

    def test_admin_rejects_non_admin(self, client, user_token):
        resp = client.post("/api/admin/coupons/expire", headers=_auth(user_token))
        assert resp.status_code == 403

    def test_public_reads_need_no_token(self, client):
        assert client.get("/api/impact/global").status_code == 200
        assert client.get("/api/sponsorships").status_code == 200
        assert client.get("/api/coupons").status_code == 200


# ===========================================================================
# Impact
# ===========================================================================
class TestImpactRoutes:

    def test_post_activity_then_personal_stats(self, client, user_token):
        resp = client.post("/api/impact/posts/p1", headers=_auth(user_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["applied"] is True
        assert body["current_streak"] == 1
        assert body["coins_awarded"] == 10

        stats = client.get("/api/impact/personal", headers=_auth(user_token)).json()
        assert stats["stats"]["meals_donated_total"] == 1
        assert stats["stats"]["coin_balance"] == 10

    def test_retried_post_is_not_reapplied(self, client, user_token):
        client.post("/api/impact/posts/p1", headers=_auth(user_token))
        resp = client.post("/api/impact/posts/p1", headers=_auth(user_token))
        assert resp.json()["applied"] is False
        assert client.get("/api/impact/global").json()["total_meals_donated"] == 1

    def test_purchase_rejected_without_configured_verifier(self, client, user_token):
        resp = client.post(
            "/api/impact/donations",
            json={"meal_count": 3, "payment_ref": "pi_ABCDEFGH1234"},
            headers=_auth(user_token),
        )
        assert resp.status_code == 402
        assert client.get("/api/impact/global").json()["total_meals_donated"] == 0

    def test_purchase_and_history(self, client, user_token, trusted_refs):
        resp = client.post(
            "/api/impact/donations",
            json={"meal_count": 3, "payment_ref": "pi_ABCDEFGH1234"},
            headers=_auth(user_token),
        )
        assert resp.status_code == 200
        assert resp.json()["meals_available"] == 3

        history = client.get("/api/impact/donations", headers=_auth(user_token)).json()
        assert history["donations"][0]["amount_cents"] == 300
        assert history["next_cursor"] is None

    def test_bad_payment_ref(self, client, user_token, trusted_refs):
        resp = client.post(
            "/api/impact/donations",
            json={"meal_count": 3, "payment_ref": "nope"},
            headers=_auth(user_token),
        )
        assert resp.status_code == 402
        assert resp.json()["error"] == "payment_not_verified"

    def test_spend_insufficient(self, client, user_token):
        resp = client.post("/api/impact/spend", json={"meal_count": 1},
                           headers=_auth(user_token))
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "insufficient_balance",
            "detail": "User u1: requested 1 meals, available 0",
            "retryable": False,
        }

    def test_unknown_account(self, client):
        resp = client.get("/api/impact/personal", headers=_auth(make_token("nobody")))
        assert resp.status_code == 404
        assert resp.json()["error"] == "account_not_found"

    def test_leaderboard(self, client, user_token):
        client.post("/api/impact/posts/p1", headers=_auth(user_token))
        board = client.get("/api/impact/leaderboard/global").json()
        assert board["users"][0]["id"] == "u1"


# ===========================================================================
# Sponsorships & coupons
# ===========================================================================
class TestSponsorshipRoutes:

    def test_drop_and_duplicate(self, client, db_engine, user_token, make_sponsorship):
        make_sponsorship(db_engine, "s1", target_drops=2)

        first = client.post("/api/sponsorships/s1/drop", json={"post_id": "post1"},
                            headers=_auth(user_token))
        assert first.status_code == 200
        assert first.json()["current_drops"] == 1

        dup = client.post("/api/sponsorships/s1/drop", json={"post_id": "post1"},
                          headers=_auth(user_token))
        assert dup.status_code == 409
        assert dup.json()["error"] == "duplicate_drop"

        detail = client.get("/api/sponsorships/s1", headers=_auth(user_token)).json()
        assert detail["user_drop_count"] == 1

    def test_restaurant_listing(self, client, db_engine, make_sponsorship):
        make_sponsorship(db_engine, "s1", restaurant_id="r9")
        listed = client.get("/api/sponsorships/restaurant/r9").json()["sponsorships"]
        assert [s["id"] for s in listed] == ["s1"]

    def test_missing_sponsorship(self, client):
        assert client.get("/api/sponsorships/nope").status_code == 404


class TestCouponRoutes:

    def test_claim_and_use(self, client, db_engine, user_token, admin_token, make_coupon):
        make_coupon(db_engine, "c1", coin_cost=5, total_quantity=1)
        client.post(
            "/api/admin/coins/award",
            json={"user_id": "u1", "amount": 20, "reason": "welcome", "reference_id": "w1"},
            headers=_auth(admin_token),
        )

        claim = client.post("/api/coupons/c1/claim", headers=_auth(user_token))
        assert claim.status_code == 200
        assert claim.json()["coin_balance"] == 15

        mine = client.get("/api/coupons/mine", headers=_auth(user_token)).json()["coupons"]
        claim_id = mine[0]["id"]

        used = client.post(f"/api/coupons/{claim_id}/use", headers=_auth(user_token))
        assert used.json()["status"] == "used"
        again = client.post(f"/api/coupons/{claim_id}/use", headers=_auth(user_token))
        assert again.status_code == 409

    def test_claim_without_coins(self, client, db_engine, user_token, make_coupon):
        make_coupon(db_engine, "c1", coin_cost=5)
        resp = client.post("/api/coupons/c1/claim", headers=_auth(user_token))
        assert resp.status_code == 400
        assert resp.json()["error"] == "insufficient_coins"


class TestTeamRoutes:

    def test_join_leave_and_leaderboard(self, client, db_engine, user_token, make_team):
        make_team(db_engine, "t1", "Night Owls")

        joined = client.post("/api/teams/t1/join", headers=_auth(user_token))
        assert joined.status_code == 200
        again = client.post("/api/teams/t1/join", headers=_auth(user_token))
        assert again.status_code == 409
        assert again.json()["error"] == "already_team_member"

        client.post("/api/impact/posts/p1", headers=_auth(user_token))
        board = client.get("/api/teams/leaderboard").json()["leaderboard"]
        assert board[0] == {
            "rank": 1, "id": "t1", "name": "Night Owls", "member_count": 1, "total_meals": 1,
        }

        left = client.delete("/api/teams/t1/leave", headers=_auth(user_token))
        assert left.status_code == 200
        assert client.get("/api/teams/t1").json()["team"]["member_count"] == 0

    def test_join_requires_auth(self, client):
        assert client.post("/api/teams/t1/join").status_code == 401


# ===========================================================================
# Admin
# ===========================================================================
class TestAdminRoutes:

    def test_open_account(self, client, admin_token):
        resp = client.post(
            "/api/admin/accounts",
            json={"user_id": "new1", "username": "newbie"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["created"] is True

    def test_create_team(self, client, admin_token):
        resp = client.post(
            "/api/admin/teams", json={"name": "Night Owls", "team_id": "t9"},
            headers=_auth(admin_token),
        )
        assert resp.json() == {
            "team": {"id": "t9", "name": "Night Owls", "member_count": 0, "total_meals": 0},
            "created": True,
        }

    def test_expire_job(self, client, admin_token):
        resp = client.post("/api/admin/coupons/expire", headers=_auth(admin_token))
        assert resp.json() == {"expired": 0}


class TestStorageErrors:

    def test_storage_unavailable_is_retryable_503(self, client, user_token, monkeypatch):
        from mealdrop.services import meal_ledger

        def _down(*args, **kwargs):
            raise StorageUnavailable("Storage unavailable: OperationalError")

        monkeypatch.setattr(meal_ledger, "get_global_stats", _down)
        resp = client.get("/api/impact/global")
        assert resp.status_code == 503
        assert resp.json()["retryable"] is True
