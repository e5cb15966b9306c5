"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Operators are denied management operations (403)
- Location access scopes what a user can see and post
- Login returns a token and the user's permissions
"""

import pytest

from stockms.services import access_service

from conftest import get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS — 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/locations"),
            ("GET", "/api/locations/1/stock"),
            ("POST", "/api/locations/1/deliveries"),
            ("POST", "/api/locations/1/issues"),
            ("GET", "/api/deliveries"),
            ("GET", "/api/issues"),
            ("GET", "/api/transfers"),
            ("POST", "/api/transfers"),
            ("GET", "/api/periods"),
            ("POST", "/api/periods"),
            ("GET", "/api/approvals"),
            ("GET", "/api/prfs"),
            ("GET", "/api/pos"),
            ("GET", "/api/ncrs"),
            ("GET", "/api/ledger"),
            ("GET", "/api/stock/consolidated"),
            ("GET", "/api/reconciliations/consolidated"),
            ("GET", "/api/auth/session"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/locations", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# OPERATOR DENIED MANAGEMENT OPERATIONS — 403
# =============================================================================


class TestOperatorDenied:

    def test_cannot_set_prices(self, client, open_period, operator_headers, items):
        rice, _ = items
        resp = client.post(
            f"/api/periods/{open_period.id}/prices",
            json={"prices": [{"item_id": rice.id, "price": 1}]},
            headers=operator_headers,
        )
        assert resp.status_code == 403

    def test_cannot_close_period(self, client, open_period, operator_headers):
        resp = client.post(f"/api/periods/{open_period.id}/close", headers=operator_headers)
        assert resp.status_code == 403

    def test_cannot_view_approvals(self, client, open_period, operator_headers):
        resp = client.get("/api/approvals", headers=operator_headers)
        assert resp.status_code == 403

    def test_cannot_view_ledger(self, client, open_period, operator_headers):
        resp = client.get("/api/ledger", headers=operator_headers)
        assert resp.status_code == 403

    def test_cannot_view_unassigned_location_stock(self, client, open_period, operator_headers, store):
        resp = client.get(f"/api/locations/{store.id}/stock", headers=operator_headers)
        assert resp.status_code == 403


# =============================================================================
# LOCATION SCOPING
# =============================================================================


class TestLocationScoping:

    def test_operator_sees_only_assigned_locations(self, client, open_period, operator_headers, kitchen):
        resp = client.get("/api/locations", headers=operator_headers)
        assert resp.status_code == 200
        assert [loc["id"] for loc in resp.json["locations"]] == [kitchen.id]
        assert resp.json["locations"][0]["access_level"] == "POST"

    def test_supervisor_sees_every_location(self, client, open_period, supervisor_headers, kitchen, store):
        resp = client.get("/api/locations", headers=supervisor_headers)
        assert resp.status_code == 200
        assert {loc["id"] for loc in resp.json["locations"]} == {kitchen.id, store.id}

    def test_access_levels(self, db_session, operator, supervisor, kitchen, store):
        assert access_service.can_post_at_location(operator, kitchen.id)
        assert not access_service.can_view_location(operator, store.id)
        assert access_service.can_post_at_location(supervisor, store.id)
        assert access_service.accessible_location_ids(supervisor) is None


# =============================================================================
# LOGIN / PUBLIC
# =============================================================================


class TestLogin:

    def test_login_returns_token_and_permissions(self, client, operator):
        resp = client.post("/api/auth/login", json={"username": "operator", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.json["token"]
        assert "POST_DELIVERIES" in resp.json["permissions"]
        assert "MANAGE_PERIODS" not in resp.json["permissions"]

    def test_wrong_password(self, client, operator):
        assert get_auth_token(client, "operator", "wrong-password") is None

    def test_session_endpoint(self, client, operator_headers):
        resp = client.get("/api/auth/session", headers=operator_headers)
        assert resp.status_code == 200

    def test_logout_revokes_token(self, client, operator):
        token = get_auth_token(client, "operator")
        headers = {"Authorization": f"Bearer {token}"}
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/session", headers=headers).status_code == 401

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
