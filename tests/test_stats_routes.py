"""
tests/test_stats_routes.py -- Integration tests for /api/v1/stats/*.

Coverage:
  - /stats/admin is PLATFORM_ADMIN only
  - /stats/institution/{id} passes for the owning INSTITUTION_ADMIN and the
    platform admin, and is 403 across tenants
"""

from __future__ import annotations

from conftest import ADMIN, EDITOR, INST_ADMIN, REGULATOR, SECTOR3, SECTOR6, ApiContext


class TestAdminStats:
    def test_admin_stats_shape(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/stats/admin", headers=api_client.headers(ADMIN))
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["users"]["total"] >= 4
        assert data["users"]["byRole"]["PLATFORM_ADMIN"] >= 1
        assert data["users"]["byRole"]["REGULATOR_VIEWER"] >= 1
        assert data["users"]["active"] + data["users"]["inactive"] == data["users"]["total"]
        assert data["institutions"]["total"] >= 4
        assert data["institutions"]["byType"]["PMB"] >= 1
        assert 0 < len(data["recentUsers"]) <= 10

    def test_recent_users_carry_first_institution(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/stats/admin", headers=api_client.headers(ADMIN))
        recent = {u["email"]: u for u in resp.json()["data"]["recentUsers"]}
        assert recent[EDITOR]["institutionName"] == SECTOR3

    def test_regulator_is_forbidden(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/stats/admin", headers=api_client.headers(REGULATOR))
        assert resp.status_code == 403

    def test_unauthenticated(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/v1/stats/admin").status_code == 401


class TestInstitutionStats:
    def test_owning_institution_admin(self, api_client: ApiContext) -> None:
        sector3 = api_client.ids[SECTOR3]
        resp = api_client.client.get(f"/api/v1/stats/institution/{sector3}", headers=api_client.headers(INST_ADMIN))
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["institution"]["name"] == SECTOR3
        assert data["users"]["byRole"]["INSTITUTION_ADMIN"] >= 1
        assert data["users"]["byRole"]["INSTITUTION_EDITOR"] >= 1
        roles = {u["email"]: u["institutionRole"] for u in data["recentUsers"]}
        assert roles[EDITOR] == "INSTITUTION_EDITOR"

    def test_cross_tenant_is_forbidden(self, api_client: ApiContext) -> None:
        """An INSTITUTION_ADMIN of A requesting stats for B gets 403."""
        sector6 = api_client.ids[SECTOR6]
        resp = api_client.client.get(f"/api/v1/stats/institution/{sector6}", headers=api_client.headers(INST_ADMIN))
        assert resp.status_code == 403

    def test_editor_is_forbidden(self, api_client: ApiContext) -> None:
        sector3 = api_client.ids[SECTOR3]
        resp = api_client.client.get(f"/api/v1/stats/institution/{sector3}", headers=api_client.headers(EDITOR))
        assert resp.status_code == 403

    def test_platform_admin_bypass(self, api_client: ApiContext) -> None:
        sector6 = api_client.ids[SECTOR6]
        resp = api_client.client.get(f"/api/v1/stats/institution/{sector6}", headers=api_client.headers(ADMIN))
        assert resp.status_code == 200
        assert resp.json()["data"]["users"]["total"] == 0

    def test_unknown_institution_is_404(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/stats/institution/99999", headers=api_client.headers(ADMIN))
        assert resp.status_code == 404

    def test_non_integer_id_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/stats/institution/abc", headers=api_client.headers(ADMIN))
        assert resp.status_code == 400

    def test_out_of_range_id_is_400(self, api_client: ApiContext) -> None:
        """IDs beyond the 64-bit integer range are rejected before reaching the database."""
        resp = api_client.client.get(
            "/api/v1/stats/institution/99999999999999999999", headers=api_client.headers(ADMIN)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_out_of_range_id_is_400_through_institution_guard(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(
            "/api/v1/stats/institution/99999999999999999999", headers=api_client.headers(INST_ADMIN)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_zero_id_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/v1/stats/institution/0", headers=api_client.headers(ADMIN))
        assert resp.status_code == 400
