"""
API tests for the watchlist and the dashboards.
"""

from datetime import timedelta

import pytest

from database.models import utcnow


# ============================================
# WATCHLIST
# ============================================

pytestmark = pytest.mark.usefixtures("catalogue")


@pytest.fixture
def create_item(client, auth):
    def _create(user, **fields):
        payload = {"full_name": "Risky Person", **fields}
        response = client.post("/api/watchlist", json=payload, headers=auth(user))
        assert response.status_code == 201, response.text
        return response.json()

    return _create


class TestWatchlistAccess:
    """Admins and threat analysts only"""

    @pytest.mark.parametrize("path", [
        "/api/watchlist",
        "/api/watchlist/requiring-check",
        "/api/watchlist/statistics",
    ])
    def test_curator_is_forbidden(self, client, curator, auth, path):
        assert client.get(path, headers=auth(curator)).status_code == 403

    def test_analyst_and_admin_allowed(self, client, analyst, admin, auth):
        assert client.get("/api/watchlist", headers=auth(analyst)).status_code == 200
        assert client.get("/api/watchlist", headers=auth(admin)).status_code == 200

    def test_delete_is_admin_only(self, client, analyst, admin, create_item, auth):
        item = create_item(analyst)
        assert client.delete(f"/api/watchlist/{item['id']}", headers=auth(analyst)).status_code == 403
        assert client.delete(f"/api/watchlist/{item['id']}", headers=auth(admin)).status_code == 200
        assert client.get(f"/api/watchlist/{item['id']}", headers=auth(admin)).status_code == 404


class TestWatchlistApi:
    """Watchlist operations"""

    def test_create_defaults(self, client, analyst, create_item):
        item = create_item(analyst)
        assert item["risk_level"] == "Low"
        assert item["monitoring_frequency"] == "Monthly"
        assert item["watch_owner_login"] == "analyst"
        assert item["is_active"] is True

    def test_invalid_enum(self, client, analyst, auth):
        response = client.post(
            "/api/watchlist", json={"full_name": "X", "risk_level": "Extreme"}, headers=auth(analyst)
        )
        assert response.status_code == 422

    def test_unknown_risk_sphere_is_not_found(self, client, analyst, auth):
        response = client.post(
            "/api/watchlist", json={"full_name": "X", "risk_sphere_id": 9999}, headers=auth(analyst)
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_list_order_and_filter(self, client, analyst, create_item, auth):
        create_item(analyst, full_name="Low")
        create_item(analyst, full_name="Critical", risk_level="Critical")
        create_item(analyst, full_name="High", risk_level="High")

        page = client.get("/api/watchlist", headers=auth(analyst)).json()
        assert [i["full_name"] for i in page["data"]] == ["Critical", "High", "Low"]

        high = client.get("/api/watchlist", params={"risk_level": "High"}, headers=auth(analyst)).json()
        assert high["total"] == 1

    def test_update_records_risk_history(self, client, analyst, create_item, auth):
        item = create_item(analyst, role_status="MP")
        updated = client.put(
            f"/api/watchlist/{item['id']}", json={"risk_level": "High"}, headers=auth(analyst)
        ).json()
        assert updated["risk_level"] == "High"
        assert updated["role_status"] == "MP"

        history = client.get(f"/api/watchlist/{item['id']}/history", headers=auth(analyst)).json()
        assert len(history) == 1
        assert history[0]["old_risk_level"] == "Low"
        assert history[0]["new_risk_level"] == "High"

    def test_record_check(self, client, analyst, create_item, auth):
        item = create_item(analyst, next_check_date=(utcnow() - timedelta(days=1)).isoformat())
        due = client.get("/api/watchlist/requiring-check", headers=auth(analyst)).json()
        assert [i["id"] for i in due] == [item["id"]]

        checked = client.post(
            f"/api/watchlist/{item['id']}/check",
            json={
                "next_check_date": (utcnow() + timedelta(days=30)).isoformat(),
                "dynamics_update": "Quiet month",
                "new_risk_level": "Medium",
                "comment": "Reviewed",
            },
            headers=auth(analyst),
        ).json()
        assert checked["last_check_date"] is not None
        assert checked["dynamics_description"] == "Quiet month"
        assert checked["risk_level"] == "Medium"
        assert client.get("/api/watchlist/requiring-check", headers=auth(analyst)).json() == []

    def test_missing_item(self, client, analyst, auth):
        assert client.get("/api/watchlist/999", headers=auth(analyst)).status_code == 404
        assert client.post("/api/watchlist/999/check", json={}, headers=auth(analyst)).status_code == 404
        assert client.get("/api/watchlist/999/history", headers=auth(analyst)).status_code == 404

    def test_statistics(self, client, analyst, create_item, auth):
        create_item(analyst, risk_level="High", risk_sphere_id=4)
        create_item(analyst, monitoring_frequency="Weekly")
        stats = client.get("/api/watchlist/statistics", headers=auth(analyst)).json()
        assert stats["total"] == 2
        assert stats["by_risk_level"] == {"High": 1, "Low": 1}
        assert stats["by_risk_sphere"] == {"4": 1}
        assert stats["by_monitoring_frequency"] == {"Monthly": 1, "Weekly": 1}


# ============================================
# DASHBOARD
# ============================================

@pytest.fixture
def activity(client, auth, admin, curator, make_block, assign):
    """A block with one contact and one recent interaction, recorded by the curator."""
    block = make_block(code="KYIV", name="Kyiv")
    assign(block, curator)
    contact = client.post(
        "/api/contacts",
        json={"block_id": block.id, "full_name": "Ivan Petrenko", "influence_status_id": 1},
        headers=auth(curator),
    ).json()
    client.post(
        "/api/interactions",
        json={"contact_id": contact["id"], "interaction_type_id": 5, "comment": "Call"},
        headers=auth(curator),
    )
    return {"block": block, "contact": contact}


class TestDashboardApi:
    """Dashboards by role"""

    def test_curator_dashboard(self, client, curator, activity, auth):
        response = client.get("/api/dashboard/curator", headers=auth(curator))
        assert response.status_code == 200
        body = response.json()
        assert body["total_contacts"] == 1
        assert body["interactions_last_month"] == 1
        assert body["recent_interactions"][0]["contact_name"] == "Ivan Petrenko"
        assert body["interactions_by_type"] == {"5": 1}

    def test_curator_dashboard_forbidden_for_analyst(self, client, analyst, auth):
        assert client.get("/api/dashboard/curator", headers=auth(analyst)).status_code == 403

    def test_admin_dashboard(self, client, admin, activity, auth):
        body = client.get("/api/dashboard/admin", headers=auth(admin)).json()
        assert body["total_contacts"] == 1
        assert body["total_interactions"] == 1
        assert body["contacts_by_block"] == {"Kyiv": 1}
        assert body["top_curators_by_activity"] == {"curator": 1}
        assert body["recent_audit_logs"][0]["user_login"] == "curator"

    def test_admin_dashboard_forbidden_for_curator(self, client, curator, auth):
        assert client.get("/api/dashboard/admin", headers=auth(curator)).status_code == 403

    def test_statistics_for_any_role(self, client, curator, analyst, activity, auth):
        mine = client.get("/api/dashboard/statistics", headers=auth(curator)).json()
        assert mine["total_interactions"] == 1
        assert mine["unique_contacts"] == 1

        theirs = client.get("/api/dashboard/statistics", headers=auth(analyst))
        assert theirs.status_code == 200
        assert theirs.json()["total_interactions"] == 0

    def test_statistics_period(self, client, admin, activity, auth):
        params = {
            "from_date": (utcnow() - timedelta(days=60)).isoformat(),
            "to_date": (utcnow() - timedelta(days=30)).isoformat(),
        }
        body = client.get("/api/dashboard/statistics", params=params, headers=auth(admin)).json()
        assert body["total_interactions"] == 0
