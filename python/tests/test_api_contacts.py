"""
API tests for contacts and interactions.
"""

import json
from datetime import timedelta

import pytest

from database.models import UserRole, utcnow


pytestmark = pytest.mark.usefixtures("catalogue")


@pytest.fixture
def block(make_block):
    return make_block(code="KYIV", name="Kyiv")


@pytest.fixture
def other_block(make_block):
    return make_block(code="LVIV", name="Lviv")


@pytest.fixture
def assigned_curator(curator, block, assign):
    assign(block, curator)
    return curator


@pytest.fixture
def create_contact(client, auth):
    """POST a contact and return the response body."""

    def _create(user, block, full_name="Ivan Petrenko", **fields):
        response = client.post(
            "/api/contacts", json={"block_id": block.id, "full_name": full_name, **fields}, headers=auth(user)
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


# ============================================
# CONTACTS
# ============================================

class TestCreateContact:
    """POST /api/contacts"""

    def test_created_with_display_id(self, client, block, assigned_curator, auth):
        response = client.post(
            "/api/contacts", json={"block_id": block.id, "full_name": "Ivan Petrenko"}, headers=auth(assigned_curator)
        )
        assert response.status_code == 201
        assert response.json()["contact_id"] == "KYIV-001"
        assert set(response.json()) == {"id", "contact_id"}

    def test_unknown_reference_is_not_found(self, client, block, assigned_curator, auth):
        response = client.post(
            "/api/contacts",
            json={"block_id": block.id, "full_name": "Ivan Petrenko", "influence_status_id": 9999},
            headers=auth(assigned_curator)
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
        assert "influence_status_id" in response.json()["error"]["message"]

    def test_curator_outside_block(self, client, block, curator, auth):
        response = client.post(
            "/api/contacts", json={"block_id": block.id, "full_name": "Ivan"}, headers=auth(curator)
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCESS_DENIED"

    def test_analyst_cannot_create(self, client, block, analyst, auth):
        response = client.post(
            "/api/contacts", json={"block_id": block.id, "full_name": "Ivan"}, headers=auth(analyst)
        )
        assert response.status_code == 403

    def test_missing_name(self, client, block, admin, auth):
        assert client.post("/api/contacts", json={"block_id": block.id}, headers=auth(admin)).status_code == 422

    def test_blank_name(self, client, block, admin, auth):
        response = client.post(
            "/api/contacts", json={"block_id": block.id, "full_name": "   "}, headers=auth(admin)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_block(self, client, admin, auth):
        response = client.post("/api/contacts", json={"block_id": 999, "full_name": "Ivan"}, headers=auth(admin))
        assert response.status_code == 404


class TestReadContacts:
    """Listing and detail"""

    def test_list_is_paged_and_decrypted(self, client, block, admin, create_contact, auth):
        for name in ("Anna", "Bohdan", "Ivan"):
            create_contact(admin, block, full_name=name, position="Adviser")

        page = client.get("/api/contacts", params={"page_size": 2}, headers=auth(admin)).json()
        assert page["total"] == 3
        assert page["total_pages"] == 2
        assert len(page["data"]) == 2
        assert page["data"][0]["block_code"] == "KYIV"
        assert {item["full_name"] for item in page["data"]} <= {"Anna", "Bohdan", "Ivan"}

    def test_curator_sees_own_blocks(self, client, block, other_block, admin, assigned_curator,
                                     create_contact, auth):
        create_contact(admin, block, full_name="Mine")
        create_contact(admin, other_block, full_name="Theirs")
        page = client.get("/api/contacts", headers=auth(assigned_curator)).json()
        assert [item["full_name"] for item in page["data"]] == ["Mine"]

    def test_search(self, client, block, other_block, admin, create_contact, auth):
        create_contact(admin, block)
        create_contact(admin, other_block)
        page = client.get("/api/contacts", params={"search": "LVIV"}, headers=auth(admin)).json()
        assert [item["contact_id"] for item in page["data"]] == ["LVIV-001"]

    def test_detail(self, client, block, admin, create_contact, auth):
        created = create_contact(admin, block, notes="Prefers email", influence_status_id=2)
        detail = client.get(f"/api/contacts/{created['id']}", headers=auth(admin)).json()
        assert detail["full_name"] == "Ivan Petrenko"
        assert detail["notes"] == "Prefers email"
        assert detail["responsible_curator_login"] == "admin"
        assert detail["interactions"] == []
        assert detail["status_history"] == []
        assert detail["is_overdue"] is False

    def test_detail_outside_blocks(self, client, other_block, admin, assigned_curator, create_contact, auth):
        created = create_contact(admin, other_block)
        response = client.get(f"/api/contacts/{created['id']}", headers=auth(assigned_curator))
        assert response.status_code == 403

    def test_missing_contact(self, client, admin, auth):
        response = client.get("/api/contacts/999", headers=auth(admin))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_overdue(self, client, block, admin, create_contact, auth):
        late = create_contact(admin, block, full_name="Late",
                              next_touch_date=(utcnow() - timedelta(days=2)).isoformat())
        create_contact(admin, block, full_name="On time",
                       next_touch_date=(utcnow() + timedelta(days=2)).isoformat())
        overdue = client.get("/api/contacts/overdue", headers=auth(admin)).json()
        assert [c["id"] for c in overdue] == [late["id"]]
        assert overdue[0]["is_overdue"] is True


class TestUpdateAndDeleteContact:
    """PUT and DELETE /api/contacts/{id}"""

    def test_partial_update(self, client, block, assigned_curator, create_contact, auth):
        created = create_contact(assigned_curator, block, position="Deputy", notes="Keep")
        response = client.put(
            f"/api/contacts/{created['id']}", json={"position": "Minister"}, headers=auth(assigned_curator)
        )
        assert response.status_code == 200
        assert response.json()["position"] == "Minister"
        assert response.json()["notes"] == "Keep"
        assert response.json()["full_name"] == "Ivan Petrenko"

    def test_status_change_history(self, client, block, admin, create_contact, auth):
        created = create_contact(admin, block, influence_status_id=1)
        detail = client.put(
            f"/api/contacts/{created['id']}", json={"influence_status_id": 3}, headers=auth(admin)
        ).json()
        assert detail["influence_status_id"] == 3
        assert [(h["previous_status"], h["new_status"]) for h in detail["status_history"]] == [("1", "3")]
        assert detail["status_history"][0]["changed_by_login"] == "admin"

    def test_update_outside_blocks(self, client, other_block, admin, assigned_curator, create_contact, auth):
        created = create_contact(admin, other_block)
        response = client.put(
            f"/api/contacts/{created['id']}", json={"position": "X"}, headers=auth(assigned_curator)
        )
        assert response.status_code == 403

    def test_delete_is_admin_only(self, client, block, admin, assigned_curator, create_contact, auth):
        created = create_contact(assigned_curator, block)
        assert client.delete(f"/api/contacts/{created['id']}", headers=auth(assigned_curator)).status_code == 403

        assert client.delete(f"/api/contacts/{created['id']}", headers=auth(admin)).status_code == 200
        assert client.get(f"/api/contacts/{created['id']}", headers=auth(admin)).status_code == 404
        assert client.delete(f"/api/contacts/{created['id']}", headers=auth(admin)).status_code == 404


# ============================================
# INTERACTIONS
# ============================================

class TestInteractionsApi:
    """Touch records"""

    @pytest.fixture
    def contact(self, block, assigned_curator, create_contact):
        return create_contact(assigned_curator, block, influence_status_id=1)

    def post_interaction(self, client, auth, user, contact, **fields):
        return client.post(
            "/api/interactions", json={"contact_id": contact["id"], **fields}, headers=auth(user)
        )

    def test_create(self, client, contact, assigned_curator, auth):
        next_touch = utcnow() + timedelta(days=7)
        response = self.post_interaction(
            client, auth, assigned_curator, contact,
            interaction_type_id=2, comment="Coffee meeting", next_touch_date=next_touch.isoformat()
        )
        assert response.status_code == 201
        body = response.json()
        assert body["comment"] == "Coffee meeting"
        assert body["contact_display_id"] == "KYIV-001"
        assert body["curator_login"] == "curator"

        detail = client.get(f"/api/contacts/{contact['id']}", headers=auth(assigned_curator)).json()
        assert [i["id"] for i in detail["interactions"]] == [body["id"]]
        assert detail["last_interaction_date"] is not None
        assert detail["next_touch_date"] is not None

    def test_status_change_payload(self, client, contact, assigned_curator, auth):
        self.post_interaction(
            client, auth, assigned_curator, contact,
            status_change_json=json.dumps({"oldStatus": "1", "newStatus": "2"})
        )
        detail = client.get(f"/api/contacts/{contact['id']}", headers=auth(assigned_curator)).json()
        assert detail["influence_status_id"] == 2
        assert detail["status_history"][0]["new_status"] == "2"

    def test_invalid_status_change_still_records(self, client, contact, assigned_curator, auth):
        response = self.post_interaction(
            client, auth, assigned_curator, contact, status_change_json='{"newStatus": "B"}'
        )
        assert response.status_code == 201
        detail = client.get(f"/api/contacts/{contact['id']}", headers=auth(assigned_curator)).json()
        assert detail["influence_status_id"] == 1

    def test_unknown_status_id_still_records(self, client, contact, assigned_curator, auth):
        response = self.post_interaction(
            client, auth, assigned_curator, contact, comment="Call", status_change_json='{"newStatus": 9999}'
        )
        assert response.status_code == 201
        detail = client.get(f"/api/contacts/{contact['id']}", headers=auth(assigned_curator)).json()
        assert detail["influence_status_id"] == 1
        assert detail["status_history"] == []
        assert [i["id"] for i in detail["interactions"]] == [response.json()["id"]]

    def test_unknown_result_is_not_found(self, client, contact, assigned_curator, auth):
        response = self.post_interaction(client, auth, assigned_curator, contact, result_id=9999)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_create_without_access(self, client, contact, make_user, auth):
        stranger = make_user(UserRole.CURATOR)
        assert self.post_interaction(client, auth, stranger, contact).status_code == 403

    def test_create_for_missing_contact(self, client, admin, auth):
        response = client.post("/api/interactions", json={"contact_id": 999}, headers=auth(admin))
        assert response.status_code == 404

    def test_list_and_recent(self, client, contact, assigned_curator, auth):
        now = utcnow()
        created = [
            self.post_interaction(
                client, auth, assigned_curator, contact,
                interaction_date=(now - timedelta(days=days)).isoformat()
            ).json()["id"]
            for days in (3, 2, 1)
        ]

        page = client.get("/api/interactions", params={"contact_id": contact["id"]},
                          headers=auth(assigned_curator)).json()
        assert page["total"] == 3

        recent = client.get("/api/interactions/recent", params={"count": 2},
                            headers=auth(assigned_curator)).json()
        assert [i["id"] for i in recent] == [created[2], created[1]]

    def test_get_and_update(self, client, contact, assigned_curator, auth):
        created = self.post_interaction(client, auth, assigned_curator, contact, comment="First", result_id=1).json()

        fetched = client.get(f"/api/interactions/{created['id']}", headers=auth(assigned_curator))
        assert fetched.json()["comment"] == "First"

        updated = client.put(
            f"/api/interactions/{created['id']}", json={"result_id": 4}, headers=auth(assigned_curator)
        ).json()
        assert updated["result_id"] == 4
        assert updated["comment"] == "First"

    def test_get_missing(self, client, admin, auth):
        assert client.get("/api/interactions/999", headers=auth(admin)).status_code == 404

    def test_deactivate_is_admin_only(self, client, contact, admin, assigned_curator, auth):
        created = self.post_interaction(client, auth, assigned_curator, contact).json()
        url = f"/api/interactions/{created['id']}/deactivate"

        assert client.put(url, headers=auth(assigned_curator)).status_code == 403

        response = client.put(url, headers=auth(admin))
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        page = client.get("/api/interactions", headers=auth(admin)).json()
        assert page["total"] == 0
        assert client.put(url, headers=auth(admin)).status_code == 404

    def test_analyst_sees_no_interactions(self, client, contact, assigned_curator, analyst, auth):
        self.post_interaction(client, auth, assigned_curator, contact)
        page = client.get("/api/interactions", headers=auth(analyst)).json()
        assert page["total"] == 0
