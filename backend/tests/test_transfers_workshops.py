"""
Transfer and workshop tests: item-level approval, inventory moves and the
workshop intake/processing/return loop.
"""

import pytest

from app.models.entities import ENTITY_BRANCH, ENTITY_WORKSHOP
from app.time_utils import today


@pytest.fixture
def send(client, admin_headers, branch):
    """POST a transfer from the branch; returns the response."""
    def _send(cloth_ids, to_type, to_id, headers=None, from_id=None):
        return client.post(
            "/api/v1/transfers",
            json={
                "from_entity_type": ENTITY_BRANCH,
                "from_entity_id": from_id or branch.id,
                "to_entity_type": to_type,
                "to_entity_id": to_id,
                "cloth_ids": cloth_ids,
                "transfer_date": today().isoformat(),
            },
            headers=headers or admin_headers,
        )
    return _send


def _cloth(client, headers, cloth_id):
    return client.get(f"/api/v1/clothes/{cloth_id}", headers=headers).get_json()


class TestCreateTransfer:

    def test_create(self, send, make_cloth, other_branch):
        clothes = [make_cloth(), make_cloth()]
        resp = send([c.id for c in clothes], ENTITY_BRANCH, other_branch.id)

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["status"] == "pending"
        assert [i["status"] for i in data["items"]] == ["pending", "pending"]
        assert [a["action"] for a in data["actions"]] == ["created"]

    def test_same_entity_rejected(self, send, make_cloth, branch):
        resp = send([make_cloth().id], ENTITY_BRANCH, branch.id)
        assert resp.status_code == 422
        assert "to_entity_id" in resp.get_json()["errors"]

    def test_cloth_must_be_in_source(self, send, make_cloth, other_branch, branch):
        stranger = make_cloth(entity_id=other_branch.id)
        resp = send([stranger.id], ENTITY_BRANCH, other_branch.id)
        assert resp.status_code == 422
        assert "cloth_ids.0" in resp.get_json()["errors"]

    def test_cloth_in_pending_transfer_rejected(self, send, make_cloth, other_branch, workshop):
        cloth = make_cloth()
        assert send([cloth.id], ENTITY_BRANCH, other_branch.id).status_code == 201
        resp = send([cloth.id], ENTITY_WORKSHOP, workshop.id)
        assert resp.status_code == 422
        assert "cloth_ids.0" in resp.get_json()["errors"]


class TestDecideTransfer:

    def test_approve_moves_clothes(self, client, admin_headers, send, make_cloth, other_branch):
        cloth = make_cloth()
        transfer = send([cloth.id], ENTITY_BRANCH, other_branch.id).get_json()

        resp = client.post(f"/api/v1/transfers/{transfer['id']}/approve", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "approved"

        moved = _cloth(client, admin_headers, cloth.id)
        assert moved["entity_type"] == ENTITY_BRANCH
        assert moved["entity_id"] == other_branch.id

    def test_reject_keeps_clothes(self, client, admin_headers, send, make_cloth, other_branch, branch):
        cloth = make_cloth()
        transfer = send([cloth.id], ENTITY_BRANCH, other_branch.id).get_json()

        resp = client.post(f"/api/v1/transfers/{transfer['id']}/reject", headers=admin_headers)
        assert resp.get_json()["status"] == "rejected"
        assert _cloth(client, admin_headers, cloth.id)["entity_id"] == branch.id

    def test_partial_decisions(self, client, admin_headers, send, make_cloth, other_branch):
        clothes = [make_cloth() for _ in range(3)]
        transfer = send([c.id for c in clothes], ENTITY_BRANCH, other_branch.id).get_json()
        item_ids = [i["id"] for i in transfer["items"]]

        resp = client.post(
            f"/api/v1/transfers/{transfer['id']}/approve-items", json={"item_ids": [item_ids[0]]},
            headers=admin_headers,
        )
        assert resp.get_json()["status"] == "partially_pending"

        resp = client.post(
            f"/api/v1/transfers/{transfer['id']}/reject-items", json={"item_ids": item_ids[1:]},
            headers=admin_headers,
        )
        assert resp.get_json()["status"] == "partially_approved"

    def test_decided_item_cannot_be_decided_again(self, client, admin_headers, send, make_cloth, other_branch):
        clothes = [make_cloth(), make_cloth()]
        transfer = send([c.id for c in clothes], ENTITY_BRANCH, other_branch.id).get_json()
        first = transfer["items"][0]["id"]

        client.post(f"/api/v1/transfers/{transfer['id']}/approve-items", json={"item_ids": [first]},
                    headers=admin_headers)
        resp = client.post(
            f"/api/v1/transfers/{transfer['id']}/reject-items", json={"item_ids": [first]}, headers=admin_headers
        )
        assert resp.status_code == 422
        assert "item_ids.0" in resp.get_json()["errors"]

    def test_only_pending_can_be_deleted(self, client, admin_headers, send, make_cloth, other_branch):
        transfer = send([make_cloth().id], ENTITY_BRANCH, other_branch.id).get_json()
        client.post(f"/api/v1/transfers/{transfer['id']}/approve", headers=admin_headers)
        assert client.delete(f"/api/v1/transfers/{transfer['id']}", headers=admin_headers).status_code == 422

        pending = send([make_cloth().id], ENTITY_BRANCH, other_branch.id).get_json()
        assert client.delete(f"/api/v1/transfers/{pending['id']}", headers=admin_headers).status_code == 204

    def test_status_filter(self, client, admin_headers, send, make_cloth, other_branch):
        approved = send([make_cloth().id], ENTITY_BRANCH, other_branch.id).get_json()
        client.post(f"/api/v1/transfers/{approved['id']}/approve", headers=admin_headers)
        send([make_cloth().id], ENTITY_BRANCH, other_branch.id)

        data = client.get("/api/v1/transfers", query_string={"status": "approved"}, headers=admin_headers).get_json()
        assert [t["id"] for t in data["data"]] == [approved["id"]]


class TestWorkshopFlow:

    @pytest.fixture
    def staff_headers(self, make_user, login, branch, workshop):
        return login(make_user("employee", assignments=[(ENTITY_BRANCH, branch.id), (ENTITY_WORKSHOP, workshop.id)]))

    @pytest.fixture
    def received(self, client, admin_headers, send, make_cloth, workshop):
        """A cloth sent to the workshop and accepted there."""
        cloth = make_cloth()
        transfer = send([cloth.id], ENTITY_WORKSHOP, workshop.id).get_json()
        resp = client.post(f"/api/v1/workshops/{workshop.id}/approve-transfer/{transfer['id']}",
                           headers=admin_headers)
        assert resp.status_code == 200, resp.get_json()
        return cloth

    def test_pending_transfers(self, client, admin_headers, send, make_cloth, workshop):
        transfer = send([make_cloth().id], ENTITY_WORKSHOP, workshop.id).get_json()
        data = client.get(f"/api/v1/workshops/{workshop.id}/pending-transfers", headers=admin_headers).get_json()
        assert [t["id"] for t in data["data"]] == [transfer["id"]]

    def test_approval_logs_receipt(self, client, admin_headers, workshop, received):
        data = client.get(f"/api/v1/workshops/{workshop.id}/clothes", headers=admin_headers).get_json()
        assert [(c["id"], c["workshop_status"]) for c in data["data"]] == [(received.id, "received")]

    def test_transfer_for_other_entity_rejected(self, client, admin_headers, send, make_cloth, workshop, other_branch):
        transfer = send([make_cloth().id], ENTITY_BRANCH, other_branch.id).get_json()
        resp = client.post(f"/api/v1/workshops/{workshop.id}/approve-transfer/{transfer['id']}",
                           headers=admin_headers)
        assert resp.status_code == 422
        assert "transfer_id" in resp.get_json()["errors"]

    def test_ready_notifies_branch(self, client, admin_headers, staff_headers, workshop, received):
        for status in ("processing", "ready_for_delivery"):
            resp = client.post(
                f"/api/v1/workshops/{workshop.id}/update-cloth-status",
                json={"cloth_id": received.id, "status": status},
                headers=admin_headers,
            )
            assert resp.status_code == 200
            assert resp.get_json()["cloth_status"] == status

        notes = client.get("/api/v1/notifications", headers=staff_headers).get_json()["data"]
        assert any(n["type"] == "workshop_cloth_ready" for n in notes)

        history = client.get(
            f"/api/v1/workshops/{workshop.id}/cloth-history/{received.id}", headers=admin_headers
        ).get_json()
        assert history["current_status"] == "ready_for_delivery"

    def test_invalid_status(self, client, admin_headers, workshop, received):
        resp = client.post(
            f"/api/v1/workshops/{workshop.id}/update-cloth-status",
            json={"cloth_id": received.id, "status": "washed"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "status" in resp.get_json()["errors"]

    def test_cloth_outside_workshop_rejected(self, client, admin_headers, workshop, make_cloth):
        resp = client.post(
            f"/api/v1/workshops/{workshop.id}/update-cloth-status",
            json={"cloth_id": make_cloth().id, "status": "processing"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "cloth_id" in resp.get_json()["errors"]

    def test_return_cloth_to_branch(self, client, admin_headers, workshop, branch, received):
        resp = client.post(f"/api/v1/workshops/{workshop.id}/return-cloth", json={"cloth_id": received.id},
                           headers=admin_headers)
        assert resp.status_code == 201
        transfer = resp.get_json()
        assert (transfer["from_entity_type"], transfer["from_entity_id"]) == (ENTITY_WORKSHOP, workshop.id)
        assert (transfer["to_entity_type"], transfer["to_entity_id"]) == (ENTITY_BRANCH, branch.id)

        again = client.post(f"/api/v1/workshops/{workshop.id}/return-cloth", json={"cloth_id": received.id},
                            headers=admin_headers)
        assert again.status_code == 422

        client.post(f"/api/v1/transfers/{transfer['id']}/approve", headers=admin_headers)
        assert _cloth(client, admin_headers, received.id)["entity_id"] == branch.id

    def test_logs(self, client, admin_headers, workshop, received):
        data = client.get(
            f"/api/v1/workshops/{workshop.id}/logs", query_string={"action": "received"}, headers=admin_headers
        ).get_json()
        assert data["total"] == 1
        assert data["data"][0]["cloth_id"] == received.id
