"""
Tailoring workflow tests: order stages, factory assignment and capacity,
and the factory-side item pipeline.
"""

from datetime import timedelta

import pytest

from app.models.entities import ENTITY_FACTORY
from app.time_utils import today


@pytest.fixture
def tailoring_order(admin_headers, make_cloth, create_order):
    def _create(**extra):
        item = {"cloth_id": make_cloth().id, "type": "tailoring", "price": 1500, "waist_size": "68"}
        resp = create_order(admin_headers, [item], **extra)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _create


def _stage(client, headers, order_id, stage, **extra):
    return client.post(
        f"/api/v1/orders/{order_id}/tailoring-stage", json={"stage": stage, **extra}, headers=headers
    )


@pytest.fixture
def sent_order(client, admin_headers, tailoring_order, factory):
    """Tailoring order handed to the factory."""
    order = tailoring_order()
    assert _stage(client, admin_headers, order["id"], "received").status_code == 200
    resp = _stage(client, admin_headers, order["id"], "sent_to_factory", factory_id=factory.id, expected_days=7)
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()


@pytest.fixture
def factory_headers(make_user, login, factory):
    return login(make_user("factory_user", assignments=[(ENTITY_FACTORY, factory.id)]))


class TestTailoringStages:

    def test_item_measurements_are_kept(self, tailoring_order):
        order = tailoring_order()
        assert order["items"][0]["measurements"] == {"waist_size": "68"}

    def test_stages_move_one_step(self, client, admin_headers, tailoring_order):
        order = tailoring_order()
        resp = _stage(client, admin_headers, order["id"], "in_production")
        assert resp.status_code == 422
        assert "stage" in resp.get_json()["errors"]

        resp = _stage(client, admin_headers, order["id"], "received")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["tailoring_stage"] == "received"
        assert data["allowed_next_stages"] == ["sent_to_factory"]

    def test_sent_to_factory_needs_factory(self, client, admin_headers, tailoring_order):
        order = tailoring_order()
        _stage(client, admin_headers, order["id"], "received")
        resp = _stage(client, admin_headers, order["id"], "sent_to_factory")
        assert resp.status_code == 422
        assert "factory_id" in resp.get_json()["errors"]

    def test_sent_to_factory_hands_items_over(self, sent_order, factory):
        assert sent_order["assigned_factory_id"] == factory.id
        assert sent_order["sent_to_factory_date"] == today().isoformat()
        assert sent_order["expected_completion_date"] == (today() + timedelta(days=7)).isoformat()
        assert sent_order["items"][0]["factory_status"] == "pending_factory_approval"

    def test_stage_logs(self, client, admin_headers, sent_order):
        data = client.get(f"/api/v1/orders/{sent_order['id']}/stage-logs", headers=admin_headers).get_json()
        assert data["current_stage"] == "sent_to_factory"
        assert [log["to_stage"] for log in data["data"]] == ["sent_to_factory", "received"]

    def test_non_tailoring_order_rejected(self, client, admin_headers, make_cloth, rent_item, create_order):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        resp = _stage(client, admin_headers, order["id"], "received")
        assert resp.status_code == 422
        assert "order" in resp.get_json()["errors"]

    def test_factory_user_notified(self, client, factory_headers, sent_order):
        data = client.get("/api/v1/notifications", headers=factory_headers).get_json()
        assert any(
            n["type"] == "factory_assignment" and n["reference_id"] == sent_order["id"] for n in data["data"]
        )

    def test_delivery_closes_stage(self, client, admin_headers, sent_order):
        resp = client.post(f"/api/v1/orders/{sent_order['id']}/deliver", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["tailoring_stage"] == "delivered"


class TestFactoryAssignment:

    def test_capacity_is_enforced(self, client, admin_headers, tailoring_order, factory):
        orders = [tailoring_order() for _ in range(3)]
        for order in orders[:2]:
            resp = client.post(
                f"/api/v1/orders/{order['id']}/assign-factory", json={"factory_id": factory.id},
                headers=admin_headers,
            )
            assert resp.status_code == 200

        resp = client.post(
            f"/api/v1/orders/{orders[2]['id']}/assign-factory", json={"factory_id": factory.id},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "factory_id" in resp.get_json()["errors"]

    def test_reassigning_same_factory_is_allowed(self, client, admin_headers, tailoring_order, factory):
        orders = [tailoring_order() for _ in range(2)]
        for order in orders:
            client.post(f"/api/v1/orders/{order['id']}/assign-factory", json={"factory_id": factory.id},
                        headers=admin_headers)

        resp = client.post(
            f"/api/v1/orders/{orders[0]['id']}/assign-factory",
            json={"factory_id": factory.id, "priority": "urgent"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["priority"] == "urgent"

    def test_priority(self, client, admin_headers, tailoring_order):
        order = tailoring_order()
        resp = client.post(f"/api/v1/orders/{order['id']}/priority", json={"priority": "high"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["priority"] == "high"

        bad = client.post(f"/api/v1/orders/{order['id']}/priority", json={"priority": "asap"}, headers=admin_headers)
        assert bad.status_code == 422


class TestTailoringQueues:

    def test_overdue(self, client, admin_headers, tailoring_order):
        late = tailoring_order(expected_completion_date=(today() - timedelta(days=2)).isoformat())
        tailoring_order(expected_completion_date=(today() + timedelta(days=5)).isoformat())

        data = client.get("/api/v1/orders/tailoring/overdue", headers=admin_headers).get_json()
        assert [o["id"] for o in data["data"]] == [late["id"]]
        assert data["data"][0]["is_overdue"] is True

    def test_filter_by_stage(self, client, admin_headers, tailoring_order, sent_order):
        tailoring_order()
        data = client.get(
            "/api/v1/orders/tailoring", query_string={"stage": "sent_to_factory"}, headers=admin_headers
        ).get_json()
        assert [o["id"] for o in data["data"]] == [sent_order["id"]]


class TestFactoryPipeline:

    def _item(self, order):
        return order["items"][0]["id"]

    def _post(self, client, headers, order, action, **body):
        return client.post(
            f"/api/v1/factory/orders/{order['id']}/items/{self._item(order)}/{action}", json=body, headers=headers
        )

    def test_factory_sees_no_prices(self, client, factory_headers, sent_order):
        data = client.get("/api/v1/factory/orders", headers=factory_headers).get_json()
        assert data["total"] == 1
        order = data["data"][0]
        assert "total_price" not in order
        assert "paid" not in order
        assert "price" not in order["items"][0]
        assert set(order["client"]) == {"id", "first_name", "last_name"}

    def test_full_pipeline(self, client, factory_headers, sent_order):
        expected = (today() + timedelta(days=5)).isoformat()
        resp = self._post(client, factory_headers, sent_order, "accept", expected_delivery_date=expected)
        assert resp.status_code == 200
        assert resp.get_json()["factory_status"] == "accepted"
        assert resp.get_json()["factory_expected_delivery_date"] == expected

        assert self._post(client, factory_headers, sent_order, "deliver").status_code == 422

        for status in ("in_progress", "ready_for_delivery"):
            resp = self._post(client, factory_headers, sent_order, "status", status=status)
            assert resp.status_code == 200, resp.get_json()

        resp = self._post(client, factory_headers, sent_order, "deliver", notes="Hemmed and pressed")
        assert resp.status_code == 200
        assert resp.get_json()["factory_status"] == "delivered_to_atelier"

        locked = self._post(client, factory_headers, sent_order, "status", status="in_progress")
        assert locked.status_code == 422
        assert locked.get_json()["message"] == "Cannot modify item after delivery"

        history = client.get(
            f"/api/v1/factory/orders/{sent_order['id']}/items/{self._item(sent_order)}/history",
            headers=factory_headers,
        ).get_json()["data"]
        assert [h["to_status"] for h in history] == [
            "accepted", "in_progress", "ready_for_delivery", "delivered_to_atelier",
        ]

    def test_status_cannot_skip(self, client, factory_headers, sent_order):
        resp = self._post(client, factory_headers, sent_order, "status", status="ready_for_delivery")
        assert resp.status_code == 422

    def test_reject_needs_reason(self, client, factory_headers, sent_order):
        assert self._post(client, factory_headers, sent_order, "reject").status_code == 422

        resp = self._post(client, factory_headers, sent_order, "reject", rejection_reason="Fabric out of stock")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["factory_status"] == "rejected"
        assert data["factory_rejection_reason"] == "Fabric out of stock"

    def test_accept_rejects_past_date(self, client, factory_headers, sent_order):
        resp = self._post(
            client, factory_headers, sent_order, "accept",
            expected_delivery_date=(today() - timedelta(days=1)).isoformat(),
        )
        assert resp.status_code == 422
        assert "expected_delivery_date" in resp.get_json()["errors"]

    def test_user_without_factory_is_forbidden(self, client, make_user, login, sent_order):
        headers = login(make_user("factory_user"))
        assert client.get("/api/v1/factory/orders", headers=headers).status_code == 403

    def test_other_factory_cannot_touch_order(self, client, make_user, login, make_entity, sent_order):
        other = make_entity(ENTITY_FACTORY)
        headers = login(make_user("factory_user", assignments=[(ENTITY_FACTORY, other.id)]))

        assert client.get(f"/api/v1/factory/orders/{sent_order['id']}", headers=headers).status_code == 403
        assert self._post(client, headers, sent_order, "accept").status_code == 403
