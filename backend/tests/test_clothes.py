"""
Cloth catalogue and rental availability tests.

Availability window: an existing 3-day rent delivered on T blocks
[T-2, T+5] with the default 2-day buffer; a 1-day candidate on D occupies
[D, D+1] and conflicts when the ranges touch.
"""

from datetime import timedelta

import pytest

from app.models.entities import ENTITY_BRANCH
from app.time_utils import today


class TestClothCrud:

    def test_create_cloth(self, client, admin_headers, branch, cloth_type):
        resp = client.post(
            "/api/v1/clothes",
            json={
                "code": "WD-100",
                "name": "Ivory ball gown",
                "cloth_type_id": cloth_type.id,
                "entity_type": ENTITY_BRANCH,
                "entity_id": branch.id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["status"] == "ready_for_rent"
        assert data["entity_type"] == ENTITY_BRANCH
        assert data["entity_id"] == branch.id

    def test_duplicate_code_rejected(self, client, admin_headers, make_cloth, branch, cloth_type):
        existing = make_cloth()
        resp = client.post(
            "/api/v1/clothes",
            json={
                "code": existing.code,
                "name": "Copy",
                "cloth_type_id": cloth_type.id,
                "entity_type": ENTITY_BRANCH,
                "entity_id": branch.id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "code" in resp.get_json()["errors"]

    def test_status_change_is_recorded(self, client, admin_headers, make_cloth):
        cloth = make_cloth()
        resp = client.post(f"/api/v1/clothes/{cloth.id}/status", json={"status": "damaged"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "damaged"

        history = client.get(f"/api/v1/clothes/{cloth.id}/history", headers=admin_headers).get_json()["data"]
        assert any(h["action"] == "status_changed" for h in history)

    def test_cloth_in_open_order_cannot_be_deleted(
        self, client, admin_headers, make_cloth, rent_item, create_order
    ):
        cloth = make_cloth()
        create_order(admin_headers, [rent_item(cloth)])
        resp = client.delete(f"/api/v1/clothes/{cloth.id}", headers=admin_headers)
        assert resp.status_code == 422
        assert "cloth" in resp.get_json()["errors"]

    def test_delete_unused_cloth(self, client, admin_headers, make_cloth):
        cloth = make_cloth()
        assert client.delete(f"/api/v1/clothes/{cloth.id}", headers=admin_headers).status_code == 204
        assert client.get(f"/api/v1/clothes/{cloth.id}", headers=admin_headers).status_code == 404

    def test_cloth_type_in_use_cannot_be_deleted(self, client, admin_headers, make_cloth, cloth_type):
        make_cloth()
        resp = client.delete(f"/api/v1/cloth-types/{cloth_type.id}", headers=admin_headers)
        assert resp.status_code == 422


class TestAvailability:

    @pytest.fixture
    def booked(self, admin_headers, make_cloth, rent_item, create_order):
        """A cloth booked for 3 days from T = today + 10."""
        cloth = make_cloth()
        start = today() + timedelta(days=10)
        resp = create_order(admin_headers, [rent_item(cloth, delivery=start, days=3)])
        assert resp.status_code == 201, resp.get_json()
        return cloth, start

    @pytest.mark.parametrize(
        "offset,available",
        [(-4, True), (-3, False), (-2, False), (0, False), (5, False), (6, True)],
    )
    def test_buffered_window(self, client, admin_headers, booked, offset, available):
        cloth, start = booked
        resp = client.post(
            "/api/v1/orders/check-availability",
            json={
                "cloth_id": cloth.id,
                "delivery_date": (start + timedelta(days=offset)).isoformat(),
                "days_of_rent": 1,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["available"] is available

    @pytest.fixture
    def delivered(self, client, admin_headers, make_cloth, rent_item, create_order, money_custody):
        """A 3-day rent of price 100 handed over today (T)."""
        cloth = make_cloth()
        order = create_order(admin_headers, [rent_item(cloth, delivery=today(), days=3, price=100, paid=100)])
        assert order.status_code == 201, order.get_json()
        order_id = order.get_json()["id"]
        money_custody(admin_headers, order_id)
        resp = client.post(f"/api/v1/orders/{order_id}/deliver", headers=admin_headers)
        assert resp.status_code == 200, resp.get_json()
        return cloth, order_id

    def test_delivery_creates_rent(self, client, admin_headers, delivered):
        cloth, order_id = delivered
        rents = client.get(f"/api/v1/orders/{order_id}", headers=admin_headers).get_json()["rents"]
        assert len(rents) == 1
        assert rents[0]["cloth_id"] == cloth.id
        assert rents[0]["status"] == "active"
        assert rents[0]["return_date"] == (today() + timedelta(days=3)).isoformat()

    @pytest.mark.parametrize(
        "offset,available",
        [(-5, True), (-4, True), (-3, False), (-2, False), (0, False), (3, False), (5, False), (6, True), (8, True)],
    )
    def test_delivered_rent_blocks_buffered_window(self, client, admin_headers, delivered, offset, available):
        cloth, _ = delivered
        resp = client.post(
            "/api/v1/orders/check-availability",
            json={
                "cloth_id": cloth.id,
                "delivery_date": (today() + timedelta(days=offset)).isoformat(),
                "days_of_rent": 1,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["available"] is available

    @pytest.mark.parametrize("offset,listed", [(0, False), (5, False), (6, True), (8, True)])
    def test_delivered_rent_and_available_for_date(self, client, admin_headers, delivered, branch, offset, listed):
        cloth, _ = delivered
        resp = client.get(
            "/api/v1/clothes/available-for-date",
            query_string={
                "delivery_date": (today() + timedelta(days=offset)).isoformat(),
                "days_of_rent": 1,
                "entity_type": ENTITY_BRANCH,
                "entity_id": branch.id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        ids = [c["id"] for c in resp.get_json()["available_clothes"]]
        assert (cloth.id in ids) is listed

    def test_unavailable_days(self, client, admin_headers, booked):
        cloth, start = booked
        data = client.get(f"/api/v1/clothes/{cloth.id}/unavailable-days", headers=admin_headers).get_json()

        assert data["unavailable_dates"][0] == (start - timedelta(days=2)).isoformat()
        assert data["unavailable_dates"][-1] == (start + timedelta(days=5)).isoformat()
        assert len(data["unavailable_dates"]) == 8
        assert data["available_from"] == (start + timedelta(days=6)).isoformat()

    def test_conflicting_order_rejected(self, admin_headers, booked, rent_item, create_order):
        cloth, start = booked
        resp = create_order(admin_headers, [rent_item(cloth, delivery=start + timedelta(days=4), days=2)])
        assert resp.status_code == 422
        assert "items.0.cloth_id" in resp.get_json()["errors"]

    def test_repairing_cloth_never_available(self, client, admin_headers, make_cloth):
        cloth = make_cloth(status="repairing")
        resp = client.post(
            "/api/v1/orders/check-availability",
            json={"cloth_id": cloth.id, "delivery_date": (today() + timedelta(days=30)).isoformat()},
            headers=admin_headers,
        )
        assert resp.get_json()["available"] is False

    def test_available_for_date(self, client, admin_headers, booked, make_cloth, branch):
        cloth, start = booked
        free = make_cloth()
        resp = client.get(
            "/api/v1/clothes/available-for-date",
            query_string={
                "delivery_date": start.isoformat(),
                "days_of_rent": 1,
                "entity_type": ENTITY_BRANCH,
                "entity_id": branch.id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        ids = [c["id"] for c in resp.get_json()["available_clothes"]]
        assert free.id in ids
        assert cloth.id not in ids

    def test_available_for_past_date_rejected(self, client, admin_headers, branch):
        resp = client.get(
            "/api/v1/clothes/available-for-date",
            query_string={
                "delivery_date": (today() - timedelta(days=1)).isoformat(),
                "entity_type": ENTITY_BRANCH,
                "entity_id": branch.id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 422
