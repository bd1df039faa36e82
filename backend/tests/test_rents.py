"""
Rental calendar tests: listing views, reschedule, cancel and no-show of
delivered rents.
"""

from datetime import timedelta

import pytest

from app.extensions import db
from app.models import Cloth, Rent, OrderItem
from app.time_utils import today


def _cloth_status(cloth_id: int) -> str:
    cloth = db.session.get(Cloth, cloth_id)
    db.session.refresh(cloth)
    return cloth.status


@pytest.fixture
def deliver_rent(client, admin_headers, make_cloth, rent_item, create_order, money_custody):
    """Book a piece, deliver the order and return (cloth, order, rent dict)."""
    def _deliver(delivery=None, days: int = 3, cloth=None):
        cloth = cloth or make_cloth()
        order = create_order(
            admin_headers, [rent_item(cloth, delivery=delivery or today(), days=days, price=500, paid=500)]
        ).get_json()
        assert money_custody(admin_headers, order["id"]).status_code == 201
        assert client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers).status_code == 200
        rents = client.get(f"/api/v1/rents?order_id={order['id']}", headers=admin_headers).get_json()["data"]
        assert len(rents) == 1
        return cloth, order, rents[0]
    return _deliver


def _backdate(rent_id: int, days: int) -> None:
    """Shift a rent into the past so it is overdue."""
    rent = db.session.get(Rent, rent_id)
    rent.delivery_date = rent.delivery_date - timedelta(days=days)
    rent.return_date = rent.return_date - timedelta(days=days)
    db.session.commit()


# =============================================================================
# VIEWS
# =============================================================================


class TestRentViews:

    def test_list_and_show(self, client, admin_headers, deliver_rent):
        cloth, order, rent = deliver_rent()
        assert rent["status"] == "active"
        assert rent["cloth"]["code"] == cloth.code
        assert rent["client_name"]
        assert rent["is_overdue"] is False

        resp = client.get(f"/api/v1/rents/{rent['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["order_id"] == order["id"]

    def test_unknown_rent(self, client, admin_headers):
        assert client.get("/api/v1/rents/999999", headers=admin_headers).status_code == 404

    def test_invalid_status_filter(self, client, admin_headers):
        resp = client.get("/api/v1/rents?status=lost", headers=admin_headers)
        assert resp.status_code == 422
        assert "status" in resp.get_json()["errors"]

    def test_today_lists_deliveries_and_returns(self, client, admin_headers, deliver_rent):
        _, _, going_out = deliver_rent(days=3)
        _, _, coming_back = deliver_rent(days=3)
        _backdate(coming_back["id"], 3)

        body = client.get("/api/v1/rents/today", headers=admin_headers).get_json()
        assert body["date"] == today().isoformat()
        assert [r["id"] for r in body["deliveries"]] == [going_out["id"]]
        assert [r["id"] for r in body["returns"]] == [coming_back["id"]]

    def test_upcoming_groups_by_return_date(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(days=3)
        body = client.get("/api/v1/rents/upcoming?days=5", headers=admin_headers).get_json()
        assert body["total"] == 1
        assert [r["id"] for r in body["by_date"][(today() + timedelta(days=3)).isoformat()]] == [rent["id"]]

        narrow = client.get("/api/v1/rents/upcoming?days=2", headers=admin_headers).get_json()
        assert narrow["total"] == 0

    def test_overdue(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(days=3)
        deliver_rent(days=3)
        _backdate(rent["id"], 5)

        body = client.get("/api/v1/rents/overdue", headers=admin_headers).get_json()
        assert body["total"] == 1
        assert body["rents"][0]["id"] == rent["id"]
        assert body["rents"][0]["days_overdue"] == 2

        listed = client.get("/api/v1/rents?overdue_only=true", headers=admin_headers).get_json()
        assert [r["id"] for r in listed["data"]] == [rent["id"]]

    def test_calendar_requires_range(self, client, admin_headers):
        resp = client.get("/api/v1/rents/calendar", headers=admin_headers)
        assert resp.status_code == 422
        assert {"start_date", "end_date"} <= set(resp.get_json()["errors"])

    def test_calendar_events_overlap_range(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(delivery=today() + timedelta(days=4), days=2)
        start = today() + timedelta(days=5)
        inside = client.get(
            f"/api/v1/rents/calendar?start_date={start.isoformat()}&end_date={(start + timedelta(days=7)).isoformat()}",
            headers=admin_headers,
        ).get_json()
        assert [e["id"] for e in inside["events"]] == [rent["id"]]
        assert inside["events"][0]["end"] == (today() + timedelta(days=6)).isoformat()

        before = client.get(
            f"/api/v1/rents/calendar?start_date={today().isoformat()}&end_date={(today() + timedelta(days=3)).isoformat()}",
            headers=admin_headers,
        ).get_json()
        assert before["events"] == []

    def test_client_rents(self, client, admin_headers, deliver_rent):
        _, order, rent = deliver_rent()
        body = client.get(f"/api/v1/rents/client/{order['client_id']}", headers=admin_headers).get_json()
        assert body["total"] == 1
        assert [r["id"] for r in body["upcoming"]] == [rent["id"]]
        assert body["past"] == []

        assert client.get("/api/v1/rents/client/999999", headers=admin_headers).status_code == 404


# =============================================================================
# RESCHEDULE
# =============================================================================


class TestReschedule:

    def test_extend_rental(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(days=3)
        resp = client.post(f"/api/v1/rents/{rent['id']}/reschedule", json={"days_of_rent": 5}, headers=admin_headers)
        assert resp.status_code == 200, resp.get_json()
        body = resp.get_json()
        assert body["days_of_rent"] == 5
        assert body["return_date"] == (today() + timedelta(days=5)).isoformat()

        item = db.session.get(OrderItem, rent["order_item_id"])
        db.session.refresh(item)
        assert item.days_of_rent == 5

    def test_extension_blocked_by_later_booking(
        self, client, admin_headers, deliver_rent, rent_item, create_order
    ):
        cloth, _, rent = deliver_rent(days=3)
        # Booking at +10 blocks from +8 with the two buffer days
        later = create_order(admin_headers, [rent_item(cloth, delivery=today() + timedelta(days=10), days=2)])
        assert later.status_code == 201, later.get_json()

        resp = client.post(f"/api/v1/rents/{rent['id']}/reschedule", json={"days_of_rent": 8}, headers=admin_headers)
        assert resp.status_code == 422
        assert "conflicts" in resp.get_json()["errors"]

        resp = client.post(f"/api/v1/rents/{rent['id']}/reschedule", json={"days_of_rent": 7}, headers=admin_headers)
        assert resp.status_code == 200

    def test_move_not_started_rent(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(delivery=today() + timedelta(days=5), days=2)
        new_day = today() + timedelta(days=7)
        resp = client.post(
            f"/api/v1/rents/{rent['id']}/reschedule", json={"delivery_date": new_day.isoformat()}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.get_json()["delivery_date"] == new_day.isoformat()
        assert resp.get_json()["return_date"] == (new_day + timedelta(days=2)).isoformat()

    def test_started_rent_keeps_delivery_date(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(days=3)
        resp = client.post(
            f"/api/v1/rents/{rent['id']}/reschedule",
            json={"delivery_date": (today() + timedelta(days=2)).isoformat()},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "delivery_date" in resp.get_json()["errors"]

    def test_requires_a_change(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent()
        resp = client.post(f"/api/v1/rents/{rent['id']}/reschedule", json={}, headers=admin_headers)
        assert resp.status_code == 422


# =============================================================================
# CANCEL / NO-SHOW
# =============================================================================


class TestCancelAndNoShow:

    def test_cancel_future_rent_frees_piece(self, client, admin_headers, deliver_rent):
        cloth, order, rent = deliver_rent(delivery=today() + timedelta(days=5), days=2)
        assert _cloth_status(cloth.id) == "rented"

        resp = client.post(f"/api/v1/rents/{rent['id']}/cancel", json={"reason": "Wedding postponed"},
                           headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "canceled"
        assert "Wedding postponed" in body["notes"]
        assert _cloth_status(cloth.id) == "ready_for_rent"

        check = client.post(
            "/api/v1/orders/check-availability",
            json={"cloth_id": cloth.id, "delivery_date": (today() + timedelta(days=5)).isoformat(), "days_of_rent": 2},
            headers=admin_headers,
        )
        assert check.get_json()["available"] is True

        history = client.get(f"/api/v1/orders/{order['id']}/history", headers=admin_headers).get_json()
        assert any(h["action"] == "rent_canceled" for h in history["data"])

    def test_started_rent_cannot_be_canceled(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(days=3)
        resp = client.post(f"/api/v1/rents/{rent['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 422
        assert "status" in resp.get_json()["errors"]

    def test_no_show(self, client, admin_headers, deliver_rent):
        cloth, _, rent = deliver_rent(days=3)
        resp = client.post(f"/api/v1/rents/{rent['id']}/no-show", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "no_show"
        assert _cloth_status(cloth.id) == "ready_for_rent"

        blocked = client.get(f"/api/v1/clothes/{cloth.id}/unavailable-days", headers=admin_headers).get_json()
        assert blocked["unavailable_dates"] == []

    def test_no_show_needs_started_period(self, client, admin_headers, deliver_rent):
        _, _, rent = deliver_rent(delivery=today() + timedelta(days=5), days=2)
        resp = client.post(f"/api/v1/rents/{rent['id']}/no-show", headers=admin_headers)
        assert resp.status_code == 422

    def test_finished_rent_cannot_change(self, client, admin_headers, deliver_rent):
        cloth, order, rent = deliver_rent(days=3)
        client.post(
            f"/api/v1/orders/{order['id']}/return", json={"items": [{"cloth_id": cloth.id}]}, headers=admin_headers
        )
        for action in ("cancel", "no-show"):
            resp = client.post(f"/api/v1/rents/{rent['id']}/{action}", headers=admin_headers)
            assert resp.status_code == 422
        resp = client.post(f"/api/v1/rents/{rent['id']}/reschedule", json={"days_of_rent": 4}, headers=admin_headers)
        assert resp.status_code == 422
