"""
Order lifecycle tests: creation rules, payments, delivery, returns,
finishing and cancellation.
"""

from datetime import timedelta

import pytest

from app.extensions import db
from app.models import Cloth, Cashbox
from app.time_utils import today


def _balance(branch) -> float:
    cashbox = db.session.query(Cashbox).filter_by(branch_id=branch.id).one()
    db.session.refresh(cashbox)
    return float(cashbox.current_balance)


def _cloth_status(cloth_id: int) -> str:
    cloth = db.session.get(Cloth, cloth_id)
    db.session.refresh(cloth)
    return cloth.status


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_rent_order_with_partial_payment(self, admin_headers, make_cloth, rent_item, create_order):
        resp = create_order(admin_headers, [rent_item(make_cloth(), price=500, paid=200)])

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["status"] == "partially_paid"
        assert data["total_price"] == 500.0
        assert data["paid"] == 200.0
        assert data["remaining"] == 300.0
        assert data["items"][0]["type"] == "rent"
        assert data["items"][0]["returnable"] is True

    def test_initial_payment_is_recorded(self, client, admin_headers, make_cloth, rent_item, create_order):
        order = create_order(admin_headers, [rent_item(make_cloth(), paid=100)]).get_json()
        payments = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()["payments"]
        assert [(p["payment_type"], p["amount"], p["status"]) for p in payments] == [("initial", 100.0, "paid")]

    def test_paid_cannot_exceed_total(self, admin_headers, make_cloth, rent_item, create_order):
        resp = create_order(admin_headers, [rent_item(make_cloth(), price=100, paid=150)])
        assert resp.status_code == 422
        assert "items" in resp.get_json()["errors"]

    def test_buy_order_must_have_one_item(self, admin_headers, make_cloth, create_order):
        items = [
            {"cloth_id": make_cloth().id, "type": "buy", "price": 900},
            {"cloth_id": make_cloth().id, "type": "buy", "price": 700},
        ]
        resp = create_order(admin_headers, items)
        assert resp.status_code == 422
        assert resp.get_json()["errors"]["items"] == ["Buy orders must have exactly 1 item"]

    def test_rent_item_requires_dates(self, admin_headers, make_cloth, create_order):
        resp = create_order(admin_headers, [{"cloth_id": make_cloth().id, "type": "rent", "price": 100}])
        errors = resp.get_json()["errors"]
        assert resp.status_code == 422
        assert "items.0.delivery_date" in errors
        assert "items.0.days_of_rent" in errors

    def test_discounts(self, admin_headers, make_cloth, rent_item, create_order):
        item = rent_item(make_cloth(), price=500)
        item.update({"discount_type": "percentage", "discount_value": 10})
        resp = create_order(admin_headers, [item], discount_type="fixed", discount_value=50)

        data = resp.get_json()
        assert data["items"][0]["final_price"] == 450.0
        assert data["total_price"] == 400.0

    def test_percentage_discount_capped(self, admin_headers, make_cloth, rent_item, create_order):
        resp = create_order(
            admin_headers, [rent_item(make_cloth())], discount_type="percentage", discount_value=120
        )
        assert resp.status_code == 422
        assert "discount_value" in resp.get_json()["errors"]

    def test_cloth_from_other_branch_rejected(
        self, admin_headers, make_cloth, rent_item, create_order, other_branch
    ):
        cloth = make_cloth(entity_id=other_branch.id)
        resp = create_order(admin_headers, [rent_item(cloth)])
        assert resp.status_code == 422
        assert "items.0.cloth_id" in resp.get_json()["errors"]

    def test_existing_client(self, client, admin_headers, make_cloth, rent_item, create_order, branch):
        first = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        resp = client.post(
            "/api/v1/orders",
            json={
                "entity_type": "branch",
                "entity_id": branch.id,
                "existing_client": True,
                "client_id": first["client_id"],
                "items": [rent_item(make_cloth())],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["client_id"] == first["client_id"]

    def test_tailoring_item_moves_cloth_to_repairing(self, admin_headers, make_cloth, create_order):
        cloth = make_cloth()
        resp = create_order(admin_headers, [{"cloth_id": cloth.id, "type": "tailoring", "price": 1200}])

        assert resp.status_code == 201
        assert resp.get_json()["items"][0]["factory_status"] == "new"
        assert _cloth_status(cloth.id) == "repairing"


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPayments:

    @pytest.fixture
    def order(self, admin_headers, make_cloth, rent_item, create_order):
        return create_order(admin_headers, [rent_item(make_cloth(), price=500)]).get_json()

    def test_add_payment_updates_status(self, client, admin_headers, order):
        resp = client.post(f"/api/v1/orders/{order['id']}/add-payment", json={"amount": 500}, headers=admin_headers)
        assert resp.status_code == 201

        data = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()
        assert data["status"] == "paid"
        assert data["remaining"] == 0.0

    def test_pending_payment_then_pay(self, client, admin_headers, order):
        payment = client.post(
            f"/api/v1/orders/{order['id']}/add-payment",
            json={"amount": 200, "status": "pending"},
            headers=admin_headers,
        ).get_json()
        data = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()
        assert data["paid"] == 0.0
        assert data["status"] == "created"

        resp = client.post(f"/api/v1/payments/{payment['id']}/pay", headers=admin_headers)
        assert resp.status_code == 200
        data = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()
        assert data["paid"] == 200.0
        assert data["status"] == "partially_paid"

    def test_fee_does_not_count_towards_paid(self, client, admin_headers, order):
        client.post(
            f"/api/v1/orders/{order['id']}/add-payment",
            json={"amount": 50, "payment_type": "fee"},
            headers=admin_headers,
        )
        data = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()
        assert data["paid"] == 0.0

    def test_cancel_payment(self, client, admin_headers, order):
        payment = client.post(
            f"/api/v1/orders/{order['id']}/add-payment", json={"amount": 300}, headers=admin_headers
        ).get_json()
        resp = client.post(f"/api/v1/payments/{payment['id']}/cancel", json={"notes": "Card declined"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "canceled"

        data = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()
        assert data["paid"] == 0.0

        again = client.post(f"/api/v1/payments/{payment['id']}/cancel", headers=admin_headers)
        assert again.status_code == 422

    def test_amount_must_be_positive(self, client, admin_headers, order):
        resp = client.post(f"/api/v1/orders/{order['id']}/add-payment", json={"amount": 0}, headers=admin_headers)
        assert resp.status_code == 422
        assert "amount" in resp.get_json()["errors"]


# =============================================================================
# DELIVER / RETURN / FINISH
# =============================================================================


class TestRentLifecycle:

    def test_rent_order_needs_custody_before_delivery(
        self, client, admin_headers, make_cloth, rent_item, create_order
    ):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        resp = client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        assert resp.status_code == 422
        assert "custody" in resp.get_json()["errors"]

    def test_full_rent_cycle(
        self, client, admin_headers, make_cloth, rent_item, create_order, money_custody, return_custody, branch
    ):
        cloth = make_cloth()
        order = create_order(admin_headers, [rent_item(cloth, price=500, paid=500)]).get_json()
        assert order["status"] == "paid"

        custody = money_custody(admin_headers, order["id"], value=300).get_json()
        assert _balance(branch) == 1300.0

        resp = client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "delivered"
        assert _cloth_status(cloth.id) == "rented"

        detail = client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).get_json()
        assert len(detail["rents"]) == 1
        assert detail["rents"][0]["status"] == "active"

        resp = client.post(
            f"/api/v1/orders/{order['id']}/return", json={"items": [{"cloth_id": cloth.id}]}, headers=admin_headers
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["order_finished"] is False
        assert _cloth_status(cloth.id) == "repairing"

        resp = client.post(f"/api/v1/orders/{order['id']}/finish", headers=admin_headers)
        assert resp.status_code == 422
        assert any("custody" in reason.lower() for reason in resp.get_json()["errors"]["status"])

        assert return_custody(admin_headers, custody["id"]).status_code == 200
        assert _balance(branch) == 1000.0

        resp = client.post(f"/api/v1/orders/{order['id']}/finish", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "finished"

    def test_return_finishes_order_when_nothing_is_open(
        self, client, admin_headers, make_cloth, rent_item, create_order, money_custody, return_custody
    ):
        cloth = make_cloth()
        order = create_order(admin_headers, [rent_item(cloth, paid=500)]).get_json()
        custody = money_custody(admin_headers, order["id"]).get_json()
        client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        return_custody(admin_headers, custody["id"])

        resp = client.post(
            f"/api/v1/orders/{order['id']}/return", json={"items": [{"cloth_id": cloth.id}]}, headers=admin_headers
        )
        body = resp.get_json()
        assert body["order_finished"] is True
        assert body["order"]["status"] == "finished"

    def test_item_cannot_be_returned_twice(
        self, client, admin_headers, make_cloth, rent_item, create_order, money_custody
    ):
        cloth = make_cloth()
        order = create_order(admin_headers, [rent_item(cloth, paid=500)]).get_json()
        money_custody(admin_headers, order["id"])
        client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)

        payload = {"items": [{"cloth_id": cloth.id}]}
        assert client.post(f"/api/v1/orders/{order['id']}/return", json=payload, headers=admin_headers).status_code == 200
        resp = client.post(f"/api/v1/orders/{order['id']}/return", json=payload, headers=admin_headers)
        assert resp.status_code == 422
        assert "items.0.cloth_id" in resp.get_json()["errors"]

    def test_unpaid_order_cannot_finish(
        self, client, admin_headers, make_cloth, rent_item, create_order, money_custody, return_custody
    ):
        cloth = make_cloth()
        order = create_order(admin_headers, [rent_item(cloth, price=500, paid=100)]).get_json()
        custody = money_custody(admin_headers, order["id"]).get_json()
        client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        client.post(f"/api/v1/orders/{order['id']}/return", json={"items": [{"cloth_id": cloth.id}]},
                    headers=admin_headers)
        return_custody(admin_headers, custody["id"])

        resp = client.post(f"/api/v1/orders/{order['id']}/finish", headers=admin_headers)
        assert resp.status_code == 422
        assert any("not fully paid" in reason for reason in resp.get_json()["errors"]["status"])

    def test_history_is_recorded(self, client, admin_headers, make_cloth, rent_item, create_order):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        client.post(f"/api/v1/orders/{order['id']}/add-payment", json={"amount": 100}, headers=admin_headers)

        history = client.get(f"/api/v1/orders/{order['id']}/history", headers=admin_headers).get_json()["data"]
        actions = {h["action"] for h in history}
        assert {"created", "payment_added"} <= actions


class TestBuyOrder:

    def test_buy_requires_full_payment(self, client, admin_headers, make_cloth, create_order):
        cloth = make_cloth()
        order = create_order(admin_headers, [{"cloth_id": cloth.id, "type": "buy", "price": 900, "paid": 400}]).get_json()

        resp = client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        assert resp.status_code == 422
        assert "remaining" in resp.get_json()["errors"]

    def test_delivered_buy_marks_cloth_sold(self, client, admin_headers, make_cloth, create_order, branch):
        cloth = make_cloth()
        order = create_order(admin_headers, [{"cloth_id": cloth.id, "type": "buy", "price": 900, "paid": 900}]).get_json()

        resp = client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        assert resp.status_code == 200

        sold = db.session.get(Cloth, cloth.id)
        db.session.refresh(sold)
        assert sold.status == "sold"
        assert sold.inventory_id is None
        assert _balance(branch) == 1900.0

    def test_cloth_with_upcoming_rent_cannot_be_sold(
        self, admin_headers, make_cloth, rent_item, create_order, money_custody, client
    ):
        cloth = make_cloth()
        rent = create_order(admin_headers, [rent_item(cloth, delivery=today(), paid=500)]).get_json()
        money_custody(admin_headers, rent["id"])
        client.post(f"/api/v1/orders/{rent['id']}/deliver", headers=admin_headers)

        resp = create_order(admin_headers, [{"cloth_id": cloth.id, "type": "buy", "price": 900}])
        assert resp.status_code == 422
        assert "items.0.cloth_id" in resp.get_json()["errors"]


class TestCancelAndDelete:

    def test_cancel_before_delivery(self, client, admin_headers, make_cloth, rent_item, create_order):
        cloth = make_cloth()
        order = create_order(admin_headers, [rent_item(cloth)]).get_json()

        resp = client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": "Client changed mind"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "canceled"

        check = client.post(
            "/api/v1/orders/check-availability",
            json={"cloth_id": cloth.id, "delivery_date": order["items"][0]["delivery_date"], "days_of_rent": 3},
            headers=admin_headers,
        )
        assert check.get_json()["available"] is True

    def test_cannot_cancel_delivered_order(
        self, client, admin_headers, make_cloth, rent_item, create_order, money_custody
    ):
        order = create_order(admin_headers, [rent_item(make_cloth(), paid=500)]).get_json()
        money_custody(admin_headers, order["id"])
        client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)

        resp = client.post(f"/api/v1/orders/{order['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 422

    def test_update_items_and_total(self, client, admin_headers, make_cloth, rent_item, create_order):
        order = create_order(admin_headers, [rent_item(make_cloth(), price=500)]).get_json()
        replacement = make_cloth()

        resp = client.put(
            f"/api/v1/orders/{order['id']}",
            json={"items": [rent_item(replacement, price=650)], "notes": "Swapped dress"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert [i["cloth_id"] for i in data["items"]] == [replacement.id]
        assert data["total_price"] == 650.0

    def test_delete_order(self, client, admin_headers, make_cloth, rent_item, create_order):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        resp = client.delete(f"/api/v1/orders/{order['id']}", headers=admin_headers)
        assert resp.status_code in (200, 204)
        assert client.get(f"/api/v1/orders/{order['id']}", headers=admin_headers).status_code == 404

    def test_list_filters_by_status(self, client, admin_headers, make_cloth, rent_item, create_order):
        create_order(admin_headers, [rent_item(make_cloth(), paid=500)])
        create_order(admin_headers, [rent_item(make_cloth())])

        resp = client.get("/api/v1/orders", query_string={"status": "paid"}, headers=admin_headers)
        data = resp.get_json()
        assert data["total"] == 1
        assert data["data"][0]["status"] == "paid"

    @pytest.mark.parametrize("drop", ["cancel", "delete"])
    def test_dropping_a_later_booking_keeps_piece_rented(
        self, client, admin_headers, make_cloth, rent_item, create_order, money_custody, drop
    ):
        cloth = make_cloth()
        out = create_order(admin_headers, [rent_item(cloth, delivery=today(), days=3, paid=500)]).get_json()
        money_custody(admin_headers, out["id"])
        assert client.post(f"/api/v1/orders/{out['id']}/deliver", headers=admin_headers).status_code == 200
        assert _cloth_status(cloth.id) == "rented"

        later = create_order(admin_headers, [rent_item(cloth, delivery=today() + timedelta(days=20), days=2)])
        assert later.status_code == 201, later.get_json()
        later_id = later.get_json()["id"]

        if drop == "cancel":
            resp = client.post(f"/api/v1/orders/{later_id}/cancel", headers=admin_headers)
        else:
            resp = client.delete(f"/api/v1/orders/{later_id}", headers=admin_headers)
        assert resp.status_code in (200, 204)
        assert _cloth_status(cloth.id) == "rented"

        report = client.get("/api/v1/reports/out-of-branch", headers=admin_headers).get_json()
        assert [row["order_id"] for row in report["items"]] == [out["id"]]
