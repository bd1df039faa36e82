"""
Report tests: stock, overdue rentals, profits, deposits and debts.
"""

from datetime import timedelta

import pytest

from app.models.entities import ENTITY_BRANCH
from app.time_utils import today


def _report(client, headers, name, **params):
    return client.get(f"/api/v1/reports/{name}", query_string=params, headers=headers)


@pytest.fixture
def delivered_late(client, admin_headers, make_cloth, rent_item, create_order, money_custody):
    """A rental handed over five days ago for two days, so three days late."""
    item = rent_item(make_cloth(), delivery=today() - timedelta(days=5), days=2, paid=500)
    order = create_order(admin_headers, [item]).get_json()
    money_custody(admin_headers, order["id"])
    resp = client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
    assert resp.status_code == 200, resp.get_json()
    return order


class TestStockReports:

    def test_available_dresses(self, client, admin_headers, make_cloth):
        make_cloth()
        make_cloth()
        make_cloth(status="repairing")

        data = _report(client, admin_headers, "available-dresses").get_json()
        assert data["total_available"] == 2
        assert data["by_status"]["ready_for_rent"] == 2
        assert data["by_status"]["repairing"] == 1
        assert "generated_at" in data

    def test_overdue_returns(self, client, admin_headers, delivered_late):
        data = _report(client, admin_headers, "overdue-returns").get_json()
        assert data["total"] == 1
        row = data["items"][0]
        assert row["order_id"] == delivered_late["id"]
        assert row["days_late"] == 3

        assert _report(client, admin_headers, "overdue-returns", days_overdue=5).get_json()["total"] == 0

    def test_out_of_branch(self, client, admin_headers, delivered_late):
        data = _report(client, admin_headers, "out-of-branch").get_json()
        assert [row["order_id"] for row in data["items"]] == [delivered_late["id"]]


class TestProfitReports:

    def test_rental_profits_with_discount(self, client, admin_headers, make_cloth, rent_item, create_order):
        item = rent_item(make_cloth(), price=500)
        item.update({"discount_type": "percentage", "discount_value": 10})
        create_order(admin_headers, [item])

        data = _report(client, admin_headers, "rental-profits", group_by="day").get_json()
        assert data["summary"] == {
            "orders_count": 1, "items_count": 1, "gross": 500.0, "discounts": 50.0, "net": 450.0,
        }
        assert [b["period"] for b in data["breakdown"]] == [today().isoformat()]

    def test_tailoring_profits_ignore_rentals(self, client, admin_headers, make_cloth, rent_item, create_order):
        create_order(admin_headers, [rent_item(make_cloth())])
        data = _report(client, admin_headers, "tailoring-profits").get_json()
        assert data["summary"]["orders_count"] == 0
        assert data["breakdown"] == []

    def test_invalid_group_by(self, client, admin_headers):
        resp = _report(client, admin_headers, "rental-profits", group_by="year")
        assert resp.status_code == 422
        assert "group_by" in resp.get_json()["errors"]

    def test_start_after_end(self, client, admin_headers):
        resp = _report(
            client, admin_headers, "rental-profits",
            start_date=today().isoformat(), end_date=(today() - timedelta(days=1)).isoformat(),
        )
        assert resp.status_code == 422
        assert "start_date" in resp.get_json()["errors"]


class TestMoneyReports:

    def test_deposits(self, client, admin_headers, make_cloth, rent_item, create_order, money_custody):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        money_custody(admin_headers, order["id"], value=300)

        data = _report(client, admin_headers, "deposits").get_json()
        assert data["held_money"] == 300.0
        assert data["by_status"]["pending"] == {"count": 1, "value": 300.0}
        assert [row["order_id"] for row in data["items"]] == [order["id"]]

    def test_debts(self, client, admin_headers, make_cloth, rent_item, create_order):
        order = create_order(admin_headers, [rent_item(make_cloth(), paid=200)]).get_json()

        data = _report(client, admin_headers, "debts").get_json()
        assert data["total_remaining"] == 300.0
        assert data["orders_count"] == 1
        assert data["aging"]["0-30"] == {"count": 1, "amount": 300.0}
        assert data["aging"]["90+"] == {"count": 0, "amount": 0.0}
        assert data["top_debtors"][0]["client_id"] == order["client_id"]
        assert data["orders"][0]["age_days"] == 0

    def test_settled_orders_are_not_debts(self, client, admin_headers, make_cloth, rent_item, create_order):
        create_order(admin_headers, [rent_item(make_cloth(), paid=500)])
        data = _report(client, admin_headers, "debts").get_json()
        assert data["total_remaining"] == 0.0
        assert data["orders"] == []


class TestReportAccess:

    def test_employee_cannot_view_reports(self, client, make_user, login, branch):
        headers = login(make_user("employee", assignments=[(ENTITY_BRANCH, branch.id)]))
        assert _report(client, headers, "debts").status_code == 403

    def test_manager_sees_only_own_branch(
        self, client, make_user, login, admin_headers, branch, other_branch, make_cloth
    ):
        make_cloth()
        make_cloth(entity_id=other_branch.id)
        headers = login(make_user("manager", assignments=[(ENTITY_BRANCH, branch.id)]))

        data = _report(client, headers, "available-dresses").get_json()
        assert data["total_available"] == 1
        assert _report(client, admin_headers, "available-dresses").get_json()["total_available"] == 2
