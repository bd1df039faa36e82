"""
Cashbox ledger tests: manual movements, reversals and the daily summary.
"""

import pytest

from app.extensions import db
from app.models import Cashbox


@pytest.fixture
def cashbox_id(branch):
    return db.session.query(Cashbox).filter_by(branch_id=branch.id).one().id


class TestManualTransactions:

    def test_expense_reduces_balance(self, client, admin_headers, cashbox_id):
        resp = client.post(
            f"/api/v1/cashboxes/{cashbox_id}/expense",
            json={"amount": 120.5, "description": "Dry cleaning"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["type"] == "expense"
        assert data["category"] == "expense"
        assert data["balance_after"] == 879.5

        box = client.get(f"/api/v1/cashboxes/{cashbox_id}", headers=admin_headers).get_json()
        assert box["current_balance"] == 879.5
        assert box["initial_balance"] == 1000.0

    def test_expense_cannot_overdraw(self, client, admin_headers, cashbox_id):
        resp = client.post(
            f"/api/v1/cashboxes/{cashbox_id}/expense",
            json={"amount": 1000.01, "description": "Too much"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "amount" in resp.get_json()["errors"]

    def test_description_required(self, client, admin_headers, cashbox_id):
        resp = client.post(f"/api/v1/cashboxes/{cashbox_id}/income", json={"amount": 10}, headers=admin_headers)
        assert resp.status_code == 422
        assert "description" in resp.get_json()["errors"]

    def test_income_with_category(self, client, admin_headers, cashbox_id):
        resp = client.post(
            f"/api/v1/cashboxes/{cashbox_id}/income",
            json={"amount": 75, "description": "Alteration fee", "category": "other"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["balance_after"] == 1075.0


class TestReversal:

    @pytest.fixture
    def income(self, client, admin_headers, cashbox_id):
        return client.post(
            f"/api/v1/cashboxes/{cashbox_id}/income",
            json={"amount": 200, "description": "Wrong drawer"},
            headers=admin_headers,
        ).get_json()

    def test_reverse_income(self, client, admin_headers, cashbox_id, income):
        resp = client.post(
            f"/api/v1/cashboxes/{cashbox_id}/transactions/{income['id']}/reverse",
            json={"reason": "Entered twice"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["type"] == "reversal"
        assert data["reversed_transaction_id"] == income["id"]
        assert data["balance_after"] == 1000.0

        rows = client.get(f"/api/v1/cashboxes/{cashbox_id}/transactions", headers=admin_headers).get_json()["data"]
        original = next(r for r in rows if r["id"] == income["id"])
        assert original["is_reversed"] is True

    def test_cannot_reverse_twice(self, client, admin_headers, cashbox_id, income):
        url = f"/api/v1/cashboxes/{cashbox_id}/transactions/{income['id']}/reverse"
        reversal = client.post(url, headers=admin_headers).get_json()

        assert client.post(url, headers=admin_headers).status_code == 422
        resp = client.post(
            f"/api/v1/cashboxes/{cashbox_id}/transactions/{reversal['id']}/reverse", headers=admin_headers
        )
        assert resp.status_code == 422

    def test_transaction_from_other_cashbox_not_found(
        self, client, admin_headers, other_branch, income
    ):
        other_id = db.session.query(Cashbox).filter_by(branch_id=other_branch.id).one().id
        resp = client.post(
            f"/api/v1/cashboxes/{other_id}/transactions/{income['id']}/reverse", headers=admin_headers
        )
        assert resp.status_code == 404


class TestDailySummary:

    def test_summary_totals(self, client, admin_headers, cashbox_id):
        client.post(f"/api/v1/cashboxes/{cashbox_id}/income", json={"amount": 300, "description": "Deposit"},
                    headers=admin_headers)
        client.post(f"/api/v1/cashboxes/{cashbox_id}/expense", json={"amount": 100, "description": "Taxi"},
                    headers=admin_headers)

        data = client.get(f"/api/v1/cashboxes/{cashbox_id}/daily-summary", headers=admin_headers).get_json()
        assert data["opening_balance"] == 1000.0
        assert data["total_income"] == 300.0
        assert data["total_expense"] == 100.0
        assert data["net_change"] == 200.0
        assert data["closing_balance"] == 1200.0
        assert data["transaction_count"] == 2
        assert data["by_category"] == {"expense": -100.0, "other": 300.0}

    def test_invalid_date(self, client, admin_headers, cashbox_id):
        resp = client.get(
            f"/api/v1/cashboxes/{cashbox_id}/daily-summary", query_string={"date": "not-a-date"},
            headers=admin_headers,
        )
        assert resp.status_code == 422


class TestCashboxScoping:

    def test_manager_sees_only_own_branch(self, client, make_user, login, branch, other_branch, cashbox_id):
        headers = login(make_user("manager", assignments=[("branch", branch.id)]))
        data = client.get("/api/v1/cashboxes", headers=headers).get_json()
        assert [c["branch_id"] for c in data["data"]] == [branch.id]

        other_id = db.session.query(Cashbox).filter_by(branch_id=other_branch.id).one().id
        assert client.get(f"/api/v1/cashboxes/{other_id}", headers=headers).status_code == 403
