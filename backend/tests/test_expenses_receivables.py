"""
Expense approval workflow and client receivables, both settled through the
branch cashbox.
"""

from datetime import timedelta

import pytest

from app.extensions import db
from app.models import Cashbox, CashboxTransaction, Receivable
from app.models.entities import ENTITY_BRANCH
from app.time_utils import today


def _balance(branch) -> float:
    cashbox = db.session.query(Cashbox).filter_by(branch_id=branch.id).one()
    db.session.refresh(cashbox)
    return float(cashbox.current_balance)


@pytest.fixture
def expense_payload(branch):
    def _payload(**overrides) -> dict:
        data = {
            "branch_id": branch.id,
            "category": "utilities",
            "amount": 250,
            "expense_date": today().isoformat(),
            "vendor": "Electric Co",
            "description": "October electricity bill",
        }
        data.update(overrides)
        return data
    return _payload


@pytest.fixture
def new_expense(client, admin_headers, expense_payload):
    def _create(**overrides) -> dict:
        resp = client.post("/api/v1/expenses", json=expense_payload(**overrides), headers=admin_headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _create


@pytest.fixture
def debtor(client, admin_headers, client_payload):
    resp = client.post("/api/v1/clients", json=client_payload(), headers=admin_headers)
    assert resp.status_code == 201
    return resp.get_json()


@pytest.fixture
def new_receivable(client, admin_headers, branch, debtor):
    def _create(amount=600, **overrides) -> dict:
        body = {
            "client_id": debtor["id"],
            "branch_id": branch.id,
            "original_amount": amount,
            "description": "Damaged veil, paid in installments",
        }
        body.update(overrides)
        resp = client.post("/api/v1/receivables", json=body, headers=admin_headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _create


# =============================================================================
# EXPENSES
# =============================================================================


class TestExpenseWorkflow:

    def test_create_is_pending_and_touches_no_money(self, admin_headers, new_expense, branch):
        expense = new_expense()
        assert expense["status"] == "pending"
        assert expense["amount"] == 250.0
        assert expense["cashbox_id"] is not None
        assert _balance(branch) == 1000.0

    def test_validation(self, client, admin_headers, expense_payload):
        resp = client.post(
            "/api/v1/expenses",
            json=expense_payload(category="parties", amount=0, description=None),
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert {"category", "amount", "description"} <= set(resp.get_json()["errors"])

    def test_approve_then_pay(self, client, admin_headers, new_expense, branch):
        expense = new_expense()

        early = client.post(f"/api/v1/expenses/{expense['id']}/pay", headers=admin_headers)
        assert early.status_code == 422

        approved = client.post(f"/api/v1/expenses/{expense['id']}/approve", headers=admin_headers).get_json()
        assert approved["status"] == "approved"
        assert approved["approved_by_user_id"] is not None

        paid = client.post(f"/api/v1/expenses/{expense['id']}/pay", headers=admin_headers)
        assert paid.status_code == 200
        body = paid.get_json()
        assert body["status"] == "paid"
        assert _balance(branch) == 750.0

        transaction = db.session.get(CashboxTransaction, body["transaction_id"])
        assert transaction.type == "expense"
        assert transaction.category == "utilities"
        assert transaction.reference_type == "expense"
        assert transaction.reference_id == expense["id"]

    def test_pay_needs_balance(self, client, admin_headers, new_expense, branch):
        expense = new_expense(amount=1500)
        client.post(f"/api/v1/expenses/{expense['id']}/approve", headers=admin_headers)

        resp = client.post(f"/api/v1/expenses/{expense['id']}/pay", headers=admin_headers)
        assert resp.status_code == 422
        assert "amount" in resp.get_json()["errors"]
        assert _balance(branch) == 1000.0
        again = client.get(f"/api/v1/expenses/{expense['id']}", headers=admin_headers).get_json()
        assert again["status"] == "approved"

    def test_cancel(self, client, admin_headers, new_expense):
        expense = new_expense()
        resp = client.post(f"/api/v1/expenses/{expense['id']}/cancel", json={"reason": "Duplicate"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "canceled"
        assert "Duplicate" in resp.get_json()["notes"]

        assert client.post(f"/api/v1/expenses/{expense['id']}/approve", headers=admin_headers).status_code == 422

    def test_paid_expense_is_final(self, client, admin_headers, new_expense):
        expense = new_expense()
        client.post(f"/api/v1/expenses/{expense['id']}/approve", headers=admin_headers)
        client.post(f"/api/v1/expenses/{expense['id']}/pay", headers=admin_headers)

        assert client.post(f"/api/v1/expenses/{expense['id']}/cancel", headers=admin_headers).status_code == 422
        assert client.put(f"/api/v1/expenses/{expense['id']}", json={"amount": 10},
                          headers=admin_headers).status_code == 422
        assert client.delete(f"/api/v1/expenses/{expense['id']}", headers=admin_headers).status_code == 422

    def test_update_and_delete_pending(self, client, admin_headers, new_expense):
        expense = new_expense()
        resp = client.put(f"/api/v1/expenses/{expense['id']}", json={"amount": 300, "vendor": "Grid"},
                          headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["amount"] == 300.0
        assert resp.get_json()["description"] == "October electricity bill"

        assert client.delete(f"/api/v1/expenses/{expense['id']}", headers=admin_headers).status_code == 204
        assert client.get(f"/api/v1/expenses/{expense['id']}", headers=admin_headers).status_code == 404


class TestExpenseQueries:

    def test_categories(self, client, admin_headers):
        body = client.get("/api/v1/expenses/categories", headers=admin_headers).get_json()
        codes = [c["code"] for c in body["categories"]]
        assert "utilities" in codes and "other" in codes

    def test_list_filters(self, client, admin_headers, new_expense):
        new_expense(category="cleaning", vendor="Spotless")
        new_expense(category="transport", vendor="Cabs")

        body = client.get("/api/v1/expenses?category=cleaning", headers=admin_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["vendor"] == "Spotless"

        assert client.get("/api/v1/expenses?vendor=cab", headers=admin_headers).get_json()["total"] == 1

    def test_summary(self, client, admin_headers, new_expense):
        paid = new_expense(category="cleaning", amount=100)
        client.post(f"/api/v1/expenses/{paid['id']}/approve", headers=admin_headers)
        client.post(f"/api/v1/expenses/{paid['id']}/pay", headers=admin_headers)
        new_expense(category="cleaning", amount=40)

        start = (today() - timedelta(days=1)).isoformat()
        end = (today() + timedelta(days=1)).isoformat()
        body = client.get(f"/api/v1/expenses/summary?start_date={start}&end_date={end}", headers=admin_headers).get_json()
        assert body["total_paid"] == 100.0
        assert body["by_category"] == {"cleaning": 100.0}
        assert body["by_status"]["pending"] == {"count": 1, "total": 40.0}

    def test_summary_requires_range(self, client, admin_headers):
        resp = client.get("/api/v1/expenses/summary", headers=admin_headers)
        assert resp.status_code == 422

    def test_other_branch_is_hidden(self, client, make_user, login, new_expense, other_branch):
        expense = new_expense()
        headers = login(make_user("employee", assignments=[(ENTITY_BRANCH, other_branch.id)]))

        assert client.get(f"/api/v1/expenses/{expense['id']}", headers=headers).status_code == 403
        assert client.get("/api/v1/expenses", headers=headers).get_json()["total"] == 0


# =============================================================================
# RECEIVABLES
# =============================================================================


class TestReceivables:

    def test_create(self, new_receivable):
        receivable = new_receivable(due_date=(today() + timedelta(days=10)).isoformat())
        assert receivable["status"] == "pending"
        assert receivable["remaining_amount"] == 600.0
        assert receivable["payment_percentage"] == 0.0
        assert receivable["is_overdue"] is False

    def test_create_validation(self, client, admin_headers, branch):
        resp = client.post(
            "/api/v1/receivables",
            json={"client_id": 999999, "branch_id": branch.id, "original_amount": 50, "description": "x"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "client_id" in resp.get_json()["errors"]

    def test_installments_reach_the_cashbox(self, client, admin_headers, new_receivable, branch):
        receivable = new_receivable()

        resp = client.post(f"/api/v1/receivables/{receivable['id']}/payments",
                           json={"amount": 200, "payment_method": "card"}, headers=admin_headers)
        assert resp.status_code == 200, resp.get_json()
        body = resp.get_json()
        assert body["receivable"]["status"] == "partial"
        assert body["receivable"]["remaining_amount"] == 400.0
        assert body["payment"]["payment_method"] == "card"
        assert _balance(branch) == 1200.0

        transaction = db.session.get(CashboxTransaction, body["payment"]["transaction_id"])
        assert transaction.category == "receivable_payment"

        final = client.post(f"/api/v1/receivables/{receivable['id']}/payments",
                            json={"amount": 400}, headers=admin_headers).get_json()
        assert final["receivable"]["status"] == "paid"
        assert final["receivable"]["remaining_amount"] == 0.0
        assert final["receivable"]["payment_percentage"] == 100.0
        assert len(final["receivable"]["payments"]) == 2
        assert _balance(branch) == 1600.0

    def test_payment_cannot_exceed_remaining(self, client, admin_headers, new_receivable, branch):
        receivable = new_receivable(amount=100)
        resp = client.post(f"/api/v1/receivables/{receivable['id']}/payments",
                           json={"amount": 100.01}, headers=admin_headers)
        assert resp.status_code == 422
        assert "amount" in resp.get_json()["errors"]
        assert _balance(branch) == 1000.0

    def test_write_off(self, client, admin_headers, new_receivable):
        receivable = new_receivable()
        resp = client.post(f"/api/v1/receivables/{receivable['id']}/write-off",
                           json={"reason": "Client moved abroad"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "written_off"
        assert "Client moved abroad" in resp.get_json()["notes"]

        again = client.post(f"/api/v1/receivables/{receivable['id']}/payments",
                            json={"amount": 10}, headers=admin_headers)
        assert again.status_code == 422

    def test_delete_only_without_payments(self, client, admin_headers, new_receivable):
        untouched = new_receivable()
        assert client.delete(f"/api/v1/receivables/{untouched['id']}", headers=admin_headers).status_code == 204

        paid = new_receivable()
        client.post(f"/api/v1/receivables/{paid['id']}/payments", json={"amount": 50}, headers=admin_headers)
        resp = client.delete(f"/api/v1/receivables/{paid['id']}", headers=admin_headers)
        assert resp.status_code == 422
        assert "payments" in resp.get_json()["errors"]

    def test_summary_and_overdue(self, client, admin_headers, new_receivable):
        late = new_receivable(amount=300)
        row = db.session.get(Receivable, late["id"])
        row.due_date = today() - timedelta(days=3)
        db.session.commit()
        new_receivable(amount=200, due_date=(today() + timedelta(days=3)).isoformat())
        new_receivable(amount=50, due_date=(today() + timedelta(days=30)).isoformat())

        body = client.get("/api/v1/receivables/summary", headers=admin_headers).get_json()
        assert body["total_outstanding"] == 550.0
        assert body["total_overdue"] == 300.0
        assert body["overdue_count"] == 1
        assert body["due_soon"] == 200.0
        assert body["by_status"]["pending"]["count"] == 3

        listed = client.get("/api/v1/receivables?overdue_only=1", headers=admin_headers).get_json()
        assert [r["id"] for r in listed["data"]] == [late["id"]]
        assert listed["data"][0]["is_overdue"] is True

    def test_client_receivables(self, client, admin_headers, new_receivable, debtor):
        first = new_receivable(amount=100)
        second = new_receivable(amount=80)
        client.post(f"/api/v1/receivables/{second['id']}/write-off", headers=admin_headers)

        body = client.get(f"/api/v1/receivables/client/{debtor['id']}", headers=admin_headers).get_json()
        assert {r["id"] for r in body["data"]} == {first["id"], second["id"]}
        assert body["total_outstanding"] == 100.0

        assert client.get("/api/v1/receivables/client/999999", headers=admin_headers).status_code == 404
