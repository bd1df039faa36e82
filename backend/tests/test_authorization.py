"""
Authorization tests for the atelier API.

Verifies:
- Unauthenticated requests return 401
- Branch employees are denied management operations (403)
- Admin role can perform privileged operations
- Employees only see the entities they are assigned to
"""

import pytest

from app.models.entities import ENTITY_BRANCH, ENTITY_FACTORY


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/v1/auth/me"),
            ("GET", "/api/v1/clients"),
            ("POST", "/api/v1/clients"),
            ("GET", "/api/v1/clothes"),
            ("GET", "/api/v1/cloth-types"),
            ("GET", "/api/v1/branches"),
            ("GET", "/api/v1/workshops"),
            ("GET", "/api/v1/factories"),
            ("GET", "/api/v1/orders"),
            ("POST", "/api/v1/orders"),
            ("GET", "/api/v1/payments"),
            ("GET", "/api/v1/custody"),
            ("GET", "/api/v1/transfers"),
            ("GET", "/api/v1/factory/orders"),
            ("GET", "/api/v1/employees"),
            ("GET", "/api/v1/cashboxes"),
            ("GET", "/api/v1/notifications"),
            ("GET", "/api/v1/reports/debts"),
        ],
    )
    def test_requires_auth(self, client, setup_roles, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, setup_roles):
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# EMPLOYEE DENIED MANAGEMENT OPERATIONS: 403
# =============================================================================


@pytest.fixture
def employee_headers(make_user, login, branch):
    return login(make_user("employee", assignments=[(ENTITY_BRANCH, branch.id)]))


class TestEmployeeDenied:
    """Branch staff cannot manage stock, staff, money or reports."""

    @pytest.mark.parametrize(
        "method,path,permission",
        [
            ("POST", "/api/v1/clothes", "MANAGE_CLOTHES"),
            ("POST", "/api/v1/cloth-types", "MANAGE_CLOTHES"),
            ("POST", "/api/v1/branches", "MANAGE_ENTITIES"),
            ("GET", "/api/v1/employees", "VIEW_EMPLOYEES"),
            ("POST", "/api/v1/employees", "MANAGE_EMPLOYEES"),
            ("GET", "/api/v1/cashboxes", "VIEW_CASHBOX"),
            ("POST", "/api/v1/expenses/1/approve", "APPROVE_EXPENSES"),
            ("POST", "/api/v1/expenses/1/pay", "APPROVE_EXPENSES"),
            ("GET", "/api/v1/reports/debts", "VIEW_REPORTS"),
            ("GET", "/api/v1/clients/export", "EXPORT_DATA"),
            ("POST", "/api/v1/transfers/1/approve", "APPROVE_TRANSFERS"),
            ("DELETE", "/api/v1/orders/1", "DELETE_ORDERS"),
            ("POST", "/api/v1/orders/1/tailoring-stage", "MANAGE_TAILORING"),
            ("GET", "/api/v1/factory/orders", "FACTORY_ORDERS"),
        ],
    )
    def test_denied(self, client, employee_headers, method, path, permission):
        resp = getattr(client, method.lower())(path, json={}, headers=employee_headers)
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["required_permission"] == permission

    def test_can_list_clients(self, client, employee_headers):
        resp = client.get("/api/v1/clients", headers=employee_headers)
        assert resp.status_code == 200

    def test_factory_user_cannot_see_orders(self, client, make_user, login, factory):
        headers = login(make_user("factory_user", assignments=[(ENTITY_FACTORY, factory.id)]))
        resp = client.get("/api/v1/orders", headers=headers)
        assert resp.status_code == 403


# =============================================================================
# ADMIN ALLOWED: 2xx
# =============================================================================


class TestAdminAllowed:
    """Admin role can perform privileged operations."""

    def test_can_list_employees(self, client, admin_headers):
        resp = client.get("/api/v1/employees", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_create_branch(self, client, admin_headers):
        resp = client.post(
            "/api/v1/branches",
            json={"name": "Downtown", "branch_code": "BR-900", "initial_balance": 250},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["branch_code"] == "BR-900"
        assert data["cashbox"]["current_balance"] == 250.0

    def test_can_view_reports(self, client, admin_headers):
        resp = client.get("/api/v1/reports/available-dresses", headers=admin_headers)
        assert resp.status_code == 200


# =============================================================================
# ENTITY SCOPING
# =============================================================================


class TestEntityScoping:
    """Non-admin users only see what their entity assignments allow."""

    def test_branch_list_is_scoped(self, client, make_user, login, branch, other_branch):
        headers = login(make_user("manager", assignments=[(ENTITY_BRANCH, branch.id)]))
        resp = client.get("/api/v1/branches", headers=headers)
        assert resp.status_code == 200
        ids = [b["id"] for b in resp.get_json()["data"]]
        assert ids == [branch.id]

    def test_other_branch_order_forbidden(
        self, client, admin_headers, make_user, login, make_cloth, rent_item, create_order, other_branch
    ):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()

        headers = login(make_user("employee", assignments=[(ENTITY_BRANCH, other_branch.id)]))
        resp = client.get(f"/api/v1/orders/{order['id']}", headers=headers)
        assert resp.status_code == 403

        listing = client.get("/api/v1/orders", headers=headers).get_json()
        assert listing["total"] == 0

    def test_user_without_employee_record_sees_nothing(
        self, client, admin_headers, make_user, login, make_cloth, rent_item, create_order
    ):
        create_order(admin_headers, [rent_item(make_cloth())])
        headers = login(make_user("manager"))
        resp = client.get("/api/v1/orders", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 0

    def test_admin_sees_every_branch(self, client, admin_headers, branch, other_branch):
        resp = client.get("/api/v1/branches", headers=admin_headers)
        ids = {b["id"] for b in resp.get_json()["data"]}
        assert {branch.id, other_branch.id} <= ids
