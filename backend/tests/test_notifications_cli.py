"""
Notification inbox tests and the Flask CLI commands (bootstrap, permission
repair, session cleanup and the overdue rental scan).
"""

from datetime import timedelta

import pytest

from app.extensions import db
from app.models import User, Branch, Notification
from app.models.entities import ENTITY_BRANCH
from app.services import notification_service
from app.time_utils import today


@pytest.fixture
def staff(make_user, branch):
    return make_user("employee", assignments=[(ENTITY_BRANCH, branch.id)])


@pytest.fixture
def staff_headers(login, staff):
    return login(staff)


@pytest.fixture
def inbox(db_session, staff):
    """Two notifications for the staff member."""
    first = notification_service.notify_user(staff.id, type="info", title="First", message="One")
    second = notification_service.notify_user(staff.id, type="info", title="Second", message="Two")
    db_session.commit()
    return [first.id, second.id]


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestInbox:

    def test_list_and_count(self, client, staff_headers, inbox):
        data = client.get("/api/v1/notifications", headers=staff_headers).get_json()
        assert data["total"] == 2
        assert {n["id"] for n in data["data"]} == set(inbox)

        count = client.get("/api/v1/notifications/unread-count", headers=staff_headers).get_json()
        assert count == {"unread_count": 2}

    def test_mark_read(self, client, staff_headers, inbox):
        resp = client.post(f"/api/v1/notifications/{inbox[0]}/read", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.get_json()["read_at"] is not None

        unread = client.get("/api/v1/notifications", query_string={"unread": "true"}, headers=staff_headers)
        assert [n["id"] for n in unread.get_json()["data"]] == [inbox[1]]

    def test_dismiss_hides(self, client, staff_headers, inbox):
        client.post(f"/api/v1/notifications/{inbox[0]}/dismiss", headers=staff_headers)
        data = client.get("/api/v1/notifications", headers=staff_headers).get_json()
        assert [n["id"] for n in data["data"]] == [inbox[1]]

    def test_read_all(self, client, staff_headers, inbox):
        resp = client.post("/api/v1/notifications/read-all", headers=staff_headers)
        assert resp.get_json() == {"updated": 2}
        count = client.get("/api/v1/notifications/unread-count", headers=staff_headers).get_json()
        assert count["unread_count"] == 0

    def test_other_users_notification_not_found(self, client, admin_headers, inbox):
        resp = client.post(f"/api/v1/notifications/{inbox[0]}/read", headers=admin_headers)
        assert resp.status_code == 404


class TestOverdueRentals:

    @pytest.fixture
    def late_order(self, client, admin_headers, make_cloth, rent_item, create_order, money_custody):
        item = rent_item(make_cloth(), delivery=today() - timedelta(days=6), days=3, paid=500)
        order = create_order(admin_headers, [item]).get_json()
        money_custody(admin_headers, order["id"])
        resp = client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)
        assert resp.status_code == 200, resp.get_json()
        return order

    def test_notify_overdue_once(self, runner, staff, late_order):
        result = runner.invoke(args=["rentals", "notify-overdue"])
        assert result.exit_code == 0, result.output
        assert "PASS Notified staff about 1 overdue rental(s)." in result.output

        rows = db.session.query(Notification).filter_by(user_id=staff.id, type="overdue_return").all()
        assert len(rows) == 1
        assert rows[0].priority == "high"

        again = runner.invoke(args=["rentals", "notify-overdue"])
        assert "about 0 overdue" in again.output

    def test_as_of_before_due_date(self, runner, staff, late_order):
        as_of = (today() - timedelta(days=4)).isoformat()
        result = runner.invoke(args=["rentals", "notify-overdue", "--as-of", as_of])
        assert "about 0 overdue" in result.output

    def test_bad_date(self, runner, db_session):
        result = runner.invoke(args=["rentals", "notify-overdue", "--as-of", "31/01/2026"])
        assert result.exit_code == 2


class TestCommands:

    def test_system_init_is_idempotent(self, runner, db_session):
        result = runner.invoke(args=["system", "init", "--branch-name", "Downtown", "--branch-code", "BR-777"])
        assert result.exit_code == 0, result.output
        assert "DONE System Initialized Successfully!" in result.output

        assert db.session.query(User).filter_by(email="admin@atelier.local").count() == 1
        branch = db.session.query(Branch).one()
        assert branch.branch_code == "BR-777"
        assert branch.cashbox is not None

        again = runner.invoke(args=["system", "init"])
        assert "already exists" in again.output
        assert db.session.query(Branch).count() == 1

    def test_users_list(self, runner, staff):
        result = runner.invoke(args=["users", "list"])
        assert staff.email in result.output
        assert "employee" in result.output

    def test_revoke_and_grant(self, runner, client, staff_headers):
        result = runner.invoke(args=["perms", "revoke", "employee", "VIEW_CLIENTS"])
        assert "PASS Revoked 'VIEW_CLIENTS'" in result.output
        assert client.get("/api/v1/clients", headers=staff_headers).status_code == 403

        result = runner.invoke(args=["perms", "grant", "employee", "VIEW_CLIENTS"])
        assert "PASS Granted 'VIEW_CLIENTS'" in result.output
        assert client.get("/api/v1/clients", headers=staff_headers).status_code == 200

    def test_unknown_permission(self, runner, setup_roles):
        result = runner.invoke(args=["perms", "grant", "employee", "NOPE"])
        assert "FAIL Error: Permission 'NOPE' not found" in result.output

    def test_cleanup_sessions(self, runner, db_session):
        result = runner.invoke(args=["maintenance", "cleanup-sessions", "--retention-days", "7"])
        assert result.exit_code == 0
        assert "Deleted 0 sessions older than 7 days." in result.output
