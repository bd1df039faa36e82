"""
Login, logout and /me tests.
"""

from app.models.entities import ENTITY_BRANCH


PASSWORD = "Password123!"


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestLogin:

    def test_login_returns_token_and_permissions(self, client, make_user):
        user = make_user("employee")
        resp = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["token"]
        assert data["roles"] == ["employee"]
        assert "CREATE_ORDERS" in data["permissions"]
        assert "MANAGE_CLOTHES" not in data["permissions"]

    def test_wrong_password(self, client, make_user):
        user = make_user("employee")
        resp = client.post("/api/v1/auth/login", json={"email": user.email, "password": "Wrong123!"})
        assert resp.status_code == 422
        assert "email" in resp.get_json()["errors"]

    def test_missing_fields(self, client, setup_roles):
        resp = client.post("/api/v1/auth/login", json={})
        assert resp.status_code == 422
        errors = resp.get_json()["errors"]
        assert set(errors) == {"email", "password"}

    def test_inactive_user_cannot_login(self, client, db_session, make_user):
        user = make_user("employee")
        user.is_active = False
        db_session.commit()

        resp = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
        assert resp.status_code == 422


class TestSession:

    def test_me_lists_accessible_entities(self, client, make_user, login, branch):
        headers = login(make_user("employee", assignments=[(ENTITY_BRANCH, branch.id)]))
        resp = client.get("/api/v1/auth/me", headers=headers)

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["entities"]["branch"] == [branch.id]
        assert data["entities"]["factory"] == []

    def test_admin_me_sees_all_entities(self, client, admin_headers):
        data = client.get("/api/v1/auth/me", headers=admin_headers).get_json()
        assert data["entities"]["branch"] is None

    def test_logout_revokes_token(self, client, make_user, login):
        headers = login(make_user("employee"))

        resp = client.post("/api/v1/auth/logout", headers=headers)
        assert resp.status_code == 200

        resp = client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401

    def test_each_login_gets_its_own_token(self, client, make_user):
        user = make_user("employee")
        first = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD}).get_json()
        second = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD}).get_json()
        assert first["token"] != second["token"]

        client.post("/api/v1/auth/logout", headers=auth_headers(first["token"]))
        assert client.get("/api/v1/auth/me", headers=auth_headers(second["token"])).status_code == 200

    def test_me_counts_open_sessions(self, client, make_user, branch):
        user = make_user("employee", assignments=[(ENTITY_BRANCH, branch.id)])
        for _ in range(2):
            token = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD}).get_json()["token"]

        data = client.get("/api/v1/auth/me", headers=auth_headers(token)).get_json()
        assert data["active_sessions"] == 2
        assert data["user"]["employee_id"] is not None

    def test_idle_timeout_follows_config(self, app, client, make_user, login, monkeypatch):
        headers = login(make_user("employee"))
        monkeypatch.setitem(app.config, "SESSION_IDLE_HOURS", 0)
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
