"""
Client registry tests: creation rules, measurements, deletion guards, export.
"""

from sqlalchemy.exc import OperationalError

from app.extensions import db
from app.models import Client


class TestCommitConflict:

    def test_failed_commit_is_reported_and_saves_nothing(self, client, admin_headers, client_payload, monkeypatch):
        session_cls = type(db.session())
        original_commit = session_cls.commit
        state = {"failed": False}

        def locked_once(self):
            pending = list(self.new) + list(self.identity_map.values())
            if not state["failed"] and any(isinstance(obj, Client) for obj in pending):
                state["failed"] = True
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return original_commit(self)

        monkeypatch.setattr(session_cls, "commit", locked_once)

        payload = client_payload()
        resp = client.post("/api/v1/clients", json=payload, headers=admin_headers)
        assert resp.status_code == 409
        assert "transaction" in resp.get_json()["errors"]
        assert db.session.query(Client).count() == 0

        resent = client.post("/api/v1/clients", json=payload, headers=admin_headers)
        assert resent.status_code == 201
        assert db.session.query(Client).count() == 1



class TestClientCreate:

    def test_create_client(self, client, admin_headers, client_payload):
        payload = client_payload(address={"city": "Cairo", "street": "Tahrir St"})
        resp = client.post("/api/v1/clients", json=payload, headers=admin_headers)

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["national_id"] == payload["national_id"]
        assert [p["phone"] for p in data["phones"]] == [payload["phones"][0]["phone"]]

    def test_national_id_must_be_14_digits(self, client, admin_headers, client_payload):
        resp = client.post("/api/v1/clients", json=client_payload(national_id="123"), headers=admin_headers)
        assert resp.status_code == 422
        assert "national_id" in resp.get_json()["errors"]

    def test_duplicate_national_id_rejected(self, client, admin_headers, client_payload):
        first = client_payload()
        assert client.post("/api/v1/clients", json=first, headers=admin_headers).status_code == 201

        second = client_payload(national_id=first["national_id"])
        resp = client.post("/api/v1/clients", json=second, headers=admin_headers)
        assert resp.status_code == 422
        assert resp.get_json()["errors"]["national_id"] == ["The national_id has already been taken."]

    def test_phones_required(self, client, admin_headers, client_payload):
        resp = client.post("/api/v1/clients", json=client_payload(phones=[]), headers=admin_headers)
        assert resp.status_code == 422
        assert "phones" in resp.get_json()["errors"]

    def test_search_by_phone(self, client, admin_headers, client_payload):
        payload = client_payload()
        client.post("/api/v1/clients", json=payload, headers=admin_headers)
        client.post("/api/v1/clients", json=client_payload(), headers=admin_headers)

        resp = client.get(
            "/api/v1/clients", query_string={"search": payload["phones"][0]["phone"]}, headers=admin_headers
        )
        data = resp.get_json()
        assert data["total"] == 1
        assert data["data"][0]["national_id"] == payload["national_id"]


class TestMeasurements:

    def test_update_and_read_measurements(self, client, admin_headers, client_payload):
        created = client.post("/api/v1/clients", json=client_payload(), headers=admin_headers).get_json()

        resp = client.put(
            f"/api/v1/clients/{created['id']}/measurements",
            json={"breast_size": "92", "waist_size": "70", "measurement_notes": "Prefers loose sleeves"},
            headers=admin_headers,
        )
        assert resp.status_code == 200

        data = client.get(f"/api/v1/clients/{created['id']}/measurements", headers=admin_headers).get_json()
        assert data["measurements"]["breast_size"] == "92"
        assert data["measurements"]["waist_size"] == "70"
        assert data["measurements"]["hip_size"] is None


class TestClientDelete:

    def test_delete_client_without_orders(self, client, admin_headers, client_payload):
        created = client.post("/api/v1/clients", json=client_payload(), headers=admin_headers).get_json()
        resp = client.delete(f"/api/v1/clients/{created['id']}", headers=admin_headers)
        assert resp.status_code == 204
        assert client.get(f"/api/v1/clients/{created['id']}", headers=admin_headers).status_code == 404

    def test_client_with_open_order_cannot_be_deleted(
        self, client, admin_headers, make_cloth, rent_item, create_order
    ):
        order = create_order(admin_headers, [rent_item(make_cloth())]).get_json()
        resp = client.delete(f"/api/v1/clients/{order['client_id']}", headers=admin_headers)
        assert resp.status_code == 422
        assert "orders" in resp.get_json()["errors"]


class TestClientExport:

    def test_export_csv(self, client, admin_headers, client_payload):
        payload = client_payload()
        client.post("/api/v1/clients", json=payload, headers=admin_headers)

        resp = client.get("/api/v1/clients/export", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        body = resp.get_data(as_text=True)
        assert payload["national_id"] in body
