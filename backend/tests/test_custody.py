"""
Custody tests: deposit types, signed photo URLs, returns and forfeits,
and their cashbox movements.
"""

import os

import pytest
from werkzeug.datastructures import FileStorage

from app.extensions import db
from app.models import Cashbox
from app.services import custody_service, photo_storage


@pytest.fixture
def order(admin_headers, make_cloth, rent_item, create_order):
    return create_order(admin_headers, [rent_item(make_cloth(), paid=500)]).get_json()


@pytest.fixture
def cashbox(branch):
    return db.session.query(Cashbox).filter_by(branch_id=branch.id).one()


def _balance(cashbox) -> float:
    db.session.refresh(cashbox)
    return float(cashbox.current_balance)


class TestCreateCustody:

    def test_money_custody_is_cashbox_income(self, admin_headers, order, money_custody, cashbox):
        resp = money_custody(admin_headers, order["id"], value=250)
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["status"] == "pending"
        assert data["value"] == 250.0
        assert _balance(cashbox) == 1250.0

    def test_money_custody_needs_value(self, client, admin_headers, order):
        resp = client.post(
            f"/api/v1/orders/{order['id']}/custody", json={"type": "money"}, headers=admin_headers
        )
        assert resp.status_code == 422
        assert "value" in resp.get_json()["errors"]

    def test_physical_item_needs_photos(self, client, admin_headers, order):
        resp = client.post(
            f"/api/v1/orders/{order['id']}/custody",
            json={"type": "physical_item", "description": "Gold ring"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "photos" in resp.get_json()["errors"]

    def test_at_most_two_photos(self, client, admin_headers, order, photo):
        resp = client.post(
            f"/api/v1/orders/{order['id']}/custody",
            data={"type": "physical_item", "description": "Watch", "photos": [photo("a.jpg"), photo("b.jpg"), photo("c.jpg")]},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422
        assert "photos" in resp.get_json()["errors"]

    def test_non_image_rejected(self, client, admin_headers, order, photo):
        resp = client.post(
            f"/api/v1/orders/{order['id']}/custody",
            data={"type": "physical_item", "description": "Watch", "photos": [photo("notes.txt")]},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422

    def test_document_custody_leaves_cashbox_alone(self, client, admin_headers, order, cashbox):
        resp = client.post(
            f"/api/v1/orders/{order['id']}/custody",
            json={"type": "document", "description": "National ID card"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert _balance(cashbox) == 1000.0

    def test_no_custody_after_delivery(self, client, admin_headers, order, money_custody):
        money_custody(admin_headers, order["id"])
        client.post(f"/api/v1/orders/{order['id']}/deliver", headers=admin_headers)

        resp = money_custody(admin_headers, order["id"])
        assert resp.status_code == 422
        assert "order" in resp.get_json()["errors"]


class TestCustodyPhotos:

    @pytest.fixture
    def photo_url(self, client, admin_headers, order, photo):
        created = client.post(
            f"/api/v1/orders/{order['id']}/custody",
            data={"type": "physical_item", "description": "Gold ring", "photos": [photo()]},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert created.status_code == 201, created.get_json()
        custody = client.get(f"/api/v1/custody/{created.get_json()['id']}", headers=admin_headers).get_json()
        return custody["photos"][0]["url"]

    def test_signed_url_serves_photo(self, client, photo_url):
        resp = client.get(photo_url)
        assert resp.status_code == 200
        assert resp.data.startswith(b"\xff\xd8")

    def test_missing_signature_forbidden(self, client, photo_url):
        resp = client.get(photo_url.split("?")[0])
        assert resp.status_code == 403

    def test_tampered_signature_forbidden(self, client, photo_url):
        resp = client.get(photo_url + "x")
        assert resp.status_code == 403

    def test_signature_bound_to_path(self, client, photo_url):
        path, query = photo_url.split("?", 1)
        other = path.rsplit("/", 1)[0] + "/other.jpg"
        resp = client.get(f"{other}?{query}")
        assert resp.status_code == 403

    def test_rolled_back_photo_is_deleted(self, admin, order, photo):
        upload = FileStorage(stream=photo()[0], filename="ring.jpg")
        custody = custody_service.create_custody(
            order["id"], {"type": "physical_item", "description": "Ring"}, user=admin, photos=[upload]
        )
        stored = os.path.join(photo_storage.storage_root(), *custody.photos[0].path.split("/"))
        assert os.path.isfile(stored)

        db.session.rollback()
        assert not os.path.exists(stored)

    def test_committed_photo_is_kept(self, admin, order, photo):
        upload = FileStorage(stream=photo()[0], filename="ring.jpg")
        custody = custody_service.create_custody(
            order["id"], {"type": "physical_item", "description": "Ring"}, user=admin, photos=[upload]
        )
        stored = os.path.join(photo_storage.storage_root(), *custody.photos[0].path.split("/"))
        db.session.commit()

        db.session.rollback()
        assert os.path.isfile(stored)



class TestReturnCustody:

    @pytest.fixture
    def custody(self, admin_headers, order, money_custody):
        return money_custody(admin_headers, order["id"], value=300).get_json()

    def test_return_refunds_money(self, admin_headers, custody, return_custody, cashbox):
        resp = return_custody(admin_headers, custody["id"])
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "returned"
        assert data["return"]["custody_action"] == "returned_to_user"
        assert any(p["kind"] == "acknowledgement" for p in data["photos"])
        assert _balance(cashbox) == 1000.0

    def test_return_needs_receipt_photo(self, client, admin_headers, custody):
        resp = client.post(
            f"/api/v1/custody/{custody['id']}/return",
            data={"custody_action": "returned_to_user"},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 422
        assert "acknowledgement_receipt_photos" in resp.get_json()["errors"]

    def test_forfeit_needs_reason(self, admin_headers, custody, return_custody):
        resp = return_custody(admin_headers, custody["id"], action="forfeit")
        assert resp.status_code == 422
        assert "reason_of_kept" in resp.get_json()["errors"]

    def test_forfeit_keeps_money_and_logs_marker(self, client, admin_headers, custody, return_custody, cashbox):
        resp = return_custody(admin_headers, custody["id"], action="forfeit", reason_of_kept="Dress came back torn")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "forfeited"
        assert _balance(cashbox) == 1300.01

        rows = client.get(
            f"/api/v1/cashboxes/{cashbox.id}/transactions",
            query_string={"category": "custody_forfeit"},
            headers=admin_headers,
        ).get_json()["data"]
        assert [r["amount"] for r in rows] == [0.01]

    def test_cannot_settle_twice(self, admin_headers, custody, return_custody):
        assert return_custody(admin_headers, custody["id"]).status_code == 200
        resp = return_custody(admin_headers, custody["id"])
        assert resp.status_code == 422
        assert "status" in resp.get_json()["errors"]

    def test_empty_cashbox_blocks_refund(self, client, admin_headers, custody, return_custody, cashbox):
        client.post(
            f"/api/v1/cashboxes/{cashbox.id}/expense",
            json={"amount": 1300, "description": "Bank deposit"},
            headers=admin_headers,
        )
        resp = return_custody(admin_headers, custody["id"])
        assert resp.status_code == 422
        assert "transaction" in resp.get_json()["errors"]

        still = client.get(f"/api/v1/custody/{custody['id']}", headers=admin_headers).get_json()
        assert still["status"] == "pending"


class TestUpdateCustody:

    def test_money_value_is_fixed(self, client, admin_headers, order, money_custody):
        custody = money_custody(admin_headers, order["id"], value=300).get_json()
        resp = client.put(f"/api/v1/custody/{custody['id']}", json={"value": 450}, headers=admin_headers)
        assert resp.status_code == 422
        assert "value" in resp.get_json()["errors"]

    def test_description_can_change(self, client, admin_headers, order, money_custody):
        custody = money_custody(admin_headers, order["id"]).get_json()
        resp = client.put(
            f"/api/v1/custody/{custody['id']}", json={"description": "Cash in envelope"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.get_json()["description"] == "Cash in envelope"

    def test_list_filters_by_status(self, client, admin_headers, order, money_custody, return_custody):
        first = money_custody(admin_headers, order["id"]).get_json()
        money_custody(admin_headers, order["id"])
        return_custody(admin_headers, first["id"])

        data = client.get("/api/v1/custody", query_string={"status": "pending"}, headers=admin_headers).get_json()
        assert data["total"] == 1
