# Overview: Client records with phones, address and body measurements.

from __future__ import annotations

import logging
import re

from ..extensions import db
from ..models import Client, ClientPhone, Order
from ..models.clients import MEASUREMENT_FIELDS
from ..models.orders import ORDER_CLOSED_STATUSES
from ..validation import ServiceError, NotFoundError, Payload
from .concurrency import run_with_retry
from app.time_utils import today

logger = logging.getLogger(__name__)


NATIONAL_ID_PATTERN = re.compile(r"^\d{14}$")
MEASUREMENT_MAX_LENGTH = 20


class ClientError(ServiceError):
    """Raised when client operations fail."""
    pass


def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id) if client_id is not None else None
    if not client:
        raise NotFoundError("Client not found")
    return client


def read_measurements(p: Payload) -> dict:
    data = {}
    for field in MEASUREMENT_FIELDS:
        if field in p.data:
            limit = 1000 if field == "measurement_notes" else MEASUREMENT_MAX_LENGTH
            data[field] = p.string(field, max_length=limit)
    return data


def read_client_payload(p: Payload, *, partial: bool = False) -> dict:
    """
    Read the client fields of a request body into a plain dict.

    Errors are collected on `p`; the caller decides when to validate().
    `phones` is a list of {"phone", "type"} dicts when present.
    """
    required = not partial
    data: dict = {}

    for field in ("first_name", "last_name"):
        if required or field in p.data:
            data[field] = p.string(field, required=True, max_length=100)
    if "middle_name" in p.data:
        data["middle_name"] = p.string("middle_name", max_length=100)
    if "date_of_birth" in p.data:
        data["date_of_birth"] = p.date("date_of_birth")
    if "source" in p.data:
        data["source"] = p.string("source", max_length=64)

    if required or "national_id" in p.data:
        national_id = p.string("national_id", required=True)
        if national_id is not None and not NATIONAL_ID_PATTERN.match(national_id):
            p.error("national_id", "The national_id must be 14 digits.")
        data["national_id"] = national_id

    if p.has("address"):
        address = p.data.get("address")
        if not isinstance(address, dict):
            p.error("address", "The address field must be an object.")
        else:
            a = p.nested(address, "address.")
            data["city"] = a.string("city", max_length=100)
            data["street"] = a.string("street", max_length=255)
            data["building"] = a.string("building", max_length=100)
            data["address_notes"] = a.string("notes")

    data.update(read_measurements(p))

    if required or "phones" in p.data:
        phones = []
        seen: set[str] = set()
        for index, raw in enumerate(p.list("phones", required=True)):
            if isinstance(raw, str):
                raw = {"phone": raw}
            if not isinstance(raw, dict):
                p.error(f"phones.{index}", "Each phone must be an object.")
                continue
            item = p.nested(raw, f"phones.{index}.")
            number = item.string("phone", required=True, max_length=32)
            if number is None:
                continue
            if number in seen:
                item.error("phone", "Duplicate phone number in request.")
                continue
            seen.add(number)
            phones.append({"phone": number, "type": item.string("type", max_length=16)})
        data["phones"] = phones

    return data


def _check_unique(data: dict, exclude_client_id: int | None = None, prefix: str = "") -> None:
    errors: dict[str, list[str]] = {}

    national_id = data.get("national_id")
    if national_id:
        query = db.session.query(Client).filter(Client.national_id == national_id)
        if exclude_client_id is not None:
            query = query.filter(Client.id != exclude_client_id)
        if query.first():
            errors[f"{prefix}national_id"] = ["The national_id has already been taken."]

    for index, phone in enumerate(data.get("phones") or []):
        query = db.session.query(ClientPhone).filter(ClientPhone.phone == phone["phone"])
        if exclude_client_id is not None:
            query = query.filter(ClientPhone.client_id != exclude_client_id)
        if query.first():
            errors[f"{prefix}phones.{index}.phone"] = [
                f"The phone number {phone['phone']} is already registered to another client."
            ]

    if errors:
        raise ClientError("The given data was invalid.", errors)


def _apply(client: Client, data: dict) -> None:
    phones = data.pop("phones", None)
    measured = any(field in data for field in MEASUREMENT_FIELDS)
    for key, value in data.items():
        setattr(client, key, value)
    if measured:
        client.last_measurement_date = today()
    if phones is not None:
        client.phones = [ClientPhone(phone=p["phone"], type=p["type"]) for p in phones]


def build_client(data: dict, *, prefix: str = "") -> Client:
    """
    Create a client from already-read payload data (see read_client_payload).

    Does not commit; used by the client endpoint and by order creation.
    """
    data = dict(data)
    _check_unique(data, prefix=prefix)
    client = Client()
    _apply(client, data)
    db.session.add(client)
    db.session.flush()
    logger.info("Created client #%s", client.id)
    return client


def create_client(payload: dict) -> Client:
    p = Payload(payload)
    data = read_client_payload(p)
    p.validate()
    return run_with_retry(lambda: build_client(data))


def update_client(client_id: int, payload: dict) -> Client:
    p = Payload(payload)
    data = read_client_payload(p, partial=True)
    p.validate()

    def _op():
        client = get_client(client_id)
        _check_unique(data, exclude_client_id=client.id)
        if data.get("phones") is not None:
            # Drop old numbers first so a re-submitted number doesn't collide
            client.phones = []
            db.session.flush()
        _apply(client, dict(data))
        db.session.flush()
        return client

    return run_with_retry(_op)


def update_measurements(client_id: int, payload: dict) -> Client:
    p = Payload(payload)
    data = read_measurements(p)
    p.validate()

    client = get_client(client_id)
    _apply(client, data)
    db.session.flush()
    return client


def delete_client(client_id: int) -> None:
    """Refused while the client has orders that are still open."""
    client = get_client(client_id)
    open_orders = db.session.query(Order).filter(
        Order.client_id == client.id,
        Order.status.notin_(ORDER_CLOSED_STATUSES),
    ).count()
    if open_orders:
        raise ClientError(
            "Cannot delete client with open orders.",
            {"orders": [f"The client has {open_orders} open order(s)."]},
        )
    # Closed orders keep the client row alive for reporting
    if db.session.query(Order).filter_by(client_id=client.id).count():
        raise ClientError(
            "Cannot delete client with order history.",
            {"orders": ["The client has finished or canceled orders on record."]},
        )
    db.session.delete(client)
    db.session.flush()


def clients_query(*, search: str | None = None, source: str | None = None):
    query = db.session.query(Client)
    if search:
        like = f"%{search}%"
        query = query.outerjoin(ClientPhone).filter(
            db.or_(
                Client.first_name.ilike(like),
                Client.middle_name.ilike(like),
                Client.last_name.ilike(like),
                Client.national_id.ilike(like),
                ClientPhone.phone.ilike(like),
            )
        ).distinct()
    if source:
        query = query.filter(Client.source == source)
    return query.order_by(Client.id.desc())
