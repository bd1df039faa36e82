# Overview: CSV downloads for the main resources.

from __future__ import annotations

import csv
import io
from typing import Iterable

from flask import Response

from ..models import Client, Cloth, Custody, Employee, Workshop, Order
from ..validation import money_out
from app.time_utils import today, to_utc_z, to_iso_date


def csv_response(name: str, header: list[str], rows: Iterable[list]) -> Response:
    """Render rows into an attachment named `<name>_<YYYY-MM-DD>.csv`."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])

    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={name}_{today().isoformat()}.csv"},
    )


def _phones(client: Client | None) -> str:
    return " / ".join(p.phone for p in client.phones) if client else ""


def export_clients(clients: Iterable[Client]) -> Response:
    header = ["id", "first_name", "middle_name", "last_name", "national_id", "date_of_birth", "phones",
              "city", "street", "building", "source", "created_at"]
    return csv_response("clients", header, (
        [
            c.id, c.first_name, c.middle_name, c.last_name, c.national_id, to_iso_date(c.date_of_birth),
            _phones(c), c.city, c.street, c.building, c.source, to_utc_z(c.created_at),
        ]
        for c in clients
    ))


def export_clothes(clothes: Iterable[Cloth]) -> Response:
    header = ["id", "code", "name", "cloth_type", "status", "breast_size", "waist_size", "sleeve_size",
              "entity_type", "entity_id", "created_at"]

    def _row(c: Cloth) -> list:
        inventory = c.inventory
        return [
            c.id, c.code, c.name, c.cloth_type.name if c.cloth_type else None, c.status,
            c.breast_size, c.waist_size, c.sleeve_size,
            inventory.entity_type if inventory else None, inventory.entity_id if inventory else None,
            to_utc_z(c.created_at),
        ]

    return csv_response("clothes", header, (_row(c) for c in clothes))


def export_custody(custodies: Iterable[Custody]) -> Response:
    header = ["id", "order_id", "client", "type", "description", "value", "status", "returned_at", "created_at"]
    return csv_response("custody", header, (
        [
            c.id, c.order_id, c.order.client.full_name if c.order and c.order.client else None,
            c.type, c.description, money_out(c.value) if c.value is not None else None, c.status,
            to_utc_z(c.returned_at), to_utc_z(c.created_at),
        ]
        for c in custodies
    ))


def export_employees(employees: Iterable[Employee]) -> Response:
    header = ["id", "employee_code", "name", "email", "department", "job_title", "employment_type",
              "employment_status", "hire_date", "termination_date", "base_salary", "phone"]
    return csv_response("employees", header, (
        [
            e.id, e.employee_code, e.user.name if e.user else None, e.user.email if e.user else None,
            e.department, e.job_title, e.employment_type, e.employment_status,
            to_iso_date(e.hire_date), to_iso_date(e.termination_date), money_out(e.base_salary), e.phone,
        ]
        for e in employees
    ))


def export_workshops(workshops: Iterable[Workshop]) -> Response:
    header = ["id", "workshop_code", "name", "branch", "phone", "address", "clothes_count", "created_at"]
    return csv_response("workshops", header, (
        [
            w.id, w.workshop_code, w.name, w.branch.name if w.branch else None, w.phone, w.address,
            len(w.inventory.clothes) if w.inventory else 0, to_utc_z(w.created_at),
        ]
        for w in workshops
    ))


def export_orders(orders: Iterable[Order]) -> Response:
    header = ["id", "client", "entity_type", "entity_id", "status", "item_types", "total_price", "paid",
              "remaining", "tailoring_stage", "created_at"]

    def _row(o: Order) -> list:
        inventory = o.inventory
        return [
            o.id, o.client.full_name if o.client else None,
            inventory.entity_type if inventory else None, inventory.entity_id if inventory else None,
            o.status, ",".join(sorted({i.type for i in o.items})),
            money_out(o.total_price), money_out(o.paid), money_out(o.remaining),
            o.tailoring_stage, to_utc_z(o.created_at),
        ]

    return csv_response("orders", header, (_row(o) for o in orders))
