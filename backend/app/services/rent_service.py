# Overview: Rental calendar: listing, daily and upcoming views, reschedule, cancel and no-show.

"""
Rent Service

WHY: Once an order is delivered every rented piece has a Rent row. The desk
works from those rows: what goes out today, what is due back, what is late,
and the occasional change of plan after delivery.

RULES:
- reschedule moves the window of an active rent; availability is re-checked
  against every other booking of the piece
- delivery_date can only move while the rental period has not started
- cancel: active rent whose period has not started (delivery_date > today)
- no_show: active rent whose period started but the client never collected
- canceled and no-show rents free the piece's calendar; the piece goes back
  to ready_for_rent unless another order still holds it
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta

from ..extensions import db
from ..models import Rent, Order, OrderItem, Client, User
from ..models.clothes import CLOTH_STATUS_RENTED, CLOTH_STATUS_READY_FOR_RENT
from ..models.orders import (
    RENT_STATUS_ACTIVE, RENT_STATUS_CANCELED, RENT_STATUS_NO_SHOW, RENT_STATUSES, ITEM_STATUS_CANCELED,
)
from ..validation import ServiceError, NotFoundError, Payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import ensure_inventory_access
from .history_service import record_order_history, record_cloth_history
from .order_service import held_by_other_order, finish_if_settled
from . import availability_service
from app.time_utils import today

logger = logging.getLogger(__name__)

DEFAULT_UPCOMING_DAYS = 7
MAX_CALENDAR_DAYS = 366


class RentError(ServiceError):
    """Raised when rent operations fail."""
    pass


def serialize(rent: Rent) -> dict:
    data = rent.to_dict()
    cloth = rent.cloth
    data["cloth"] = {"id": cloth.id, "code": cloth.code, "name": cloth.name} if cloth else None
    data["client_name"] = rent.client.full_name if rent.client else None
    data["inventory_id"] = rent.order.inventory_id if rent.order else None
    data["is_overdue"] = rent.status == RENT_STATUS_ACTIVE and rent.return_date < today()
    return data


def get_rent(rent_id: int, *, user: User) -> Rent:
    rent = db.session.get(Rent, rent_id) if rent_id is not None else None
    if not rent:
        raise NotFoundError("Rent not found")
    ensure_inventory_access(user, rent.order.inventory_id)
    return rent


def _scoped(inventory_ids: list[int] | None):
    query = db.session.query(Rent).join(Order, Order.id == Rent.order_id)
    if inventory_ids is not None:
        if not inventory_ids:
            return query.filter(db.false())
        query = query.filter(Order.inventory_id.in_(inventory_ids))
    return query


def rents_query(args: dict, *, inventory_ids: list[int] | None):
    """
    Filters: client_id, cloth_id, order_id, status, start_date/end_date
    (on delivery_date), overdue_only.
    """
    p = Payload(args)
    client_id = p.integer("client_id", minimum=1)
    cloth_id = p.integer("cloth_id", minimum=1)
    order_id = p.integer("order_id", minimum=1)
    status = p.choice("status", RENT_STATUSES)
    start = p.date("start_date")
    end = p.date("end_date")
    overdue_only = p.boolean("overdue_only")
    p.validate()

    query = _scoped(inventory_ids)
    if client_id:
        query = query.filter(Rent.client_id == client_id)
    if cloth_id:
        query = query.filter(Rent.cloth_id == cloth_id)
    if order_id:
        query = query.filter(Rent.order_id == order_id)
    if status:
        query = query.filter(Rent.status == status)
    if start:
        query = query.filter(Rent.delivery_date >= start)
    if end:
        query = query.filter(Rent.delivery_date <= end)
    if overdue_only:
        query = query.filter(Rent.status == RENT_STATUS_ACTIVE, Rent.return_date < today())
    return query.order_by(Rent.delivery_date.asc(), Rent.id.asc())


def calendar(args: dict, *, inventory_ids: list[int] | None) -> dict:
    """Rents whose [delivery_date, return_date] touches the requested range."""
    p = Payload(args)
    start = p.date("start_date", required=True)
    end = p.date("end_date", required=True)
    status = p.choice("status", RENT_STATUSES)
    p.validate()
    if end < start:
        raise RentError("The given data was invalid.", {"end_date": ["The end_date must be on or after start_date."]})
    if (end - start).days > MAX_CALENDAR_DAYS:
        raise RentError("The given data was invalid.", {"end_date": [f"The range may not exceed {MAX_CALENDAR_DAYS} days."]})

    query = _scoped(inventory_ids).filter(Rent.delivery_date <= end, Rent.return_date >= start)
    if status:
        query = query.filter(Rent.status == status)

    events = []
    for rent in query.order_by(Rent.delivery_date.asc(), Rent.id.asc()).all():
        events.append({
            "id": rent.id,
            "title": f"{rent.cloth.code} - {rent.client.full_name}" if rent.client else rent.cloth.code,
            "start": rent.delivery_date.isoformat(),
            "end": rent.return_date.isoformat(),
            "status": rent.status,
            "order_id": rent.order_id,
            "cloth_id": rent.cloth_id,
            "is_overdue": rent.status == RENT_STATUS_ACTIVE and rent.return_date < today(),
        })
    return {"start_date": start.isoformat(), "end_date": end.isoformat(), "events": events}


def today_rents(*, inventory_ids: list[int] | None) -> dict:
    current = today()
    active = _scoped(inventory_ids).filter(Rent.status == RENT_STATUS_ACTIVE)
    going_out = active.filter(Rent.delivery_date == current).order_by(Rent.id).all()
    due_back = active.filter(Rent.return_date == current).order_by(Rent.id).all()
    return {
        "date": current.isoformat(),
        "deliveries": [serialize(r) for r in going_out],
        "returns": [serialize(r) for r in due_back],
        "summary": {"deliveries": len(going_out), "returns": len(due_back)},
    }


def upcoming(args: dict, *, inventory_ids: list[int] | None) -> dict:
    """Active rents due back within `days` days, grouped by return date."""
    p = Payload(args)
    days = p.integer("days", minimum=1, maximum=MAX_CALENDAR_DAYS, default=DEFAULT_UPCOMING_DAYS)
    client_id = p.integer("client_id", minimum=1)
    p.validate()

    start = today()
    end = start + timedelta(days=days)
    query = _scoped(inventory_ids).filter(
        Rent.status == RENT_STATUS_ACTIVE,
        Rent.return_date >= start,
        Rent.return_date <= end,
    )
    if client_id:
        query = query.filter(Rent.client_id == client_id)

    by_date: dict[str, list[dict]] = defaultdict(list)
    rents = query.order_by(Rent.return_date.asc(), Rent.id.asc()).all()
    for rent in rents:
        by_date[rent.return_date.isoformat()].append(serialize(rent))
    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "total": len(rents),
        "by_date": dict(by_date),
    }


def overdue(*, inventory_ids: list[int] | None) -> dict:
    rents = (
        _scoped(inventory_ids)
        .filter(Rent.status == RENT_STATUS_ACTIVE, Rent.return_date < today())
        .order_by(Rent.return_date.asc(), Rent.id.asc())
        .all()
    )
    current = today()
    rows = []
    for rent in rents:
        data = serialize(rent)
        data["days_overdue"] = (current - rent.return_date).days
        rows.append(data)
    return {"total": len(rows), "rents": rows}


def client_rents(client_id: int, *, inventory_ids: list[int] | None) -> dict:
    if not db.session.get(Client, client_id):
        raise NotFoundError("Client not found")
    rents = (
        _scoped(inventory_ids)
        .filter(Rent.client_id == client_id)
        .order_by(Rent.delivery_date.desc(), Rent.id.desc())
        .all()
    )
    current = today()
    open_rents = [r for r in rents if r.status == RENT_STATUS_ACTIVE and r.return_date >= current]
    return {
        "client_id": client_id,
        "upcoming": [serialize(r) for r in open_rents],
        "past": [serialize(r) for r in rents if r not in open_rents],
        "total": len(rents),
    }


def _lock_active(rent_id: int, user: User) -> Rent:
    rent = get_for_update(Rent, rent_id)
    if not rent:
        raise NotFoundError("Rent not found")
    ensure_inventory_access(user, rent.order.inventory_id)
    if rent.status != RENT_STATUS_ACTIVE:
        raise RentError(f"Cannot change a {rent.status} rent.", {"status": ["Only active rents can be changed."]})
    return rent


def _append_note(rent: Rent, note: str) -> None:
    rent.notes = f"{rent.notes}\n{note}" if rent.notes else note


def reschedule(rent_id: int, payload: dict, *, user: User) -> Rent:
    """
    payload: {"delivery_date"?, "days_of_rent"?, "notes"?}; at least one of
    the dates. The order item follows the rent.
    """
    p = Payload(payload)
    new_delivery = p.date("delivery_date", not_before=today())
    new_days = p.integer("days_of_rent", minimum=1)
    notes = p.string("notes")
    if new_delivery is None and new_days is None:
        p.error("delivery_date", "Either delivery_date or days_of_rent is required.")
    p.validate()

    def _op():
        rent = _lock_active(rent_id, user)
        if new_delivery is not None and new_delivery != rent.delivery_date and rent.delivery_date <= today():
            raise RentError(
                "The rental period already started.",
                {"delivery_date": ["Only days_of_rent can change once the rental period started."]},
            )

        delivery = new_delivery or rent.delivery_date
        days = new_days or rent.days_of_rent
        start, end = availability_service.rental_window(delivery, days)
        if end < today():
            raise RentError("The given data was invalid.", {"days_of_rent": ["The new return date is in the past."]})

        conflicts = availability_service.find_conflicts(rent.cloth, delivery, days, exclude_rent_id=rent.id)
        if conflicts:
            raise RentError(
                f"Cloth {rent.cloth.code} is not available for the new dates.",
                {"conflicts": [
                    f"{w['start']}..{w['end']} (order #{w['order_id']})" if "start" in w else w["reason"]
                    for w in conflicts
                ]},
            )

        old_window = f"{rent.delivery_date.isoformat()}..{rent.return_date.isoformat()}"
        rent.delivery_date = start
        rent.days_of_rent = days
        rent.return_date = end
        if notes:
            _append_note(rent, notes)

        item = db.session.get(OrderItem, rent.order_item_id) if rent.order_item_id else None
        if item is not None:
            item.delivery_date = start
            item.days_of_rent = days

        record_order_history(
            order=rent.order, action="rent_rescheduled", user_id=user.id, field="rent_window",
            old_value=old_window, new_value=f"{start.isoformat()}..{end.isoformat()}",
            description=f"Rent #{rent.id} of cloth {rent.cloth.code}",
        )
        logger.info("Rescheduled rent #%s to %s..%s", rent.id, start, end)
        return rent

    return run_with_retry(_op)


def _release(rent_id: int, payload: dict, *, user: User, status: str) -> Rent:
    p = Payload(payload)
    reason = p.string("reason", max_length=1000)
    p.validate()

    def _op():
        rent = _lock_active(rent_id, user)
        started = rent.delivery_date <= today()
        if status == RENT_STATUS_CANCELED and started:
            raise RentError(
                "Cannot cancel a rent whose period already started.",
                {"status": ["Use no-show when the client never collected the piece."]},
            )
        if status == RENT_STATUS_NO_SHOW and not started:
            raise RentError(
                "The rental period has not started yet.",
                {"status": ["Only rents whose delivery date has come can be marked as no-show."]},
            )

        order = rent.order
        label = "Canceled" if status == RENT_STATUS_CANCELED else "No-show"
        rent.status = status
        _append_note(rent, f"{label}: {reason}" if reason else label)

        item = db.session.get(OrderItem, rent.order_item_id) if rent.order_item_id else None
        if item is not None:
            item.status = ITEM_STATUS_CANCELED
            item.returnable = False

        cloth = rent.cloth
        if cloth.status == CLOTH_STATUS_RENTED and not held_by_other_order(cloth, order.id):
            cloth.status = CLOTH_STATUS_READY_FOR_RENT
            record_cloth_history(cloth=cloth, action="status_changed", user_id=user.id, order_id=order.id,
                                 notes=f"{label} rent #{rent.id} on order #{order.id}")

        db.session.flush()
        record_order_history(
            order=order, action=f"rent_{status}", user_id=user.id, field="rent_status",
            old_value=RENT_STATUS_ACTIVE, new_value=status, description=reason,
        )
        finish_if_settled(order, user_id=user.id, description=f"Finished after rent #{rent.id} {label.lower()}")
        logger.info("Rent #%s marked %s", rent.id, status)
        return rent

    return run_with_retry(_op)


def cancel_rent(rent_id: int, payload: dict, *, user: User) -> Rent:
    return _release(rent_id, payload, user=user, status=RENT_STATUS_CANCELED)


def mark_no_show(rent_id: int, payload: dict, *, user: User) -> Rent:
    return _release(rent_id, payload, user=user, status=RENT_STATUS_NO_SHOW)
