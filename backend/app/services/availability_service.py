# Overview: Rental availability windows for cloth pieces.

"""
Availability Rules (authoritative)

- A candidate rental occupies [delivery, delivery + days_of_rent].
- Every Rent of the cloth that is not canceled or a no-show blocks
  [delivery_date - buffer, return_date + buffer] (buffer = RENT_BUFFER_DAYS).
- Open rent items of orders that were not delivered yet block the same
  buffered window, computed from their planned delivery date and days.
- Overlap is inclusive on both ends:
  new_delivery <= block_end and new_return >= block_start.
- A cloth that is repairing or sold is unavailable regardless of dates.
"""

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app

from ..extensions import db
from ..models import Rent, OrderItem, Order, Cloth, Inventory
from ..models.clothes import CLOTH_STATUS_REPAIRING, CLOTH_STATUS_SOLD
from ..models.orders import (
    RENT_RELEASED_STATUSES, ITEM_TYPE_RENT, ORDER_PAYMENT_STATUSES, ITEM_STATUS_CANCELED,
)

UNAVAILABLE_STATUSES = (CLOTH_STATUS_REPAIRING, CLOTH_STATUS_SOLD)


def buffer_days() -> int:
    return int(current_app.config.get("RENT_BUFFER_DAYS", 2))


def rental_window(delivery_date: date, days_of_rent: int) -> tuple[date, date]:
    return delivery_date, delivery_date + timedelta(days=int(days_of_rent or 1))


def overlaps(new_start: date, new_end: date, block_start: date, block_end: date) -> bool:
    return new_start <= block_end and new_end >= block_start


def blocking_windows(cloth_id: int, *, exclude_order_id: int | None = None,
                     exclude_rent_id: int | None = None) -> list[dict]:
    """
    Buffered windows currently blocking a cloth, oldest first.

    exclude_order_id skips the pending items of the order being edited;
    exclude_rent_id skips the rent being rescheduled.
    """
    buffer = timedelta(days=buffer_days())
    windows = []

    rents = (
        db.session.query(Rent)
        .filter(Rent.cloth_id == cloth_id, Rent.status.notin_(RENT_RELEASED_STATUSES))
        .order_by(Rent.delivery_date.asc(), Rent.id.asc())
    )
    if exclude_rent_id is not None:
        rents = rents.filter(Rent.id != exclude_rent_id)

    for rent in rents.all():
        windows.append({
            "start": rent.delivery_date - buffer,
            "end": rent.return_date + buffer,
            "rent_id": rent.id,
            "order_id": rent.order_id,
            "delivery_date": rent.delivery_date,
            "return_date": rent.return_date,
        })

    # Booked but not yet delivered; their Rent row is created on delivery
    pending = (
        db.session.query(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.cloth_id == cloth_id,
            OrderItem.type == ITEM_TYPE_RENT,
            OrderItem.status != ITEM_STATUS_CANCELED,
            OrderItem.delivery_date.isnot(None),
            Order.status.in_(ORDER_PAYMENT_STATUSES),
        )
        .order_by(OrderItem.delivery_date.asc(), OrderItem.id.asc())
    )
    if exclude_order_id is not None:
        pending = pending.filter(OrderItem.order_id != exclude_order_id)

    for item in pending.all():
        start, end = rental_window(item.delivery_date, item.days_of_rent)
        windows.append({
            "start": start - buffer,
            "end": end + buffer,
            "rent_id": None,
            "order_id": item.order_id,
            "delivery_date": start,
            "return_date": end,
        })

    windows.sort(key=lambda w: (w["start"], w["end"]))
    return windows


def find_conflicts(cloth: Cloth, delivery_date: date, days_of_rent: int, *,
                   exclude_order_id: int | None = None, exclude_rent_id: int | None = None) -> list[dict]:
    """Blocking windows overlapping the candidate rental (status blocks included)."""
    new_start, new_end = rental_window(delivery_date, days_of_rent)
    conflicts = [
        w for w in blocking_windows(cloth.id, exclude_order_id=exclude_order_id, exclude_rent_id=exclude_rent_id)
        if overlaps(new_start, new_end, w["start"], w["end"])
    ]
    if cloth.status in UNAVAILABLE_STATUSES:
        conflicts.insert(0, {"status": cloth.status, "reason": f"Cloth is {cloth.status}"})
    return conflicts


def is_available(cloth: Cloth, delivery_date: date, days_of_rent: int, *,
                 exclude_order_id: int | None = None) -> bool:
    return not find_conflicts(cloth, delivery_date, days_of_rent, exclude_order_id=exclude_order_id)


def serialize_window(window: dict) -> dict:
    if "status" in window:
        return dict(window)
    return {
        "start": window["start"].isoformat(),
        "end": window["end"].isoformat(),
        "rent_id": window["rent_id"],
        "order_id": window["order_id"],
        "delivery_date": window["delivery_date"].isoformat(),
        "return_date": window["return_date"].isoformat(),
    }


def unavailable_days(cloth: Cloth) -> dict:
    """
    Blocked ranges, the flat list of blocked dates and the first date after
    the last blocked one.
    """
    windows = blocking_windows(cloth.id)
    dates: set[date] = set()
    for window in windows:
        current = window["start"]
        while current <= window["end"]:
            dates.add(current)
            current += timedelta(days=1)

    ordered = sorted(dates)
    return {
        "cloth_id": cloth.id,
        "unavailable_ranges": [serialize_window(w) for w in windows],
        "unavailable_dates": [d.isoformat() for d in ordered],
        "available_from": (ordered[-1] + timedelta(days=1)).isoformat() if ordered else None,
    }


def available_for_date(inventory: Inventory, delivery_date: date, days_of_rent: int = 1) -> list[Cloth]:
    clothes = (
        db.session.query(Cloth)
        .filter(Cloth.inventory_id == inventory.id)
        .order_by(Cloth.code.asc())
        .all()
    )
    return [c for c in clothes if is_available(c, delivery_date, days_of_rent)]
