# Overview: Factory-side view of tailoring items and their status pipeline.

"""
Factory Item Pipeline

None|new -> pending_factory_approval -> accepted | rejected
accepted -> in_progress -> ready_for_delivery -> delivered_to_atelier -> closed

WHY: Factories only ever see tailoring items of orders assigned to them,
never prices, payments or client contact data. Items that reached
delivered_to_atelier (or closed) are locked against factory edits.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Order, OrderItem, FactoryItemStatusLog, User
from ..models.entities import ENTITY_FACTORY
from ..models.orders import (
    ITEM_TYPE_TAILORING,
    FACTORY_STATUS_NEW, FACTORY_STATUS_PENDING_APPROVAL, FACTORY_STATUS_ACCEPTED, FACTORY_STATUS_REJECTED,
    FACTORY_STATUS_IN_PROGRESS, FACTORY_STATUS_READY_FOR_DELIVERY, FACTORY_STATUS_DELIVERED_TO_ATELIER,
    FACTORY_STATUS_CLOSED,
)
from ..validation import ServiceError, NotFoundError, AccessDeniedError, Payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import accessible_entity_ids
from app.time_utils import utcnow, today

logger = logging.getLogger(__name__)


TRANSITIONS = {
    None: (FACTORY_STATUS_PENDING_APPROVAL,),
    FACTORY_STATUS_NEW: (FACTORY_STATUS_PENDING_APPROVAL,),
    FACTORY_STATUS_PENDING_APPROVAL: (FACTORY_STATUS_ACCEPTED, FACTORY_STATUS_REJECTED),
    FACTORY_STATUS_ACCEPTED: (FACTORY_STATUS_IN_PROGRESS,),
    FACTORY_STATUS_IN_PROGRESS: (FACTORY_STATUS_READY_FOR_DELIVERY,),
    FACTORY_STATUS_READY_FOR_DELIVERY: (FACTORY_STATUS_DELIVERED_TO_ATELIER,),
    FACTORY_STATUS_DELIVERED_TO_ATELIER: (FACTORY_STATUS_CLOSED,),
    FACTORY_STATUS_REJECTED: (),
    FACTORY_STATUS_CLOSED: (),
}

LOCKED_STATUSES = (FACTORY_STATUS_DELIVERED_TO_ATELIER, FACTORY_STATUS_CLOSED)

# Statuses a factory may set through the generic status endpoint
WORK_STATUSES = (FACTORY_STATUS_IN_PROGRESS, FACTORY_STATUS_READY_FOR_DELIVERY)

HIDDEN_ORDER_FIELDS = ("total_price", "paid", "remaining", "discount_type", "discount_value")


class FactoryOrderError(ServiceError):
    """Raised when a factory item operation fails."""
    pass


def valid_next_statuses(status: str | None) -> tuple[str, ...]:
    return TRANSITIONS.get(status, ())


def can_transition(current: str | None, new: str) -> bool:
    return new in valid_next_statuses(current)


def factory_ids_for(user: User) -> list[int] | None:
    """
    Factories whose queue the user works on; None for system admins.

    Users without a factory assignment get AccessDeniedError.
    """
    ids = accessible_entity_ids(user, ENTITY_FACTORY)
    if ids is not None and not ids:
        raise AccessDeniedError("User is not assigned to a factory")
    return ids


def _order_for(user: User, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    ids = factory_ids_for(user)
    if order.assigned_factory_id is None or (ids is not None and order.assigned_factory_id not in ids):
        raise AccessDeniedError("Access denied")
    return order


def _item_for(user: User, order_id: int, item_id: int) -> OrderItem:
    _order_for(user, order_id)
    item = get_for_update(OrderItem, item_id)
    if not item or item.order_id != order_id or item.type != ITEM_TYPE_TAILORING:
        raise NotFoundError("Item not found in order")
    return item


def _ensure_unlocked(item: OrderItem) -> None:
    if item.factory_status in LOCKED_STATUSES:
        raise FactoryOrderError(
            "Cannot modify item after delivery",
            {"status": ["Item has already been delivered"]},
        )


def _append_notes(item: OrderItem, notes: str | None) -> None:
    if notes:
        item.factory_notes = f"{item.factory_notes}\n{notes}" if item.factory_notes else notes


def _log(item: OrderItem, old: str | None, new: str, *, user_id: int | None, notes: str | None = None,
         details: dict | None = None) -> FactoryItemStatusLog:
    row = FactoryItemStatusLog(
        order_item_id=item.id,
        from_status=old,
        to_status=new,
        notes=notes,
        details=details,
        changed_by_user_id=user_id,
    )
    db.session.add(row)
    db.session.flush()
    logger.info("Factory item #%s %s -> %s", item.id, old, new)
    return row


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def orders_query(user: User, *, status: str | None = None, factory_status: str | None = None):
    ids = factory_ids_for(user)
    query = db.session.query(Order).filter(
        Order.assigned_factory_id.isnot(None),
        Order.items.any(OrderItem.type == ITEM_TYPE_TAILORING),
    )
    if ids is not None:
        query = query.filter(Order.assigned_factory_id.in_(ids))
    if factory_status:
        query = query.filter(Order.items.any(db.and_(
            OrderItem.type == ITEM_TYPE_TAILORING, OrderItem.factory_status == factory_status,
        )))
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc())


def serialize_for_factory(order: Order) -> dict:
    """Order as a factory sees it: tailoring items only, no pricing, minimal client."""
    data = order.to_dict(include_items=False)
    for field in HIDDEN_ORDER_FIELDS:
        data.pop(field, None)
    data.pop("client_name", None)
    client = order.client
    data["client"] = {
        "id": client.id,
        "first_name": client.first_name,
        "last_name": client.last_name,
    } if client else None
    data["items"] = [
        item.to_dict(include_pricing=False) for item in order.items if item.type == ITEM_TYPE_TAILORING
    ]
    return data


def get_order(user: User, order_id: int) -> Order:
    return _order_for(user, order_id)


def item_history(user: User, order_id: int, item_id: int) -> list[FactoryItemStatusLog]:
    _order_for(user, order_id)
    item = db.session.get(OrderItem, item_id)
    if not item or item.order_id != order_id:
        raise NotFoundError("Item not found in order")
    return (
        db.session.query(FactoryItemStatusLog)
        .filter_by(order_item_id=item.id)
        .order_by(FactoryItemStatusLog.created_at, FactoryItemStatusLog.id)
        .all()
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def accept_item(user: User, order_id: int, item_id: int, payload: dict | None = None) -> OrderItem:
    p = Payload(payload)
    expected = p.date("expected_delivery_date", not_before=today())
    notes = p.string("notes", max_length=1000)
    p.validate()

    def _op():
        item = _item_for(user, order_id, item_id)
        current = item.factory_status
        if not can_transition(current, FACTORY_STATUS_ACCEPTED):
            raise FactoryOrderError(
                "Invalid status transition",
                {"status": [f"Cannot accept item with current status: {current or 'new'}"]},
            )
        item.factory_status = FACTORY_STATUS_ACCEPTED
        item.factory_accepted_at = utcnow()
        if expected:
            item.factory_expected_delivery_date = expected
        _append_notes(item, notes)
        _log(item, current, FACTORY_STATUS_ACCEPTED, user_id=user.id, notes=notes,
             details={"expected_delivery_date": expected.isoformat()} if expected else None)
        return item

    return run_with_retry(_op)


def reject_item(user: User, order_id: int, item_id: int, payload: dict | None = None) -> OrderItem:
    p = Payload(payload)
    reason = p.string("rejection_reason", required=True, max_length=1000)
    p.validate()

    def _op():
        item = _item_for(user, order_id, item_id)
        current = item.factory_status
        if not can_transition(current, FACTORY_STATUS_REJECTED):
            raise FactoryOrderError(
                "Invalid status transition",
                {"status": [f"Cannot reject item with current status: {current or 'new'}"]},
            )
        item.factory_status = FACTORY_STATUS_REJECTED
        item.factory_rejected_at = utcnow()
        item.factory_rejection_reason = reason
        _log(item, current, FACTORY_STATUS_REJECTED, user_id=user.id, notes=reason)
        return item

    return run_with_retry(_op)


def update_item_status(user: User, order_id: int, item_id: int, payload: dict | None = None) -> OrderItem:
    p = Payload(payload)
    status = p.choice("status", WORK_STATUSES, required=True)
    notes = p.string("notes", max_length=1000)
    p.validate()

    def _op():
        item = _item_for(user, order_id, item_id)
        _ensure_unlocked(item)
        current = item.factory_status
        if not can_transition(current, status):
            raise FactoryOrderError(
                "Invalid status transition",
                {"status": [f"Cannot transition from {current or 'new'} to {status}"]},
            )
        item.factory_status = status
        _append_notes(item, notes)
        _log(item, current, status, user_id=user.id, notes=notes)
        return item

    return run_with_retry(_op)


def update_item_notes(user: User, order_id: int, item_id: int, payload: dict | None = None) -> OrderItem:
    p = Payload(payload)
    notes = p.string("notes", required=True, max_length=1000)
    p.validate()

    def _op():
        item = _item_for(user, order_id, item_id)
        _ensure_unlocked(item)
        item.factory_notes = notes
        return item

    return run_with_retry(_op)


def set_delivery_date(user: User, order_id: int, item_id: int, payload: dict | None = None) -> OrderItem:
    p = Payload(payload)
    expected = p.date("expected_delivery_date", required=True)
    if expected is not None and expected <= today():
        p.error("expected_delivery_date", "The expected_delivery_date must be a date after today.")
    p.validate()

    def _op():
        item = _item_for(user, order_id, item_id)
        _ensure_unlocked(item)
        item.factory_expected_delivery_date = expected
        return item

    return run_with_retry(_op)


def deliver_item(user: User, order_id: int, item_id: int, payload: dict | None = None) -> OrderItem:
    p = Payload(payload)
    notes = p.string("notes", max_length=1000)
    p.validate()

    def _op():
        item = _item_for(user, order_id, item_id)
        current = item.factory_status
        if current != FACTORY_STATUS_READY_FOR_DELIVERY:
            raise FactoryOrderError(
                "Invalid status for delivery",
                {"status": ["Item must be ready_for_delivery to deliver"]},
            )
        item.factory_status = FACTORY_STATUS_DELIVERED_TO_ATELIER
        item.factory_delivered_at = utcnow()
        _append_notes(item, notes)
        _log(item, current, FACTORY_STATUS_DELIVERED_TO_ATELIER, user_id=user.id, notes=notes)
        return item

    return run_with_retry(_op)
