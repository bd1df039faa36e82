# Overview: Order-level tailoring stages, factory assignment and stage queues.

"""
Tailoring Stages

received -> sent_to_factory -> in_production -> ready_from_factory
         -> ready_for_customer -> delivered

- Stages only move one step forward; an order without a stage starts at received.
- sent_to_factory needs an assigned factory and hands every tailoring item
  to the factory (factory_status = pending_factory_approval).
- Every move writes a TailoringStageLog row and an order history row.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..models import Order, OrderItem, Factory, TailoringStageLog, User
from ..models.orders import (
    TAILORING_STAGES, PRIORITIES, ORDER_CLOSED_STATUSES, ITEM_TYPE_TAILORING,
    STAGE_RECEIVED, STAGE_SENT_TO_FACTORY, STAGE_IN_PRODUCTION, STAGE_READY_FROM_FACTORY,
    STAGE_READY_FOR_CUSTOMER, STAGE_DELIVERED,
    FACTORY_STATUS_NEW, FACTORY_STATUS_PENDING_APPROVAL,
)
from ..validation import ServiceError, NotFoundError, Payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import ensure_inventory_access
from .history_service import record_order_history
from . import notification_service
from app.time_utils import utcnow, today

logger = logging.getLogger(__name__)


NEXT_STAGE = {
    None: STAGE_RECEIVED,
    STAGE_RECEIVED: STAGE_SENT_TO_FACTORY,
    STAGE_SENT_TO_FACTORY: STAGE_IN_PRODUCTION,
    STAGE_IN_PRODUCTION: STAGE_READY_FROM_FACTORY,
    STAGE_READY_FROM_FACTORY: STAGE_READY_FOR_CUSTOMER,
    STAGE_READY_FOR_CUSTOMER: STAGE_DELIVERED,
}


class TailoringError(ServiceError):
    """Raised when tailoring stage operations fail."""
    pass


def allowed_next_stages(stage: str | None) -> list[str]:
    nxt = NEXT_STAGE.get(stage)
    return [nxt] if nxt else []


def can_transition(order: Order, stage: str) -> bool:
    return stage in allowed_next_stages(order.tailoring_stage)


def _tailoring_order(order_id: int) -> Order:
    order = get_for_update(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if not order.has_tailoring_items:
        raise TailoringError("This is not a tailoring order", {"order": ["The order has no tailoring items."]})
    return order


def open_factory_orders(factory_id: int) -> int:
    return (
        db.session.query(Order)
        .filter(
            Order.assigned_factory_id == factory_id,
            Order.status.notin_(ORDER_CLOSED_STATUSES),
            db.or_(Order.tailoring_stage.is_(None), Order.tailoring_stage != STAGE_DELIVERED),
        )
        .count()
    )


def factory_at_capacity(factory: Factory, *, ignore_order_id: int | None = None) -> bool:
    if not factory.max_capacity:
        return False
    count = open_factory_orders(factory.id)
    if ignore_order_id is not None:
        order = db.session.get(Order, ignore_order_id)
        if order is not None and order.assigned_factory_id == factory.id:
            count -= 1
    return count >= factory.max_capacity


def apply_stage(order: Order, stage: str, *, user_id: int | None, notes: str | None = None) -> TailoringStageLog:
    """
    Move an order to `stage` and write the stage log.

    No transition check here: callers decide (deliver jumps straight to
    delivered).
    """
    old = order.tailoring_stage
    order.tailoring_stage = stage
    order.tailoring_stage_changed_at = utcnow()

    if stage == STAGE_SENT_TO_FACTORY:
        if not order.sent_to_factory_date:
            order.sent_to_factory_date = today()
        for item in order.items:
            if item.type == ITEM_TYPE_TAILORING and item.factory_status in (None, FACTORY_STATUS_NEW):
                item.factory_status = FACTORY_STATUS_PENDING_APPROVAL
    if stage == STAGE_READY_FROM_FACTORY and not order.received_from_factory_date:
        order.received_from_factory_date = today()
        order.actual_completion_date = today()

    log = TailoringStageLog(order_id=order.id, from_stage=old, to_stage=stage, notes=notes, user_id=user_id)
    db.session.add(log)
    db.session.flush()

    record_order_history(
        order=order, action="stage_changed", user_id=user_id, field="tailoring_stage",
        old_value=old, new_value=stage, description=notes,
    )
    return log


def update_stage(order_id: int, payload: dict, *, user: User) -> Order:
    p = Payload(payload)
    stage = p.choice("stage", TAILORING_STAGES, required=True)
    notes = p.string("notes", max_length=2000)
    factory_id = p.integer("factory_id", minimum=1)
    expected_days = p.integer("expected_days", minimum=1)
    p.validate()

    def _op():
        order = _tailoring_order(order_id)
        ensure_inventory_access(user, order.inventory_id)

        if not can_transition(order, stage):
            raise TailoringError(
                "Invalid stage transition",
                {"stage": [
                    f"Cannot move from {order.tailoring_stage or 'none'} to {stage}. "
                    f"Allowed: {', '.join(allowed_next_stages(order.tailoring_stage)) or 'none'}."
                ]},
            )

        if factory_id:
            _assign(order, factory_id, expected_days=expected_days)

        if stage == STAGE_SENT_TO_FACTORY and not order.assigned_factory_id:
            raise TailoringError(
                "Factory must be assigned when moving to sent_to_factory stage",
                {"factory_id": ["An assigned factory is required."]},
            )

        old = order.tailoring_stage
        apply_stage(order, stage, user_id=user.id, notes=notes)

        if stage == STAGE_SENT_TO_FACTORY:
            notification_service.notify_factory_assignment(order)
        notification_service.notify_stage_change(order, old, stage, exclude_user_id=user.id)

        logger.info("Order #%s tailoring stage %s -> %s", order.id, old, stage)
        return order

    return run_with_retry(_op)


def _assign(order: Order, factory_id: int, *, expected_days: int | None = None) -> Factory:
    factory = db.session.get(Factory, factory_id)
    if not factory:
        raise TailoringError("The given data was invalid.", {"factory_id": ["The selected factory does not exist."]})
    if not factory.is_active:
        raise TailoringError("The given data was invalid.", {"factory_id": ["The selected factory is not active."]})
    if order.assigned_factory_id != factory.id and factory_at_capacity(factory):
        raise TailoringError(
            "Factory is at maximum capacity",
            {"factory_id": [f"The factory already has {open_factory_orders(factory.id)} of {factory.max_capacity} orders."]},
        )
    order.assigned_factory_id = factory.id
    if expected_days:
        order.expected_completion_date = today() + timedelta(days=expected_days)
    return factory


def assign_factory(order_id: int, payload: dict, *, user: User) -> Order:
    p = Payload(payload)
    factory_id = p.integer("factory_id", required=True, minimum=1)
    expected_days = p.integer("expected_days", minimum=1)
    priority = p.choice("priority", PRIORITIES)
    p.validate()

    def _op():
        order = _tailoring_order(order_id)
        ensure_inventory_access(user, order.inventory_id)
        if order.status in ORDER_CLOSED_STATUSES:
            raise TailoringError(f"Cannot assign a factory to a {order.status} order.", {"status": [order.status]})

        old = order.assigned_factory_id
        _assign(order, factory_id, expected_days=expected_days)
        if priority:
            order.priority = priority

        record_order_history(
            order=order, action="factory_assigned", user_id=user.id, field="assigned_factory_id",
            old_value=old, new_value=order.assigned_factory_id,
        )
        logger.info("Order #%s assigned to factory #%s", order.id, factory_id)
        return order

    return run_with_retry(_op)


def update_priority(order_id: int, payload: dict, *, user: User) -> Order:
    p = Payload(payload)
    priority = p.choice("priority", PRIORITIES, required=True)
    p.validate()

    def _op():
        order = get_for_update(Order, order_id)
        if not order:
            raise NotFoundError("Order not found")
        ensure_inventory_access(user, order.inventory_id)
        old = order.priority
        order.priority = priority
        record_order_history(order=order, action="updated", user_id=user.id, field="priority",
                             old_value=old, new_value=priority)
        return order

    return run_with_retry(_op)


def stage_logs(order_id: int) -> list[TailoringStageLog]:
    return (
        db.session.query(TailoringStageLog)
        .filter_by(order_id=order_id)
        .order_by(TailoringStageLog.created_at.desc(), TailoringStageLog.id.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------

def tailoring_query(*, inventory_ids: list[int] | None, stage: str | None = None, priority: str | None = None,
                    factory_id: int | None = None):
    query = db.session.query(Order).filter(Order.items.any(OrderItem.type == ITEM_TYPE_TAILORING))
    if inventory_ids is not None:
        query = query.filter(Order.inventory_id.in_(inventory_ids)) if inventory_ids else query.filter(db.false())
    if stage:
        query = query.filter(Order.tailoring_stage == stage)
    if priority:
        query = query.filter(Order.priority == priority)
    if factory_id:
        query = query.filter(Order.assigned_factory_id == factory_id)
    return query.order_by(Order.expected_completion_date.is_(None), Order.expected_completion_date, Order.id)


def overdue_query(*, inventory_ids: list[int] | None):
    return tailoring_query(inventory_ids=inventory_ids).filter(
        Order.expected_completion_date.isnot(None),
        Order.expected_completion_date < today(),
        db.or_(Order.tailoring_stage.is_(None), Order.tailoring_stage != STAGE_DELIVERED),
        Order.status.notin_(ORDER_CLOSED_STATUSES),
    )


def pending_pickup_query(*, inventory_ids: list[int] | None):
    return tailoring_query(inventory_ids=inventory_ids, stage=STAGE_READY_FROM_FACTORY)


def ready_for_customer_query(*, inventory_ids: list[int] | None):
    return tailoring_query(inventory_ids=inventory_ids, stage=STAGE_READY_FOR_CUSTOMER)


def serialize(order: Order) -> dict:
    data = order.to_dict()
    data["allowed_next_stages"] = allowed_next_stages(order.tailoring_stage)
    expected = order.expected_completion_date
    data["is_overdue"] = bool(
        expected and expected < today() and order.tailoring_stage != STAGE_DELIVERED
    )
    data["days_until_expected"] = (expected - today()).days if expected else None
    return data
