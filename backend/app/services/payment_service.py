# Overview: Order payments and the paid/remaining/status recalculation.

"""
Payment Service

WHY: Payment rows are the single source of truth for how much a client has
paid. Order.paid, Order.remaining and the payment-driven order status are
caches rebuilt by recalculate_order() after every payment or item change.

RULES:
- paid = sum of `paid` payments that are not fees
- remaining = max(0, total_price - paid)
- status follows paid only while the order is created/partially_paid/paid
- fee payments (late return, damage) never count toward the order total
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..models import Order, Payment
from ..models.orders import (
    ORDER_STATUS_CREATED, ORDER_STATUS_PARTIALLY_PAID, ORDER_STATUS_PAID, ORDER_STATUS_CANCELED,
    ORDER_PAYMENT_STATUSES, ITEM_STATUS_RENTED,
    PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID, PAYMENT_STATUS_CANCELED, PAYMENT_STATUSES,
    PAYMENT_TYPE_FEE, PAYMENT_TYPE_NORMAL, PAYMENT_TYPES,
)
from ..validation import ServiceError, NotFoundError, Payload, to_money
from .concurrency import run_with_retry, get_for_update
from .history_service import record_order_history
from app.time_utils import utcnow

logger = logging.getLogger(__name__)


class PaymentError(ServiceError):
    """Raised when payment operations fail."""
    pass


def paid_total(order: Order) -> Decimal:
    return sum(
        (
            to_money(p.amount)
            for p in order.payments
            if p.status == PAYMENT_STATUS_PAID and p.payment_type != PAYMENT_TYPE_FEE
        ),
        Decimal("0.00"),
    )


def recalculate_order(order: Order) -> Order:
    """
    Rebuild paid/remaining (and the payment-driven status) from Payment rows.

    Safe to call at any point; closed and delivered orders keep their status.
    """
    db.session.flush()
    db.session.refresh(order, attribute_names=["payments"])

    total = to_money(order.total_price)
    paid = paid_total(order)

    order.paid = paid
    order.remaining = max(Decimal("0.00"), total - paid)

    if order.status in ORDER_PAYMENT_STATUSES:
        if total > 0 and paid >= total:
            status = ORDER_STATUS_PAID
        elif paid > 0:
            status = ORDER_STATUS_PARTIALLY_PAID
        else:
            status = ORDER_STATUS_CREATED
        order.status = status

        for item in order.items:
            if item.status != ITEM_STATUS_RENTED:
                item.status = status

    db.session.flush()
    return order


def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def add_payment(order_id: int, payload: dict, *, user_id: int | None = None) -> Payment:
    p = Payload(payload)
    amount = p.decimal("amount", required=True, minimum="0.01")
    status = p.choice("status", PAYMENT_STATUSES, default=PAYMENT_STATUS_PAID)
    payment_type = p.choice("payment_type", PAYMENT_TYPES, default=PAYMENT_TYPE_NORMAL)
    payment_date = p.datetime("payment_date")
    notes = p.string("notes")
    p.validate()

    def _op():
        order = get_for_update(Order, order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.status == ORDER_STATUS_CANCELED:
            raise PaymentError(
                "Cannot add payment to a canceled order.",
                {"order": ["The order is canceled."]},
            )

        payment = Payment(
            order_id=order.id,
            amount=amount,
            status=status,
            payment_type=payment_type,
            payment_date=payment_date or (utcnow() if status == PAYMENT_STATUS_PAID else None),
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(payment)
        db.session.flush()

        recalculate_order(order)
        record_order_history(
            order=order,
            action="payment_added",
            user_id=user_id,
            field="paid",
            new_value=str(order.paid),
            description=f"Payment #{payment.id} ({payment_type}, {status}) of {amount}",
        )
        logger.info("Payment #%s added to order #%s", payment.id, order.id)
        return payment

    return run_with_retry(_op)


def pay_payment(payment_id: int, *, user_id: int | None = None) -> Payment:
    """Mark a pending payment as paid."""
    def _op():
        payment = get_for_update(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status == PAYMENT_STATUS_PAID:
            raise PaymentError("Payment is already paid", {"status": ["The payment is already paid."]})
        if payment.status == PAYMENT_STATUS_CANCELED:
            raise PaymentError("Cannot pay a canceled payment", {"status": ["The payment is canceled."]})

        payment.status = PAYMENT_STATUS_PAID
        payment.payment_date = utcnow()

        order = payment.order
        recalculate_order(order)
        record_order_history(
            order=order,
            action="payment_paid",
            user_id=user_id,
            field="paid",
            new_value=str(order.paid),
            description=f"Payment #{payment.id} marked as paid",
        )
        return payment

    return run_with_retry(_op)


def cancel_payment(payment_id: int, payload: dict | None = None, *, user_id: int | None = None) -> Payment:
    p = Payload(payload)
    notes = p.string("notes")
    p.validate()

    def _op():
        payment = get_for_update(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status == PAYMENT_STATUS_CANCELED:
            raise PaymentError("Payment is already canceled", {"status": ["The payment is already canceled."]})

        payment.status = PAYMENT_STATUS_CANCELED
        if notes:
            payment.notes = f"{payment.notes}\n" if payment.notes else ""
            payment.notes += f"Canceled: {notes}"

        order = payment.order
        recalculate_order(order)
        record_order_history(
            order=order,
            action="payment_canceled",
            user_id=user_id,
            field="paid",
            new_value=str(order.paid),
            description=f"Payment #{payment.id} canceled",
        )
        return payment

    return run_with_retry(_op)


def has_pending_payments(order: Order) -> bool:
    return any(p.status == PAYMENT_STATUS_PENDING for p in order.payments)


def payments_query(*, order_id: int | None = None, status: str | None = None,
                   payment_type: str | None = None, inventory_ids: list[int] | None = None):
    query = db.session.query(Payment)
    if inventory_ids is not None:
        query = query.join(Order, Order.id == Payment.order_id)
        query = query.filter(Order.inventory_id.in_(inventory_ids)) if inventory_ids else query.filter(db.false())
    if order_id:
        query = query.filter(Payment.order_id == order_id)
    if status:
        query = query.filter(Payment.status == status)
    if payment_type:
        query = query.filter(Payment.payment_type == payment_type)
    return query.order_by(Payment.id.desc())
