# Overview: Client debts: installments collected into the branch cashbox, write-offs and aging totals.

"""
Receivable Service

WHY: Some clients leave owing money outside any open order (a settled
dispute, a damaged piece paid in installments). A receivable tracks that
debt until it is collected or written off.

INVARIANTS:
- remaining_amount = original_amount - paid_amount, never below zero
- a payment may not exceed remaining_amount
- every payment is a ReceivablePayment row; with an active branch cashbox
  it is also a cashbox income row
- paid and written-off receivables accept no further payments
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from ..extensions import db
from ..models import Receivable, ReceivablePayment, Branch, Client, Order, User, Cashbox
from ..models.cashbox import CATEGORY_RECEIVABLE_PAYMENT
from ..models.entities import ENTITY_BRANCH
from ..models.finance import (
    RECEIVABLE_STATUS_PENDING, RECEIVABLE_STATUS_PARTIAL, RECEIVABLE_STATUS_PAID, RECEIVABLE_STATUS_WRITTEN_OFF,
    RECEIVABLE_STATUSES, RECEIVABLE_CLOSED_STATUSES, RECEIVABLE_PAYMENT_METHODS,
)
from ..validation import ServiceError, NotFoundError, Payload, to_money, money_out
from .concurrency import run_with_retry, get_for_update
from .entity_service import ensure_entity_access
from . import cashbox_service
from app.time_utils import today

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
DUE_SOON_DAYS = 7


class ReceivableError(ServiceError):
    """Raised when receivable operations fail."""
    pass


def get_receivable(receivable_id: int, *, user: User) -> Receivable:
    receivable = db.session.get(Receivable, receivable_id) if receivable_id is not None else None
    if not receivable:
        raise NotFoundError("Receivable not found")
    ensure_entity_access(user, ENTITY_BRANCH, receivable.branch_id)
    return receivable


def _lock(receivable_id: int, user: User) -> Receivable:
    receivable = get_for_update(Receivable, receivable_id)
    if not receivable:
        raise NotFoundError("Receivable not found")
    ensure_entity_access(user, ENTITY_BRANCH, receivable.branch_id)
    return receivable


def create_receivable(payload: dict, *, user: User) -> Receivable:
    p = Payload(payload)
    client_id = p.integer("client_id", required=True, minimum=1)
    branch_id = p.integer("branch_id", required=True, minimum=1)
    order_id = p.integer("order_id", minimum=1)
    amount = p.decimal("original_amount", required=True, minimum="0.01")
    due_date = p.date("due_date")
    description = p.string("description", required=True, max_length=1000)
    notes = p.string("notes", max_length=2000)
    p.validate()

    def _op():
        errors: dict[str, list[str]] = {}
        if not db.session.get(Client, client_id):
            errors["client_id"] = ["The selected client does not exist."]
        if not db.session.get(Branch, branch_id):
            errors["branch_id"] = ["The selected branch does not exist."]
        if order_id is not None:
            order = db.session.get(Order, order_id)
            if not order:
                errors["order_id"] = ["The selected order does not exist."]
            elif order.client_id != client_id:
                errors["order_id"] = ["The order belongs to another client."]
        if errors:
            raise ReceivableError("The given data was invalid.", errors)
        ensure_entity_access(user, ENTITY_BRANCH, branch_id)

        receivable = Receivable(
            client_id=client_id,
            branch_id=branch_id,
            order_id=order_id,
            original_amount=amount,
            paid_amount=ZERO,
            remaining_amount=amount,
            due_date=due_date,
            description=description,
            notes=notes,
            status=RECEIVABLE_STATUS_PENDING,
            created_by_user_id=user.id,
        )
        db.session.add(receivable)
        db.session.flush()
        logger.info("Opened receivable #%s of %s for client #%s", receivable.id, amount, client_id)
        return receivable

    return run_with_retry(_op)


def update_receivable(receivable_id: int, payload: dict, *, user: User) -> Receivable:
    """Only due_date, description and notes change after creation."""
    p = Payload(payload)
    patch = {
        "due_date": p.date("due_date"),
        "description": p.string("description", max_length=1000),
        "notes": p.string("notes", max_length=2000),
    }
    p.validate()
    patch = {k: v for k, v in patch.items() if k in (payload or {})}

    def _op():
        receivable = _lock(receivable_id, user)
        if patch.get("description", "") is None:
            raise ReceivableError("The given data was invalid.", {"description": ["The description cannot be blank."]})
        for key, value in patch.items():
            setattr(receivable, key, value)
        return receivable

    return run_with_retry(_op)


def record_payment(receivable_id: int, payload: dict, *, user: User) -> tuple[Receivable, ReceivablePayment]:
    """
    payload: {"amount", "payment_method"?, "notes"?}

    The amount goes into the branch cashbox when one is active.
    """
    p = Payload(payload)
    amount = p.decimal("amount", required=True, minimum="0.01")
    method = p.choice("payment_method", RECEIVABLE_PAYMENT_METHODS, default="cash")
    notes = p.string("notes", max_length=500)
    p.validate()

    def _op():
        receivable = _lock(receivable_id, user)
        if receivable.status in RECEIVABLE_CLOSED_STATUSES:
            raise ReceivableError(
                f"Receivable is already {receivable.status}",
                {"status": [f"A {receivable.status} receivable accepts no payments."]},
            )
        remaining = to_money(receivable.remaining_amount)
        if amount > remaining:
            raise ReceivableError(
                "The given data was invalid.",
                {"amount": [f"The amount may not be greater than the remaining {remaining}."]},
            )

        transaction = None
        cashbox = db.session.query(Cashbox).filter_by(branch_id=receivable.branch_id).first()
        if cashbox is not None and cashbox.is_active:
            transaction = cashbox_service.record_income(
                cashbox.id, amount, category=CATEGORY_RECEIVABLE_PAYMENT,
                description=f"Receivable payment #{receivable.id} from client #{receivable.client_id}",
                reference_type="receivable", reference_id=receivable.id, user_id=user.id,
            )

        payment = ReceivablePayment(
            receivable_id=receivable.id,
            transaction_id=transaction.id if transaction else None,
            amount=amount,
            payment_date=today(),
            payment_method=method,
            notes=notes,
            created_by_user_id=user.id,
        )
        db.session.add(payment)

        receivable.paid_amount = to_money(receivable.paid_amount) + amount
        receivable.remaining_amount = max(ZERO, to_money(receivable.original_amount) - receivable.paid_amount)
        receivable.status = (
            RECEIVABLE_STATUS_PAID if receivable.remaining_amount == 0 else RECEIVABLE_STATUS_PARTIAL
        )
        db.session.flush()
        logger.info("Receivable #%s collected %s (%s)", receivable.id, amount, receivable.status)
        return receivable, payment

    return run_with_retry(_op)


def write_off(receivable_id: int, payload: dict, *, user: User) -> Receivable:
    p = Payload(payload)
    reason = p.string("reason", max_length=1000) or "Written off by user"
    p.validate()

    def _op():
        receivable = _lock(receivable_id, user)
        if receivable.status in RECEIVABLE_CLOSED_STATUSES:
            raise ReceivableError(
                f"Receivable is already {receivable.status}",
                {"status": ["Paid or written-off receivables cannot be written off."]},
            )
        receivable.status = RECEIVABLE_STATUS_WRITTEN_OFF
        note = f"Written off: {reason}"
        receivable.notes = f"{receivable.notes}\n{note}" if receivable.notes else note
        logger.info("Wrote off receivable #%s (remaining %s)", receivable.id, receivable.remaining_amount)
        return receivable

    return run_with_retry(_op)


def delete_receivable(receivable_id: int, *, user: User) -> None:
    def _op():
        receivable = _lock(receivable_id, user)
        if receivable.payments:
            raise ReceivableError(
                "Receivables with payments cannot be deleted",
                {"payments": [f"This receivable has {len(receivable.payments)} payments recorded."]},
            )
        db.session.delete(receivable)
        db.session.flush()

    run_with_retry(_op)


def _scoped(branch_ids: list[int] | None):
    query = db.session.query(Receivable)
    if branch_ids is not None:
        if not branch_ids:
            return query.filter(db.false())
        query = query.filter(Receivable.branch_id.in_(branch_ids))
    return query


def _open(query):
    return query.filter(Receivable.status.notin_(RECEIVABLE_CLOSED_STATUSES), Receivable.remaining_amount > 0)


def _overdue(query):
    return _open(query).filter(Receivable.due_date < today())


def _due_within(query, days: int):
    return _open(query).filter(Receivable.due_date >= today(), Receivable.due_date <= today() + timedelta(days=days))


def receivables_query(args: dict, *, branch_ids: list[int] | None):
    """Filters: client_id, branch_id, order_id, status, overdue_only, due_within_days."""
    p = Payload(args)
    client_id = p.integer("client_id", minimum=1)
    branch_id = p.integer("branch_id", minimum=1)
    order_id = p.integer("order_id", minimum=1)
    status = p.choice("status", RECEIVABLE_STATUSES)
    overdue_only = p.boolean("overdue_only")
    due_within = p.integer("due_within_days", minimum=0)
    p.validate()

    query = _scoped(branch_ids)
    if client_id:
        query = query.filter(Receivable.client_id == client_id)
    if branch_id:
        query = query.filter(Receivable.branch_id == branch_id)
    if order_id:
        query = query.filter(Receivable.order_id == order_id)
    if status:
        query = query.filter(Receivable.status == status)
    if overdue_only:
        query = _overdue(query)
    if due_within is not None:
        query = _due_within(query, due_within)
    # nulls last on due_date
    return query.order_by(Receivable.due_date.is_(None), Receivable.due_date.asc(), Receivable.id.desc())


def _sum_remaining(query) -> Decimal:
    return sum((to_money(r.remaining_amount) for r in query.all()), ZERO)


def summary(args: dict, *, branch_ids: list[int] | None) -> dict:
    p = Payload(args)
    branch_id = p.integer("branch_id", minimum=1)
    client_id = p.integer("client_id", minimum=1)
    p.validate()

    query = _scoped(branch_ids)
    if branch_id:
        query = query.filter(Receivable.branch_id == branch_id)
    if client_id:
        query = query.filter(Receivable.client_id == client_id)

    by_status = {
        status: {"count": 0, "total_original": ZERO, "total_remaining": ZERO} for status in RECEIVABLE_STATUSES
    }
    for receivable in query.all():
        bucket = by_status[receivable.status]
        bucket["count"] += 1
        bucket["total_original"] += to_money(receivable.original_amount)
        bucket["total_remaining"] += to_money(receivable.remaining_amount)

    overdue_rows = _overdue(query)
    due_soon_rows = _due_within(query, DUE_SOON_DAYS)
    return {
        "total_outstanding": money_out(_sum_remaining(_open(query))),
        "total_overdue": money_out(_sum_remaining(overdue_rows)),
        "overdue_count": overdue_rows.count(),
        "due_soon": money_out(_sum_remaining(due_soon_rows)),
        "due_soon_count": due_soon_rows.count(),
        "by_status": {
            k: {
                "count": v["count"],
                "total_original": money_out(v["total_original"]),
                "total_remaining": money_out(v["total_remaining"]),
            }
            for k, v in by_status.items()
        },
    }


def client_receivables(client_id: int, args: dict, *, branch_ids: list[int] | None) -> dict:
    if not db.session.get(Client, client_id):
        raise NotFoundError("Client not found")
    p = Payload(args)
    status = p.choice("status", RECEIVABLE_STATUSES)
    p.validate()

    query = _scoped(branch_ids).filter(Receivable.client_id == client_id)
    if status:
        query = query.filter(Receivable.status == status)
    rows = query.order_by(Receivable.due_date.is_(None), Receivable.due_date.asc(), Receivable.id.desc()).all()
    outstanding = sum(
        (to_money(r.remaining_amount) for r in rows if r.status not in RECEIVABLE_CLOSED_STATUSES), ZERO
    )
    return {
        "client_id": client_id,
        "data": [r.to_dict(include_payments=True) for r in rows],
        "total_outstanding": money_out(outstanding),
    }
