# Overview: Branch expenses with an approve-then-pay workflow backed by the cashbox ledger.

"""
Expense Service

WORKFLOW:
1. pending: recorded by staff, still editable and deletable
2. approved: signed off by a manager
3. paid: money left the branch cashbox (one expense transaction)
X. canceled: from pending or approved only; paid expenses are reversed
   through the cashbox, never canceled

Paying is the only step that touches money; an insufficient balance leaves
the expense approved.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal

from ..extensions import db
from ..models import Expense, Branch, User
from ..models.entities import ENTITY_BRANCH
from ..models.finance import (
    EXPENSE_STATUS_PENDING, EXPENSE_STATUS_APPROVED, EXPENSE_STATUS_PAID, EXPENSE_STATUS_CANCELED,
    EXPENSE_STATUSES, EXPENSE_CATEGORIES,
)
from ..validation import ServiceError, NotFoundError, Payload, to_money, money_out
from .concurrency import run_with_retry, get_for_update
from .entity_service import ensure_entity_access
from . import cashbox_service
from app.time_utils import utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class ExpenseError(ServiceError):
    """Raised when expense operations fail."""
    pass


def categories() -> list[dict]:
    return [{"code": code, "name": name} for code, name in EXPENSE_CATEGORIES.items()]


def get_expense(expense_id: int, *, user: User) -> Expense:
    expense = db.session.get(Expense, expense_id) if expense_id is not None else None
    if not expense:
        raise NotFoundError("Expense not found")
    ensure_entity_access(user, ENTITY_BRANCH, expense.branch_id)
    return expense


def _lock(expense_id: int, user: User) -> Expense:
    expense = get_for_update(Expense, expense_id)
    if not expense:
        raise NotFoundError("Expense not found")
    ensure_entity_access(user, ENTITY_BRANCH, expense.branch_id)
    return expense


def _read_fields(p: Payload, *, partial: bool) -> dict:
    fields = {
        "category": p.choice("category", EXPENSE_CATEGORIES, required=not partial),
        "subcategory": p.string("subcategory", max_length=255),
        "amount": p.decimal("amount", required=not partial, minimum="0.01"),
        "expense_date": p.date("expense_date", required=not partial),
        "vendor": p.string("vendor", max_length=255),
        "reference_number": p.string("reference_number", max_length=100),
        "description": p.string("description", required=not partial, max_length=1000),
        "notes": p.string("notes", max_length=2000),
    }
    if partial:
        return {k: v for k, v in fields.items() if p.has(k)}
    return fields


def create_expense(payload: dict, *, user: User) -> Expense:
    p = Payload(payload)
    branch_id = p.integer("branch_id", required=True, minimum=1)
    fields = _read_fields(p, partial=False)
    p.validate()

    def _op():
        branch = db.session.get(Branch, branch_id)
        if not branch:
            raise ExpenseError("The given data was invalid.", {"branch_id": ["The selected branch does not exist."]})
        ensure_entity_access(user, ENTITY_BRANCH, branch.id)
        if branch.cashbox is None:
            raise ExpenseError("Branch does not have a cashbox configured",
                               {"branch_id": ["The branch does not have a cashbox."]})

        expense = Expense(
            branch_id=branch.id,
            cashbox_id=branch.cashbox.id,
            status=EXPENSE_STATUS_PENDING,
            created_by_user_id=user.id,
            **fields,
        )
        db.session.add(expense)
        db.session.flush()
        logger.info("Recorded expense #%s (%s %s) at branch #%s", expense.id, expense.category, expense.amount, branch.id)
        return expense

    return run_with_retry(_op)


def update_expense(expense_id: int, payload: dict, *, user: User) -> Expense:
    p = Payload(payload)
    patch = _read_fields(p, partial=True)
    p.validate()

    def _op():
        expense = _lock(expense_id, user)
        if expense.status != EXPENSE_STATUS_PENDING:
            raise ExpenseError("Only pending expenses can be updated",
                               {"status": [f"Expense status is {expense.status}."]})
        for key, value in patch.items():
            setattr(expense, key, value)
        return expense

    return run_with_retry(_op)


def approve_expense(expense_id: int, *, user: User) -> Expense:
    def _op():
        expense = _lock(expense_id, user)
        if expense.status != EXPENSE_STATUS_PENDING:
            raise ExpenseError("Expense cannot be approved", {"status": [f"Expense status is {expense.status}."]})
        expense.status = EXPENSE_STATUS_APPROVED
        expense.approved_by_user_id = user.id
        expense.approved_at = utcnow()
        logger.info("Approved expense #%s", expense.id)
        return expense

    return run_with_retry(_op)


def pay_expense(expense_id: int, *, user: User) -> Expense:
    """Take the amount out of the branch cashbox. Raises InsufficientBalanceError."""
    def _op():
        expense = _lock(expense_id, user)
        if expense.status != EXPENSE_STATUS_APPROVED:
            raise ExpenseError(
                "Expense cannot be paid",
                {"status": [f"Expense must be approved first. Current status: {expense.status}"]},
            )
        transaction = cashbox_service.record_expense(
            expense.cashbox_id, expense.amount,
            category=expense.category,
            description=f"Expense #{expense.id}: {expense.description}"[:500],
            reference_type="expense", reference_id=expense.id, user_id=user.id,
        )
        expense.status = EXPENSE_STATUS_PAID
        expense.transaction_id = transaction.id
        logger.info("Paid expense #%s from cashbox #%s", expense.id, expense.cashbox_id)
        return expense

    return run_with_retry(_op)


def cancel_expense(expense_id: int, payload: dict, *, user: User) -> Expense:
    p = Payload(payload)
    reason = p.string("reason", max_length=1000) or "Canceled by user"
    p.validate()

    def _op():
        expense = _lock(expense_id, user)
        if expense.status not in (EXPENSE_STATUS_PENDING, EXPENSE_STATUS_APPROVED):
            raise ExpenseError(
                "Expense cannot be canceled",
                {"status": [f"Paid or canceled expenses cannot be canceled. Current status: {expense.status}"]},
            )
        expense.status = EXPENSE_STATUS_CANCELED
        expense.notes = f"{expense.notes}\nCanceled: {reason}" if expense.notes else f"Canceled: {reason}"
        return expense

    return run_with_retry(_op)


def delete_expense(expense_id: int, *, user: User) -> None:
    def _op():
        expense = _lock(expense_id, user)
        if expense.status != EXPENSE_STATUS_PENDING:
            raise ExpenseError("Only pending expenses can be deleted",
                               {"status": [f"Expense status is {expense.status}."]})
        db.session.delete(expense)
        db.session.flush()

    run_with_retry(_op)


def _scoped(branch_ids: list[int] | None):
    query = db.session.query(Expense)
    if branch_ids is not None:
        if not branch_ids:
            return query.filter(db.false())
        query = query.filter(Expense.branch_id.in_(branch_ids))
    return query


def expenses_query(args: dict, *, branch_ids: list[int] | None):
    """Filters: branch_id, category, status, start_date, end_date, vendor, search."""
    p = Payload(args)
    branch_id = p.integer("branch_id", minimum=1)
    category = p.choice("category", EXPENSE_CATEGORIES)
    status = p.choice("status", EXPENSE_STATUSES)
    start = p.date("start_date")
    end = p.date("end_date")
    vendor = p.string("vendor")
    search = p.string("search")
    p.validate()

    query = _scoped(branch_ids)
    if branch_id:
        query = query.filter(Expense.branch_id == branch_id)
    if category:
        query = query.filter(Expense.category == category)
    if status:
        query = query.filter(Expense.status == status)
    if start:
        query = query.filter(Expense.expense_date >= start)
    if end:
        query = query.filter(Expense.expense_date <= end)
    if vendor:
        query = query.filter(Expense.vendor.ilike(f"%{vendor}%"))
    if search:
        query = query.filter(Expense.description.ilike(f"%{search}%"))
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc())


def summary(args: dict, *, branch_ids: list[int] | None) -> dict:
    """Paid totals by category and every status's count and amount over a date range."""
    p = Payload(args)
    start = p.date("start_date", required=True)
    end = p.date("end_date", required=True)
    branch_id = p.integer("branch_id", minimum=1)
    p.validate()
    if end < start:
        raise ExpenseError("The given data was invalid.", {"end_date": ["The end_date must be on or after start_date."]})

    query = _scoped(branch_ids).filter(Expense.expense_date >= start, Expense.expense_date <= end)
    if branch_id:
        query = query.filter(Expense.branch_id == branch_id)

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_status = {status: {"count": 0, "total": ZERO} for status in EXPENSE_STATUSES}
    for expense in query.all():
        amount = to_money(expense.amount)
        bucket = by_status[expense.status]
        bucket["count"] += 1
        bucket["total"] += amount
        if expense.status == EXPENSE_STATUS_PAID:
            by_category[expense.category] += amount

    return {
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "total_paid": money_out(by_status[EXPENSE_STATUS_PAID]["total"]),
        "by_category": {k: money_out(v) for k, v in sorted(by_category.items())},
        "by_status": {k: {"count": v["count"], "total": money_out(v["total"])} for k, v in by_status.items()},
    }
