# Overview: Per-branch cashbox balance and its append-only transaction ledger.

"""
Cashbox Service

WHY: Every cash movement at a branch (sales, custody deposits, refunds,
manual expenses) must be reconcilable. Each transaction stores the balance
it produced, so the ledger can be audited row by row.

INVARIANTS:
- current_balance changes only through this module
- amount > 0 on every row; direction comes from the type
- an expense never takes the balance below zero
- reversals never delete; they append an opposite row and flag the original
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from ..extensions import db
from ..models import Cashbox, CashboxTransaction, Branch, Inventory
from ..models.cashbox import (
    TRANSACTION_INCOME, TRANSACTION_EXPENSE, TRANSACTION_REVERSAL, CATEGORY_OTHER, CATEGORY_EXPENSE,
)
from ..models.entities import ENTITY_BRANCH, ENTITY_WORKSHOP
from ..validation import ServiceError, NotFoundError, Payload, to_money
from .concurrency import get_for_update

logger = logging.getLogger(__name__)


class CashboxError(ServiceError):
    """Raised when cashbox operations fail."""
    pass


class InsufficientBalanceError(CashboxError):
    """Expense larger than the current balance."""

    def __init__(self, available: Decimal, required: Decimal):
        super().__init__(
            f"Insufficient cashbox balance. Available: {to_money(available)}, Required: {to_money(required)}",
            {"amount": ["Insufficient cashbox balance."]},
        )
        self.available = to_money(available)
        self.required = to_money(required)


def create_cashbox_for_branch(branch: Branch, initial_balance=None) -> Cashbox:
    opening = to_money(initial_balance or 0)
    if opening < 0:
        raise CashboxError("The given data was invalid.", {"initial_balance": ["Must be at least 0."]})
    cashbox = Cashbox(
        branch_id=branch.id,
        name=f"{branch.name} Cashbox",
        initial_balance=opening,
        current_balance=opening,
        is_active=True,
    )
    db.session.add(cashbox)
    db.session.flush()
    return cashbox


def get_cashbox(cashbox_id: int) -> Cashbox:
    cashbox = db.session.get(Cashbox, cashbox_id)
    if not cashbox:
        raise NotFoundError("Cashbox not found")
    return cashbox


def branch_id_for_inventory(inventory: Inventory | None) -> int | None:
    """Branch whose cashbox handles money for orders placed at `inventory`."""
    if inventory is None:
        return None
    if inventory.entity_type == ENTITY_BRANCH:
        return inventory.entity_id
    if inventory.entity_type == ENTITY_WORKSHOP:
        from ..models import Workshop
        workshop = db.session.get(Workshop, inventory.entity_id)
        return workshop.branch_id if workshop else None
    return None


def cashbox_for_inventory(inventory: Inventory | None) -> Cashbox | None:
    """Active cashbox for an inventory's branch, or None (factories, inactive boxes)."""
    branch_id = branch_id_for_inventory(inventory)
    if branch_id is None:
        return None
    cashbox = db.session.query(Cashbox).filter_by(branch_id=branch_id).first()
    if not cashbox or not cashbox.is_active:
        return None
    return cashbox


def _lock(cashbox_id: int) -> Cashbox:
    cashbox = get_for_update(Cashbox, cashbox_id)
    if not cashbox:
        raise NotFoundError("Cashbox not found")
    if not cashbox.is_active:
        raise CashboxError("Cashbox is not active", {"cashbox": ["The cashbox is inactive."]})
    return cashbox


def _check_amount(amount) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise CashboxError("The given data was invalid.", {"amount": ["The amount must be greater than 0."]})
    return value


def _append(cashbox: Cashbox, *, type: str, amount: Decimal, balance_after: Decimal, category: str,
            description: str | None, reference_type: str | None, reference_id: int | None,
            user_id: int | None, reversed_transaction_id: int | None = None) -> CashboxTransaction:
    cashbox.current_balance = balance_after
    transaction = CashboxTransaction(
        cashbox_id=cashbox.id,
        type=type,
        amount=amount,
        balance_after=balance_after,
        category=category,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        reversed_transaction_id=reversed_transaction_id,
        created_by_user_id=user_id,
    )
    db.session.add(transaction)
    db.session.flush()
    return transaction


def record_income(
    cashbox_id: int,
    amount,
    *,
    category: str = CATEGORY_OTHER,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> CashboxTransaction:
    """Add money to the cashbox. Does not commit."""
    value = _check_amount(amount)
    cashbox = _lock(cashbox_id)
    balance_after = to_money(cashbox.current_balance) + value
    transaction = _append(
        cashbox, type=TRANSACTION_INCOME, amount=value, balance_after=balance_after, category=category,
        description=description, reference_type=reference_type, reference_id=reference_id, user_id=user_id,
    )
    logger.info("Cashbox #%s income %s (%s)", cashbox.id, value, category)
    return transaction


def record_expense(
    cashbox_id: int,
    amount,
    *,
    category: str = CATEGORY_EXPENSE,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> CashboxTransaction:
    """
    Take money out of the cashbox. Does not commit.

    Raises InsufficientBalanceError when the balance does not cover it.
    """
    value = _check_amount(amount)
    cashbox = _lock(cashbox_id)
    available = to_money(cashbox.current_balance)
    if available < value:
        raise InsufficientBalanceError(available, value)
    transaction = _append(
        cashbox, type=TRANSACTION_EXPENSE, amount=value, balance_after=available - value, category=category,
        description=description, reference_type=reference_type, reference_id=reference_id, user_id=user_id,
    )
    logger.info("Cashbox #%s expense %s (%s)", cashbox.id, value, category)
    return transaction


def reverse_transaction(transaction_id: int, *, user_id: int | None = None,
                        reason: str | None = None) -> CashboxTransaction:
    """Append the opposite movement of an income or expense row."""
    original = get_for_update(CashboxTransaction, transaction_id)
    if not original:
        raise NotFoundError("Transaction not found")
    if original.type == TRANSACTION_REVERSAL:
        raise CashboxError("Cannot reverse a reversal", {"transaction": ["Reversal rows cannot be reversed."]})
    if original.is_reversed:
        raise CashboxError("Transaction already reversed", {"transaction": ["Already reversed."]})

    cashbox = _lock(original.cashbox_id)
    amount = to_money(original.amount)
    balance = to_money(cashbox.current_balance)

    if original.type == TRANSACTION_INCOME:
        if balance < amount:
            raise InsufficientBalanceError(balance, amount)
        balance_after = balance - amount
    else:
        balance_after = balance + amount

    original.is_reversed = True
    description = f"Reversal of transaction #{original.id}"
    if reason:
        description = f"{description}: {reason}"
    return _append(
        cashbox, type=TRANSACTION_REVERSAL, amount=amount, balance_after=balance_after,
        category=original.category, description=description,
        reference_type=original.reference_type, reference_id=original.reference_id,
        user_id=user_id, reversed_transaction_id=original.id,
    )


def _signed(transaction: CashboxTransaction, originals: dict[int, str]) -> Decimal:
    amount = to_money(transaction.amount)
    if transaction.type == TRANSACTION_INCOME:
        return amount
    if transaction.type == TRANSACTION_EXPENSE:
        return -amount
    # Reversal: opposite of what it reverses
    return -amount if originals.get(transaction.reversed_transaction_id) == TRANSACTION_INCOME else amount


def daily_summary(cashbox_id: int, day: date) -> dict:
    """
    Opening/closing balance and totals for one calendar day (UTC).
    """
    cashbox = get_cashbox(cashbox_id)
    start = datetime.combine(day, datetime.min.time())
    end = start + timedelta(days=1)

    previous = (
        cashbox.transactions
        .filter(CashboxTransaction.created_at < start)
        .order_by(CashboxTransaction.created_at.desc(), CashboxTransaction.id.desc())
        .first()
    )
    opening = to_money(previous.balance_after) if previous else to_money(cashbox.initial_balance)

    rows = (
        cashbox.transactions
        .filter(CashboxTransaction.created_at >= start, CashboxTransaction.created_at < end)
        .order_by(CashboxTransaction.created_at.asc(), CashboxTransaction.id.asc())
        .all()
    )
    reversed_ids = [r.reversed_transaction_id for r in rows if r.reversed_transaction_id]
    originals = {}
    if reversed_ids:
        originals = {
            t.id: t.type
            for t in db.session.query(CashboxTransaction).filter(CashboxTransaction.id.in_(reversed_ids))
        }

    income = sum((to_money(r.amount) for r in rows if r.type == TRANSACTION_INCOME), Decimal("0.00"))
    expense = sum((to_money(r.amount) for r in rows if r.type == TRANSACTION_EXPENSE), Decimal("0.00"))
    reversals = sum((to_money(r.amount) for r in rows if r.type == TRANSACTION_REVERSAL), Decimal("0.00"))
    net = sum((_signed(r, originals) for r in rows), Decimal("0.00"))

    by_category: dict[str, Decimal] = {}
    for r in rows:
        by_category[r.category] = by_category.get(r.category, Decimal("0.00")) + _signed(r, originals)

    return {
        "cashbox_id": cashbox.id,
        "date": day.isoformat(),
        "opening_balance": float(opening),
        "total_income": float(income),
        "total_expense": float(expense),
        "total_reversals": float(reversals),
        "net_change": float(net),
        "closing_balance": float(to_money(rows[-1].balance_after)) if rows else float(opening),
        "transaction_count": len(rows),
        "by_category": {k: float(v) for k, v in sorted(by_category.items())},
    }


def transactions_query(cashbox_id: int, *, type: str | None = None, category: str | None = None,
                       date_from: date | None = None, date_to: date | None = None):
    query = db.session.query(CashboxTransaction).filter(CashboxTransaction.cashbox_id == cashbox_id)
    if type:
        query = query.filter(CashboxTransaction.type == type)
    if category:
        query = query.filter(CashboxTransaction.category == category)
    if date_from:
        query = query.filter(CashboxTransaction.created_at >= datetime.combine(date_from, datetime.min.time()))
    if date_to:
        query = query.filter(
            CashboxTransaction.created_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time())
        )
    return query.order_by(CashboxTransaction.created_at.desc(), CashboxTransaction.id.desc())


def manual_transaction(cashbox_id: int, payload: dict, *, type: str, user_id: int | None = None) -> CashboxTransaction:
    """Staff-entered income or expense (rent, utilities, petty cash)."""
    p = Payload(payload)
    amount = p.decimal("amount", required=True, minimum="0.01")
    category = p.string("category", max_length=32) or (CATEGORY_EXPENSE if type == TRANSACTION_EXPENSE else CATEGORY_OTHER)
    description = p.string("description", required=True, max_length=500)
    p.validate()

    cashbox = get_cashbox(cashbox_id)
    if not cashbox.is_active:
        raise CashboxError("Cashbox is not active", {"cashbox": ["The cashbox is closed."]})
    record = record_expense if type == TRANSACTION_EXPENSE else record_income
    return record(cashbox.id, amount, category=category, description=description,
                  reference_type="manual", user_id=user_id)


def cashboxes_query(*, branch_ids: list[int] | None):
    query = db.session.query(Cashbox)
    if branch_ids is not None:
        if not branch_ids:
            return query.filter(db.false())
        query = query.filter(Cashbox.branch_id.in_(branch_ids))
    return query.order_by(Cashbox.id)
