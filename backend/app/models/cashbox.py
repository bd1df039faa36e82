from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z
from app.validation import money_out


TRANSACTION_INCOME = "income"
TRANSACTION_EXPENSE = "expense"
TRANSACTION_REVERSAL = "reversal"
TRANSACTION_TYPES = (TRANSACTION_INCOME, TRANSACTION_EXPENSE, TRANSACTION_REVERSAL)

# Categories used by the order, custody, expense, receivable and manual flows
CATEGORY_SALE = "sale"
CATEGORY_CUSTODY_DEPOSIT = "custody_deposit"
CATEGORY_CUSTODY_RETURN = "custody_return"
CATEGORY_CUSTODY_FORFEIT = "custody_forfeit"
CATEGORY_EXPENSE = "expense"
CATEGORY_RECEIVABLE_PAYMENT = "receivable_payment"
CATEGORY_OTHER = "other"


class Cashbox(db.Model):
    """
    One cash drawer per branch.

    current_balance is maintained by cashbox_service only; every change is
    backed by a CashboxTransaction row carrying balance_after.
    """
    __tablename__ = "cashboxes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    initial_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    branch = db.relationship("Branch", backref=db.backref("cashbox", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "initial_balance": money_out(self.initial_balance),
            "current_balance": money_out(self.current_balance),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashboxTransaction(db.Model):
    """Append-only cashbox ledger row."""
    __tablename__ = "cashbox_transactions"
    __table_args__ = (
        db.Index("ix_cashbox_transactions_cashbox_created", "cashbox_id", "created_at"),
        db.Index("ix_cashbox_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashbox_id = db.Column(db.Integer, db.ForeignKey("cashboxes.id"), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)
    category = db.Column(db.String(32), nullable=False, default=CATEGORY_OTHER, index=True)
    description = db.Column(db.String(500), nullable=True)

    # What the money movement belongs to (order, custody, payment...)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    reversed_transaction_id = db.Column(db.Integer, db.ForeignKey("cashbox_transactions.id"), nullable=True)
    is_reversed = db.Column(db.Boolean, nullable=False, default=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cashbox = db.relationship("Cashbox", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashbox_id": self.cashbox_id,
            "type": self.type,
            "amount": money_out(self.amount),
            "balance_after": money_out(self.balance_after),
            "category": self.category,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reversed_transaction_id": self.reversed_transaction_id,
            "is_reversed": self.is_reversed,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
