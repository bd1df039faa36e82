from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date, today
from app.validation import money_out, to_money


# Expense workflow: pending -> approved -> paid; pending/approved -> canceled
EXPENSE_STATUS_PENDING = "pending"
EXPENSE_STATUS_APPROVED = "approved"
EXPENSE_STATUS_PAID = "paid"
EXPENSE_STATUS_CANCELED = "canceled"
EXPENSE_STATUSES = (EXPENSE_STATUS_PENDING, EXPENSE_STATUS_APPROVED, EXPENSE_STATUS_PAID, EXPENSE_STATUS_CANCELED)

EXPENSE_CATEGORIES = {
    "rent": "Rent",
    "utilities": "Utilities (Electricity, Water, Gas)",
    "supplies": "Supplies & Materials",
    "maintenance": "Maintenance & Repairs",
    "salaries": "Salaries & Wages",
    "marketing": "Marketing & Advertising",
    "transport": "Transportation",
    "cleaning": "Cleaning Services",
    "other": "Other",
}

RECEIVABLE_STATUS_PENDING = "pending"
RECEIVABLE_STATUS_PARTIAL = "partial"
RECEIVABLE_STATUS_PAID = "paid"
RECEIVABLE_STATUS_WRITTEN_OFF = "written_off"
RECEIVABLE_STATUSES = (
    RECEIVABLE_STATUS_PENDING, RECEIVABLE_STATUS_PARTIAL, RECEIVABLE_STATUS_PAID, RECEIVABLE_STATUS_WRITTEN_OFF,
)
RECEIVABLE_CLOSED_STATUSES = (RECEIVABLE_STATUS_PAID, RECEIVABLE_STATUS_WRITTEN_OFF)

RECEIVABLE_PAYMENT_METHODS = ("cash", "card", "transfer", "check")


class Expense(db.Model):
    """
    A branch expenditure that needs approval before money leaves the cashbox.

    Paying creates the cashbox expense row referenced by transaction_id.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_branch_date", "branch_id", "expense_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    cashbox_id = db.Column(db.Integer, db.ForeignKey("cashboxes.id"), nullable=False)
    category = db.Column(db.String(32), nullable=False, index=True)
    subcategory = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    expense_date = db.Column(db.Date, nullable=False)
    vendor = db.Column(db.String(255), nullable=True)
    reference_number = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=EXPENSE_STATUS_PENDING, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("cashbox_transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch")
    cashbox = db.relationship("Cashbox")
    transaction = db.relationship("CashboxTransaction")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "cashbox_id": self.cashbox_id,
            "category": self.category,
            "subcategory": self.subcategory,
            "amount": money_out(self.amount),
            "expense_date": to_iso_date(self.expense_date),
            "vendor": self.vendor,
            "reference_number": self.reference_number,
            "description": self.description,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
        }


class Receivable(db.Model):
    """
    Money a client owes the business.

    paid_amount and remaining_amount change only through
    receivable_service.record_payment; every payment has its own row.
    """
    __tablename__ = "receivables"
    __table_args__ = (
        db.Index("ix_receivables_client_status", "client_id", "status"),
        db.Index("ix_receivables_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    original_amount = db.Column(db.Numeric(12, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=False)
    due_date = db.Column(db.Date, nullable=True, index=True)
    description = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=RECEIVABLE_STATUS_PENDING)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    client = db.relationship("Client")
    branch = db.relationship("Branch")
    order = db.relationship("Order")
    payments = db.relationship(
        "ReceivablePayment", backref="receivable", lazy=True, cascade="all, delete-orphan",
        order_by="ReceivablePayment.id",
    )

    @property
    def is_overdue(self) -> bool:
        return (
            self.due_date is not None
            and self.due_date < today()
            and to_money(self.remaining_amount) > 0
            and self.status not in RECEIVABLE_CLOSED_STATUSES
        )

    @property
    def payment_percentage(self) -> float:
        original = to_money(self.original_amount)
        if original == 0:
            return 100.0
        return float((to_money(self.paid_amount) / original * 100).quantize(Decimal("0.01")))

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "branch_id": self.branch_id,
            "order_id": self.order_id,
            "original_amount": money_out(self.original_amount),
            "paid_amount": money_out(self.paid_amount),
            "remaining_amount": money_out(self.remaining_amount),
            "due_date": to_iso_date(self.due_date),
            "description": self.description,
            "notes": self.notes,
            "status": self.status,
            "is_overdue": self.is_overdue,
            "payment_percentage": self.payment_percentage,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class ReceivablePayment(db.Model):
    """One installment collected against a receivable."""
    __tablename__ = "receivable_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receivable_id = db.Column(
        db.Integer, db.ForeignKey("receivables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_id = db.Column(db.Integer, db.ForeignKey("cashbox_transactions.id"), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receivable_id": self.receivable_id,
            "transaction_id": self.transaction_id,
            "amount": money_out(self.amount),
            "payment_date": to_iso_date(self.payment_date),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
