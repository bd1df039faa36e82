from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date


TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_PARTIALLY_PENDING = "partially_pending"
TRANSFER_STATUS_PARTIALLY_APPROVED = "partially_approved"
TRANSFER_STATUS_APPROVED = "approved"
TRANSFER_STATUS_REJECTED = "rejected"
TRANSFER_STATUSES = (
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_PARTIALLY_PENDING,
    TRANSFER_STATUS_PARTIALLY_APPROVED,
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_REJECTED,
)

ITEM_STATUS_PENDING = "pending"
ITEM_STATUS_APPROVED = "approved"
ITEM_STATUS_REJECTED = "rejected"


def derive_transfer_status(item_statuses) -> str:
    """
    Transfer-level status as a pure function of its item statuses.

    all approved -> approved, all rejected -> rejected, all pending -> pending,
    nothing pending but a mix of approved/rejected -> partially_approved,
    anything else -> partially_pending.
    """
    statuses = list(item_statuses)
    if not statuses:
        return TRANSFER_STATUS_PENDING

    total = len(statuses)
    approved = statuses.count(ITEM_STATUS_APPROVED)
    rejected = statuses.count(ITEM_STATUS_REJECTED)
    pending = statuses.count(ITEM_STATUS_PENDING)

    if approved == total:
        return TRANSFER_STATUS_APPROVED
    if rejected == total:
        return TRANSFER_STATUS_REJECTED
    if pending == total:
        return TRANSFER_STATUS_PENDING
    if pending == 0:
        return TRANSFER_STATUS_PARTIALLY_APPROVED
    return TRANSFER_STATUS_PARTIALLY_PENDING


class Transfer(db.Model):
    """
    Request to move cloth pieces from one entity to another.

    Each TransferItem is approved or rejected on its own; the transfer
    status is derived from the items after every item mutation.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.Index("ix_transfers_from_entity", "from_entity_type", "from_entity_id"),
        db.Index("ix_transfers_to_entity", "to_entity_type", "to_entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    from_entity_type = db.Column(db.String(16), nullable=False)
    from_entity_id = db.Column(db.Integer, nullable=False)
    to_entity_type = db.Column(db.String(16), nullable=False)
    to_entity_id = db.Column(db.Integer, nullable=False)

    transfer_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(32), nullable=False, default=TRANSFER_STATUS_PENDING, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    items = db.relationship(
        "TransferItem", backref="transfer", lazy=True, cascade="all, delete-orphan", order_by="TransferItem.id"
    )
    actions = db.relationship(
        "TransferAction", backref="transfer", lazy=True, cascade="all, delete-orphan", order_by="TransferAction.id"
    )

    def refresh_status(self) -> str:
        self.status = derive_transfer_status(item.status for item in self.items)
        return self.status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_entity_type": self.from_entity_type,
            "from_entity_id": self.from_entity_id,
            "to_entity_type": self.to_entity_type,
            "to_entity_id": self.to_entity_id,
            "transfer_date": to_iso_date(self.transfer_date),
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "items": [i.to_dict() for i in self.items],
            "actions": [a.to_dict() for a in self.actions],
            "created_at": to_utc_z(self.created_at),
        }


class TransferItem(db.Model):
    __tablename__ = "transfer_items"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "cloth_id", name="uq_transfer_items_cloth"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False, index=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_PENDING)

    cloth = db.relationship("Cloth")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "cloth_id": self.cloth_id,
            "cloth_code": self.cloth.code if self.cloth else None,
            "status": self.status,
        }


class TransferAction(db.Model):
    """Audit trail: created, updated, approved, approved_items, rejected, rejected_items."""
    __tablename__ = "transfer_actions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)
    action_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "user_id": self.user_id,
            "action": self.action,
            "notes": self.notes,
            "action_date": to_utc_z(self.action_date),
        }
