from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z
from app.validation import money_out


CUSTODY_TYPE_MONEY = "money"
CUSTODY_TYPE_PHYSICAL_ITEM = "physical_item"
CUSTODY_TYPE_DOCUMENT = "document"
CUSTODY_TYPES = (CUSTODY_TYPE_MONEY, CUSTODY_TYPE_PHYSICAL_ITEM, CUSTODY_TYPE_DOCUMENT)

CUSTODY_STATUS_PENDING = "pending"
CUSTODY_STATUS_RETURNED = "returned"
CUSTODY_STATUS_FORFEITED = "forfeited"
CUSTODY_STATUSES = (CUSTODY_STATUS_PENDING, CUSTODY_STATUS_RETURNED, CUSTODY_STATUS_FORFEITED)

CUSTODY_ACTION_RETURNED = "returned_to_user"
CUSTODY_ACTION_FORFEIT = "forfeit"
CUSTODY_ACTIONS = (CUSTODY_ACTION_RETURNED, CUSTODY_ACTION_FORFEIT)

PHOTO_KIND_CUSTODY = "custody"
PHOTO_KIND_ACKNOWLEDGEMENT = "acknowledgement"


class Custody(db.Model):
    """
    Deposit held from the client against an order until the rented pieces
    come back: cash, a physical item or an identity document.
    """
    __tablename__ = "custodies"
    __table_args__ = (
        db.Index("ix_custodies_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    value = db.Column(db.Numeric(12, 2), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=CUSTODY_STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("custodies", lazy=True, cascade="all, delete-orphan"))
    photos = db.relationship(
        "CustodyPhoto", backref="custody", lazy=True, cascade="all, delete-orphan", order_by="CustodyPhoto.id"
    )

    def to_dict(self, *, photo_url=None) -> dict:
        """photo_url: optional callable turning a stored path into a signed URL."""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "type": self.type,
            "description": self.description,
            "value": money_out(self.value) if self.value is not None else None,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "returned_at": to_utc_z(self.returned_at),
            "photos": [p.to_dict(photo_url=photo_url) for p in self.photos],
            "return": self.custody_return.to_dict() if self.custody_return else None,
            "created_at": to_utc_z(self.created_at),
        }


class CustodyPhoto(db.Model):
    """Stored photo path (relative to the private storage root)."""
    __tablename__ = "custody_photos"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    custody_id = db.Column(db.Integer, db.ForeignKey("custodies.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = db.Column(db.String(32), nullable=False, default=PHOTO_KIND_CUSTODY)
    path = db.Column(db.String(500), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self, *, photo_url=None) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "path": self.path,
            "url": photo_url(self.path) if photo_url else None,
        }


class CustodyReturn(db.Model):
    """Final disposition of a custody: handed back or kept (forfeited)."""
    __tablename__ = "custody_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    custody_id = db.Column(
        db.Integer, db.ForeignKey("custodies.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    custody_action = db.Column(db.String(32), nullable=False)
    reason_of_kept = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    custody = db.relationship(
        "Custody",
        backref=db.backref("custody_return", uselist=False, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "custody_id": self.custody_id,
            "custody_action": self.custody_action,
            "reason_of_kept": self.reason_of_kept,
            "notes": self.notes,
            "returned_at": to_utc_z(self.returned_at),
            "user_id": self.user_id,
        }
