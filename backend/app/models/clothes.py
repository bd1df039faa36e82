from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


CLOTH_STATUS_DAMAGED = "damaged"
CLOTH_STATUS_BURNED = "burned"
CLOTH_STATUS_SCRATCHED = "scratched"
CLOTH_STATUS_READY_FOR_RENT = "ready_for_rent"
CLOTH_STATUS_RENTED = "rented"
CLOTH_STATUS_REPAIRING = "repairing"
CLOTH_STATUS_DIE = "die"
CLOTH_STATUS_SOLD = "sold"

CLOTH_STATUSES = (
    CLOTH_STATUS_DAMAGED,
    CLOTH_STATUS_BURNED,
    CLOTH_STATUS_SCRATCHED,
    CLOTH_STATUS_READY_FOR_RENT,
    CLOTH_STATUS_RENTED,
    CLOTH_STATUS_REPAIRING,
    CLOTH_STATUS_DIE,
    CLOTH_STATUS_SOLD,
)


class ClothType(db.Model):
    """Garment type catalogue (wedding dress, suit, soiree...)."""
    __tablename__ = "cloth_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
        }


class Cloth(db.Model):
    """
    One physical garment piece.

    WHY: Rentals are per piece, not per SKU. Each piece has its own status
    and history and lives in exactly one inventory (inventory_id), or none
    once sold.
    """
    __tablename__ = "clothes"
    __table_args__ = (
        db.Index("ix_clothes_inventory_status", "inventory_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    cloth_type_id = db.Column(db.Integer, db.ForeignKey("cloth_types.id"), nullable=True, index=True)

    breast_size = db.Column(db.String(32), nullable=True)
    waist_size = db.Column(db.String(32), nullable=True)
    sleeve_size = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default=CLOTH_STATUS_READY_FOR_RENT, index=True)

    inventory_id = db.Column(db.Integer, db.ForeignKey("inventories.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    cloth_type = db.relationship("ClothType", backref=db.backref("clothes", lazy=True))
    inventory = db.relationship("Inventory", backref=db.backref("clothes", lazy=True))

    def to_dict(self) -> dict:
        inventory = self.inventory
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "cloth_type_id": self.cloth_type_id,
            "cloth_type": self.cloth_type.name if self.cloth_type else None,
            "breast_size": self.breast_size,
            "waist_size": self.waist_size,
            "sleeve_size": self.sleeve_size,
            "notes": self.notes,
            "status": self.status,
            "inventory_id": self.inventory_id,
            "entity_type": inventory.entity_type if inventory else None,
            "entity_id": inventory.entity_id if inventory else None,
            "created_at": to_utc_z(self.created_at),
        }


class ClothHistory(db.Model):
    """
    Append-only trail of everything that happened to a cloth.

    action: created, transferred, ordered, returned, status_changed, sold
    """
    __tablename__ = "cloth_histories"
    __table_args__ = (
        db.Index("ix_cloth_histories_cloth_created", "cloth_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id", ondelete="CASCADE"), nullable=False)
    action = db.Column(db.String(32), nullable=False, index=True)

    entity_type = db.Column(db.String(16), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    status = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    # Private storage paths of photos taken at return
    photos = db.Column(db.JSON, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cloth = db.relationship("Cloth", backref=db.backref("history", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cloth_id": self.cloth_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "transfer_id": self.transfer_id,
            "order_id": self.order_id,
            "status": self.status,
            "notes": self.notes,
            "photos": self.photos or [],
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
