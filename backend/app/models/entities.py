from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


ENTITY_BRANCH = "branch"
ENTITY_WORKSHOP = "workshop"
ENTITY_FACTORY = "factory"
ENTITY_TYPES = (ENTITY_BRANCH, ENTITY_WORKSHOP, ENTITY_FACTORY)


class Inventory(db.Model):
    """
    Stock container owned by exactly one entity (branch, workshop or factory).

    A cloth points at its inventory through Cloth.inventory_id, so a piece
    can never sit in two inventories at once.
    """
    __tablename__ = "inventories"
    __table_args__ = (
        db.UniqueConstraint("entity_type", "entity_id", name="uq_inventories_entity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # branch / workshop / factory
    entity_type = db.Column(db.String(16), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
        }


class Branch(db.Model):
    """Retail branch: sells, rents and takes tailoring orders. Owns a cashbox."""
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    branch_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory = db.relationship(
        "Inventory",
        primaryjoin="and_(Inventory.entity_type == 'branch', foreign(Inventory.entity_id) == Branch.id)",
        uselist=False,
        viewonly=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_code": self.branch_code,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "inventory_id": self.inventory.id if self.inventory else None,
            "cashbox_id": self.cashbox.id if self.cashbox else None,
            "created_at": to_utc_z(self.created_at),
        }


class Workshop(db.Model):
    """Alteration/cleaning workshop, optionally attached to a branch."""
    __tablename__ = "workshops"
    __table_args__ = {"sqlite_autoincrement": True}

    # Cloth statuses tracked while a piece sits in a workshop
    CLOTH_STATUSES = ("received", "processing", "ready_for_delivery")

    id = db.Column(db.Integer, primary_key=True)
    workshop_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("workshops", lazy=True))
    inventory = db.relationship(
        "Inventory",
        primaryjoin="and_(Inventory.entity_type == 'workshop', foreign(Inventory.entity_id) == Workshop.id)",
        uselist=False,
        viewonly=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_code": self.workshop_code,
            "name": self.name,
            "branch_id": self.branch_id,
            "phone": self.phone,
            "address": self.address,
            "notes": self.notes,
            "inventory_id": self.inventory.id if self.inventory else None,
            "created_at": to_utc_z(self.created_at),
        }


class Factory(db.Model):
    """Tailoring factory. max_capacity bounds concurrently assigned orders."""
    __tablename__ = "factories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    factory_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    max_capacity = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory = db.relationship(
        "Inventory",
        primaryjoin="and_(Inventory.entity_type == 'factory', foreign(Inventory.entity_id) == Factory.id)",
        uselist=False,
        viewonly=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "factory_code": self.factory_code,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "max_capacity": self.max_capacity,
            "is_active": self.is_active,
            "inventory_id": self.inventory.id if self.inventory else None,
            "created_at": to_utc_z(self.created_at),
        }


class WorkshopLog(db.Model):
    """Per-cloth event inside a workshop (received, status_changed, returned)."""
    __tablename__ = "workshop_logs"
    __table_args__ = (
        db.Index("ix_workshop_logs_workshop_cloth", "workshop_id", "cloth_id"),
        {"sqlite_autoincrement": True},
    )

    ACTIONS = ("received", "status_changed", "returned")

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    cloth_status = db.Column(db.String(32), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    workshop = db.relationship("Workshop", backref=db.backref("logs", lazy=True))
    cloth = db.relationship("Cloth")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "cloth_id": self.cloth_id,
            "cloth_code": self.cloth.code if self.cloth else None,
            "transfer_id": self.transfer_id,
            "action": self.action,
            "cloth_status": self.cloth_status,
            "notes": self.notes,
            "received_at": to_utc_z(self.received_at),
            "returned_at": to_utc_z(self.returned_at),
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
