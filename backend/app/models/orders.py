from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date
from app.validation import money_out


# Order status
ORDER_STATUS_CREATED = "created"
ORDER_STATUS_PARTIALLY_PAID = "partially_paid"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_FINISHED = "finished"
ORDER_STATUS_CANCELED = "canceled"

ORDER_STATUSES = (
    ORDER_STATUS_CREATED,
    ORDER_STATUS_PARTIALLY_PAID,
    ORDER_STATUS_PAID,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_FINISHED,
    ORDER_STATUS_CANCELED,
)

# Statuses in which an order is still open for payments, items and custody
ORDER_PAYMENT_STATUSES = (ORDER_STATUS_CREATED, ORDER_STATUS_PARTIALLY_PAID, ORDER_STATUS_PAID)
ORDER_CLOSED_STATUSES = (ORDER_STATUS_FINISHED, ORDER_STATUS_CANCELED)

# Item types
ITEM_TYPE_BUY = "buy"
ITEM_TYPE_RENT = "rent"
ITEM_TYPE_TAILORING = "tailoring"
ITEM_TYPES = (ITEM_TYPE_BUY, ITEM_TYPE_RENT, ITEM_TYPE_TAILORING)

# Item statuses beyond the mirrored order statuses
ITEM_STATUS_RENTED = "rented"
ITEM_STATUS_DELIVERED = "delivered"
ITEM_STATUS_RETURNED = "returned"
ITEM_STATUS_CANCELED = "canceled"

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

# Payments
PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_CANCELED = "canceled"
PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID, PAYMENT_STATUS_CANCELED)

PAYMENT_TYPE_INITIAL = "initial"
PAYMENT_TYPE_FEE = "fee"
PAYMENT_TYPE_NORMAL = "normal"
PAYMENT_TYPES = (PAYMENT_TYPE_INITIAL, PAYMENT_TYPE_FEE, PAYMENT_TYPE_NORMAL)

# Rents
RENT_STATUS_ACTIVE = "active"
RENT_STATUS_COMPLETED = "completed"
RENT_STATUS_CANCELED = "canceled"
RENT_STATUS_NO_SHOW = "no_show"
RENT_STATUSES = (RENT_STATUS_ACTIVE, RENT_STATUS_COMPLETED, RENT_STATUS_CANCELED, RENT_STATUS_NO_SHOW)
# Rents that no longer hold the piece's calendar
RENT_RELEASED_STATUSES = (RENT_STATUS_CANCELED, RENT_STATUS_NO_SHOW)

# Order-level tailoring stages, in order
STAGE_RECEIVED = "received"
STAGE_SENT_TO_FACTORY = "sent_to_factory"
STAGE_IN_PRODUCTION = "in_production"
STAGE_READY_FROM_FACTORY = "ready_from_factory"
STAGE_READY_FOR_CUSTOMER = "ready_for_customer"
STAGE_DELIVERED = "delivered"
TAILORING_STAGES = (
    STAGE_RECEIVED,
    STAGE_SENT_TO_FACTORY,
    STAGE_IN_PRODUCTION,
    STAGE_READY_FROM_FACTORY,
    STAGE_READY_FOR_CUSTOMER,
    STAGE_DELIVERED,
)

PRIORITIES = ("low", "normal", "high", "urgent")

# Per-item factory pipeline
FACTORY_STATUS_NEW = "new"
FACTORY_STATUS_PENDING_APPROVAL = "pending_factory_approval"
FACTORY_STATUS_ACCEPTED = "accepted"
FACTORY_STATUS_REJECTED = "rejected"
FACTORY_STATUS_IN_PROGRESS = "in_progress"
FACTORY_STATUS_READY_FOR_DELIVERY = "ready_for_delivery"
FACTORY_STATUS_DELIVERED_TO_ATELIER = "delivered_to_atelier"
FACTORY_STATUS_CLOSED = "closed"


class Order(db.Model):
    """
    Client order placed at one inventory (branch, workshop or factory).

    paid / remaining / status are caches recomputed from Payment rows by
    payment_service.recalculate_order; never write them directly.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventories.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    total_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_CREATED, index=True)
    notes = db.Column(db.Text, nullable=True)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Tailoring workflow (order level)
    tailoring_stage = db.Column(db.String(32), nullable=True, index=True)
    tailoring_stage_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    expected_completion_date = db.Column(db.Date, nullable=True)
    actual_completion_date = db.Column(db.Date, nullable=True)
    assigned_factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True, index=True)
    sent_to_factory_date = db.Column(db.Date, nullable=True)
    received_from_factory_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    inventory = db.relationship("Inventory")
    assigned_factory = db.relationship("Factory")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments = db.relationship(
        "Payment",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )

    @property
    def has_tailoring_items(self) -> bool:
        return any(i.type == ITEM_TYPE_TAILORING for i in self.items)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "client_name": self.client.full_name if self.client else None,
            "inventory_id": self.inventory_id,
            "entity_type": self.inventory.entity_type if self.inventory else None,
            "entity_id": self.inventory.entity_id if self.inventory else None,
            "created_by_user_id": self.created_by_user_id,
            "total_price": money_out(self.total_price),
            "paid": money_out(self.paid),
            "remaining": money_out(self.remaining),
            "discount_type": self.discount_type,
            "discount_value": money_out(self.discount_value) if self.discount_value is not None else None,
            "status": self.status,
            "notes": self.notes,
            "delivered_at": to_utc_z(self.delivered_at),
            "finished_at": to_utc_z(self.finished_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "tailoring_stage": self.tailoring_stage,
            "tailoring_stage_changed_at": to_utc_z(self.tailoring_stage_changed_at),
            "priority": self.priority,
            "expected_completion_date": to_iso_date(self.expected_completion_date),
            "actual_completion_date": to_iso_date(self.actual_completion_date),
            "assigned_factory_id": self.assigned_factory_id,
            "sent_to_factory_date": to_iso_date(self.sent_to_factory_date),
            "received_from_factory_date": to_iso_date(self.received_from_factory_date),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class OrderItem(db.Model):
    """
    One cloth inside an order, with its per-item commercial data.

    price is the entered unit price; final_price is after the item-level
    discount. returnable stays true for rent items until physically returned.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "cloth_id", name="uq_order_items_order_cloth"),
        db.Index("ix_order_items_cloth_type", "cloth_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_CREATED)
    returnable = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    # Rental data
    delivery_date = db.Column(db.Date, nullable=True)
    days_of_rent = db.Column(db.Integer, nullable=True)
    occasion_datetime = db.Column(db.DateTime(timezone=True), nullable=True)

    # Tailoring measurements for this piece
    measurements = db.Column(db.JSON, nullable=True)

    # Factory pipeline (tailoring items only)
    factory_status = db.Column(db.String(32), nullable=True, index=True)
    factory_notes = db.Column(db.Text, nullable=True)
    factory_expected_delivery_date = db.Column(db.Date, nullable=True)
    factory_accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    factory_rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    factory_rejection_reason = db.Column(db.Text, nullable=True)
    factory_delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cloth = db.relationship("Cloth", backref=db.backref("order_items", lazy=True))

    @property
    def line_total(self):
        return self.final_price * (self.quantity or 1)

    def to_dict(self, *, include_pricing: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "cloth_id": self.cloth_id,
            "cloth_code": self.cloth.code if self.cloth else None,
            "cloth_name": self.cloth.name if self.cloth else None,
            "type": self.type,
            "quantity": self.quantity,
            "status": self.status,
            "returnable": self.returnable,
            "notes": self.notes,
            "delivery_date": to_iso_date(self.delivery_date),
            "days_of_rent": self.days_of_rent,
            "occasion_datetime": to_utc_z(self.occasion_datetime),
            "measurements": self.measurements,
            "factory_status": self.factory_status,
            "factory_notes": self.factory_notes,
            "factory_expected_delivery_date": to_iso_date(self.factory_expected_delivery_date),
            "factory_accepted_at": to_utc_z(self.factory_accepted_at),
            "factory_rejected_at": to_utc_z(self.factory_rejected_at),
            "factory_rejection_reason": self.factory_rejection_reason,
            "factory_delivered_at": to_utc_z(self.factory_delivered_at),
        }
        if include_pricing:
            data.update({
                "price": money_out(self.price),
                "final_price": money_out(self.final_price),
                "discount_type": self.discount_type,
                "discount_value": money_out(self.discount_value) if self.discount_value is not None else None,
            })
        return data


class Payment(db.Model):
    """
    Money received (or expected) against an order.

    fee payments are extra charges (late return, damage) and never count
    toward the order total.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PAID, index=True)
    payment_type = db.Column(db.String(16), nullable=False, default=PAYMENT_TYPE_NORMAL, index=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount": money_out(self.amount),
            "status": self.status,
            "payment_type": self.payment_type,
            "payment_date": to_utc_z(self.payment_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Rent(db.Model):
    """
    One rental period of one cloth, created when the order is delivered.

    Availability checks block [delivery_date - buffer, return_date + buffer]
    for every rent that is not canceled or a no-show.
    """
    __tablename__ = "rents"
    __table_args__ = (
        db.Index("ix_rents_cloth_status", "cloth_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)

    delivery_date = db.Column(db.Date, nullable=False)
    days_of_rent = db.Column(db.Integer, nullable=False)
    return_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=RENT_STATUS_ACTIVE)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("rents", lazy=True, cascade="all, delete-orphan"))
    cloth = db.relationship("Cloth", backref=db.backref("rents", lazy=True))
    client = db.relationship("Client")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "cloth_id": self.cloth_id,
            "client_id": self.client_id,
            "delivery_date": to_iso_date(self.delivery_date),
            "days_of_rent": self.days_of_rent,
            "return_date": to_iso_date(self.return_date),
            "status": self.status,
            "returned_at": to_utc_z(self.returned_at),
            "notes": self.notes,
        }


class OrderHistory(db.Model):
    """Append-only audit trail of an order."""
    __tablename__ = "order_histories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    field = db.Column(db.String(64), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("history", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "description": self.description,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class TailoringStageLog(db.Model):
    __tablename__ = "tailoring_stage_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    from_stage = db.Column(db.String(32), nullable=True)
    to_stage = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("stage_logs", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class FactoryItemStatusLog(db.Model):
    """One row per factory_status transition of a tailoring item."""
    __tablename__ = "factory_item_status_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(
        db.Integer, db.ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order_item = db.relationship(
        "OrderItem", backref=db.backref("factory_status_logs", lazy=True, cascade="all, delete-orphan")
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "notes": self.notes,
            "details": self.details,
            "changed_by_user_id": self.changed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
