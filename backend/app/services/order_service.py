# Overview: Order lifecycle: create, edit, deliver, return, finish, cancel, delete.

"""
Order Service

LIFECYCLE:
1. created / partially_paid / paid: driven by payments (payment_service)
2. delivered: pieces handed over; rents start, sold pieces leave inventory
3. finished: custody settled, payments complete, rented pieces back
X. canceled: only before delivery

ITEM TYPES:
- buy: cloth is sold on delivery; a buy order has exactly one item
- rent: cloth is booked for [delivery_date, delivery_date + days_of_rent]
- tailoring: cloth goes to repairing and through the factory pipeline
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from ..extensions import db
from ..models import Order, OrderItem, Payment, Rent, Cloth, Client, Inventory, User
from ..models.clients import MEASUREMENT_FIELDS
from ..models.clothes import (
    CLOTH_STATUS_SOLD, CLOTH_STATUS_RENTED, CLOTH_STATUS_REPAIRING, CLOTH_STATUS_READY_FOR_RENT,
)
from ..models.custody import CUSTODY_STATUS_PENDING, CUSTODY_STATUS_RETURNED
from ..models.orders import (
    ORDER_STATUS_DELIVERED, ORDER_STATUS_FINISHED, ORDER_STATUS_CANCELED, ORDER_PAYMENT_STATUSES,
    ITEM_TYPE_BUY, ITEM_TYPE_RENT, ITEM_TYPE_TAILORING, ITEM_TYPES,
    ITEM_STATUS_RENTED, ITEM_STATUS_DELIVERED, ITEM_STATUS_RETURNED, ITEM_STATUS_CANCELED,
    DISCOUNT_PERCENTAGE, DISCOUNT_FIXED, DISCOUNT_TYPES, PRIORITIES,
    PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING, PAYMENT_TYPE_INITIAL, PAYMENT_TYPE_FEE,
    RENT_STATUS_ACTIVE, RENT_STATUS_COMPLETED, RENT_STATUS_CANCELED, RENT_RELEASED_STATUSES,
    STAGE_DELIVERED, FACTORY_STATUS_NEW,
)
from ..models.cashbox import CATEGORY_SALE
from ..models.entities import ENTITY_TYPES
from ..validation import ServiceError, NotFoundError, Payload, to_money
from .concurrency import run_with_retry, get_for_update
from .entity_service import resolve_inventory, ensure_inventory_access, move_cloth
from .history_service import record_order_history, record_cloth_history
from .payment_service import recalculate_order, paid_total, has_pending_payments
from .tailoring_service import apply_stage
from . import availability_service, cashbox_service, client_service, photo_storage
from app.time_utils import utcnow, today

logger = logging.getLogger(__name__)


class OrderError(ServiceError):
    """Raised when order operations fail."""
    pass


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id) if order_id is not None else None
    if not order:
        raise NotFoundError("Order not found")
    return order


def _lock_order(order_id: int) -> Order:
    order = get_for_update(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def apply_discount(amount, discount_type: str | None, discount_value) -> Decimal:
    """
    percentage: amount * (1 - v/100); fixed: max(0, amount - v).
    """
    amount = to_money(amount)
    if not discount_type or discount_value is None:
        return amount
    value = to_money(discount_value)
    if discount_type == DISCOUNT_PERCENTAGE:
        return to_money(amount * (Decimal("100") - value) / Decimal("100"))
    if discount_type == DISCOUNT_FIXED:
        return max(Decimal("0.00"), amount - value)
    return amount


def compute_total(order: Order) -> Decimal:
    subtotal = sum((to_money(item.line_total) for item in order.items), Decimal("0.00"))
    return apply_discount(subtotal, order.discount_type, order.discount_value)


# ---------------------------------------------------------------------------
# Payload reading
# ---------------------------------------------------------------------------

def _read_discount(p: Payload) -> tuple[str | None, Decimal | None]:
    discount_type = p.choice("discount_type", DISCOUNT_TYPES)
    discount_value = p.decimal("discount_value", minimum=0)
    if discount_type and discount_value is None:
        p.error("discount_value", f"The {p.prefix}discount_value field is required when discount_type is present.")
    if discount_type == DISCOUNT_PERCENTAGE and discount_value is not None and discount_value > 100:
        p.error("discount_value", f"The {p.prefix}discount_value may not be greater than 100.")
    if discount_type is None:
        discount_value = None
    return discount_type, discount_value


def _read_items(p: Payload, *, with_paid: bool) -> list[dict]:
    items = []
    seen: set[int] = set()

    for index, raw in enumerate(p.list("items", required=True)):
        if not isinstance(raw, dict):
            p.error(f"items.{index}", "Each item must be an object.")
            continue
        ip = p.nested(raw, f"items.{index}.")
        item = {
            "cloth_id": ip.integer("cloth_id", required=True, minimum=1),
            "price": ip.decimal("price", required=True, minimum=0),
            "quantity": ip.integer("quantity", minimum=1, default=1),
            "paid": ip.decimal("paid", minimum=0, default=Decimal("0.00")) if with_paid else Decimal("0.00"),
            "type": ip.choice("type", ITEM_TYPES, required=True),
            "notes": ip.string("notes"),
        }
        item["discount_type"], item["discount_value"] = _read_discount(ip)

        measurements = {f: ip.string(f, max_length=1000) for f in MEASUREMENT_FIELDS if f in raw}
        item["measurements"] = {k: v for k, v in measurements.items() if v is not None} or None

        if item["type"] == ITEM_TYPE_RENT:
            item["delivery_date"] = ip.date("delivery_date", required=True)
            item["days_of_rent"] = ip.integer("days_of_rent", required=True, minimum=1)
            item["occasion_datetime"] = ip.datetime("occasion_datetime")
        else:
            item["delivery_date"] = ip.date("delivery_date")
            item["days_of_rent"] = None
            item["occasion_datetime"] = ip.datetime("occasion_datetime")

        cloth_id = item["cloth_id"]
        if cloth_id is not None:
            if cloth_id in seen:
                ip.error("cloth_id", "The same cloth appears more than once in this order.")
            seen.add(cloth_id)

        items.append(item)

    if any(i["type"] == ITEM_TYPE_BUY for i in items) and len(items) != 1:
        p.error("items", "Buy orders must have exactly 1 item")

    return items


def _validate_clothes(items: list[dict], inventory: Inventory, *, exclude_order_id: int | None = None) -> dict:
    """
    Check every requested cloth against the order's inventory and calendar.

    Returns {cloth_id: Cloth}; raises OrderError with per-item errors.
    """
    errors: dict[str, list[str]] = {}
    clothes: dict[int, Cloth] = {}
    current_day = today()

    for index, item in enumerate(items):
        key = f"items.{index}.cloth_id"
        cloth = get_for_update(Cloth, item["cloth_id"])
        if not cloth:
            errors.setdefault(key, []).append("The selected cloth does not exist.")
            continue
        clothes[cloth.id] = cloth

        if cloth.status == CLOTH_STATUS_SOLD:
            errors.setdefault(key, []).append(f"Cloth {cloth.code} is already sold.")
            continue
        if cloth.inventory_id != inventory.id:
            errors.setdefault(key, []).append(f"Cloth {cloth.code} is not in the selected entity's inventory.")
            continue

        if item["type"] == ITEM_TYPE_RENT:
            conflicts = availability_service.find_conflicts(
                cloth, item["delivery_date"], item["days_of_rent"], exclude_order_id=exclude_order_id
            )
            if conflicts:
                errors.setdefault(key, []).append(
                    f"Cloth {cloth.code} is not available for the selected dates."
                )
        elif item["type"] == ITEM_TYPE_BUY:
            booked = db.session.query(Rent).filter(
                Rent.cloth_id == cloth.id,
                Rent.status.notin_(RENT_RELEASED_STATUSES),
                Rent.return_date >= current_day,
            ).first()
            if booked:
                errors.setdefault(key, []).append(
                    f"Cloth {cloth.code} has an upcoming rental until {booked.return_date.isoformat()} and cannot be sold."
                )

    if errors:
        raise OrderError("The given data was invalid.", errors)
    return clothes


def _build_items(order: Order, items: list[dict], clothes: dict, *, user_id: int | None) -> None:
    for data in items:
        cloth = clothes[data["cloth_id"]]
        item = OrderItem(
            cloth_id=cloth.id,
            type=data["type"],
            price=data["price"],
            final_price=apply_discount(data["price"], data["discount_type"], data["discount_value"]),
            quantity=data["quantity"],
            discount_type=data["discount_type"],
            discount_value=data["discount_value"],
            status=order.status,
            returnable=data["type"] == ITEM_TYPE_RENT,
            notes=data["notes"],
            delivery_date=data["delivery_date"],
            days_of_rent=data["days_of_rent"],
            occasion_datetime=data["occasion_datetime"],
            measurements=data["measurements"],
            factory_status=FACTORY_STATUS_NEW if data["type"] == ITEM_TYPE_TAILORING else None,
        )
        order.items.append(item)

        record_cloth_history(
            cloth=cloth, action="ordered", user_id=user_id, order_id=order.id,
            notes=f"Added to order #{order.id} as {data['type']}",
        )
        if data["type"] == ITEM_TYPE_TAILORING and cloth.status != CLOTH_STATUS_REPAIRING:
            cloth.status = CLOTH_STATUS_REPAIRING
            record_cloth_history(
                cloth=cloth, action="status_changed", user_id=user_id, order_id=order.id,
                notes="Tailoring order",
            )


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------

def create_order(payload: dict, *, user: User) -> Order:
    """
    Create an order at an entity's inventory, for an existing or new client.

    Item `paid` amounts become one initial Payment.
    """
    p = Payload(payload)
    entity_type = p.choice("entity_type", ENTITY_TYPES, required=True)
    entity_id = p.integer("entity_id", required=True, minimum=1)
    existing_client = p.boolean("existing_client", default=False)

    client_id = None
    client_data = None
    if existing_client:
        client_id = p.integer("client_id", required=True, minimum=1)
    else:
        raw_client = p.data.get("client")
        if not isinstance(raw_client, dict):
            p.error("client", "The client field is required when existing_client is false.")
        else:
            client_data = client_service.read_client_payload(p.nested(raw_client, "client."))

    items = _read_items(p, with_paid=True)
    discount_type, discount_value = _read_discount(p)
    notes = p.string("notes")
    priority = p.choice("priority", PRIORITIES, default="normal")
    expected_completion_date = p.date("expected_completion_date")
    p.validate()

    def _op():
        inventory = resolve_inventory(entity_type, entity_id)
        ensure_inventory_access(user, inventory.id)

        if existing_client:
            client = db.session.get(Client, client_id)
            if not client:
                raise OrderError("The given data was invalid.", {"client_id": ["The selected client does not exist."]})
        else:
            client = client_service.build_client(client_data, prefix="client.")

        clothes = _validate_clothes(items, inventory)

        order = Order(
            client_id=client.id,
            inventory_id=inventory.id,
            created_by_user_id=user.id,
            discount_type=discount_type,
            discount_value=discount_value,
            notes=notes,
            priority=priority,
            expected_completion_date=expected_completion_date,
        )
        db.session.add(order)
        db.session.flush()

        _build_items(order, items, clothes, user_id=user.id)
        order.total_price = compute_total(order)

        initial = sum((to_money(i["paid"]) for i in items), Decimal("0.00"))
        if initial > order.total_price:
            raise OrderError(
                "The given data was invalid.",
                {"items": [f"The paid amount ({initial}) may not exceed the order total ({order.total_price})."]},
            )
        if initial > 0:
            db.session.add(Payment(
                order_id=order.id,
                amount=initial,
                status=PAYMENT_STATUS_PAID,
                payment_type=PAYMENT_TYPE_INITIAL,
                payment_date=utcnow(),
                notes="Initial payment",
                created_by_user_id=user.id,
            ))

        recalculate_order(order)
        record_order_history(
            order=order, action="created", user_id=user.id,
            description=f"Order created with {len(items)} item(s), total {order.total_price}",
        )
        logger.info("Created order #%s at %s #%s", order.id, entity_type, entity_id)
        return order

    return run_with_retry(_op)


def update_order(order_id: int, payload: dict, *, user: User) -> Order:
    """
    Edit notes, order discount and (optionally) replace the item set.

    Only while the order is created, partially_paid or paid.
    """
    p = Payload(payload)
    notes = p.string("notes")
    has_discount = "discount_type" in p.data or "discount_value" in p.data
    discount_type, discount_value = _read_discount(p)
    priority = p.choice("priority", PRIORITIES)
    expected_completion_date = p.date("expected_completion_date")
    items = _read_items(p, with_paid=False) if "items" in p.data else None
    p.validate()

    def _op():
        order = _lock_order(order_id)
        ensure_inventory_access(user, order.inventory_id)
        if order.status not in ORDER_PAYMENT_STATUSES:
            raise OrderError(
                f"Cannot update order in {order.status} status.",
                {"status": [f"Orders can only be edited while {', '.join(ORDER_PAYMENT_STATUSES)}."]},
            )

        changes = []
        if "notes" in p.data and notes != order.notes:
            changes.append(("notes", order.notes, notes))
            order.notes = notes
        if has_discount:
            changes.append(("discount", f"{order.discount_type}:{order.discount_value}", f"{discount_type}:{discount_value}"))
            order.discount_type = discount_type
            order.discount_value = discount_value
        if priority:
            order.priority = priority
        if expected_completion_date:
            order.expected_completion_date = expected_completion_date

        if items is not None:
            clothes = _validate_clothes(items, order.inventory, exclude_order_id=order.id)
            _release_items(order, keep_cloth_ids={i["cloth_id"] for i in items if i["type"] == ITEM_TYPE_TAILORING},
                           user_id=user.id)
            order.items.clear()
            db.session.flush()
            _build_items(order, items, clothes, user_id=user.id)
            changes.append(("items", None, ",".join(str(i["cloth_id"]) for i in items)))

        order.total_price = compute_total(order)
        recalculate_order(order)

        for field, old, new in changes:
            record_order_history(order=order, action="updated", user_id=user.id, field=field,
                                 old_value=old, new_value=new)
        return order

    return run_with_retry(_op)


def held_by_other_order(cloth: Cloth, order_id: int) -> bool:
    """True while another order has the piece out on rent or in tailoring."""
    other_rent = db.session.query(Rent.id).filter(
        Rent.cloth_id == cloth.id,
        Rent.order_id != order_id,
        Rent.status == RENT_STATUS_ACTIVE,
    ).first()
    if other_rent is not None:
        return True
    other_tailoring = db.session.query(OrderItem.id).join(Order, OrderItem.order_id == Order.id).filter(
        OrderItem.cloth_id == cloth.id,
        OrderItem.order_id != order_id,
        OrderItem.type == ITEM_TYPE_TAILORING,
        OrderItem.status.notin_((ITEM_STATUS_DELIVERED, ITEM_STATUS_RETURNED, ITEM_STATUS_CANCELED)),
        Order.status.notin_((ORDER_STATUS_FINISHED, ORDER_STATUS_CANCELED)),
    ).first()
    return other_tailoring is not None


def _release_items(order: Order, *, user_id: int | None, keep_cloth_ids: set[int] = frozenset()) -> None:
    """Put pieces held by the order's open items back to ready_for_rent."""
    for item in order.items:
        if item.status in (ITEM_STATUS_RETURNED, ITEM_STATUS_CANCELED):
            continue
        cloth = item.cloth
        if cloth is None or cloth.id in keep_cloth_ids:
            continue
        if cloth.status in (CLOTH_STATUS_RENTED, CLOTH_STATUS_REPAIRING) and not held_by_other_order(cloth, order.id):
            cloth.status = CLOTH_STATUS_READY_FOR_RENT
            record_cloth_history(
                cloth=cloth, action="status_changed", user_id=user_id, order_id=order.id,
                notes=f"Released from order #{order.id}",
            )


# ---------------------------------------------------------------------------
# Deliver / finish / cancel
# ---------------------------------------------------------------------------

def deliver_order(order_id: int, *, user: User) -> Order:
    def _op():
        order = _lock_order(order_id)
        ensure_inventory_access(user, order.inventory_id)

        if order.status not in ORDER_PAYMENT_STATUSES:
            raise OrderError(
                f"Cannot deliver order in {order.status} status.",
                {"status": ["Only created, partially paid or paid orders can be delivered."]},
            )

        types = {item.type for item in order.items}
        errors: dict[str, list[str]] = {}

        if ITEM_TYPE_RENT in types:
            if not order.custodies:
                errors.setdefault("custody", []).append("Rent orders require at least one custody before delivery.")
            elif any(c.status != CUSTODY_STATUS_PENDING for c in order.custodies):
                errors.setdefault("custody", []).append("All custodies must be pending at delivery.")

        if types == {ITEM_TYPE_BUY} and to_money(order.remaining) > 0:
            errors.setdefault("remaining", []).append(
                f"Buy orders must be fully paid before delivery. Remaining: {to_money(order.remaining)}"
            )

        if errors:
            raise OrderError("Cannot deliver order", errors)

        current_day = today()
        cashbox = cashbox_service.cashbox_for_inventory(order.inventory)

        for item in order.items:
            cloth = item.cloth
            if item.type == ITEM_TYPE_RENT:
                delivery = item.delivery_date or current_day
                days = item.days_of_rent or 1
                db.session.add(Rent(
                    order_id=order.id,
                    order_item_id=item.id,
                    cloth_id=cloth.id,
                    client_id=order.client_id,
                    delivery_date=delivery,
                    days_of_rent=days,
                    return_date=delivery + timedelta(days=days),
                    status=RENT_STATUS_ACTIVE,
                ))
                item.status = ITEM_STATUS_RENTED
                cloth.status = CLOTH_STATUS_RENTED
                record_cloth_history(cloth=cloth, action="status_changed", user_id=user.id, order_id=order.id,
                                     notes=f"Rented out on order #{order.id}")

            elif item.type == ITEM_TYPE_BUY:
                item.status = ITEM_STATUS_DELIVERED
                cloth.status = CLOTH_STATUS_SOLD
                record_cloth_history(cloth=cloth, action="sold", user_id=user.id, order_id=order.id,
                                     notes=f"Sold on order #{order.id}")
                move_cloth(cloth, None)

                amount = to_money(item.line_total)
                if cashbox is not None and amount > 0:
                    cashbox_service.record_income(
                        cashbox.id, amount, category=CATEGORY_SALE,
                        description=f"Sale of {cloth.code} (order #{order.id})",
                        reference_type="order", reference_id=order.id, user_id=user.id,
                    )
            else:
                item.status = ITEM_STATUS_DELIVERED

        order.status = ORDER_STATUS_DELIVERED
        order.delivered_at = utcnow()

        if order.tailoring_stage and order.tailoring_stage != STAGE_DELIVERED:
            apply_stage(order, STAGE_DELIVERED, user_id=user.id, notes="Order delivered")

        db.session.flush()
        record_order_history(order=order, action="delivered", user_id=user.id, field="status",
                             new_value=ORDER_STATUS_DELIVERED)
        logger.info("Delivered order #%s", order.id)
        return order

    return run_with_retry(_op)


def finish_blockers(order: Order) -> list[str]:
    """Every reason the order cannot be finished yet (empty when it can)."""
    reasons = []

    if any(c.status == CUSTODY_STATUS_PENDING for c in order.custodies):
        reasons.append("All custody items must be returned or forfeited.")
    if any(c.status == CUSTODY_STATUS_RETURNED and c.custody_return is None for c in order.custodies):
        reasons.append("Every returned custody needs a return record with proof photos.")

    pending = [p for p in order.payments if p.status == PAYMENT_STATUS_PENDING]
    if any(p.payment_type == PAYMENT_TYPE_FEE for p in pending):
        reasons.append("There are pending fee payments.")
    if any(p.payment_type != PAYMENT_TYPE_FEE for p in pending):
        reasons.append("There are pending payments.")

    if paid_total(order) < to_money(order.total_price) - Decimal("0.01"):
        reasons.append(
            f"Order is not fully paid. Paid: {paid_total(order)}, Total: {to_money(order.total_price)}"
        )

    if any(i.type == ITEM_TYPE_RENT and i.returnable for i in order.items):
        reasons.append("All rented items must be returned.")

    return reasons


def finish_order(order_id: int, *, user: User) -> Order:
    def _op():
        order = _lock_order(order_id)
        ensure_inventory_access(user, order.inventory_id)

        if order.status in (ORDER_STATUS_FINISHED, ORDER_STATUS_CANCELED):
            raise OrderError("Cannot finish order", {"status": [f"Order is already {order.status}."]})

        reasons = finish_blockers(order)
        if reasons:
            raise OrderError("Cannot finish order", {"status": reasons})

        _mark_finished(order, user_id=user.id)
        return order

    return run_with_retry(_op)


def _mark_finished(order: Order, *, user_id: int | None, description: str | None = None) -> None:
    old = order.status
    order.status = ORDER_STATUS_FINISHED
    order.finished_at = utcnow()
    record_order_history(order=order, action="finished", user_id=user_id, field="status",
                         old_value=old, new_value=ORDER_STATUS_FINISHED, description=description)
    logger.info("Finished order #%s", order.id)


def finish_if_settled(order: Order, *, user_id: int | None, description: str) -> bool:
    """Finish a delivered order once no custody, rent or payment is left open."""
    if order.status != ORDER_STATUS_DELIVERED:
        return False
    custody_open = any(c.status == CUSTODY_STATUS_PENDING for c in order.custodies)
    rents_open = db.session.query(Rent).filter_by(order_id=order.id, status=RENT_STATUS_ACTIVE).count()
    if custody_open or rents_open or has_pending_payments(order):
        return False
    _mark_finished(order, user_id=user_id, description=description)
    return True


def cancel_order(order_id: int, *, user: User, reason: str | None = None) -> Order:
    def _op():
        order = _lock_order(order_id)
        ensure_inventory_access(user, order.inventory_id)

        if order.status in (ORDER_STATUS_DELIVERED, ORDER_STATUS_FINISHED, ORDER_STATUS_CANCELED):
            raise OrderError(
                f"Cannot cancel order in {order.status} status.",
                {"status": ["Delivered, finished or canceled orders cannot be canceled."]},
            )

        old = order.status
        for item in order.items:
            item.status = ITEM_STATUS_CANCELED
            cloth = item.cloth
            if (
                cloth is not None
                and cloth.status not in (CLOTH_STATUS_SOLD, CLOTH_STATUS_READY_FOR_RENT)
                and not held_by_other_order(cloth, order.id)
            ):
                cloth.status = CLOTH_STATUS_READY_FOR_RENT
                record_cloth_history(cloth=cloth, action="status_changed", user_id=user.id, order_id=order.id,
                                     notes=f"Order #{order.id} canceled")

        for rent in order.rents:
            rent.status = RENT_STATUS_CANCELED

        order.status = ORDER_STATUS_CANCELED
        order.canceled_at = utcnow()
        record_order_history(order=order, action="canceled", user_id=user.id, field="status",
                             old_value=old, new_value=ORDER_STATUS_CANCELED, description=reason)
        logger.info("Canceled order #%s", order.id)
        return order

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------

def return_items(order_id: int, payload: dict, *, user: User, files: dict | None = None) -> tuple[Order, bool]:
    """
    Take rented pieces back.

    payload: {"items": [{"cloth_id", "notes"?}]}; files maps
    "items.<index>.photos" to uploaded photos.

    Returns (order, order_finished). The order finishes by itself once no
    custody is pending, no rent is active and no payment is pending.
    """
    files = files or {}
    p = Payload(payload)
    raw_items = p.list("items", required=True)
    requested = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            p.error(f"items.{index}", "Each item must be an object.")
            continue
        ip = p.nested(raw, f"items.{index}.")
        uploads = files.get(f"items.{index}.photos") or []
        if len(uploads) > 10:
            ip.error("photos", "Cannot send more than 10 photos per item.")
        requested.append({
            "index": index,
            "cloth_id": ip.integer("cloth_id", required=True, minimum=1),
            "notes": ip.string("notes"),
            "photos": uploads,
        })
    p.validate()

    def _op():
        order = _lock_order(order_id)
        ensure_inventory_access(user, order.inventory_id)

        errors: dict[str, list[str]] = {}
        matched = []
        for entry in requested:
            key = f"items.{entry['index']}.cloth_id"
            item = next((i for i in order.items if i.cloth_id == entry["cloth_id"]), None)
            if item is None:
                errors.setdefault(key, []).append("The cloth is not part of this order.")
                continue
            if item.type != ITEM_TYPE_RENT:
                errors.setdefault(key, []).append("Only rented items can be returned.")
                continue
            if not item.returnable:
                errors.setdefault(key, []).append("The item was already returned.")
                continue
            rent = db.session.query(Rent).filter_by(order_item_id=item.id, status=RENT_STATUS_ACTIVE).first()
            if rent is None:
                errors.setdefault(key, []).append("The item has no active rent.")
                continue
            matched.append((entry, item, rent))

        if errors:
            raise OrderError("The given data was invalid.", errors)

        now = utcnow()
        for entry, item, rent in matched:
            paths = [
                photo_storage.save_photo(upload, f"returns/order_{order.id}", field=f"items.{entry['index']}.photos")
                for upload in entry["photos"]
            ]
            cloth = item.cloth
            cloth.status = CLOTH_STATUS_REPAIRING
            item.returnable = False
            item.status = ITEM_STATUS_RETURNED
            rent.status = RENT_STATUS_COMPLETED
            rent.returned_at = now
            record_cloth_history(
                cloth=cloth, action="returned", user_id=user.id, order_id=order.id,
                notes=entry["notes"] or f"Returned from order #{order.id}", photos=paths or None,
            )

        db.session.flush()
        record_order_history(
            order=order, action="returned", user_id=user.id,
            description=f"Returned cloth(es): {', '.join(str(e['cloth_id']) for e, _, _ in matched)}",
        )

        finished = finish_if_settled(order, user_id=user.id, description="Finished automatically on return")
        return order, finished

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Delete / availability / listing
# ---------------------------------------------------------------------------

def delete_order(order_id: int, *, user: User) -> None:
    def _op():
        order = _lock_order(order_id)
        ensure_inventory_access(user, order.inventory_id)

        if any(i.type == ITEM_TYPE_BUY and i.status == ITEM_STATUS_DELIVERED for i in order.items):
            raise OrderError(
                "Cannot delete order with delivered sold items.",
                {"order": ["The order contains sold pieces that were delivered."]},
            )

        _release_items(order, user_id=user.id)
        db.session.delete(order)
        db.session.flush()
        logger.info("Deleted order #%s", order_id)

    run_with_retry(_op)


def check_availability(payload: dict) -> dict:
    p = Payload(payload)
    cloth_id = p.integer("cloth_id", required=True, minimum=1)
    delivery_date = p.date("delivery_date", required=True)
    days_of_rent = p.integer("days_of_rent", minimum=1, default=1)
    exclude_order_id = p.integer("exclude_order_id", minimum=1)
    p.validate()

    cloth = db.session.get(Cloth, cloth_id)
    if not cloth:
        raise OrderError("The given data was invalid.", {"cloth_id": ["The selected cloth does not exist."]})

    conflicts = availability_service.find_conflicts(
        cloth, delivery_date, days_of_rent, exclude_order_id=exclude_order_id
    )
    start, end = availability_service.rental_window(delivery_date, days_of_rent)
    return {
        "cloth_id": cloth.id,
        "delivery_date": start.isoformat(),
        "return_date": end.isoformat(),
        "days_of_rent": days_of_rent,
        "available": not conflicts,
        "conflicts": [availability_service.serialize_window(c) for c in conflicts],
    }


def orders_query(*, inventory_ids: list[int] | None, status: str | None = None, client_id: int | None = None,
                 entity_type: str | None = None, entity_id: int | None = None, item_type: str | None = None,
                 date_from=None, date_to=None):
    query = db.session.query(Order)
    if inventory_ids is not None:
        if not inventory_ids:
            return query.filter(db.false())
        query = query.filter(Order.inventory_id.in_(inventory_ids))
    if status:
        query = query.filter(Order.status == status)
    if client_id:
        query = query.filter(Order.client_id == client_id)
    if entity_type:
        query = query.join(Inventory, Inventory.id == Order.inventory_id).filter(Inventory.entity_type == entity_type)
        if entity_id:
            query = query.filter(Inventory.entity_id == entity_id)
    if item_type:
        query = query.filter(Order.items.any(OrderItem.type == item_type))
    if date_from:
        query = query.filter(db.func.date(Order.created_at) >= date_from.isoformat())
    if date_to:
        query = query.filter(db.func.date(Order.created_at) <= date_to.isoformat())
    return query.order_by(Order.id.desc())
