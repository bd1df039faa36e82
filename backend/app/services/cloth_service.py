# Overview: Cloth pieces, cloth types, placement and status changes.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Cloth, ClothType, OrderItem, Order, TransferItem, Inventory
from ..models.clothes import CLOTH_STATUSES
from ..models.orders import ORDER_CLOSED_STATUSES
from ..models.entities import ENTITY_TYPES
from ..validation import ServiceError, NotFoundError, Payload, ModelValidationPolicy, validate_payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import resolve_inventory, move_cloth
from .history_service import record_cloth_history

logger = logging.getLogger(__name__)


CLOTH_TYPE_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "description"},
    required_on_create={"code", "name"},
)


class ClothError(ServiceError):
    """Raised when cloth operations fail."""
    pass


def get_cloth(cloth_id: int) -> Cloth:
    cloth = db.session.get(Cloth, cloth_id) if cloth_id is not None else None
    if not cloth:
        raise NotFoundError("Cloth not found")
    return cloth


def open_order_ids(cloth_id: int) -> list[int]:
    """Orders (not finished or canceled) that contain the cloth."""
    rows = (
        db.session.query(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(OrderItem.cloth_id == cloth_id, Order.status.notin_(ORDER_CLOSED_STATUSES))
        .distinct()
        .all()
    )
    return [r[0] for r in rows]


def _ensure_not_in_open_order(cloth: Cloth, verb: str) -> None:
    order_ids = open_order_ids(cloth.id)
    if order_ids:
        raise ClothError(
            f"Cannot {verb} cloth while it is in an open order.",
            {"cloth": [f"Cloth is in open order(s): {', '.join(f'#{i}' for i in order_ids)}."]},
        )


def _read_cloth(p: Payload, *, partial: bool) -> dict:
    required = not partial
    data: dict = {}

    if required or "code" in p.data:
        data["code"] = p.string("code", required=True, max_length=64)
    if required or "name" in p.data:
        data["name"] = p.string("name", required=True, max_length=255)
    if required or "cloth_type_id" in p.data:
        data["cloth_type_id"] = p.integer("cloth_type_id", required=True, minimum=1)
    for field in ("description", "notes"):
        if field in p.data:
            data[field] = p.string(field)
    for field in ("breast_size", "waist_size", "sleeve_size"):
        if field in p.data:
            data[field] = p.string(field, max_length=32)
    if p.has("status"):
        data["status"] = p.choice("status", CLOTH_STATUSES)

    if required or "entity_type" in p.data or "entity_id" in p.data:
        data["entity_type"] = p.choice("entity_type", ENTITY_TYPES, required=True)
        data["entity_id"] = p.integer("entity_id", required=True, minimum=1)

    return data


def _check_refs(data: dict, exclude_id: int | None = None) -> None:
    errors = {}
    if data.get("code"):
        query = db.session.query(Cloth).filter(Cloth.code == data["code"])
        if exclude_id is not None:
            query = query.filter(Cloth.id != exclude_id)
        if query.first():
            errors["code"] = ["The code has already been taken."]
    if data.get("cloth_type_id") is not None and not db.session.get(ClothType, data["cloth_type_id"]):
        errors["cloth_type_id"] = ["The selected cloth_type_id is invalid."]
    if errors:
        raise ClothError("The given data was invalid.", errors)


def create_cloth(payload: dict, *, user_id: int | None = None) -> Cloth:
    """Create a cloth inside an entity's inventory and record `created`."""
    p = Payload(payload)
    data = _read_cloth(p, partial=False)
    p.validate()

    def _op():
        _check_refs(data)
        inventory = resolve_inventory(data["entity_type"], data["entity_id"])

        cloth = Cloth(**{k: v for k, v in data.items() if k not in ("entity_type", "entity_id")})
        db.session.add(cloth)
        move_cloth(cloth, inventory)
        db.session.flush()

        record_cloth_history(cloth=cloth, action="created", user_id=user_id)
        logger.info("Created cloth #%s (%s) in inventory #%s", cloth.id, cloth.code, inventory.id)
        return cloth

    return run_with_retry(_op)


def update_cloth(cloth_id: int, payload: dict, *, user_id: int | None = None) -> Cloth:
    p = Payload(payload)
    data = _read_cloth(p, partial=True)
    p.validate()

    def _op():
        cloth = get_for_update(Cloth, cloth_id)
        if not cloth:
            raise NotFoundError("Cloth not found")
        _ensure_not_in_open_order(cloth, "update")
        _check_refs(data, exclude_id=cloth.id)

        entity_type = data.get("entity_type")
        entity_id = data.get("entity_id")
        new_status = data.get("status")

        for key, value in data.items():
            if key not in ("entity_type", "entity_id", "status"):
                setattr(cloth, key, value)

        if entity_type is not None:
            inventory = resolve_inventory(entity_type, entity_id)
            if inventory.id != cloth.inventory_id:
                move_cloth(cloth, inventory)
                db.session.flush()
                record_cloth_history(cloth=cloth, action="transferred", user_id=user_id, notes="Moved on edit")

        if new_status and new_status != cloth.status:
            _set_status(cloth, new_status, user_id=user_id)

        db.session.flush()
        return cloth

    return run_with_retry(_op)


def _set_status(cloth: Cloth, status: str, *, user_id: int | None, notes: str | None = None,
                order_id: int | None = None) -> None:
    old = cloth.status
    cloth.status = status
    record_cloth_history(
        cloth=cloth,
        action="status_changed",
        user_id=user_id,
        order_id=order_id,
        status=status,
        notes=notes or f"{old} -> {status}",
    )


def change_status(cloth_id: int, payload: dict, *, user_id: int | None = None) -> Cloth:
    p = Payload(payload)
    status = p.choice("status", CLOTH_STATUSES, required=True)
    notes = p.string("notes")
    p.validate()

    def _op():
        cloth = get_for_update(Cloth, cloth_id)
        if not cloth:
            raise NotFoundError("Cloth not found")
        if cloth.status != status:
            _set_status(cloth, status, user_id=user_id, notes=notes)
        db.session.flush()
        return cloth

    return run_with_retry(_op)


def delete_cloth(cloth_id: int) -> None:
    cloth = get_cloth(cloth_id)
    _ensure_not_in_open_order(cloth, "delete")
    if db.session.query(OrderItem).filter_by(cloth_id=cloth.id).count():
        raise ClothError(
            "Cannot delete cloth with order history.",
            {"cloth": ["The cloth appears on closed orders."]},
        )
    if db.session.query(TransferItem).filter_by(cloth_id=cloth.id).count():
        raise ClothError(
            "Cannot delete cloth with transfers.",
            {"cloth": ["The cloth appears on transfers."]},
        )
    db.session.delete(cloth)
    db.session.flush()


def clothes_query(*, inventory_ids: list[int] | None, search: str | None = None,
                  status: str | None = None, cloth_type_id: int | None = None,
                  entity_type: str | None = None, entity_id: int | None = None):
    """
    Clothes visible through `inventory_ids` (None = all), newest first.
    """
    query = db.session.query(Cloth)
    if inventory_ids is not None:
        if not inventory_ids:
            return query.filter(db.false())
        query = query.filter(Cloth.inventory_id.in_(inventory_ids))
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(Cloth.code.ilike(like), Cloth.name.ilike(like)))
    if status:
        query = query.filter(Cloth.status == status)
    if cloth_type_id:
        query = query.filter(Cloth.cloth_type_id == cloth_type_id)
    if entity_type:
        query = query.join(Inventory, Inventory.id == Cloth.inventory_id).filter(Inventory.entity_type == entity_type)
        if entity_id:
            query = query.filter(Inventory.entity_id == entity_id)
    return query.order_by(Cloth.id.desc())


# ---------------------------------------------------------------------------
# Cloth types
# ---------------------------------------------------------------------------

def get_cloth_type(cloth_type_id: int) -> ClothType:
    cloth_type = db.session.get(ClothType, cloth_type_id)
    if not cloth_type:
        raise NotFoundError("Cloth type not found")
    return cloth_type


def _unique_type_code(code: str | None, exclude_id: int | None = None) -> None:
    if not code:
        return
    query = db.session.query(ClothType).filter(ClothType.code == code)
    if exclude_id is not None:
        query = query.filter(ClothType.id != exclude_id)
    if query.first():
        raise ClothError("The given data was invalid.", {"code": ["The code has already been taken."]})


def create_cloth_type(payload: dict) -> ClothType:
    patch = validate_payload(model=ClothType, payload=payload, policy=CLOTH_TYPE_POLICY, partial=False)
    _unique_type_code(patch.get("code"))
    cloth_type = ClothType(**patch)
    db.session.add(cloth_type)
    db.session.flush()
    return cloth_type


def update_cloth_type(cloth_type_id: int, payload: dict) -> ClothType:
    patch = validate_payload(model=ClothType, payload=payload, policy=CLOTH_TYPE_POLICY, partial=True)
    cloth_type = get_cloth_type(cloth_type_id)
    _unique_type_code(patch.get("code"), exclude_id=cloth_type.id)
    for key, value in patch.items():
        setattr(cloth_type, key, value)
    db.session.flush()
    return cloth_type


def delete_cloth_type(cloth_type_id: int) -> None:
    cloth_type = get_cloth_type(cloth_type_id)
    in_use = db.session.query(Cloth).filter_by(cloth_type_id=cloth_type.id).count()
    if in_use:
        raise ClothError(
            "Cannot delete cloth type in use.",
            {"cloth_type": [f"{in_use} cloth(es) use this type."]},
        )
    db.session.delete(cloth_type)
    db.session.flush()
