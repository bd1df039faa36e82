# Overview: Append-only cloth and order audit trails.

from __future__ import annotations

"""
History Invariants

- Append-only: rows are never updated or deleted by services.
- Rows are written inside the same DB transaction as the change they record.
- No business logic here; callers decide what is worth recording.
"""

from ..extensions import db
from ..models import ClothHistory, OrderHistory, Cloth, Order


def record_cloth_history(
    *,
    cloth: Cloth,
    action: str,
    user_id: int | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    transfer_id: int | None = None,
    order_id: int | None = None,
    status: str | None = None,
    notes: str | None = None,
    photos: list[str] | None = None,
) -> ClothHistory:
    """
    Append one cloth history row.

    entity_type/entity_id default to the cloth's current inventory owner,
    status to its current status.
    """
    inventory = cloth.inventory
    if entity_type is None and inventory is not None:
        entity_type = inventory.entity_type
        entity_id = inventory.entity_id

    row = ClothHistory(
        cloth_id=cloth.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        transfer_id=transfer_id,
        order_id=order_id,
        status=status if status is not None else cloth.status,
        notes=notes,
        photos=photos,
        user_id=user_id,
    )
    db.session.add(row)
    db.session.flush()
    return row


def record_order_history(
    *,
    order: Order,
    action: str,
    user_id: int | None = None,
    field: str | None = None,
    old_value=None,
    new_value=None,
    description: str | None = None,
) -> OrderHistory:
    row = OrderHistory(
        order_id=order.id,
        action=action,
        field=field,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        description=description,
        user_id=user_id,
    )
    db.session.add(row)
    db.session.flush()
    return row


def cloth_history(cloth_id: int) -> list[ClothHistory]:
    return (
        db.session.query(ClothHistory)
        .filter_by(cloth_id=cloth_id)
        .order_by(ClothHistory.created_at.desc(), ClothHistory.id.desc())
        .all()
    )


def order_history(order_id: int) -> list[OrderHistory]:
    return (
        db.session.query(OrderHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderHistory.created_at.desc(), OrderHistory.id.desc())
        .all()
    )
