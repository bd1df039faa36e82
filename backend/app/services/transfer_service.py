# backend/app/services/transfer_service.py
"""
Inter-entity cloth transfer service.

WHY: Pieces move between branches, workshops and factories only through an
approved transfer, so every move has a requester, an approver and a trail.

LIFECYCLE:
1. pending: transfer created, every item pending
2. partially_pending / partially_approved: some items decided
3. approved / rejected: every item approved / every item rejected

Item approval detaches the cloth from the source inventory and attaches it
to the destination in the same transaction.
"""
from __future__ import annotations

import logging

from app.extensions import db
from app.models import Transfer, TransferItem, TransferAction, Cloth, User
from app.models.clothes import CLOTH_STATUS_SOLD
from app.models.entities import ENTITY_TYPES
from app.models.transfers import (
    TRANSFER_STATUS_PENDING, TRANSFER_STATUS_PARTIALLY_PENDING, TRANSFER_STATUS_PARTIALLY_APPROVED,
    TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED,
    ITEM_STATUS_PENDING, ITEM_STATUS_APPROVED, ITEM_STATUS_REJECTED,
)
from app.validation import ServiceError, NotFoundError, AccessDeniedError, Payload
from app.services.concurrency import run_with_retry, get_for_update
from app.services.entity_service import resolve_inventory, move_cloth, can_access_entity, accessible_entity_ids
from app.services.history_service import record_cloth_history

logger = logging.getLogger(__name__)


# Statuses in which items can still be decided
OPEN_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_PARTIALLY_PENDING, TRANSFER_STATUS_PARTIALLY_APPROVED)
CLOSED_STATUSES = (TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED)


class TransferError(ServiceError):
    """Raised when transfer operations fail."""
    pass


def get_transfer(transfer_id: int) -> Transfer:
    transfer = db.session.get(Transfer, transfer_id) if transfer_id is not None else None
    if not transfer:
        raise NotFoundError("Transfer not found")
    return transfer


def _lock(transfer_id: int) -> Transfer:
    transfer = get_for_update(Transfer, transfer_id)
    if not transfer:
        raise NotFoundError("Transfer not found")
    return transfer


def can_access_transfer(user: User, transfer: Transfer) -> bool:
    return (
        can_access_entity(user, transfer.from_entity_type, transfer.from_entity_id)
        or can_access_entity(user, transfer.to_entity_type, transfer.to_entity_id)
    )


def ensure_transfer_access(user: User, transfer: Transfer) -> None:
    if not can_access_transfer(user, transfer):
        raise AccessDeniedError("Forbidden. You do not have access to this transfer.")


def log_action(transfer: Transfer, action: str, *, user_id: int | None, notes: str | None = None) -> TransferAction:
    row = TransferAction(transfer_id=transfer.id, action=action, user_id=user_id, notes=notes)
    db.session.add(row)
    db.session.flush()
    return row


def _validate_clothes(cloth_ids: list[int], source_inventory_id: int, *, exclude_transfer_id: int | None = None):
    errors: dict[str, list[str]] = {}
    clothes = []
    for index, cloth_id in enumerate(cloth_ids):
        key = f"cloth_ids.{index}"
        cloth = get_for_update(Cloth, cloth_id)
        if not cloth:
            errors.setdefault(key, []).append(f"Cloth #{cloth_id} does not exist.")
            continue
        if cloth.status == CLOTH_STATUS_SOLD:
            errors.setdefault(key, []).append(f"Cloth {cloth.code} is sold.")
            continue
        if cloth.inventory_id != source_inventory_id:
            errors.setdefault(key, []).append(f"Cloth {cloth.code} is not in the source inventory.")
            continue
        pending = (
            db.session.query(TransferItem)
            .join(Transfer, Transfer.id == TransferItem.transfer_id)
            .filter(TransferItem.cloth_id == cloth.id, TransferItem.status == ITEM_STATUS_PENDING)
        )
        if exclude_transfer_id is not None:
            pending = pending.filter(TransferItem.transfer_id != exclude_transfer_id)
        if pending.first():
            errors.setdefault(key, []).append(f"Cloth {cloth.code} is already in a pending transfer.")
            continue
        clothes.append(cloth)
    if errors:
        raise TransferError("The given data was invalid.", errors)
    return clothes


def _read_cloth_ids(p: Payload, *, required: bool) -> list[int]:
    cloth_ids = p.id_list("cloth_ids", required=required)
    if len(set(cloth_ids)) != len(cloth_ids):
        p.error("cloth_ids", "The cloth_ids field has a duplicate value.")
    return cloth_ids


def create_transfer(payload: dict, *, user: User) -> Transfer:
    p = Payload(payload)
    from_type = p.choice("from_entity_type", ENTITY_TYPES, required=True)
    from_id = p.integer("from_entity_id", required=True, minimum=1)
    to_type = p.choice("to_entity_type", ENTITY_TYPES, required=True)
    to_id = p.integer("to_entity_id", required=True, minimum=1)
    cloth_ids = _read_cloth_ids(p, required=True)
    transfer_date = p.date("transfer_date", required=True)
    notes = p.string("notes")
    if from_type and to_type and from_type == to_type and from_id is not None and from_id == to_id:
        p.error("to_entity_id", "Cannot transfer to the same entity.")
    p.validate()

    def _op():
        source = resolve_inventory(from_type, from_id, field="from_entity_id")
        resolve_inventory(to_type, to_id, field="to_entity_id")
        if not can_access_entity(user, from_type, from_id):
            raise AccessDeniedError("Forbidden. You do not have access to the source entity.")

        clothes = _validate_clothes(cloth_ids, source.id)

        transfer = Transfer(
            from_entity_type=from_type,
            from_entity_id=from_id,
            to_entity_type=to_type,
            to_entity_id=to_id,
            transfer_date=transfer_date,
            notes=notes,
            status=TRANSFER_STATUS_PENDING,
            created_by_user_id=user.id,
        )
        for cloth in clothes:
            transfer.items.append(TransferItem(cloth_id=cloth.id, status=ITEM_STATUS_PENDING))
        db.session.add(transfer)
        db.session.flush()

        log_action(transfer, "created", user_id=user.id, notes=notes)
        logger.info("Transfer #%s created: %s #%s -> %s #%s (%s items)",
                    transfer.id, from_type, from_id, to_type, to_id, len(clothes))
        return transfer

    return run_with_retry(_op)


def update_transfer(transfer_id: int, payload: dict, *, user: User) -> Transfer:
    p = Payload(payload)
    cloth_ids = _read_cloth_ids(p, required=False) if "cloth_ids" in p.data else None
    transfer_date = p.date("transfer_date")
    notes = p.string("notes")
    p.validate()

    def _op():
        transfer = _lock(transfer_id)
        ensure_transfer_access(user, transfer)
        if transfer.status in CLOSED_STATUSES:
            raise TransferError(
                f"Cannot update a transfer that is {transfer.status}.",
                {"status": [f"Transfer is already {transfer.status}."]},
            )

        if transfer_date:
            transfer.transfer_date = transfer_date
        if "notes" in p.data:
            transfer.notes = notes

        if cloth_ids is not None:
            if not cloth_ids:
                raise TransferError("The given data was invalid.", {"cloth_ids": ["At least one cloth is required."]})
            if any(item.status != ITEM_STATUS_PENDING for item in transfer.items):
                raise TransferError(
                    "Cannot replace items once some were approved or rejected.",
                    {"cloth_ids": ["Items were already decided."]},
                )
            source = resolve_inventory(transfer.from_entity_type, transfer.from_entity_id, field="from_entity_id")
            clothes = _validate_clothes(cloth_ids, source.id, exclude_transfer_id=transfer.id)
            transfer.items.clear()
            db.session.flush()
            for cloth in clothes:
                transfer.items.append(TransferItem(cloth_id=cloth.id, status=ITEM_STATUS_PENDING))
            transfer.refresh_status()

        db.session.flush()
        log_action(transfer, "updated", user_id=user.id, notes=notes)
        return transfer

    return run_with_retry(_op)


def decide_items(transfer: Transfer, item_ids: list[int] | None, decision: str, *,
                 user_id: int | None) -> list[TransferItem]:
    """
    Approve or reject pending items of a locked transfer.

    item_ids=None means every pending item. Unknown, foreign or already
    decided ids are collected and raised together before anything changes.
    """
    if transfer.status not in OPEN_STATUSES:
        raise TransferError(
            f"Cannot change a transfer that is {transfer.status}.",
            {"status": [f"Transfer is already {transfer.status}."]},
        )

    if item_ids is None:
        items = [i for i in transfer.items if i.status == ITEM_STATUS_PENDING]
        if not items:
            raise TransferError("Transfer has no pending items.", {"items": ["No pending items."]})
    else:
        errors: dict[str, list[str]] = {}
        items = []
        for index, item_id in enumerate(item_ids):
            key = f"item_ids.{index}"
            item = db.session.get(TransferItem, item_id)
            if not item:
                errors.setdefault(key, []).append(f"Transfer item #{item_id} not found.")
            elif item.transfer_id != transfer.id:
                errors.setdefault(key, []).append(f"Transfer item #{item_id} does not belong to this transfer.")
            elif item.status != ITEM_STATUS_PENDING:
                errors.setdefault(key, []).append(f"Transfer item #{item_id} is not pending.")
            else:
                items.append(item)
        if errors:
            raise TransferError("The given data was invalid.", errors)

    if decision == ITEM_STATUS_APPROVED:
        source = resolve_inventory(transfer.from_entity_type, transfer.from_entity_id, field="from_entity_id")
        destination = resolve_inventory(transfer.to_entity_type, transfer.to_entity_id, field="to_entity_id")
        moved = {}
        for item in items:
            cloth = get_for_update(Cloth, item.cloth_id)
            if cloth.inventory_id != source.id:
                raise TransferError(
                    f"Cloth {cloth.code} is no longer in the source inventory.",
                    {"items": [f"Cloth {cloth.code} moved since the transfer was created."]},
                )
            moved[item.id] = cloth
        for item in items:
            cloth = moved[item.id]
            move_cloth(cloth, destination)
            item.status = ITEM_STATUS_APPROVED
            record_cloth_history(
                cloth=cloth, action="transferred", user_id=user_id, transfer_id=transfer.id,
                entity_type=transfer.to_entity_type, entity_id=transfer.to_entity_id,
                notes=f"Transferred from {transfer.from_entity_type} #{transfer.from_entity_id}",
            )
    else:
        for item in items:
            item.status = ITEM_STATUS_REJECTED

    transfer.refresh_status()
    db.session.flush()
    return items


def approve_transfer(transfer_id: int, *, user: User, notes: str | None = None) -> Transfer:
    def _op():
        transfer = _lock(transfer_id)
        ensure_transfer_access(user, transfer)
        decide_items(transfer, None, ITEM_STATUS_APPROVED, user_id=user.id)
        log_action(transfer, "approved", user_id=user.id, notes=notes)
        logger.info("Transfer #%s approved", transfer.id)
        return transfer

    return run_with_retry(_op)


def approve_items(transfer_id: int, payload: dict, *, user: User) -> Transfer:
    p = Payload(payload)
    item_ids = p.id_list("item_ids", required=True)
    notes = p.string("notes")
    p.validate()

    def _op():
        transfer = _lock(transfer_id)
        ensure_transfer_access(user, transfer)
        decide_items(transfer, item_ids, ITEM_STATUS_APPROVED, user_id=user.id)
        log_action(transfer, "approved_items", user_id=user.id,
                   notes=notes or f"Items: {', '.join(str(i) for i in item_ids)}")
        return transfer

    return run_with_retry(_op)


def reject_items(transfer_id: int, payload: dict, *, user: User) -> Transfer:
    p = Payload(payload)
    item_ids = p.id_list("item_ids", required=True)
    notes = p.string("notes")
    p.validate()

    def _op():
        transfer = _lock(transfer_id)
        ensure_transfer_access(user, transfer)
        decide_items(transfer, item_ids, ITEM_STATUS_REJECTED, user_id=user.id)
        log_action(transfer, "rejected_items", user_id=user.id,
                   notes=notes or f"Items: {', '.join(str(i) for i in item_ids)}")
        return transfer

    return run_with_retry(_op)


def reject_transfer(transfer_id: int, *, user: User, notes: str | None = None) -> Transfer:
    def _op():
        transfer = _lock(transfer_id)
        ensure_transfer_access(user, transfer)
        decide_items(transfer, None, ITEM_STATUS_REJECTED, user_id=user.id)
        log_action(transfer, "rejected", user_id=user.id, notes=notes)
        logger.info("Transfer #%s rejected", transfer.id)
        return transfer

    return run_with_retry(_op)


def delete_transfer(transfer_id: int, *, user: User) -> None:
    def _op():
        transfer = _lock(transfer_id)
        ensure_transfer_access(user, transfer)
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise TransferError(
                "Only pending transfers can be deleted.",
                {"status": [f"Transfer is {transfer.status}."]},
            )
        db.session.delete(transfer)
        db.session.flush()
        logger.info("Transfer #%s deleted", transfer_id)

    run_with_retry(_op)


def transfers_query(user: User, *, status: str | None = None, from_entity_type: str | None = None,
                    to_entity_type: str | None = None, action: str | None = None,
                    date_from=None, date_to=None):
    query = db.session.query(Transfer)

    conditions = []
    restricted = False
    for entity_type in ENTITY_TYPES:
        ids = accessible_entity_ids(user, entity_type)
        if ids is None:
            continue
        restricted = True
        if ids:
            conditions.append(db.and_(Transfer.from_entity_type == entity_type, Transfer.from_entity_id.in_(ids)))
            conditions.append(db.and_(Transfer.to_entity_type == entity_type, Transfer.to_entity_id.in_(ids)))
    if restricted:
        query = query.filter(db.or_(*conditions)) if conditions else query.filter(db.false())

    if status:
        query = query.filter(Transfer.status == status)
    if from_entity_type:
        query = query.filter(Transfer.from_entity_type == from_entity_type)
    if to_entity_type:
        query = query.filter(Transfer.to_entity_type == to_entity_type)
    if action:
        query = query.filter(Transfer.actions.any(TransferAction.action == action))
    if date_from:
        query = query.filter(Transfer.transfer_date >= date_from)
    if date_to:
        query = query.filter(Transfer.transfer_date <= date_to)
    return query.order_by(Transfer.id.desc())
