# Overview: Workshop intake, per-cloth processing status and returns to the parent branch.

"""
Workshop Flow

1. A branch sends pieces with a transfer to the workshop.
2. The workshop approves the transfer (all or some items): log `received`.
3. Staff move each piece received -> processing -> ready_for_delivery.
   Ready pieces notify the parent branch staff.
4. return-cloth opens a workshop -> branch transfer: log `returned`.

The workshop status of a piece is the cloth_status of its latest log row.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Workshop, WorkshopLog, Cloth, Transfer, TransferItem, User
from ..models.entities import ENTITY_WORKSHOP, ENTITY_BRANCH
from ..models.transfers import ITEM_STATUS_APPROVED, ITEM_STATUS_PENDING, TRANSFER_STATUS_PENDING
from ..validation import ServiceError, NotFoundError, Payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import get_entity, resolve_inventory, ensure_entity_access
from . import notification_service, transfer_service
from app.time_utils import utcnow, today

logger = logging.getLogger(__name__)


STATUS_RECEIVED, STATUS_PROCESSING, STATUS_READY = Workshop.CLOTH_STATUSES


class WorkshopError(ServiceError):
    """Raised when workshop operations fail."""
    pass


def get_workshop(workshop_id: int) -> Workshop:
    return get_entity(ENTITY_WORKSHOP, workshop_id)


def _log(workshop: Workshop, cloth: Cloth, action: str, *, user_id: int | None, cloth_status: str | None = None,
         transfer_id: int | None = None, notes: str | None = None) -> WorkshopLog:
    now = utcnow()
    row = WorkshopLog(
        workshop_id=workshop.id,
        cloth_id=cloth.id,
        transfer_id=transfer_id,
        action=action,
        cloth_status=cloth_status,
        notes=notes,
        received_at=now if action == "received" else None,
        returned_at=now if action == "returned" else None,
        user_id=user_id,
    )
    db.session.add(row)
    db.session.flush()
    return row


def current_status(workshop_id: int, cloth_id: int) -> str | None:
    row = (
        db.session.query(WorkshopLog)
        .filter_by(workshop_id=workshop_id, cloth_id=cloth_id)
        .order_by(WorkshopLog.id.desc())
        .first()
    )
    return row.cloth_status if row else None


def workshop_clothes(workshop_id: int, *, status: str | None = None) -> list[dict]:
    workshop = get_workshop(workshop_id)
    inventory = workshop.inventory
    if inventory is None:
        return []
    rows = []
    for cloth in db.session.query(Cloth).filter_by(inventory_id=inventory.id).order_by(Cloth.id):
        workshop_status = current_status(workshop.id, cloth.id)
        if status and workshop_status != status:
            continue
        data = cloth.to_dict()
        data["workshop_status"] = workshop_status
        rows.append(data)
    return rows


def pending_transfers(workshop_id: int) -> list[Transfer]:
    get_workshop(workshop_id)
    return (
        db.session.query(Transfer)
        .filter(
            Transfer.to_entity_type == ENTITY_WORKSHOP,
            Transfer.to_entity_id == workshop_id,
            Transfer.status.in_(transfer_service.OPEN_STATUSES),
        )
        .order_by(Transfer.id)
        .all()
    )


def approve_transfer(workshop_id: int, transfer_id: int, payload: dict | None, *, user: User) -> Transfer:
    """Accept incoming pieces; item_ids limits the approval to a subset."""
    p = Payload(payload)
    item_ids = p.id_list("item_ids") if p.has("item_ids") else None
    notes = p.string("notes")
    p.validate()

    def _op():
        workshop = get_workshop(workshop_id)
        ensure_entity_access(user, ENTITY_WORKSHOP, workshop.id)
        transfer = get_for_update(Transfer, transfer_id)
        if not transfer:
            raise NotFoundError("Transfer not found")
        if transfer.to_entity_type != ENTITY_WORKSHOP or transfer.to_entity_id != workshop.id:
            raise WorkshopError(
                "Transfer is not addressed to this workshop.",
                {"transfer_id": ["The transfer destination is a different entity."]},
            )

        items = transfer_service.decide_items(transfer, item_ids or None, ITEM_STATUS_APPROVED, user_id=user.id)
        for item in items:
            _log(workshop, item.cloth, "received", user_id=user.id, cloth_status=STATUS_RECEIVED,
                 transfer_id=transfer.id, notes=notes)
        transfer_service.log_action(transfer, "approved" if item_ids is None else "approved_items",
                                    user_id=user.id, notes=notes)
        logger.info("Workshop #%s received %s item(s) from transfer #%s", workshop.id, len(items), transfer.id)
        return transfer

    return run_with_retry(_op)


def _cloth_in_workshop(workshop: Workshop, cloth_id: int | None) -> Cloth:
    cloth = db.session.get(Cloth, cloth_id) if cloth_id is not None else None
    if not cloth:
        raise NotFoundError("Cloth not found")
    inventory = workshop.inventory
    if inventory is None or cloth.inventory_id != inventory.id:
        raise WorkshopError(
            "Cloth is not in this workshop.",
            {"cloth_id": [f"Cloth {cloth.code} is not in workshop {workshop.name}."]},
        )
    return cloth


def update_cloth_status(workshop_id: int, payload: dict, *, user: User) -> WorkshopLog:
    p = Payload(payload)
    cloth_id = p.integer("cloth_id", required=True, minimum=1)
    status = p.choice("status", Workshop.CLOTH_STATUSES, required=True)
    notes = p.string("notes")
    p.validate()

    def _op():
        workshop = get_workshop(workshop_id)
        ensure_entity_access(user, ENTITY_WORKSHOP, workshop.id)
        cloth = _cloth_in_workshop(workshop, cloth_id)

        row = _log(workshop, cloth, "status_changed", user_id=user.id, cloth_status=status, notes=notes)
        if status == STATUS_READY:
            notification_service.notify_workshop_cloth_ready(workshop, cloth)
        return row

    return run_with_retry(_op)


def return_cloth(workshop_id: int, payload: dict, *, user: User) -> Transfer:
    """Open a workshop -> parent branch transfer for one piece."""
    p = Payload(payload)
    cloth_id = p.integer("cloth_id", required=True, minimum=1)
    notes = p.string("notes")
    p.validate()

    def _op():
        workshop = get_workshop(workshop_id)
        ensure_entity_access(user, ENTITY_WORKSHOP, workshop.id)
        if not workshop.branch_id:
            raise WorkshopError(
                "Workshop has no parent branch to return to.",
                {"branch_id": ["The workshop is not attached to a branch."]},
            )
        cloth = _cloth_in_workshop(workshop, cloth_id)

        existing = (
            db.session.query(TransferItem)
            .join(Transfer, Transfer.id == TransferItem.transfer_id)
            .filter(
                TransferItem.cloth_id == cloth.id,
                TransferItem.status == ITEM_STATUS_PENDING,
                Transfer.from_entity_type == ENTITY_WORKSHOP,
                Transfer.from_entity_id == workshop.id,
            )
            .first()
        )
        if existing:
            raise WorkshopError(
                "A return transfer for this cloth is already pending.",
                {"cloth_id": [f"Transfer #{existing.transfer_id} is still pending."]},
            )

        resolve_inventory(ENTITY_BRANCH, workshop.branch_id, field="branch_id")
        transfer = Transfer(
            from_entity_type=ENTITY_WORKSHOP,
            from_entity_id=workshop.id,
            to_entity_type=ENTITY_BRANCH,
            to_entity_id=workshop.branch_id,
            transfer_date=today(),
            notes=notes or f"Return of {cloth.code} from workshop {workshop.name}",
            status=TRANSFER_STATUS_PENDING,
            created_by_user_id=user.id,
        )
        transfer.items.append(TransferItem(cloth_id=cloth.id, status=ITEM_STATUS_PENDING))
        db.session.add(transfer)
        db.session.flush()

        transfer_service.log_action(transfer, "created", user_id=user.id, notes=transfer.notes)
        _log(workshop, cloth, "returned", user_id=user.id, cloth_status=current_status(workshop.id, cloth.id),
             transfer_id=transfer.id, notes=notes)
        logger.info("Workshop #%s returns cloth %s with transfer #%s", workshop.id, cloth.code, transfer.id)
        return transfer

    return run_with_retry(_op)


def logs_query(workshop_id: int, *, cloth_id: int | None = None, action: str | None = None):
    get_workshop(workshop_id)
    query = db.session.query(WorkshopLog).filter(WorkshopLog.workshop_id == workshop_id)
    if cloth_id:
        query = query.filter(WorkshopLog.cloth_id == cloth_id)
    if action:
        query = query.filter(WorkshopLog.action == action)
    return query.order_by(WorkshopLog.id.desc())


def cloth_history(workshop_id: int, cloth_id: int) -> list[WorkshopLog]:
    return logs_query(workshop_id, cloth_id=cloth_id).all()
