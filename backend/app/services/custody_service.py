# Overview: Client deposits held against orders and their final disposition.

"""
Custody Service

LIFECYCLE:
1. pending: created while the order is still in a payment status
2. returned: handed back to the client (acknowledgement photos required)
X. forfeited: kept by the business (reason required)

CASH:
- a money custody is a cashbox income at the order's branch when taken
- returning it is a cashbox expense; an empty cashbox blocks the return
- a forfeit appends a symbolic 0.01 income so the decision shows up in the ledger
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..models import Custody, CustodyPhoto, CustodyReturn, Order, User
from ..models.cashbox import CATEGORY_CUSTODY_DEPOSIT, CATEGORY_CUSTODY_RETURN, CATEGORY_CUSTODY_FORFEIT
from ..models.custody import (
    CUSTODY_TYPES, CUSTODY_TYPE_MONEY, CUSTODY_TYPE_PHYSICAL_ITEM,
    CUSTODY_STATUS_PENDING, CUSTODY_STATUS_RETURNED, CUSTODY_STATUS_FORFEITED,
    CUSTODY_ACTIONS, CUSTODY_ACTION_RETURNED, CUSTODY_ACTION_FORFEIT,
    PHOTO_KIND_CUSTODY, PHOTO_KIND_ACKNOWLEDGEMENT,
)
from ..models.orders import ORDER_PAYMENT_STATUSES
from ..validation import ServiceError, NotFoundError, Payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import ensure_inventory_access
from .history_service import record_order_history
from . import cashbox_service, photo_storage
from .cashbox_service import InsufficientBalanceError
from app.time_utils import utcnow

logger = logging.getLogger(__name__)


FORFEIT_AUDIT_AMOUNT = Decimal("0.01")
MAX_PHOTOS = 2


class CustodyError(ServiceError):
    """Raised when custody operations fail."""
    pass


def get_custody(custody_id: int) -> Custody:
    custody = db.session.get(Custody, custody_id) if custody_id is not None else None
    if not custody:
        raise NotFoundError("Custody not found")
    return custody


def serialize(custody: Custody) -> dict:
    return custody.to_dict(photo_url=photo_storage.signed_url)


def _check_photo_count(p: Payload, field: str, uploads: list, *, required: bool) -> None:
    if required and not uploads:
        p.error(field, f"The {field} field is required.")
    elif len(uploads) > MAX_PHOTOS:
        p.error(field, f"The {field} field may not have more than {MAX_PHOTOS} items.")


def _store_photos(custody: Custody, uploads: list, *, kind: str, field: str) -> None:
    for upload in uploads:
        path = photo_storage.save_photo(upload, f"custody/order_{custody.order_id}", field=field)
        custody.photos.append(CustodyPhoto(kind=kind, path=path))


def create_custody(order_id: int, payload: dict, *, user: User, photos: list | None = None) -> Custody:
    """
    photos: uploaded files (werkzeug FileStorage) from the `photos` form field.
    """
    photos = photos or []
    p = Payload(payload)
    custody_type = p.choice("type", CUSTODY_TYPES, required=True)
    description = p.string("description", max_length=500)
    value = p.decimal("value", minimum=0)
    notes = p.string("notes")

    if custody_type == CUSTODY_TYPE_MONEY and (value is None or value <= 0):
        p.error("value", "The value field is required and must be greater than 0 for money custody.")
    if custody_type == CUSTODY_TYPE_PHYSICAL_ITEM:
        _check_photo_count(p, "photos", photos, required=True)
    else:
        _check_photo_count(p, "photos", photos, required=False)
    p.validate()

    def _op():
        order = get_for_update(Order, order_id)
        if not order:
            raise NotFoundError("Order not found")
        ensure_inventory_access(user, order.inventory_id)

        if order.status not in ORDER_PAYMENT_STATUSES:
            raise CustodyError(
                f"Cannot add custody to an order in {order.status} status.",
                {"order": ["Custody can only be added before the order is delivered."]},
            )

        custody = Custody(
            order_id=order.id,
            type=custody_type,
            description=description,
            value=value,
            notes=notes,
            status=CUSTODY_STATUS_PENDING,
            created_by_user_id=user.id,
        )
        db.session.add(custody)
        db.session.flush()
        _store_photos(custody, photos, kind=PHOTO_KIND_CUSTODY, field="photos")

        if custody_type == CUSTODY_TYPE_MONEY:
            cashbox = cashbox_service.cashbox_for_inventory(order.inventory)
            if cashbox is not None:
                cashbox_service.record_income(
                    cashbox.id, value, category=CATEGORY_CUSTODY_DEPOSIT,
                    description=f"Custody deposit for order #{order.id}",
                    reference_type="custody", reference_id=custody.id, user_id=user.id,
                )

        record_order_history(
            order=order, action="custody_added", user_id=user.id,
            description=f"Custody #{custody.id} ({custody_type}) added",
        )
        logger.info("Custody #%s (%s) added to order #%s", custody.id, custody_type, order.id)
        return custody

    return run_with_retry(_op)


def update_custody(custody_id: int, payload: dict, *, user: User) -> Custody:
    p = Payload(payload)
    description = p.string("description", max_length=500)
    value = p.decimal("value", minimum="0.01")
    notes = p.string("notes")
    p.validate()

    def _op():
        custody = get_for_update(Custody, custody_id)
        if not custody:
            raise NotFoundError("Custody not found")
        ensure_inventory_access(user, custody.order.inventory_id)

        if custody.status != CUSTODY_STATUS_PENDING:
            raise CustodyError(
                "Only pending custody can be updated.",
                {"status": [f"Custody is already {custody.status}."]},
            )
        if "description" in p.data:
            custody.description = description
        if value is not None:
            if custody.type == CUSTODY_TYPE_MONEY and value != custody.value:
                raise CustodyError(
                    "The value of a money custody cannot change after it was deposited.",
                    {"value": ["Return the custody and take a new one instead."]},
                )
            custody.value = value
        if notes:
            custody.notes = f"{custody.notes}\n{notes}" if custody.notes else notes
        return custody

    return run_with_retry(_op)


def return_custody(custody_id: int, payload: dict, *, user: User, photos: list | None = None) -> Custody:
    """
    Settle a pending custody: hand it back or keep it.

    photos: the acknowledgement_receipt_photos uploads (1-2 required).
    """
    photos = photos or []
    p = Payload(payload)
    action = p.choice("custody_action", CUSTODY_ACTIONS, required=True)
    reason = p.string("reason_of_kept")
    notes = p.string("notes")
    _check_photo_count(p, "acknowledgement_receipt_photos", photos, required=True)
    if action == CUSTODY_ACTION_FORFEIT and not reason:
        p.error("reason_of_kept", "The reason_of_kept field is required when custody_action is forfeit.")
    p.validate()

    def _op():
        custody = get_for_update(Custody, custody_id)
        if not custody:
            raise NotFoundError("Custody not found")
        order = custody.order
        ensure_inventory_access(user, order.inventory_id)

        if custody.status != CUSTODY_STATUS_PENDING:
            raise CustodyError(
                "Custody has already been processed.",
                {"status": [f"Custody is already {custody.status}."]},
            )

        now = utcnow()
        cashbox = cashbox_service.cashbox_for_inventory(order.inventory)

        if action == CUSTODY_ACTION_RETURNED:
            custody.status = CUSTODY_STATUS_RETURNED
            if custody.type == CUSTODY_TYPE_MONEY and cashbox is not None and custody.value:
                try:
                    cashbox_service.record_expense(
                        cashbox.id, custody.value, category=CATEGORY_CUSTODY_RETURN,
                        description=f"Custody #{custody.id} returned (order #{order.id})",
                        reference_type="custody", reference_id=custody.id, user_id=user.id,
                    )
                except InsufficientBalanceError as e:
                    raise CustodyError(e.message, {"transaction": [e.message]})
        else:
            custody.status = CUSTODY_STATUS_FORFEITED
            if cashbox is not None:
                cashbox_service.record_income(
                    cashbox.id, FORFEIT_AUDIT_AMOUNT, category=CATEGORY_CUSTODY_FORFEIT,
                    description=f"Custody #{custody.id} forfeited: {reason}",
                    reference_type="custody", reference_id=custody.id, user_id=user.id,
                )

        custody.returned_at = now
        db.session.add(CustodyReturn(
            custody=custody,
            custody_action=action,
            reason_of_kept=reason if action == CUSTODY_ACTION_FORFEIT else None,
            notes=notes,
            returned_at=now,
            user_id=user.id,
        ))
        _store_photos(custody, photos, kind=PHOTO_KIND_ACKNOWLEDGEMENT, field="acknowledgement_receipt_photos")
        db.session.flush()

        record_order_history(
            order=order, action="custody_returned", user_id=user.id,
            description=f"Custody #{custody.id} {custody.status}",
        )
        logger.info("Custody #%s %s", custody.id, custody.status)
        return custody

    return run_with_retry(_op)


def custody_query(*, inventory_ids: list[int] | None, order_id: int | None = None, status: str | None = None,
                  custody_type: str | None = None):
    query = db.session.query(Custody)
    if inventory_ids is not None:
        query = query.join(Order, Order.id == Custody.order_id)
        query = query.filter(Order.inventory_id.in_(inventory_ids)) if inventory_ids else query.filter(db.false())
    if order_id:
        query = query.filter(Custody.order_id == order_id)
    if status:
        query = query.filter(Custody.status == status)
    if custody_type:
        query = query.filter(Custody.type == custody_type)
    return query.order_by(Custody.id.desc())
