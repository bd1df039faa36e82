# Overview: Per-user in-app notifications; creation helpers for workflow events.

from __future__ import annotations

import logging
from datetime import date

from ..extensions import db
from ..models import Notification, Employee, EmployeeEntityAssignment, User, Rent
from ..models.orders import RENT_STATUS_ACTIVE
from ..models.entities import ENTITY_BRANCH, ENTITY_FACTORY
from ..validation import NotFoundError
from app.time_utils import utcnow, today

logger = logging.getLogger(__name__)


TYPE_FACTORY_ASSIGNMENT = "factory_assignment"
TYPE_TAILORING_STAGE = "tailoring_stage_changed"
TYPE_WORKSHOP_CLOTH_READY = "workshop_cloth_ready"
TYPE_OVERDUE_RETURN = "overdue_return"


def notify_user(
    user_id: int,
    *,
    type: str,
    title: str,
    message: str,
    priority: str = "normal",
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        priority=priority,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.session.add(notification)
    db.session.flush()
    return notification


def entity_user_ids(entity_type: str, entity_id: int) -> list[int]:
    """Active users currently assigned to an entity."""
    rows = (
        db.session.query(Employee.user_id)
        .join(EmployeeEntityAssignment, EmployeeEntityAssignment.employee_id == Employee.id)
        .join(User, User.id == Employee.user_id)
        .filter(
            EmployeeEntityAssignment.entity_type == entity_type,
            EmployeeEntityAssignment.entity_id == entity_id,
            EmployeeEntityAssignment.unassigned_at.is_(None),
            User.is_active.is_(True),
        )
        .distinct()
        .all()
    )
    return [r[0] for r in rows]


def notify_entity(entity_type: str, entity_id: int, **kwargs) -> list[Notification]:
    """Fan one notification out to every user assigned to the entity."""
    return [notify_user(user_id, **kwargs) for user_id in entity_user_ids(entity_type, entity_id)]


def notify_factory_assignment(order) -> list[Notification]:
    return notify_entity(
        ENTITY_FACTORY,
        order.assigned_factory_id,
        type=TYPE_FACTORY_ASSIGNMENT,
        title="New tailoring order",
        message=f"Order #{order.id} was sent to your factory and awaits approval.",
        priority="high" if order.priority in ("high", "urgent") else "normal",
        reference_type="order",
        reference_id=order.id,
    )


def notify_stage_change(order, from_stage: str | None, to_stage: str, *, exclude_user_id: int | None = None):
    """Tell the staff of the order's entity that the tailoring stage moved."""
    inventory = order.inventory
    if inventory is None:
        return []
    sent = []
    for user_id in entity_user_ids(inventory.entity_type, inventory.entity_id):
        if user_id == exclude_user_id:
            continue
        sent.append(notify_user(
            user_id,
            type=TYPE_TAILORING_STAGE,
            title="Tailoring stage changed",
            message=f"Order #{order.id}: {from_stage or 'none'} -> {to_stage}",
            reference_type="order",
            reference_id=order.id,
        ))
    return sent


def notify_workshop_cloth_ready(workshop, cloth) -> list[Notification]:
    if not workshop.branch_id:
        return []
    return notify_entity(
        ENTITY_BRANCH,
        workshop.branch_id,
        type=TYPE_WORKSHOP_CLOTH_READY,
        title="Cloth ready in workshop",
        message=f"Cloth {cloth.code} is ready for delivery at workshop {workshop.name}.",
        reference_type="cloth",
        reference_id=cloth.id,
    )


def notify_overdue_rent(rent) -> list[Notification]:
    order = rent.order
    inventory = order.inventory if order else None
    if inventory is None:
        return []
    return notify_entity(
        inventory.entity_type,
        inventory.entity_id,
        type=TYPE_OVERDUE_RETURN,
        title="Overdue rental",
        message=f"Cloth {rent.cloth.code} on order #{order.id} was due back on {rent.return_date.isoformat()}.",
        priority="high",
        reference_type="rent",
        reference_id=rent.id,
    )


def notify_overdue_rentals(as_of: date | None = None) -> int:
    """
    Notify branch staff about active rentals past their return date.

    A rental is announced once; later runs skip rents that already have
    an overdue notification.
    """
    as_of = as_of or today()
    announced = {
        rid for (rid,) in db.session.query(Notification.reference_id).filter(
            Notification.type == TYPE_OVERDUE_RETURN,
            Notification.reference_type == "rent",
        ).distinct()
    }
    count = 0
    rents = (
        db.session.query(Rent)
        .filter(Rent.status == RENT_STATUS_ACTIVE, Rent.return_date < as_of)
        .order_by(Rent.return_date, Rent.id)
    )
    for rent in rents:
        if rent.id in announced:
            continue
        if notify_overdue_rent(rent):
            count += 1
    logger.info("Overdue rental scan (%s): %s rental(s) announced", as_of.isoformat(), count)
    return count


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

def inbox_query(user_id: int, *, unread_only: bool = False):
    query = db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.dismissed_at.is_(None),
    )
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc())


def unread_count(user_id: int) -> int:
    return inbox_query(user_id, unread_only=True).count()


def _own(user_id: int, notification_id: int) -> Notification:
    notification = db.session.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


def mark_read(user_id: int, notification_id: int) -> Notification:
    notification = _own(user_id, notification_id)
    if notification.read_at is None:
        notification.read_at = utcnow()
    return notification


def mark_all_read(user_id: int) -> int:
    return db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.dismissed_at.is_(None),
        Notification.read_at.is_(None),
    ).update({"read_at": utcnow()}, synchronize_session=False)


def dismiss(user_id: int, notification_id: int) -> Notification:
    notification = _own(user_id, notification_id)
    notification.dismissed_at = utcnow()
    return notification
