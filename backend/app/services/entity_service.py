# Overview: Branch/workshop/factory registry, inventories and entity-scoped access.

"""
Entity Service

WHY: Branches, workshops and factories are the three places a cloth can
live. Each owns exactly one Inventory; a branch also owns the cashbox its
sales and deposits go through.

ACCESS MODEL:
- Users holding SYSTEM_ADMIN see every entity (accessible ids == None)
- Everyone else sees the entities of their active employee assignments
- A workshop is also visible through its parent branch
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import (
    Branch, Workshop, Factory, Inventory, Cloth, Cashbox, EmployeeEntityAssignment, Employee, User,
)
from ..models.entities import ENTITY_BRANCH, ENTITY_WORKSHOP, ENTITY_FACTORY, ENTITY_TYPES
from ..validation import (
    ServiceError, NotFoundError, AccessDeniedError, ModelValidationPolicy, validate_payload,
)
from .concurrency import run_with_retry
from . import permission_service

logger = logging.getLogger(__name__)


ENTITY_MODELS = {
    ENTITY_BRANCH: Branch,
    ENTITY_WORKSHOP: Workshop,
    ENTITY_FACTORY: Factory,
}

ENTITY_CODE_FIELDS = {
    ENTITY_BRANCH: "branch_code",
    ENTITY_WORKSHOP: "workshop_code",
    ENTITY_FACTORY: "factory_code",
}

ENTITY_POLICIES = {
    ENTITY_BRANCH: ModelValidationPolicy(
        writable_fields={"branch_code", "name", "phone", "address"},
        required_on_create={"branch_code", "name"},
    ),
    ENTITY_WORKSHOP: ModelValidationPolicy(
        writable_fields={"workshop_code", "name", "branch_id", "phone", "address", "notes"},
        required_on_create={"workshop_code", "name"},
    ),
    ENTITY_FACTORY: ModelValidationPolicy(
        writable_fields={"factory_code", "name", "phone", "address", "max_capacity", "is_active"},
        required_on_create={"factory_code", "name"},
    ),
}


class EntityError(ServiceError):
    """Raised when entity operations fail."""
    pass


def entity_model(entity_type: str):
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise EntityError(
            "Invalid entity type.",
            {"entity_type": [f"The entity_type must be one of: {', '.join(ENTITY_TYPES)}."]},
        )
    return model


def get_entity(entity_type: str, entity_id: int):
    """Load an entity; NotFoundError (404) when missing."""
    model = entity_model(entity_type)
    entity = db.session.get(model, entity_id) if entity_id is not None else None
    if not entity:
        raise NotFoundError(f"{entity_type.capitalize()} not found")
    return entity


def get_inventory(entity_type: str, entity_id: int) -> Inventory | None:
    return db.session.query(Inventory).filter_by(entity_type=entity_type, entity_id=entity_id).first()


def resolve_inventory(entity_type: str, entity_id: int, *, field: str = "entity_id") -> Inventory:
    """
    Entity + inventory lookup used by order, cloth and transfer payloads.

    A missing entity or inventory is a validation failure (422) on `field`.
    """
    model = entity_model(entity_type)
    if entity_id is None or not db.session.get(model, entity_id):
        raise EntityError(
            "The selected entity does not exist.",
            {field: [f"The selected {entity_type} does not exist."]},
        )
    inventory = get_inventory(entity_type, entity_id)
    if not inventory:
        raise EntityError(
            "The selected entity has no inventory.",
            {field: [f"The selected {entity_type} has no inventory."]},
        )
    return inventory


# ---------------------------------------------------------------------------
# Cloth placement
# ---------------------------------------------------------------------------

def move_cloth(cloth: Cloth, inventory: Inventory | None) -> None:
    """
    Detach the cloth from wherever it is, then attach it to `inventory`.

    Every change of a cloth's location goes through here; passing None
    leaves the cloth detached (sold pieces).
    """
    cloth.inventory_id = None
    cloth.inventory = None
    if inventory is not None:
        cloth.inventory = inventory
        cloth.inventory_id = inventory.id


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

def _employee_for(user: User) -> Employee | None:
    return db.session.query(Employee).filter_by(user_id=user.id).first()


def accessible_entity_ids(user: User, entity_type: str) -> list[int] | None:
    """
    Entity ids of one type the user may see. None means all.
    """
    if permission_service.is_super_admin(user.id):
        return None

    employee = _employee_for(user)
    if not employee:
        return []

    ids = set(employee.assigned_entity_ids(entity_type))

    if entity_type == ENTITY_WORKSHOP:
        branch_ids = employee.assigned_entity_ids(ENTITY_BRANCH)
        if branch_ids:
            rows = db.session.query(Workshop.id).filter(Workshop.branch_id.in_(branch_ids)).all()
            ids.update(r[0] for r in rows)

    return sorted(ids)


def accessible_inventory_ids(user: User) -> list[int] | None:
    """Inventory ids of every entity the user may see. None means all."""
    if permission_service.is_super_admin(user.id):
        return None

    inventory_ids: list[int] = []
    for entity_type in ENTITY_TYPES:
        ids = accessible_entity_ids(user, entity_type) or []
        if not ids:
            continue
        rows = db.session.query(Inventory.id).filter(
            Inventory.entity_type == entity_type,
            Inventory.entity_id.in_(ids),
        ).all()
        inventory_ids.extend(r[0] for r in rows)
    return inventory_ids


def filter_by_entity(query, user: User, entity_type: str, column):
    ids = accessible_entity_ids(user, entity_type)
    if ids is None:
        return query
    if not ids:
        return query.filter(db.false())
    return query.filter(column.in_(ids))


def can_access_entity(user: User, entity_type: str, entity_id: int) -> bool:
    ids = accessible_entity_ids(user, entity_type)
    return ids is None or entity_id in ids


def can_access_inventory(user: User, inventory_id: int | None) -> bool:
    ids = accessible_inventory_ids(user)
    return ids is None or inventory_id in ids


def ensure_entity_access(user: User, entity_type: str, entity_id: int) -> None:
    if not can_access_entity(user, entity_type, entity_id):
        raise AccessDeniedError(
            "Forbidden. You do not have access to this entity.",
            {"entity": [f"{entity_type} #{entity_id} is outside your assignments."]},
        )


def ensure_inventory_access(user: User, inventory_id: int | None) -> None:
    if not can_access_inventory(user, inventory_id):
        raise AccessDeniedError("Forbidden. You do not have access to this entity.")


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def _ensure_unique_code(entity_type: str, code: str | None, exclude_id: int | None = None) -> None:
    if not code:
        return
    model = ENTITY_MODELS[entity_type]
    field = ENTITY_CODE_FIELDS[entity_type]
    query = db.session.query(model).filter(getattr(model, field) == code)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise EntityError("The given data was invalid.", {field: [f"The {field} has already been taken."]})


def _check_references(entity_type: str, patch: dict) -> None:
    if entity_type == ENTITY_WORKSHOP and patch.get("branch_id") is not None:
        if not db.session.get(Branch, patch["branch_id"]):
            raise EntityError("The given data was invalid.", {"branch_id": ["The selected branch_id is invalid."]})
    if entity_type == ENTITY_FACTORY and patch.get("max_capacity") is not None and patch["max_capacity"] < 1:
        raise EntityError("The given data was invalid.", {"max_capacity": ["The max_capacity must be at least 1."]})


def create_entity(entity_type: str, payload: dict):
    """
    Create a branch, workshop or factory together with its inventory.

    A branch also gets its cashbox (opening balance from `initial_balance`).
    """
    model = entity_model(entity_type)
    patch = validate_payload(model=model, payload=payload, policy=ENTITY_POLICIES[entity_type], partial=False)

    def _op():
        _ensure_unique_code(entity_type, patch.get(ENTITY_CODE_FIELDS[entity_type]))
        _check_references(entity_type, patch)

        entity = model(**patch)
        db.session.add(entity)
        db.session.flush()

        db.session.add(Inventory(
            name=f"{entity.name} Inventory",
            entity_type=entity_type,
            entity_id=entity.id,
        ))

        if entity_type == ENTITY_BRANCH:
            from .cashbox_service import create_cashbox_for_branch
            create_cashbox_for_branch(entity, initial_balance=(payload or {}).get("initial_balance"))

        db.session.flush()
        logger.info("Created %s #%s (%s)", entity_type, entity.id, entity.name)
        return entity

    return run_with_retry(_op)


def update_entity(entity_type: str, entity_id: int, payload: dict):
    model = entity_model(entity_type)
    patch = validate_payload(model=model, payload=payload, policy=ENTITY_POLICIES[entity_type], partial=True)

    def _op():
        entity = get_entity(entity_type, entity_id)
        _ensure_unique_code(entity_type, patch.get(ENTITY_CODE_FIELDS[entity_type]), exclude_id=entity.id)
        _check_references(entity_type, patch)
        for key, value in patch.items():
            setattr(entity, key, value)

        inventory = get_inventory(entity_type, entity.id)
        if inventory and "name" in patch:
            inventory.name = f"{entity.name} Inventory"

        db.session.flush()
        return entity

    return run_with_retry(_op)


def delete_entity(entity_type: str, entity_id: int) -> None:
    """
    Delete an entity and its empty inventory.

    Refused while the inventory still holds clothes, or while the entity is
    referenced by orders, transfers or assignments.
    """
    from ..models import Order, Transfer

    def _op():
        entity = get_entity(entity_type, entity_id)
        inventory = get_inventory(entity_type, entity.id)

        if inventory is not None:
            cloth_count = db.session.query(Cloth).filter_by(inventory_id=inventory.id).count()
            if cloth_count:
                raise EntityError(
                    f"Cannot delete {entity_type} while its inventory holds clothes.",
                    {"inventory": [f"{cloth_count} cloth(es) still in inventory."]},
                )
            if db.session.query(Order).filter_by(inventory_id=inventory.id).count():
                raise EntityError(
                    f"Cannot delete {entity_type} with orders.",
                    {"orders": ["The entity has orders."]},
                )

        transfers = db.session.query(Transfer).filter(
            db.or_(
                db.and_(Transfer.from_entity_type == entity_type, Transfer.from_entity_id == entity.id),
                db.and_(Transfer.to_entity_type == entity_type, Transfer.to_entity_id == entity.id),
            )
        ).count()
        if transfers:
            raise EntityError(
                f"Cannot delete {entity_type} with transfers.",
                {"transfers": ["The entity is referenced by transfers."]},
            )

        if entity_type == ENTITY_BRANCH:
            if entity.workshops:
                raise EntityError(
                    "Cannot delete branch with workshops.",
                    {"workshops": ["Reassign or delete the branch workshops first."]},
                )
            cashbox = db.session.query(Cashbox).filter_by(branch_id=entity.id).first()
            if cashbox is not None:
                if cashbox.transactions.count():
                    raise EntityError(
                        "Cannot delete branch with cashbox transactions.",
                        {"cashbox": ["The branch cashbox has transactions."]},
                    )
                db.session.delete(cashbox)

        db.session.query(EmployeeEntityAssignment).filter_by(
            entity_type=entity_type, entity_id=entity.id
        ).delete(synchronize_session=False)

        if inventory is not None:
            db.session.delete(inventory)
        db.session.delete(entity)
        db.session.flush()
        logger.info("Deleted %s #%s", entity_type, entity_id)

    run_with_retry(_op)


def list_entities(entity_type: str, user: User, *, search: str | None = None):
    """Query of accessible entities of one type, newest first."""
    model = entity_model(entity_type)
    query = filter_by_entity(db.session.query(model), user, entity_type, model.id)
    if search:
        like = f"%{search}%"
        code = getattr(model, ENTITY_CODE_FIELDS[entity_type])
        query = query.filter(db.or_(model.name.ilike(like), code.ilike(like)))
    return query.order_by(model.id.desc())
