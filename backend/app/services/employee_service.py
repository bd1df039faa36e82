# Overview: Employees, their entity assignments and company property in their custody.

"""
Employee Service

An Employee wraps a User (login + roles) with HR data. Active entity
assignments decide what the user can see (entity_service.accessible_*).

DELETE GUARD: an employee still holding company property or managing other
employees cannot be deleted (400); the check runs before anything changes.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Employee, EmployeeEntityAssignment, EmployeeCustody, User, Role
from ..models.employees import (
    EMPLOYMENT_TYPES, EMPLOYMENT_STATUSES, EMPLOYMENT_STATUS_TERMINATED,
    EMPLOYEE_CUSTODY_ASSIGNED, EMPLOYEE_CUSTODY_RETURNED,
)
from ..models.entities import ENTITY_TYPES
from ..validation import ServiceError, NotFoundError, Payload
from .concurrency import run_with_retry, get_for_update
from .entity_service import get_entity
from . import auth_service, session_service
from app.time_utils import utcnow, today

logger = logging.getLogger(__name__)


class EmployeeError(ServiceError):
    """Raised when employee operations fail."""
    pass


def get_employee(employee_id: int) -> Employee:
    employee = db.session.get(Employee, employee_id) if employee_id is not None else None
    if not employee:
        raise NotFoundError("Employee not found")
    return employee


def employee_for_user(user: User) -> Employee:
    employee = db.session.query(Employee).filter_by(user_id=user.id).first()
    if not employee:
        raise NotFoundError("No employee record for the current user")
    return employee


# ---------------------------------------------------------------------------
# Payload reading
# ---------------------------------------------------------------------------

def _read_roles(p: Payload) -> list[str] | None:
    if "roles" not in p.data:
        return None
    names = []
    known = {r.name for r in db.session.query(Role).all()}
    for index, name in enumerate(p.list("roles")):
        if not isinstance(name, str) or name not in known:
            p.error(f"roles.{index}", f"The selected roles.{index} is invalid.")
        else:
            names.append(name)
    return names


def _read_assignments(p: Payload) -> list[dict] | None:
    if "entity_assignments" not in p.data:
        return None
    rows = []
    for index, raw in enumerate(p.list("entity_assignments")):
        if not isinstance(raw, dict):
            p.error(f"entity_assignments.{index}", "Each assignment must be an object.")
            continue
        ap = p.nested(raw, f"entity_assignments.{index}.")
        rows.append({
            "entity_type": ap.choice("entity_type", ENTITY_TYPES, required=True),
            "entity_id": ap.integer("entity_id", required=True, minimum=1),
            "is_primary": ap.boolean("is_primary"),
        })
    return rows


def _read_hr(p: Payload, *, partial: bool) -> dict:
    data = {}
    if not partial or "employee_code" in p.data:
        data["employee_code"] = p.string("employee_code", required=True, max_length=32)
    if "manager_id" in p.data:
        data["manager_id"] = p.integer("manager_id", minimum=1)
    for field, limit in (("department", 100), ("job_title", 100), ("phone", 32),
                         ("emergency_contact_name", 100), ("emergency_contact_phone", 32)):
        if field in p.data:
            data[field] = p.string(field, max_length=limit)
    if "notes" in p.data:
        data["notes"] = p.string("notes")
    if not partial or "employment_type" in p.data:
        data["employment_type"] = p.choice("employment_type", EMPLOYMENT_TYPES, default="full_time")
    if "employment_status" in p.data:
        data["employment_status"] = p.choice("employment_status", EMPLOYMENT_STATUSES)
    if not partial or "hire_date" in p.data:
        data["hire_date"] = p.date("hire_date", default=today())
    if "base_salary" in p.data:
        data["base_salary"] = p.decimal("base_salary", minimum=0)
    return data


def _check_hr_refs(data: dict, *, employee_id: int | None = None) -> None:
    errors: dict[str, list[str]] = {}
    code = data.get("employee_code")
    if code:
        q = db.session.query(Employee).filter(Employee.employee_code == code)
        if employee_id is not None:
            q = q.filter(Employee.id != employee_id)
        if q.first():
            errors["employee_code"] = ["The employee code has already been taken."]
    manager_id = data.get("manager_id")
    if manager_id is not None:
        if employee_id is not None and manager_id == employee_id:
            errors["manager_id"] = ["An employee cannot manage themselves."]
        elif not db.session.get(Employee, manager_id):
            errors["manager_id"] = ["The selected manager does not exist."]
    if errors:
        raise EmployeeError("The given data was invalid.", errors)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def create_employee(payload: dict) -> Employee:
    p = Payload(payload)
    name = p.string("name", required=True, max_length=255)
    email = p.string("email", required=True, max_length=255)
    password = p.string("password", required=True)
    roles = _read_roles(p) or ["employee"]
    hr = _read_hr(p, partial=False)
    assignments = _read_assignments(p) or []
    if password:
        try:
            auth_service.validate_password_strength(password)
        except auth_service.PasswordValidationError as e:
            p.error("password", str(e))
    p.validate()

    def _op():
        _check_hr_refs(hr)
        try:
            user = auth_service.create_user(name, email, password, roles=roles)
        except ValueError as e:
            raise EmployeeError("The given data was invalid.", {"email": [str(e)]})

        employee = Employee(user_id=user.id, **hr)
        db.session.add(employee)
        db.session.flush()
        for row in assignments:
            _assign(employee, row["entity_type"], row["entity_id"], is_primary=row["is_primary"])

        logger.info("Created employee #%s (%s)", employee.id, user.email)
        return employee

    return run_with_retry(_op)


def update_employee(employee_id: int, payload: dict) -> Employee:
    p = Payload(payload)
    name = p.string("name", max_length=255)
    email = p.string("email", max_length=255)
    password = p.string("password")
    roles = _read_roles(p)
    hr = _read_hr(p, partial=True)
    assignments = _read_assignments(p)
    if password:
        try:
            auth_service.validate_password_strength(password)
        except auth_service.PasswordValidationError as e:
            p.error("password", str(e))
    p.validate()

    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        _check_hr_refs(hr, employee_id=employee.id)

        user = employee.user
        if name:
            user.name = name
        if email and email.lower() != user.email:
            if db.session.query(User).filter(User.email == email.lower(), User.id != user.id).first():
                raise EmployeeError("The given data was invalid.", {"email": ["The email has already been taken."]})
            user.email = email.lower()
        if password:
            user.password_hash = auth_service.hash_password(password)
            session_service.revoke_all_user_sessions(user.id)
        if roles is not None:
            auth_service.sync_roles(user, roles)

        for key, value in hr.items():
            setattr(employee, key, value)

        if assignments is not None:
            _sync(employee, assignments)

        db.session.flush()
        return employee

    return run_with_retry(_op)


def terminate_employee(employee_id: int, payload: dict | None = None) -> Employee:
    p = Payload(payload)
    termination_date = p.date("termination_date", default=today())
    reason = p.string("reason")
    p.validate()

    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        if employee.employment_status == EMPLOYMENT_STATUS_TERMINATED:
            raise EmployeeError("Employee is already terminated.", {"employment_status": ["Already terminated."]})

        employee.employment_status = EMPLOYMENT_STATUS_TERMINATED
        employee.termination_date = termination_date
        if reason:
            employee.notes = f"{employee.notes}\nTerminated: {reason}" if employee.notes else f"Terminated: {reason}"
        now = utcnow()
        for assignment in employee.active_assignments:
            assignment.unassigned_at = now
        employee.user.is_active = False
        session_service.revoke_all_user_sessions(employee.user_id)

        logger.info("Terminated employee #%s", employee.id)
        return employee

    return run_with_retry(_op)


def delete_blockers(employee: Employee) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    active = [c for c in employee.custodies if c.status == EMPLOYEE_CUSTODY_ASSIGNED]
    if active:
        errors["custodies"] = [f"Employee still holds {len(active)} custody item(s)."]
    if employee.subordinates:
        errors["subordinates"] = [f"Employee manages {len(employee.subordinates)} other employee(s)."]
    return errors


def delete_employee(employee_id: int) -> None:
    """
    Remove the HR record and disable the login.

    The User row stays so orders and payments keep their attribution.
    """
    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")

        errors = delete_blockers(employee)
        if errors:
            raise EmployeeError(
                "Cannot delete employee with active custodies or subordinates.", errors, status_code=400
            )

        user = employee.user
        user.is_active = False
        session_service.revoke_all_user_sessions(user.id)
        db.session.delete(employee)
        db.session.flush()
        logger.info("Deleted employee #%s", employee_id)

    run_with_retry(_op)


def employees_query(*, search: str | None = None, status: str | None = None, department: str | None = None,
                    entity_type: str | None = None, entity_id: int | None = None):
    query = db.session.query(Employee).join(User, User.id == Employee.user_id)
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(User.name.ilike(like), User.email.ilike(like), Employee.employee_code.ilike(like)))
    if status:
        query = query.filter(Employee.employment_status == status)
    if department:
        query = query.filter(Employee.department == department)
    if entity_type:
        cond = db.and_(
            EmployeeEntityAssignment.entity_type == entity_type,
            EmployeeEntityAssignment.unassigned_at.is_(None),
        )
        if entity_id:
            cond = db.and_(cond, EmployeeEntityAssignment.entity_id == entity_id)
        query = query.filter(Employee.entity_assignments.any(cond))
    return query.order_by(Employee.id)


# ---------------------------------------------------------------------------
# Entity assignments
# ---------------------------------------------------------------------------

def _assign(employee: Employee, entity_type: str, entity_id: int, *, is_primary: bool = False):
    get_entity(entity_type, entity_id)
    for assignment in employee.active_assignments:
        if assignment.entity_type == entity_type and assignment.entity_id == entity_id:
            assignment.is_primary = is_primary or assignment.is_primary
            return assignment
    assignment = EmployeeEntityAssignment(entity_type=entity_type, entity_id=entity_id, is_primary=is_primary)
    employee.entity_assignments.append(assignment)
    db.session.flush()
    return assignment


def _sync(employee: Employee, rows: list[dict]) -> None:
    wanted = {(r["entity_type"], r["entity_id"]) for r in rows}
    now = utcnow()
    for assignment in employee.active_assignments:
        if (assignment.entity_type, assignment.entity_id) not in wanted:
            assignment.unassigned_at = now
    for row in rows:
        _assign(employee, row["entity_type"], row["entity_id"], is_primary=row["is_primary"])


def assign_entity(employee_id: int, payload: dict) -> EmployeeEntityAssignment:
    p = Payload(payload)
    entity_type = p.choice("entity_type", ENTITY_TYPES, required=True)
    entity_id = p.integer("entity_id", required=True, minimum=1)
    is_primary = p.boolean("is_primary")
    p.validate()

    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        return _assign(employee, entity_type, entity_id, is_primary=is_primary)

    return run_with_retry(_op)


def unassign_entity(employee_id: int, entity_type: str, entity_id: int) -> EmployeeEntityAssignment:
    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        for assignment in employee.active_assignments:
            if assignment.entity_type == entity_type and assignment.entity_id == entity_id:
                assignment.unassigned_at = utcnow()
                return assignment
        raise NotFoundError("Assignment not found")

    return run_with_retry(_op)


def sync_entities(employee_id: int, payload: dict) -> Employee:
    p = Payload(payload)
    rows = _read_assignments(p)
    if rows is None:
        p.error("entity_assignments", "The entity_assignments field is required.")
    p.validate()

    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        _sync(employee, rows)
        db.session.flush()
        return employee

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Company property in employee custody
# ---------------------------------------------------------------------------

def assign_custody(employee_id: int, payload: dict) -> EmployeeCustody:
    p = Payload(payload)
    name = p.string("name", required=True, max_length=255)
    description = p.string("description")
    value = p.decimal("value", minimum=0)
    notes = p.string("notes")
    p.validate()

    def _op():
        employee = get_for_update(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        if employee.employment_status == EMPLOYMENT_STATUS_TERMINATED:
            raise EmployeeError("Cannot assign custody to a terminated employee.",
                                {"employee": ["The employee is terminated."]})
        custody = EmployeeCustody(
            employee_id=employee.id, name=name, description=description, value=value, notes=notes,
            status=EMPLOYEE_CUSTODY_ASSIGNED,
        )
        db.session.add(custody)
        db.session.flush()
        return custody

    return run_with_retry(_op)


def return_custody(employee_id: int, custody_id: int, payload: dict | None = None) -> EmployeeCustody:
    p = Payload(payload)
    notes = p.string("notes")
    p.validate()

    def _op():
        custody = get_for_update(EmployeeCustody, custody_id)
        if not custody or custody.employee_id != employee_id:
            raise NotFoundError("Custody not found")
        if custody.status == EMPLOYEE_CUSTODY_RETURNED:
            raise EmployeeError("Custody item already returned.", {"status": ["Already returned."]})
        custody.status = EMPLOYEE_CUSTODY_RETURNED
        custody.returned_at = utcnow()
        if notes:
            custody.notes = f"{custody.notes}\n{notes}" if custody.notes else notes
        return custody

    return run_with_retry(_op)
