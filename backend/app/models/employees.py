from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date
from app.validation import money_out


EMPLOYMENT_TYPES = {
    "full_time": "Full time",
    "part_time": "Part time",
    "contract": "Contract",
    "intern": "Intern",
}

EMPLOYMENT_STATUS_ACTIVE = "active"
EMPLOYMENT_STATUS_ON_LEAVE = "on_leave"
EMPLOYMENT_STATUS_SUSPENDED = "suspended"
EMPLOYMENT_STATUS_TERMINATED = "terminated"
EMPLOYMENT_STATUSES = {
    EMPLOYMENT_STATUS_ACTIVE: "Active",
    EMPLOYMENT_STATUS_ON_LEAVE: "On leave",
    EMPLOYMENT_STATUS_SUSPENDED: "Suspended",
    EMPLOYMENT_STATUS_TERMINATED: "Terminated",
}

EMPLOYEE_CUSTODY_ASSIGNED = "assigned"
EMPLOYEE_CUSTODY_RETURNED = "returned"


class Employee(db.Model):
    """
    HR record wrapping a User.

    Entity assignments (branch / workshop / factory) decide which entities
    the employee's user can see and act on.
    """
    __tablename__ = "employees"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    employee_code = db.Column(db.String(32), nullable=False, unique=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True, index=True)

    department = db.Column(db.String(100), nullable=True)
    job_title = db.Column(db.String(100), nullable=True)
    employment_type = db.Column(db.String(16), nullable=False, default="full_time")
    employment_status = db.Column(db.String(16), nullable=False, default=EMPLOYMENT_STATUS_ACTIVE, index=True)
    hire_date = db.Column(db.Date, nullable=False)
    termination_date = db.Column(db.Date, nullable=True)

    base_salary = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    phone = db.Column(db.String(32), nullable=True)
    emergency_contact_name = db.Column(db.String(100), nullable=True)
    emergency_contact_phone = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("employee", uselist=False))
    manager = db.relationship("Employee", remote_side=[id], backref=db.backref("subordinates", lazy=True))
    entity_assignments = db.relationship(
        "EmployeeEntityAssignment",
        backref="employee",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="EmployeeEntityAssignment.id",
    )

    @property
    def active_assignments(self) -> list:
        return [a for a in self.entity_assignments if a.unassigned_at is None]

    def assigned_entity_ids(self, entity_type: str) -> list[int]:
        return [a.entity_id for a in self.active_assignments if a.entity_type == entity_type]

    def is_assigned_to(self, entity_type: str, entity_id: int) -> bool:
        return entity_id in self.assigned_entity_ids(entity_type)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.user.name if self.user else None,
            "email": self.user.email if self.user else None,
            "roles": [ur.role.name for ur in self.user.user_roles] if self.user else [],
            "employee_code": self.employee_code,
            "manager_id": self.manager_id,
            "department": self.department,
            "job_title": self.job_title,
            "employment_type": self.employment_type,
            "employment_status": self.employment_status,
            "hire_date": to_iso_date(self.hire_date),
            "termination_date": to_iso_date(self.termination_date),
            "base_salary": money_out(self.base_salary),
            "phone": self.phone,
            "emergency_contact_name": self.emergency_contact_name,
            "emergency_contact_phone": self.emergency_contact_phone,
            "notes": self.notes,
            "entity_assignments": [a.to_dict() for a in self.active_assignments],
            "created_at": to_utc_z(self.created_at),
        }


class EmployeeEntityAssignment(db.Model):
    """Employee membership in a branch, workshop or factory. Soft-ended via unassigned_at."""
    __tablename__ = "employee_entity_assignments"
    __table_args__ = (
        db.Index("ix_employee_entity_assignments_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    entity_type = db.Column(db.String(16), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    unassigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_primary": self.is_primary,
            "assigned_at": to_utc_z(self.assigned_at),
            "unassigned_at": to_utc_z(self.unassigned_at),
        }


class EmployeeCustody(db.Model):
    """Company property handed to an employee (keys, tablet, tools)."""
    __tablename__ = "employee_custodies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    value = db.Column(db.Numeric(12, 2), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=EMPLOYEE_CUSTODY_ASSIGNED, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    employee = db.relationship("Employee", backref=db.backref("custodies", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "name": self.name,
            "description": self.description,
            "value": money_out(self.value) if self.value is not None else None,
            "status": self.status,
            "assigned_at": to_utc_z(self.assigned_at),
            "returned_at": to_utc_z(self.returned_at),
            "notes": self.notes,
        }
