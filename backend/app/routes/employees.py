# Overview: Flask API routes for employees, their entity assignments and custody items.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..models.employees import EMPLOYMENT_TYPES, EMPLOYMENT_STATUSES
from ..services import employee_service, export_service
from ..services.concurrency import commit_or_conflict
from ..validation import ServiceError, error_response


employees_bp = Blueprint("employees", __name__, url_prefix="/api/v1/employees")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _run(action: str, func, *, status: int = 200):
    try:
        result = func()
        commit_or_conflict()
        if result is None:
            return "", 204
        return jsonify(result.to_dict()), status
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


def _employees_query():
    return employee_service.employees_query(
        search=request.args.get("search"),
        status=request.args.get("employment_status"),
        department=request.args.get("department"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
    )


@employees_bp.get("")
@require_auth
@require_permission("VIEW_EMPLOYEES")
def list_employees():
    return jsonify(paginate(_employees_query())), 200


@employees_bp.get("/export")
@require_auth
@require_permission("EXPORT_DATA")
def export_employees():
    return export_service.export_employees(_employees_query().all())


@employees_bp.get("/employment-types")
@require_auth
def employment_types():
    return jsonify(EMPLOYMENT_TYPES), 200


@employees_bp.get("/employment-statuses")
@require_auth
def employment_statuses():
    return jsonify(EMPLOYMENT_STATUSES), 200


@employees_bp.get("/me")
@require_auth
def my_employee_record():
    try:
        employee = employee_service.employee_for_user(g.current_user)
        data = employee.to_dict()
        data["custodies"] = [c.to_dict() for c in employee.custodies]
        return jsonify(data), 200
    except ServiceError as e:
        return error_response(e)


@employees_bp.post("")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def create_employee():
    """
    Request body:
    {
        "name": str, "email": str, "password": str, "roles": [str]?,
        "employee_code": str?, "job_title": str?, "department": str?,
        "employment_type": str?, "hire_date": "YYYY-MM-DD"?, "base_salary": number?,
        "entity_assignments": [{"entity_type": str, "entity_id": int, "is_primary": bool?}]?
    }
    """
    return _run("create employee", lambda: employee_service.create_employee(_body()), status=201)


@employees_bp.get("/<int:employee_id>")
@require_auth
@require_permission("VIEW_EMPLOYEES")
def get_employee(employee_id: int):
    try:
        employee = employee_service.get_employee(employee_id)
        data = employee.to_dict()
        data["custodies"] = [c.to_dict() for c in employee.custodies]
        return jsonify(data), 200
    except ServiceError as e:
        return error_response(e)


@employees_bp.put("/<int:employee_id>")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def update_employee(employee_id: int):
    return _run("update employee", lambda: employee_service.update_employee(employee_id, _body()))


@employees_bp.delete("/<int:employee_id>")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def delete_employee(employee_id: int):
    return _run("delete employee", lambda: employee_service.delete_employee(employee_id))


@employees_bp.post("/<int:employee_id>/terminate")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def terminate_employee(employee_id: int):
    return _run("terminate employee", lambda: employee_service.terminate_employee(employee_id, _body()))


# ---------------------------------------------------------------------------
# Entity assignments
# ---------------------------------------------------------------------------

@employees_bp.get("/<int:employee_id>/entities")
@require_auth
@require_permission("VIEW_EMPLOYEES")
def employee_entities(employee_id: int):
    try:
        employee = employee_service.get_employee(employee_id)
        return jsonify({
            "employee_id": employee.id,
            "data": [a.to_dict() for a in employee.active_assignments],
        }), 200
    except ServiceError as e:
        return error_response(e)


@employees_bp.post("/<int:employee_id>/entities")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def assign_entity(employee_id: int):
    return _run("assign entity", lambda: employee_service.assign_entity(employee_id, _body()), status=201)


@employees_bp.delete("/<int:employee_id>/entities/<string:entity_type>/<int:entity_id>")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def unassign_entity(employee_id: int, entity_type: str, entity_id: int):
    return _run(
        "unassign entity", lambda: employee_service.unassign_entity(employee_id, entity_type, entity_id)
    )


@employees_bp.put("/<int:employee_id>/entities")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def sync_entities(employee_id: int):
    return _run("sync entities", lambda: employee_service.sync_entities(employee_id, _body()))


# ---------------------------------------------------------------------------
# Custody items
# ---------------------------------------------------------------------------

@employees_bp.post("/<int:employee_id>/custodies")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def assign_custody(employee_id: int):
    return _run("assign employee custody", lambda: employee_service.assign_custody(employee_id, _body()), status=201)


@employees_bp.post("/<int:employee_id>/custodies/<int:custody_id>/return")
@require_auth
@require_permission("MANAGE_EMPLOYEES")
def return_custody(employee_id: int, custody_id: int):
    return _run(
        "return employee custody", lambda: employee_service.return_custody(employee_id, custody_id, _body())
    )
