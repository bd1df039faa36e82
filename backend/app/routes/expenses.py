# Overview: Flask API routes for branch expenses and their approval workflow.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..models.entities import ENTITY_BRANCH
from ..services import expense_service
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import accessible_entity_ids
from ..validation import ServiceError, error_response


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/v1/expenses")


def _branches():
    return accessible_entity_ids(g.current_user, ENTITY_BRANCH)


def _run(action: str, func, *, status: int = 200):
    try:
        expense = func()
        commit_or_conflict()
        if expense is None:
            return "", 204
        return jsonify(expense.to_dict()), status
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


def _body() -> dict:
    return request.get_json(silent=True) or {}


@expenses_bp.get("")
@require_auth
@require_permission("VIEW_EXPENSES")
def list_expenses():
    """
    Query params: branch_id, category, status, start_date, end_date,
    vendor, search, page, per_page.
    """
    try:
        query = expense_service.expenses_query(request.args.to_dict(), branch_ids=_branches())
    except ServiceError as e:
        return error_response(e)
    return jsonify(paginate(query)), 200


@expenses_bp.get("/categories")
@require_auth
@require_permission("VIEW_EXPENSES")
def expense_categories():
    return jsonify({"categories": expense_service.categories()}), 200


@expenses_bp.get("/summary")
@require_auth
@require_permission("VIEW_EXPENSES")
def expense_summary():
    try:
        return jsonify(expense_service.summary(request.args.to_dict(), branch_ids=_branches())), 200
    except ServiceError as e:
        return error_response(e)


@expenses_bp.post("")
@require_auth
@require_permission("MANAGE_EXPENSES")
def create_expense():
    return _run("create expense", lambda: expense_service.create_expense(_body(), user=g.current_user), status=201)


@expenses_bp.get("/<int:expense_id>")
@require_auth
@require_permission("VIEW_EXPENSES")
def get_expense(expense_id: int):
    try:
        return jsonify(expense_service.get_expense(expense_id, user=g.current_user).to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@expenses_bp.put("/<int:expense_id>")
@require_auth
@require_permission("MANAGE_EXPENSES")
def update_expense(expense_id: int):
    return _run("update expense", lambda: expense_service.update_expense(expense_id, _body(), user=g.current_user))


@expenses_bp.delete("/<int:expense_id>")
@require_auth
@require_permission("MANAGE_EXPENSES")
def delete_expense(expense_id: int):
    return _run("delete expense", lambda: expense_service.delete_expense(expense_id, user=g.current_user))


@expenses_bp.post("/<int:expense_id>/approve")
@require_auth
@require_permission("APPROVE_EXPENSES")
def approve_expense(expense_id: int):
    return _run("approve expense", lambda: expense_service.approve_expense(expense_id, user=g.current_user))


@expenses_bp.post("/<int:expense_id>/pay")
@require_auth
@require_permission("APPROVE_EXPENSES")
def pay_expense(expense_id: int):
    return _run("pay expense", lambda: expense_service.pay_expense(expense_id, user=g.current_user))


@expenses_bp.post("/<int:expense_id>/cancel")
@require_auth
@require_permission("MANAGE_EXPENSES")
def cancel_expense(expense_id: int):
    return _run("cancel expense", lambda: expense_service.cancel_expense(expense_id, _body(), user=g.current_user))
