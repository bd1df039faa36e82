# Overview: Flask API routes for client receivables, their payments and write-offs.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..models.entities import ENTITY_BRANCH
from ..services import receivable_service
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import accessible_entity_ids
from ..validation import ServiceError, error_response


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api/v1/receivables")


def _branches():
    return accessible_entity_ids(g.current_user, ENTITY_BRANCH)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _run(action: str, func, *, status: int = 200):
    try:
        result = func()
        commit_or_conflict()
        if result is None:
            return "", 204
        return jsonify(result), status
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


@receivables_bp.get("")
@require_auth
@require_permission("VIEW_RECEIVABLES")
def list_receivables():
    """
    Query params: client_id, branch_id, order_id, status, overdue_only,
    due_within_days, page, per_page.
    """
    try:
        query = receivable_service.receivables_query(request.args.to_dict(), branch_ids=_branches())
    except ServiceError as e:
        return error_response(e)
    return jsonify(paginate(query)), 200


@receivables_bp.get("/summary")
@require_auth
@require_permission("VIEW_RECEIVABLES")
def receivables_summary():
    try:
        return jsonify(receivable_service.summary(request.args.to_dict(), branch_ids=_branches())), 200
    except ServiceError as e:
        return error_response(e)


@receivables_bp.get("/client/<int:client_id>")
@require_auth
@require_permission("VIEW_RECEIVABLES")
def client_receivables(client_id: int):
    try:
        data = receivable_service.client_receivables(client_id, request.args.to_dict(), branch_ids=_branches())
        return jsonify(data), 200
    except ServiceError as e:
        return error_response(e)


@receivables_bp.post("")
@require_auth
@require_permission("MANAGE_RECEIVABLES")
def create_receivable():
    return _run(
        "create receivable",
        lambda: receivable_service.create_receivable(_body(), user=g.current_user).to_dict(),
        status=201,
    )


@receivables_bp.get("/<int:receivable_id>")
@require_auth
@require_permission("VIEW_RECEIVABLES")
def get_receivable(receivable_id: int):
    try:
        receivable = receivable_service.get_receivable(receivable_id, user=g.current_user)
        return jsonify(receivable.to_dict(include_payments=True)), 200
    except ServiceError as e:
        return error_response(e)


@receivables_bp.put("/<int:receivable_id>")
@require_auth
@require_permission("MANAGE_RECEIVABLES")
def update_receivable(receivable_id: int):
    return _run(
        "update receivable",
        lambda: receivable_service.update_receivable(receivable_id, _body(), user=g.current_user).to_dict(),
    )


@receivables_bp.delete("/<int:receivable_id>")
@require_auth
@require_permission("MANAGE_RECEIVABLES")
def delete_receivable(receivable_id: int):
    return _run("delete receivable", lambda: receivable_service.delete_receivable(receivable_id, user=g.current_user))


@receivables_bp.post("/<int:receivable_id>/payments")
@require_auth
@require_permission("MANAGE_RECEIVABLES")
def record_receivable_payment(receivable_id: int):
    def _pay():
        receivable, payment = receivable_service.record_payment(receivable_id, _body(), user=g.current_user)
        return {"receivable": receivable.to_dict(include_payments=True), "payment": payment.to_dict()}
    return _run("record receivable payment", _pay)


@receivables_bp.post("/<int:receivable_id>/write-off")
@require_auth
@require_permission("MANAGE_RECEIVABLES")
def write_off_receivable(receivable_id: int):
    return _run(
        "write off receivable",
        lambda: receivable_service.write_off(receivable_id, _body(), user=g.current_user).to_dict(),
    )
