# Overview: Flask API routes for branch cashboxes and their transaction ledger.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..models import CashboxTransaction
from ..models.cashbox import TRANSACTION_EXPENSE, TRANSACTION_INCOME
from ..models.entities import ENTITY_BRANCH
from ..services import cashbox_service
from ..services.concurrency import commit_or_conflict, run_with_retry
from ..services.entity_service import accessible_entity_ids, ensure_entity_access
from ..validation import ServiceError, NotFoundError, error_response
from app.time_utils import parse_iso_date, today


cashboxes_bp = Blueprint("cashboxes", __name__, url_prefix="/api/v1/cashboxes")


def _visible_cashbox(cashbox_id: int):
    cashbox = cashbox_service.get_cashbox(cashbox_id)
    ensure_entity_access(g.current_user, ENTITY_BRANCH, cashbox.branch_id)
    return cashbox


def _invalid_date(field: str):
    return jsonify({"message": "The given data was invalid.", "errors": {field: ["Invalid date."]}}), 422


@cashboxes_bp.get("")
@require_auth
@require_permission("VIEW_CASHBOX")
def list_cashboxes():
    query = cashbox_service.cashboxes_query(branch_ids=accessible_entity_ids(g.current_user, ENTITY_BRANCH))
    return jsonify(paginate(query)), 200


@cashboxes_bp.get("/<int:cashbox_id>")
@require_auth
@require_permission("VIEW_CASHBOX")
def get_cashbox(cashbox_id: int):
    try:
        return jsonify(_visible_cashbox(cashbox_id).to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@cashboxes_bp.get("/<int:cashbox_id>/transactions")
@require_auth
@require_permission("VIEW_CASHBOX")
def list_transactions(cashbox_id: int):
    """
    Query params: type, category, date_from, date_to (YYYY-MM-DD), page, per_page.
    """
    try:
        cashbox = _visible_cashbox(cashbox_id)
    except ServiceError as e:
        return error_response(e)
    try:
        date_from = parse_iso_date(request.args.get("date_from"))
        date_to = parse_iso_date(request.args.get("date_to"))
    except ValueError:
        return _invalid_date("date")

    query = cashbox_service.transactions_query(
        cashbox.id,
        type=request.args.get("type"),
        category=request.args.get("category"),
        date_from=date_from,
        date_to=date_to,
    )
    return jsonify(paginate(query)), 200


@cashboxes_bp.get("/<int:cashbox_id>/daily-summary")
@require_auth
@require_permission("VIEW_CASHBOX")
def daily_summary(cashbox_id: int):
    try:
        cashbox = _visible_cashbox(cashbox_id)
    except ServiceError as e:
        return error_response(e)
    try:
        day = parse_iso_date(request.args.get("date")) or today()
    except ValueError:
        return _invalid_date("date")
    return jsonify(cashbox_service.daily_summary(cashbox.id, day)), 200


def _manual(cashbox_id: int, type: str):
    try:
        _visible_cashbox(cashbox_id)
        transaction = run_with_retry(lambda: cashbox_service.manual_transaction(
            cashbox_id, request.get_json(silent=True) or {}, type=type, user_id=g.current_user.id,
        ))
        commit_or_conflict()
        return jsonify(transaction.to_dict()), 201
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record manual %s", type)
        return jsonify({"message": "Internal server error"}), 500


@cashboxes_bp.post("/<int:cashbox_id>/expense")
@require_auth
@require_permission("MANAGE_CASHBOX")
def record_expense(cashbox_id: int):
    """
    Request body: {"amount": number, "description": str, "category": str?}
    """
    return _manual(cashbox_id, TRANSACTION_EXPENSE)


@cashboxes_bp.post("/<int:cashbox_id>/income")
@require_auth
@require_permission("MANAGE_CASHBOX")
def record_income(cashbox_id: int):
    return _manual(cashbox_id, TRANSACTION_INCOME)


@cashboxes_bp.post("/<int:cashbox_id>/transactions/<int:transaction_id>/reverse")
@require_auth
@require_permission("MANAGE_CASHBOX")
def reverse_transaction(cashbox_id: int, transaction_id: int):
    reason = (request.get_json(silent=True) or {}).get("reason")
    try:
        cashbox = _visible_cashbox(cashbox_id)
        original = db.session.get(CashboxTransaction, transaction_id)
        if not original or original.cashbox_id != cashbox.id:
            raise NotFoundError("Transaction not found")
        reversal = run_with_retry(lambda: cashbox_service.reverse_transaction(
            transaction_id, user_id=g.current_user.id, reason=reason,
        ))
        commit_or_conflict()
        return jsonify(reversal.to_dict()), 201
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse cashbox transaction")
        return jsonify({"message": "Internal server error"}), 500
