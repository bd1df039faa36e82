# Overview: Flask API routes for order payments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..services import payment_service
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import accessible_inventory_ids, ensure_inventory_access
from ..validation import ServiceError, error_response


payments_bp = Blueprint("payments", __name__, url_prefix="/api/v1/payments")


def _visible_payment(payment_id: int):
    payment = payment_service.get_payment(payment_id)
    ensure_inventory_access(g.current_user, payment.order.inventory_id)
    return payment


@payments_bp.get("")
@require_auth
@require_permission("VIEW_ORDERS")
def list_payments_route():
    query = payment_service.payments_query(
        order_id=request.args.get("order_id", type=int),
        status=request.args.get("status"),
        payment_type=request.args.get("payment_type"),
        inventory_ids=accessible_inventory_ids(g.current_user),
    )
    return jsonify(paginate(query)), 200


@payments_bp.get("/<int:payment_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_payment_route(payment_id: int):
    try:
        return jsonify(_visible_payment(payment_id).to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@payments_bp.post("/<int:payment_id>/pay")
@require_auth
@require_permission("MANAGE_PAYMENTS")
def pay_payment_route(payment_id: int):
    try:
        _visible_payment(payment_id)
        payment = payment_service.pay_payment(payment_id, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(payment.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark payment as paid")
        return jsonify({"message": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/cancel")
@require_auth
@require_permission("MANAGE_PAYMENTS")
def cancel_payment_route(payment_id: int):
    try:
        _visible_payment(payment_id)
        payment = payment_service.cancel_payment(
            payment_id, request.get_json(silent=True) or {}, user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(payment.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"message": "Internal server error"}), 500
