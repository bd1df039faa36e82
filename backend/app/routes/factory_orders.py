# Overview: Flask API routes for the factory portal; factories see only their assigned tailoring items.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..services import factory_order_service
from ..services.concurrency import commit_or_conflict
from ..validation import ServiceError, error_response


factory_orders_bp = Blueprint("factory_orders", __name__, url_prefix="/api/v1/factory/orders")


def _item_action(action: str, func, order_id: int, item_id: int):
    try:
        item = func(g.current_user, order_id, item_id, request.get_json(silent=True) or {})
        commit_or_conflict()
        return jsonify(item.to_dict(include_pricing=False)), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


@factory_orders_bp.get("")
@require_auth
@require_permission("FACTORY_ORDERS")
def list_factory_orders():
    try:
        query = factory_order_service.orders_query(
            g.current_user,
            status=request.args.get("status"),
            factory_status=request.args.get("factory_status"),
        )
    except ServiceError as e:
        return error_response(e)
    return jsonify(paginate(query, factory_order_service.serialize_for_factory)), 200


@factory_orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("FACTORY_ORDERS")
def get_factory_order(order_id: int):
    try:
        order = factory_order_service.get_order(g.current_user, order_id)
        return jsonify(factory_order_service.serialize_for_factory(order)), 200
    except ServiceError as e:
        return error_response(e)


@factory_orders_bp.post("/<int:order_id>/items/<int:item_id>/accept")
@require_auth
@require_permission("FACTORY_ORDERS")
def accept_item(order_id: int, item_id: int):
    return _item_action("accept factory item", factory_order_service.accept_item, order_id, item_id)


@factory_orders_bp.post("/<int:order_id>/items/<int:item_id>/reject")
@require_auth
@require_permission("FACTORY_ORDERS")
def reject_item(order_id: int, item_id: int):
    return _item_action("reject factory item", factory_order_service.reject_item, order_id, item_id)


@factory_orders_bp.post("/<int:order_id>/items/<int:item_id>/status")
@require_auth
@require_permission("FACTORY_ORDERS")
def update_item_status(order_id: int, item_id: int):
    return _item_action("update factory item status", factory_order_service.update_item_status, order_id, item_id)


@factory_orders_bp.put("/<int:order_id>/items/<int:item_id>/notes")
@require_auth
@require_permission("FACTORY_ORDERS")
def update_item_notes(order_id: int, item_id: int):
    return _item_action("update factory item notes", factory_order_service.update_item_notes, order_id, item_id)


@factory_orders_bp.put("/<int:order_id>/items/<int:item_id>/delivery-date")
@require_auth
@require_permission("FACTORY_ORDERS")
def set_delivery_date(order_id: int, item_id: int):
    return _item_action("set factory delivery date", factory_order_service.set_delivery_date, order_id, item_id)


@factory_orders_bp.post("/<int:order_id>/items/<int:item_id>/deliver")
@require_auth
@require_permission("FACTORY_ORDERS")
def deliver_item(order_id: int, item_id: int):
    return _item_action("deliver factory item", factory_order_service.deliver_item, order_id, item_id)


@factory_orders_bp.get("/<int:order_id>/items/<int:item_id>/history")
@require_auth
@require_permission("FACTORY_ORDERS")
def item_history(order_id: int, item_id: int):
    try:
        logs = factory_order_service.item_history(g.current_user, order_id, item_id)
        return jsonify({"item_id": item_id, "data": [log.to_dict() for log in logs]}), 200
    except ServiceError as e:
        return error_response(e)
