# Overview: Flask API routes for orders, their payments, custody and tailoring stages.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..request_utils import request_payload, uploads, uploads_by_prefix
from ..services import (
    order_service, payment_service, custody_service, tailoring_service, history_service, export_service,
)
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import accessible_inventory_ids, ensure_inventory_access
from ..validation import ServiceError, error_response
from app.time_utils import parse_iso_date


orders_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


def _visible_order(order_id: int):
    order = order_service.get_order(order_id)
    ensure_inventory_access(g.current_user, order.inventory_id)
    return order


def _date_arg(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        return None


def _orders_query():
    return order_service.orders_query(
        inventory_ids=accessible_inventory_ids(g.current_user),
        status=request.args.get("status"),
        client_id=request.args.get("client_id", type=int),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        item_type=request.args.get("type"),
        date_from=_date_arg("date_from"),
        date_to=_date_arg("date_to"),
    )


def _run(action: str, func, *, status: int = 200, serializer=None):
    """Run a mutating service call, commit, and shape the response."""
    try:
        result = func()
        commit_or_conflict()
        if result is None:
            return "", 204
        return jsonify(serializer(result) if serializer else result.to_dict()), status
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@orders_bp.get("")
@require_auth
@require_permission("VIEW_ORDERS")
def list_orders_route():
    return jsonify(paginate(_orders_query(), lambda o: o.to_dict(include_items=False))), 200


@orders_bp.get("/export")
@require_auth
@require_permission("EXPORT_DATA")
def export_orders_route():
    return export_service.export_orders(_orders_query().all())


@orders_bp.post("")
@require_auth
@require_permission("CREATE_ORDERS")
def create_order_route():
    return _run(
        "create order",
        lambda: order_service.create_order(request.get_json(silent=True) or {}, user=g.current_user),
        status=201,
    )


@orders_bp.post("/check-availability")
@require_auth
@require_permission("VIEW_ORDERS")
def check_availability_route():
    try:
        return jsonify(order_service.check_availability(request.get_json(silent=True) or {})), 200
    except ServiceError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_order_route(order_id: int):
    try:
        order = _visible_order(order_id)
        data = order.to_dict()
        data["client"] = order.client.to_dict() if order.client else None
        data["payments"] = [p.to_dict() for p in order.payments]
        data["custodies"] = [custody_service.serialize(c) for c in order.custodies]
        data["rents"] = [r.to_dict() for r in order.rents]
        return jsonify(data), 200
    except ServiceError as e:
        return error_response(e)


@orders_bp.put("/<int:order_id>")
@require_auth
@require_permission("MANAGE_ORDERS")
def update_order_route(order_id: int):
    return _run(
        "update order",
        lambda: order_service.update_order(order_id, request.get_json(silent=True) or {}, user=g.current_user),
    )


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_permission("DELETE_ORDERS")
def delete_order_route(order_id: int):
    return _run("delete order", lambda: order_service.delete_order(order_id, user=g.current_user))


@orders_bp.post("/<int:order_id>/deliver")
@require_auth
@require_permission("MANAGE_ORDERS")
def deliver_order_route(order_id: int):
    return _run("deliver order", lambda: order_service.deliver_order(order_id, user=g.current_user))


@orders_bp.post("/<int:order_id>/finish")
@require_auth
@require_permission("MANAGE_ORDERS")
def finish_order_route(order_id: int):
    return _run("finish order", lambda: order_service.finish_order(order_id, user=g.current_user))


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_permission("MANAGE_ORDERS")
def cancel_order_route(order_id: int):
    reason = (request.get_json(silent=True) or {}).get("reason")
    return _run("cancel order", lambda: order_service.cancel_order(order_id, user=g.current_user, reason=reason))


@orders_bp.post("/<int:order_id>/return")
@require_auth
@require_permission("MANAGE_ORDERS")
def return_items_route(order_id: int):
    try:
        order, finished = order_service.return_items(
            order_id, request_payload(), user=g.current_user, files=uploads_by_prefix("items."),
        )
        commit_or_conflict()
        return jsonify({
            "message": "Items returned successfully",
            "order": order.to_dict(),
            "order_finished": finished,
        }), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to return order items")
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_auth
@require_permission("VIEW_ORDERS")
def order_history_route(order_id: int):
    try:
        order = _visible_order(order_id)
        return jsonify({"order_id": order.id, "data": [h.to_dict() for h in history_service.order_history(order.id)]}), 200
    except ServiceError as e:
        return error_response(e)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@orders_bp.post("/<int:order_id>/add-payment")
@require_auth
@require_permission("MANAGE_PAYMENTS")
def add_payment_route(order_id: int):
    def _op():
        _visible_order(order_id)
        return payment_service.add_payment(order_id, request.get_json(silent=True) or {}, user_id=g.current_user.id)

    return _run("add payment", _op, status=201)


# ---------------------------------------------------------------------------
# Custody
# ---------------------------------------------------------------------------

@orders_bp.get("/<int:order_id>/custody")
@require_auth
@require_permission("VIEW_ORDERS")
def order_custody_route(order_id: int):
    try:
        order = _visible_order(order_id)
        return jsonify({"order_id": order.id, "data": [custody_service.serialize(c) for c in order.custodies]}), 200
    except ServiceError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/custody")
@require_auth
@require_permission("MANAGE_CUSTODY")
def create_custody_route(order_id: int):
    return _run(
        "create custody",
        lambda: custody_service.create_custody(
            order_id, request_payload(), user=g.current_user, photos=uploads("photos"),
        ),
        status=201,
        serializer=custody_service.serialize,
    )


# ---------------------------------------------------------------------------
# Tailoring
# ---------------------------------------------------------------------------

def _tailoring_list(query):
    return jsonify(paginate(query, tailoring_service.serialize)), 200


@orders_bp.get("/tailoring")
@require_auth
@require_permission("VIEW_ORDERS")
def tailoring_orders_route():
    return _tailoring_list(tailoring_service.tailoring_query(
        inventory_ids=accessible_inventory_ids(g.current_user),
        stage=request.args.get("stage"),
        priority=request.args.get("priority"),
        factory_id=request.args.get("factory_id", type=int),
    ))


@orders_bp.get("/tailoring/overdue")
@require_auth
@require_permission("VIEW_ORDERS")
def tailoring_overdue_route():
    return _tailoring_list(tailoring_service.overdue_query(inventory_ids=accessible_inventory_ids(g.current_user)))


@orders_bp.get("/tailoring/pending-pickup")
@require_auth
@require_permission("VIEW_ORDERS")
def tailoring_pending_pickup_route():
    return _tailoring_list(
        tailoring_service.pending_pickup_query(inventory_ids=accessible_inventory_ids(g.current_user))
    )


@orders_bp.get("/tailoring/ready-for-customer")
@require_auth
@require_permission("VIEW_ORDERS")
def tailoring_ready_route():
    return _tailoring_list(
        tailoring_service.ready_for_customer_query(inventory_ids=accessible_inventory_ids(g.current_user))
    )


@orders_bp.post("/<int:order_id>/tailoring-stage")
@require_auth
@require_permission("MANAGE_TAILORING")
def update_stage_route(order_id: int):
    return _run(
        "update tailoring stage",
        lambda: tailoring_service.update_stage(order_id, request.get_json(silent=True) or {}, user=g.current_user),
        serializer=tailoring_service.serialize,
    )


@orders_bp.post("/<int:order_id>/assign-factory")
@require_auth
@require_permission("MANAGE_TAILORING")
def assign_factory_route(order_id: int):
    return _run(
        "assign factory",
        lambda: tailoring_service.assign_factory(order_id, request.get_json(silent=True) or {}, user=g.current_user),
        serializer=tailoring_service.serialize,
    )


@orders_bp.post("/<int:order_id>/priority")
@require_auth
@require_permission("MANAGE_TAILORING")
def update_priority_route(order_id: int):
    return _run(
        "update priority",
        lambda: tailoring_service.update_priority(order_id, request.get_json(silent=True) or {}, user=g.current_user),
        serializer=tailoring_service.serialize,
    )


@orders_bp.get("/<int:order_id>/stage-logs")
@require_auth
@require_permission("VIEW_ORDERS")
def stage_logs_route(order_id: int):
    try:
        order = _visible_order(order_id)
        return jsonify({
            "order_id": order.id,
            "current_stage": order.tailoring_stage,
            "allowed_next_stages": tailoring_service.allowed_next_stages(order.tailoring_stage),
            "data": [log.to_dict() for log in tailoring_service.stage_logs(order.id)],
        }), 200
    except ServiceError as e:
        return error_response(e)
