# Overview: Flask API routes for the rental calendar and changes to delivered rents.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..services import rent_service
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import accessible_inventory_ids
from ..validation import ServiceError, error_response


rents_bp = Blueprint("rents", __name__, url_prefix="/api/v1/rents")


def _inventories():
    return accessible_inventory_ids(g.current_user)


def _read(builder, *args):
    try:
        return jsonify(builder(*args, inventory_ids=_inventories())), 200
    except ServiceError as e:
        return error_response(e)


def _change(action: str, func, rent_id: int):
    try:
        rent = func(rent_id, request.get_json(silent=True) or {}, user=g.current_user)
        commit_or_conflict()
        return jsonify(rent_service.serialize(rent)), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


@rents_bp.get("")
@require_auth
@require_permission("VIEW_ORDERS")
def list_rents():
    """
    Query params: client_id, cloth_id, order_id, status, start_date,
    end_date, overdue_only, page, per_page.
    """
    try:
        query = rent_service.rents_query(request.args.to_dict(), inventory_ids=_inventories())
    except ServiceError as e:
        return error_response(e)
    return jsonify(paginate(query, rent_service.serialize)), 200


@rents_bp.get("/calendar")
@require_auth
@require_permission("VIEW_ORDERS")
def rents_calendar():
    return _read(rent_service.calendar, request.args.to_dict())


@rents_bp.get("/today")
@require_auth
@require_permission("VIEW_ORDERS")
def rents_today():
    return _read(rent_service.today_rents)


@rents_bp.get("/upcoming")
@require_auth
@require_permission("VIEW_ORDERS")
def rents_upcoming():
    return _read(rent_service.upcoming, request.args.to_dict())


@rents_bp.get("/overdue")
@require_auth
@require_permission("VIEW_ORDERS")
def rents_overdue():
    return _read(rent_service.overdue)


@rents_bp.get("/client/<int:client_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def client_rents(client_id: int):
    return _read(rent_service.client_rents, client_id)


@rents_bp.get("/<int:rent_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_rent(rent_id: int):
    try:
        return jsonify(rent_service.serialize(rent_service.get_rent(rent_id, user=g.current_user))), 200
    except ServiceError as e:
        return error_response(e)


@rents_bp.post("/<int:rent_id>/reschedule")
@require_auth
@require_permission("MANAGE_ORDERS")
def reschedule_rent(rent_id: int):
    return _change("reschedule rent", rent_service.reschedule, rent_id)


@rents_bp.post("/<int:rent_id>/cancel")
@require_auth
@require_permission("MANAGE_ORDERS")
def cancel_rent(rent_id: int):
    return _change("cancel rent", rent_service.cancel_rent, rent_id)


@rents_bp.post("/<int:rent_id>/no-show")
@require_auth
@require_permission("MANAGE_ORDERS")
def no_show_rent(rent_id: int):
    return _change("mark rent no-show", rent_service.mark_no_show, rent_id)
