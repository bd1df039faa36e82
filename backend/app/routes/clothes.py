# Overview: Flask API routes for cloth pieces and cloth types; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..services import cloth_service, availability_service, export_service, history_service
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import (
    accessible_inventory_ids, ensure_entity_access, ensure_inventory_access, resolve_inventory,
)
from ..models.entities import ENTITY_TYPES
from ..validation import ServiceError, Payload, error_response
from app.time_utils import today


clothes_bp = Blueprint("clothes", __name__, url_prefix="/api/v1/clothes")
cloth_types_bp = Blueprint("cloth_types", __name__, url_prefix="/api/v1/cloth-types")


def _clothes_query():
    return cloth_service.clothes_query(
        inventory_ids=accessible_inventory_ids(g.current_user),
        search=request.args.get("search"),
        status=request.args.get("status"),
        cloth_type_id=request.args.get("cloth_type_id", type=int),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
    )


def _visible_cloth(cloth_id: int):
    cloth = cloth_service.get_cloth(cloth_id)
    if cloth.inventory_id is not None:
        ensure_inventory_access(g.current_user, cloth.inventory_id)
    return cloth


@clothes_bp.get("")
@require_auth
@require_permission("VIEW_CLOTHES")
def list_clothes_route():
    return jsonify(paginate(_clothes_query())), 200


@clothes_bp.get("/export")
@require_auth
@require_permission("EXPORT_DATA")
def export_clothes_route():
    return export_service.export_clothes(_clothes_query().all())


@clothes_bp.get("/available-for-date")
@require_auth
@require_permission("VIEW_CLOTHES")
def available_for_date_route():
    try:
        p = Payload(request.args.to_dict())
        delivery_date = p.date("delivery_date", required=True, not_before=today())
        days_of_rent = p.integer("days_of_rent", minimum=1, default=1)
        entity_type = p.choice("entity_type", ENTITY_TYPES, required=True)
        entity_id = p.integer("entity_id", required=True, minimum=1)
        p.validate()

        ensure_entity_access(g.current_user, entity_type, entity_id)
        inventory = resolve_inventory(entity_type, entity_id)
        clothes = availability_service.available_for_date(inventory, delivery_date, days_of_rent)
        return jsonify({
            "delivery_date": delivery_date.isoformat(),
            "days_of_rent": days_of_rent,
            "available_clothes": [c.to_dict() for c in clothes],
            "total_available": len(clothes),
        }), 200
    except ServiceError as e:
        return error_response(e)


@clothes_bp.post("/unavailable-days/bulk")
@require_auth
@require_permission("VIEW_CLOTHES")
def bulk_unavailable_days_route():
    try:
        p = Payload(request.get_json(silent=True) or {})
        cloth_ids = p.id_list("cloth_ids", required=True)
        p.validate()

        results = []
        for cloth_id in cloth_ids:
            cloth = _visible_cloth(cloth_id)
            results.append(availability_service.unavailable_days(cloth))
        return jsonify({"data": results}), 200
    except ServiceError as e:
        return error_response(e)


@clothes_bp.post("")
@require_auth
@require_permission("MANAGE_CLOTHES")
def create_cloth_route():
    try:
        data = request.get_json(silent=True) or {}
        if data.get("entity_type") in ENTITY_TYPES and isinstance(data.get("entity_id"), int):
            ensure_entity_access(g.current_user, data["entity_type"], data["entity_id"])
        cloth = cloth_service.create_cloth(data, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(cloth.to_dict()), 201
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create cloth")
        return jsonify({"message": "Internal server error"}), 500


@clothes_bp.get("/<int:cloth_id>")
@require_auth
@require_permission("VIEW_CLOTHES")
def get_cloth_route(cloth_id: int):
    try:
        return jsonify(_visible_cloth(cloth_id).to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@clothes_bp.put("/<int:cloth_id>")
@require_auth
@require_permission("MANAGE_CLOTHES")
def update_cloth_route(cloth_id: int):
    try:
        _visible_cloth(cloth_id)
        cloth = cloth_service.update_cloth(cloth_id, request.get_json(silent=True) or {}, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(cloth.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update cloth")
        return jsonify({"message": "Internal server error"}), 500


@clothes_bp.delete("/<int:cloth_id>")
@require_auth
@require_permission("MANAGE_CLOTHES")
def delete_cloth_route(cloth_id: int):
    try:
        _visible_cloth(cloth_id)
        cloth_service.delete_cloth(cloth_id)
        commit_or_conflict()
        return "", 204
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete cloth")
        return jsonify({"message": "Internal server error"}), 500


@clothes_bp.post("/<int:cloth_id>/status")
@require_auth
@require_permission("MANAGE_CLOTHES")
def change_status_route(cloth_id: int):
    try:
        _visible_cloth(cloth_id)
        cloth = cloth_service.change_status(cloth_id, request.get_json(silent=True) or {}, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(cloth.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change cloth status")
        return jsonify({"message": "Internal server error"}), 500


@clothes_bp.get("/<int:cloth_id>/history")
@require_auth
@require_permission("VIEW_CLOTHES")
def cloth_history_route(cloth_id: int):
    try:
        cloth = _visible_cloth(cloth_id)
        rows = history_service.cloth_history(cloth.id)
        return jsonify({"cloth_id": cloth.id, "data": [r.to_dict() for r in rows]}), 200
    except ServiceError as e:
        return error_response(e)


@clothes_bp.get("/<int:cloth_id>/unavailable-days")
@require_auth
@require_permission("VIEW_CLOTHES")
def unavailable_days_route(cloth_id: int):
    try:
        return jsonify(availability_service.unavailable_days(_visible_cloth(cloth_id))), 200
    except ServiceError as e:
        return error_response(e)


# ---------------------------------------------------------------------------
# Cloth types
# ---------------------------------------------------------------------------

@cloth_types_bp.get("")
@require_auth
@require_permission("VIEW_CLOTHES")
def list_cloth_types_route():
    from ..models import ClothType
    query = db.session.query(ClothType).order_by(ClothType.name)
    return jsonify(paginate(query)), 200


@cloth_types_bp.post("")
@require_auth
@require_permission("MANAGE_CLOTHES")
def create_cloth_type_route():
    try:
        cloth_type = cloth_service.create_cloth_type(request.get_json(silent=True) or {})
        commit_or_conflict()
        return jsonify(cloth_type.to_dict()), 201
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create cloth type")
        return jsonify({"message": "Internal server error"}), 500


@cloth_types_bp.get("/<int:cloth_type_id>")
@require_auth
@require_permission("VIEW_CLOTHES")
def get_cloth_type_route(cloth_type_id: int):
    try:
        return jsonify(cloth_service.get_cloth_type(cloth_type_id).to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@cloth_types_bp.put("/<int:cloth_type_id>")
@require_auth
@require_permission("MANAGE_CLOTHES")
def update_cloth_type_route(cloth_type_id: int):
    try:
        cloth_type = cloth_service.update_cloth_type(cloth_type_id, request.get_json(silent=True) or {})
        commit_or_conflict()
        return jsonify(cloth_type.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update cloth type")
        return jsonify({"message": "Internal server error"}), 500


@cloth_types_bp.delete("/<int:cloth_type_id>")
@require_auth
@require_permission("MANAGE_CLOTHES")
def delete_cloth_type_route(cloth_type_id: int):
    try:
        cloth_service.delete_cloth_type(cloth_type_id)
        commit_or_conflict()
        return "", 204
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete cloth type")
        return jsonify({"message": "Internal server error"}), 500
