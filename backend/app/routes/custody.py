# Overview: Flask API routes for custody deposits and their signed photo URLs.

from flask import Blueprint, request, jsonify, current_app, g, send_file

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..request_utils import request_payload, uploads
from ..services import custody_service, photo_storage, export_service
from ..services.concurrency import commit_or_conflict
from ..services.entity_service import accessible_inventory_ids, ensure_inventory_access
from ..validation import ServiceError, error_response


custody_bp = Blueprint("custody", __name__, url_prefix="/api/v1")


def _visible_custody(custody_id: int):
    custody = custody_service.get_custody(custody_id)
    ensure_inventory_access(g.current_user, custody.order.inventory_id)
    return custody


def _custody_query():
    return custody_service.custody_query(
        inventory_ids=accessible_inventory_ids(g.current_user),
        order_id=request.args.get("order_id", type=int),
        status=request.args.get("status"),
        custody_type=request.args.get("type"),
    )


@custody_bp.get("/custody")
@require_auth
@require_permission("VIEW_ORDERS")
def list_custody_route():
    return jsonify(paginate(_custody_query(), custody_service.serialize)), 200


@custody_bp.get("/custody/export")
@require_auth
@require_permission("EXPORT_DATA")
def export_custody_route():
    return export_service.export_custody(_custody_query().all())


@custody_bp.get("/custody/<int:custody_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_custody_route(custody_id: int):
    try:
        return jsonify(custody_service.serialize(_visible_custody(custody_id))), 200
    except ServiceError as e:
        return error_response(e)


@custody_bp.put("/custody/<int:custody_id>")
@require_auth
@require_permission("MANAGE_CUSTODY")
def update_custody_route(custody_id: int):
    try:
        custody = custody_service.update_custody(custody_id, request.get_json(silent=True) or {}, user=g.current_user)
        commit_or_conflict()
        return jsonify(custody_service.serialize(custody)), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update custody")
        return jsonify({"message": "Internal server error"}), 500


@custody_bp.post("/custody/<int:custody_id>/return")
@require_auth
@require_permission("MANAGE_CUSTODY")
def return_custody_route(custody_id: int):
    try:
        custody = custody_service.return_custody(
            custody_id, request_payload(), user=g.current_user,
            photos=uploads("acknowledgement_receipt_photos"),
        )
        commit_or_conflict()
        return jsonify(custody_service.serialize(custody)), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to return custody")
        return jsonify({"message": "Internal server error"}), 500


@custody_bp.get("/custody-photos/<path:path>")
def serve_photo(path: str):
    """Signed, time-limited access to a private photo; no bearer token needed."""
    try:
        relative = photo_storage.verify(path, request.args.get("signature"))
        return send_file(photo_storage.absolute_path(relative))
    except ServiceError as e:
        current_app.logger.warning("Rejected photo request for %s: %s", path, e.message)
        return error_response(e)
