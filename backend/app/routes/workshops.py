# Overview: Flask API routes for workshops: CRUD, incoming transfers and per-cloth processing.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..models import Workshop, WorkshopLog
from ..models.entities import ENTITY_WORKSHOP
from ..services import workshop_service, entity_service, export_service
from ..services.concurrency import commit_or_conflict
from ..validation import ServiceError, error_response
from .entities import register_entity_crud


workshops_bp = Blueprint("workshops", __name__, url_prefix="/api/v1/workshops")

register_entity_crud(workshops_bp, ENTITY_WORKSHOP)


def _visible_workshop(workshop_id: int) -> Workshop:
    workshop = workshop_service.get_workshop(workshop_id)
    entity_service.ensure_entity_access(g.current_user, ENTITY_WORKSHOP, workshop.id)
    return workshop


def _mutate(action: str, func, status: int = 200):
    try:
        result = func()
        commit_or_conflict()
        return jsonify(result.to_dict()), status
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


@workshops_bp.get("/statuses")
@require_auth
def workshop_statuses():
    return jsonify(list(Workshop.CLOTH_STATUSES)), 200


@workshops_bp.get("/actions")
@require_auth
def workshop_actions():
    return jsonify(list(WorkshopLog.ACTIONS)), 200


@workshops_bp.get("/export")
@require_auth
@require_permission("EXPORT_DATA")
def export_workshops():
    workshops = entity_service.list_entities(ENTITY_WORKSHOP, g.current_user).all()
    return export_service.export_workshops(workshops)


@workshops_bp.get("/<int:workshop_id>/clothes")
@require_auth
@require_permission("VIEW_WORKSHOPS")
def workshop_clothes(workshop_id: int):
    try:
        workshop = _visible_workshop(workshop_id)
        rows = workshop_service.workshop_clothes(workshop.id, status=request.args.get("status"))
        return jsonify({"workshop_id": workshop.id, "data": rows}), 200
    except ServiceError as e:
        return error_response(e)


@workshops_bp.get("/<int:workshop_id>/pending-transfers")
@require_auth
@require_permission("VIEW_WORKSHOPS")
def pending_transfers(workshop_id: int):
    try:
        workshop = _visible_workshop(workshop_id)
        transfers = workshop_service.pending_transfers(workshop.id)
        return jsonify({"workshop_id": workshop.id, "data": [t.to_dict() for t in transfers]}), 200
    except ServiceError as e:
        return error_response(e)


@workshops_bp.post("/<int:workshop_id>/approve-transfer/<int:transfer_id>")
@require_auth
@require_permission("MANAGE_WORKSHOP_CLOTHES")
def approve_transfer(workshop_id: int, transfer_id: int):
    return _mutate(
        "approve workshop transfer",
        lambda: workshop_service.approve_transfer(
            workshop_id, transfer_id, request.get_json(silent=True) or {}, user=g.current_user,
        ),
    )


@workshops_bp.post("/<int:workshop_id>/update-cloth-status")
@require_auth
@require_permission("MANAGE_WORKSHOP_CLOTHES")
def update_cloth_status(workshop_id: int):
    return _mutate(
        "update workshop cloth status",
        lambda: workshop_service.update_cloth_status(workshop_id, request.get_json(silent=True) or {},
                                                     user=g.current_user),
    )


@workshops_bp.post("/<int:workshop_id>/return-cloth")
@require_auth
@require_permission("MANAGE_WORKSHOP_CLOTHES")
def return_cloth(workshop_id: int):
    return _mutate(
        "return workshop cloth",
        lambda: workshop_service.return_cloth(workshop_id, request.get_json(silent=True) or {}, user=g.current_user),
        status=201,
    )


@workshops_bp.get("/<int:workshop_id>/logs")
@require_auth
@require_permission("VIEW_WORKSHOPS")
def workshop_logs(workshop_id: int):
    try:
        workshop = _visible_workshop(workshop_id)
        query = workshop_service.logs_query(
            workshop.id,
            cloth_id=request.args.get("cloth_id", type=int),
            action=request.args.get("action"),
        )
    except ServiceError as e:
        return error_response(e)
    return jsonify(paginate(query)), 200


@workshops_bp.get("/<int:workshop_id>/cloth-history/<int:cloth_id>")
@require_auth
@require_permission("VIEW_WORKSHOPS")
def cloth_history(workshop_id: int, cloth_id: int):
    try:
        workshop = _visible_workshop(workshop_id)
        logs = workshop_service.cloth_history(workshop.id, cloth_id)
        return jsonify({
            "workshop_id": workshop.id,
            "cloth_id": cloth_id,
            "current_status": workshop_service.current_status(workshop.id, cloth_id),
            "data": [log.to_dict() for log in logs],
        }), 200
    except ServiceError as e:
        return error_response(e)
