# backend/app/routes/transfers.py
"""
Inter-entity transfer API routes.

Clothes move between branches, workshops and factories only through an
approved transfer item.
"""
from flask import Blueprint, request, jsonify, current_app, g

from app.extensions import db
from app.decorators import require_auth, require_permission
from app.pagination import paginate
from app.services import transfer_service
from app.services.concurrency import commit_or_conflict
from app.validation import ServiceError, error_response
from app.time_utils import parse_iso_date


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/v1/transfers")


def _notes() -> str | None:
    return (request.get_json(silent=True) or {}).get("notes")


def _mutate(action: str, func, status: int = 200):
    try:
        result = func()
        commit_or_conflict()
        if result is None:
            return "", 204
        return jsonify(result.to_dict()), status
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


@transfers_bp.get("")
@require_auth
@require_permission("VIEW_TRANSFERS")
def list_transfers():
    """
    Query params: status, from_entity_type, to_entity_type, action,
    date_from, date_to (YYYY-MM-DD), page, per_page.
    """
    try:
        date_from = parse_iso_date(request.args.get("date_from"))
        date_to = parse_iso_date(request.args.get("date_to"))
    except ValueError:
        return jsonify({"message": "The given data was invalid.", "errors": {"date": ["Invalid date filter."]}}), 422

    query = transfer_service.transfers_query(
        g.current_user,
        status=request.args.get("status"),
        from_entity_type=request.args.get("from_entity_type"),
        to_entity_type=request.args.get("to_entity_type"),
        action=request.args.get("action"),
        date_from=date_from,
        date_to=date_to,
    )
    return jsonify(paginate(query)), 200


@transfers_bp.post("")
@require_auth
@require_permission("CREATE_TRANSFERS")
def create_transfer():
    """
    Request body:
    {
        "from_entity_type": str, "from_entity_id": int,
        "to_entity_type": str, "to_entity_id": int,
        "cloth_ids": [int], "transfer_date": "YYYY-MM-DD", "notes": str?
    }
    """
    return _mutate(
        "create transfer",
        lambda: transfer_service.create_transfer(request.get_json(silent=True) or {}, user=g.current_user),
        status=201,
    )


@transfers_bp.get("/<int:transfer_id>")
@require_auth
@require_permission("VIEW_TRANSFERS")
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(transfer_id)
        transfer_service.ensure_transfer_access(g.current_user, transfer)
        return jsonify(transfer.to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@transfers_bp.put("/<int:transfer_id>")
@require_auth
@require_permission("CREATE_TRANSFERS")
def update_transfer(transfer_id: int):
    return _mutate(
        "update transfer",
        lambda: transfer_service.update_transfer(transfer_id, request.get_json(silent=True) or {}, user=g.current_user),
    )


@transfers_bp.delete("/<int:transfer_id>")
@require_auth
@require_permission("CREATE_TRANSFERS")
def delete_transfer(transfer_id: int):
    return _mutate("delete transfer", lambda: transfer_service.delete_transfer(transfer_id, user=g.current_user))


@transfers_bp.post("/<int:transfer_id>/approve")
@require_auth
@require_permission("APPROVE_TRANSFERS")
def approve_transfer(transfer_id: int):
    return _mutate(
        "approve transfer",
        lambda: transfer_service.approve_transfer(transfer_id, user=g.current_user, notes=_notes()),
    )


@transfers_bp.post("/<int:transfer_id>/approve-items")
@require_auth
@require_permission("APPROVE_TRANSFERS")
def approve_transfer_items(transfer_id: int):
    return _mutate(
        "approve transfer items",
        lambda: transfer_service.approve_items(transfer_id, request.get_json(silent=True) or {}, user=g.current_user),
    )


@transfers_bp.post("/<int:transfer_id>/reject")
@require_auth
@require_permission("APPROVE_TRANSFERS")
def reject_transfer(transfer_id: int):
    return _mutate(
        "reject transfer",
        lambda: transfer_service.reject_transfer(transfer_id, user=g.current_user, notes=_notes()),
    )


@transfers_bp.post("/<int:transfer_id>/reject-items")
@require_auth
@require_permission("APPROVE_TRANSFERS")
def reject_transfer_items(transfer_id: int):
    return _mutate(
        "reject transfer items",
        lambda: transfer_service.reject_items(transfer_id, request.get_json(silent=True) or {}, user=g.current_user),
    )
