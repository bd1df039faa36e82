# Overview: Flask API routes for clients; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..services import client_service, export_service
from ..services.concurrency import commit_or_conflict
from ..validation import ServiceError, error_response


clients_bp = Blueprint("clients", __name__, url_prefix="/api/v1/clients")


@clients_bp.get("")
@require_auth
@require_permission("VIEW_CLIENTS")
def list_clients_route():
    query = client_service.clients_query(
        search=request.args.get("search"),
        source=request.args.get("source"),
    )
    return jsonify(paginate(query)), 200


@clients_bp.get("/export")
@require_auth
@require_permission("EXPORT_DATA")
def export_clients_route():
    query = client_service.clients_query(search=request.args.get("search"), source=request.args.get("source"))
    return export_service.export_clients(query.all())


@clients_bp.post("")
@require_auth
@require_permission("MANAGE_CLIENTS")
def create_client_route():
    try:
        client = client_service.create_client(request.get_json(silent=True) or {})
        commit_or_conflict()
        return jsonify(client.to_dict()), 201
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create client")
        return jsonify({"message": "Internal server error"}), 500


@clients_bp.get("/<int:client_id>")
@require_auth
@require_permission("VIEW_CLIENTS")
def get_client_route(client_id: int):
    try:
        return jsonify(client_service.get_client(client_id).to_dict()), 200
    except ServiceError as e:
        return error_response(e)


@clients_bp.put("/<int:client_id>")
@require_auth
@require_permission("MANAGE_CLIENTS")
def update_client_route(client_id: int):
    try:
        client = client_service.update_client(client_id, request.get_json(silent=True) or {})
        commit_or_conflict()
        return jsonify(client.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update client")
        return jsonify({"message": "Internal server error"}), 500


@clients_bp.delete("/<int:client_id>")
@require_auth
@require_permission("MANAGE_CLIENTS")
def delete_client_route(client_id: int):
    try:
        client_service.delete_client(client_id)
        commit_or_conflict()
        return "", 204
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete client")
        return jsonify({"message": "Internal server error"}), 500


@clients_bp.get("/<int:client_id>/measurements")
@require_auth
@require_permission("VIEW_CLIENTS")
def get_measurements_route(client_id: int):
    try:
        client = client_service.get_client(client_id)
        return jsonify({"client_id": client.id, "measurements": client.measurements_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@clients_bp.put("/<int:client_id>/measurements")
@require_auth
@require_permission("MANAGE_CLIENTS")
def update_measurements_route(client_id: int):
    try:
        client = client_service.update_measurements(client_id, request.get_json(silent=True) or {})
        commit_or_conflict()
        return jsonify({"client_id": client.id, "measurements": client.measurements_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update client measurements")
        return jsonify({"message": "Internal server error"}), 500
