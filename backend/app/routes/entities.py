# Overview: Flask API routes for branches and factories (CRUD shared with workshops).

"""
Branches, workshops and factories share one CRUD shape; register_entity_crud
wires it onto a blueprint for one entity type.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_permission
from ..pagination import paginate
from ..services import entity_service
from ..services.concurrency import commit_or_conflict
from ..models.entities import ENTITY_BRANCH, ENTITY_FACTORY
from ..validation import ServiceError, error_response


branches_bp = Blueprint("branches", __name__, url_prefix="/api/v1/branches")
factories_bp = Blueprint("factories", __name__, url_prefix="/api/v1/factories")


def _serialize(entity_type: str, entity) -> dict:
    data = entity.to_dict()
    if entity_type == ENTITY_BRANCH:
        cashbox = getattr(entity, "cashbox", None)
        data["cashbox"] = cashbox.to_dict() if cashbox else None
    return data


def register_entity_crud(bp: Blueprint, entity_type: str) -> None:
    label = entity_type

    @bp.get("")
    @require_auth
    def list_route():
        query = entity_service.list_entities(entity_type, g.current_user, search=request.args.get("search"))
        return jsonify(paginate(query, lambda e: _serialize(entity_type, e))), 200

    @bp.post("")
    @require_auth
    @require_permission("MANAGE_ENTITIES")
    def create_route():
        try:
            entity = entity_service.create_entity(entity_type, request.get_json(silent=True) or {})
            commit_or_conflict()
            return jsonify(_serialize(entity_type, entity)), 201
        except ServiceError as e:
            db.session.rollback()
            return error_response(e)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to create %s", label)
            return jsonify({"message": "Internal server error"}), 500

    @bp.get("/<int:entity_id>")
    @require_auth
    def get_route(entity_id: int):
        try:
            entity = entity_service.get_entity(entity_type, entity_id)
            entity_service.ensure_entity_access(g.current_user, entity_type, entity.id)
            return jsonify(_serialize(entity_type, entity)), 200
        except ServiceError as e:
            return error_response(e)

    @bp.put("/<int:entity_id>")
    @require_auth
    @require_permission("MANAGE_ENTITIES")
    def update_route(entity_id: int):
        try:
            entity = entity_service.update_entity(entity_type, entity_id, request.get_json(silent=True) or {})
            commit_or_conflict()
            return jsonify(_serialize(entity_type, entity)), 200
        except ServiceError as e:
            db.session.rollback()
            return error_response(e)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to update %s", label)
            return jsonify({"message": "Internal server error"}), 500

    @bp.delete("/<int:entity_id>")
    @require_auth
    @require_permission("MANAGE_ENTITIES")
    def delete_route(entity_id: int):
        try:
            entity_service.delete_entity(entity_type, entity_id)
            commit_or_conflict()
            return "", 204
        except ServiceError as e:
            db.session.rollback()
            return error_response(e)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to delete %s", label)
            return jsonify({"message": "Internal server error"}), 500


register_entity_crud(branches_bp, ENTITY_BRANCH)
register_entity_crud(factories_bp, ENTITY_FACTORY)
