# Overview: Flask API routes for the current user's in-app notifications.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth
from ..pagination import paginate
from ..services import notification_service
from ..services.concurrency import commit_or_conflict
from ..validation import ServiceError, error_response


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications():
    unread_only = request.args.get("unread", "false").lower() in ("1", "true", "yes")
    query = notification_service.inbox_query(g.current_user.id, unread_only=unread_only)
    return jsonify(paginate(query)), 200


@notifications_bp.get("/unread-count")
@require_auth
def unread_count():
    return jsonify({"unread_count": notification_service.unread_count(g.current_user.id)}), 200


def _update(action: str, func):
    try:
        notification = func(g.current_user.id)
        commit_or_conflict()
        return jsonify(notification.to_dict()), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"message": "Internal server error"}), 500


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read(notification_id: int):
    return _update("mark notification read", lambda uid: notification_service.mark_read(uid, notification_id))


@notifications_bp.post("/<int:notification_id>/dismiss")
@require_auth
def dismiss(notification_id: int):
    return _update("dismiss notification", lambda uid: notification_service.dismiss(uid, notification_id))


@notifications_bp.post("/read-all")
@require_auth
def mark_all_read():
    try:
        updated = notification_service.mark_all_read(g.current_user.id)
        commit_or_conflict()
        return jsonify({"updated": updated}), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark notifications read")
        return jsonify({"message": "Internal server error"}), 500
