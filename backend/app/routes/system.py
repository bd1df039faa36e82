# backend/app/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether roles/permissions are seeded.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, Role, Permission, SessionToken
from ..permissions import DEFAULT_ROLES
from app.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_auth_health() -> dict:
    """Roles and permissions must be seeded (flask system init)."""
    try:
        existing = {r.name for r in db.session.query(Role).all()}
        missing_roles = sorted(set(DEFAULT_ROLES) - existing)
        permission_count = db.session.query(Permission).count()
        if missing_roles or not permission_count:
            return {
                "status": "degraded",
                "warning": f"Missing roles: {', '.join(missing_roles)}" if missing_roles else "No permissions",
                "details": {"permission_count": permission_count},
            }
        return {"status": "healthy", "details": {"permission_count": permission_count}}
    except Exception:
        current_app.logger.exception("Auth health check failed")
        return {"status": "unhealthy", "error": "Auth service error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    checks = {
        "database": check_database_health(),
        "auth": check_auth_health(),
    }
    statuses = {c["status"] for c in checks.values()}

    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }, http_status
