# Overview: Bearer session tokens for staff logins: issue, validate, revoke, purge.

"""
Session Token Management Service

WHY: Counter staff share terminals, so a login must expire on its own and be
revocable the moment an employee is terminated or deactivated.

SECURITY FEATURES:
- 32 random bytes per token, only the SHA-256 digest is stored
- Absolute lifetime SESSION_ABSOLUTE_HOURS (default 24)
- Idle lifetime SESSION_IDLE_HOURS (default 2)
- Revoked on logout, termination and deactivation
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, User
from app.time_utils import utcnow


DEFAULT_ABSOLUTE_HOURS = 24
DEFAULT_IDLE_HOURS = 2


@dataclass
class SessionContext:
    """What require_auth puts on flask.g."""
    user: User
    session: SessionToken


def _hours(key: str, default: int) -> timedelta:
    value = current_app.config.get(key, default) if has_app_context() else default
    return timedelta(hours=value)


def absolute_timeout() -> timedelta:
    return _hours("SESSION_ABSOLUTE_HOURS", DEFAULT_ABSOLUTE_HOURS)


def idle_timeout() -> timedelta:
    return _hours("SESSION_IDLE_HOURS", DEFAULT_IDLE_HOURS)


def generate_token() -> str:
    """64-character hex string. Handed to the client once, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens are high-entropy; a fast digest is enough.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Open a session for a user who just passed the password check.

    Returns (session_record, plaintext_token).
    """
    if not db.session.get(User, user_id):
        raise ValueError("User not found")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + absolute_timeout(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def _find_live(token: str) -> SessionToken | None:
    return db.session.query(SessionToken).filter_by(token_hash=hash_token(token), is_revoked=False).first()


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user.

    None for unknown, revoked, expired or idle tokens, and for users that
    were deactivated after logging in. A hit refreshes last_used_at.
    """
    session = _find_live(token)
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None
    if now - session.last_used_at > idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """False when the token is unknown or already revoked."""
    session = _find_live(token)
    if not session:
        return False
    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """
    Revoke every live session of a user (termination, deactivation).

    Does not commit; the employee service owns that transaction.
    """
    return db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).update(
        {"is_revoked": True, "revoked_at": utcnow(), "revoked_reason": reason}
    )


def active_session_count(user_id: int) -> int:
    return db.session.query(SessionToken).filter(
        SessionToken.user_id == user_id,
        SessionToken.is_revoked.is_(False),
        SessionToken.expires_at > utcnow(),
    ).count()


def cleanup_expired_sessions(retention_days: int = 30) -> int:
    """
    Delete expired or revoked sessions created before the retention window.

    Run from cron: flask maintenance cleanup-sessions.
    """
    now = utcnow()
    deleted = db.session.query(SessionToken).filter(
        db.or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True)),
        SessionToken.created_at < now - timedelta(days=retention_days),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
