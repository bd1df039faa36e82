# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re
from ..extensions import db
from ..models import User, Role, UserRole
from ..permissions import DEFAULT_ROLES
from app.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (strength validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(name: str, email: str, password: str, roles: list[str] | None = None) -> User:
    """
    Create new user with bcrypt password hashing.

    Does not commit; callers own the transaction.

    Raises:
        ValueError: email already taken or unknown role
        PasswordValidationError: weak password
    """
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        raise ValueError("The email has already been taken.")

    user = User(name=name, email=email, password_hash=hash_password(password))
    db.session.add(user)
    db.session.flush()

    for role_name in roles or []:
        assign_role(user, role_name)

    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def create_default_roles() -> list[Role]:
    """Idempotently create the default roles."""
    roles = []
    for name, description in DEFAULT_ROLES.items():
        role = db.session.query(Role).filter_by(name=name).first()
        if not role:
            role = Role(name=name, description=description)
            db.session.add(role)
        roles.append(role)
    db.session.flush()
    return roles


def assign_role(user: User, role_name: str) -> UserRole:
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    existing = db.session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user.id, role_id=role.id)
    db.session.add(user_role)
    db.session.flush()
    return user_role


def sync_roles(user: User, role_names: list[str]) -> None:
    """Replace the user's roles with role_names."""
    for user_role in list(user.user_roles):
        if user_role.role.name not in role_names:
            db.session.delete(user_role)
    db.session.flush()
    for role_name in role_names:
        assign_role(user, role_name)
