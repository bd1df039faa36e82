# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--branch-name "Main Branch" --branch-code "BR-001"]
#   Idempotent bootstrap: roles, permissions, default admin and first branch.
# - python -m flask system init-permissions
#   Initialize permissions and assign defaults to roles.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create --name "Admin" --email admin@atelier.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted).
#
# Permission inspection/repair:
# - python -m flask perms list [--role manager]
# - python -m flask perms grant employee EXPORT_DATA
# - python -m flask perms revoke employee EXPORT_DATA
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked session tokens older than the retention window.
# - python -m flask rentals notify-overdue [--as-of 2026-01-31]
#   Notify branch staff about rentals past their return date (cron-friendly).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Role, UserRole, Permission, RolePermission, Branch
from .models.entities import ENTITY_BRANCH
from .permissions import DEFAULT_ROLES
from .services.auth_service import create_user, create_default_roles, PasswordValidationError, validate_password_strength
from .services import permission_service, session_service, notification_service, entity_service
from .validation import ServiceError
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--branch-name', default='Main Branch', help='Name of the first branch')
@click.option('--branch-code', default='BR-001', help='Code of the first branch')
@with_appcontext
def init_system(branch_name, branch_code):
    """
    Initialize the system: roles, permissions, default admin and first branch.

    Creates:
    - Roles: admin, manager, employee, factory_user
    - All permissions with default role grants
    - User: admin@atelier.local (role admin)
    - One branch with its inventory and cashbox (if no branch exists)
    - Default password: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing system...")

    click.echo("\nLIST Creating roles...")
    create_default_roles()
    db.session.commit()
    roles = db.session.query(Role).all()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    click.echo("\nSECURITY Initializing permissions...")
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nUSERS Creating default admin...")
    if db.session.query(User).filter_by(email="admin@atelier.local").first():
        click.echo("WARN  User 'admin@atelier.local' already exists, skipping...")
    else:
        try:
            create_user("Administrator", "admin@atelier.local", "Password123!", roles=["admin"])
            db.session.commit()
            click.echo("PASS Created user: admin@atelier.local with role 'admin'")
        except (ValueError, PasswordValidationError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create admin: {str(e)}")

    click.echo("\nBRANCH Ensuring a branch exists...")
    branch = db.session.query(Branch).first()
    if branch:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")
    else:
        try:
            branch = entity_service.create_entity(ENTITY_BRANCH, {"name": branch_name, "branch_code": branch_code})
            db.session.commit()
            click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}) with inventory and cashbox")
        except ServiceError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create branch: {e.message} {e.errors}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE System Initialized Successfully!")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin -> admin@atelier.local / Password123!")
    click.echo("")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Initialize permissions and assign defaults to existing roles."""
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (login)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(DEFAULT_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter, one digit
    - At least one special character
    """
    try:
        validate_password_strength(password)
        user = create_user(name, email, password, roles=[role])
        db.session.commit()
        click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        db.session.rollback()
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Active':<8} {'Roles'}")
    click.echo("=" * 100)

    for user in users:
        role_names = [
            name for (name,) in db.session.query(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(UserRole.user_id == user.id)
        ]
        roles_str = ", ".join(role_names) if role_names else "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {active_str:<8} {roles_str}")

    click.echo("=" * 100 + "\n")


# =============================================================================
# PERMISSIONS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@with_appcontext
def list_permissions_cli(role):
    """List permissions, optionally only those granted to one role."""
    query = db.session.query(Permission)
    if role:
        role_obj = db.session.query(Role).filter_by(name=role).first()
        if not role_obj:
            click.echo(f"FAIL Role '{role}' not found")
            return
        query = query.join(RolePermission, RolePermission.permission_id == Permission.id).filter(
            RolePermission.role_id == role_obj.id
        )
    perms = query.order_by(Permission.category, Permission.code).all()

    current_category = None
    for perm in perms:
        if perm.category != current_category:
            if current_category:
                click.echo("")
            click.echo(f"CATEGORY {perm.category}")
            click.echo("-" * 80)
            current_category = perm.category
        click.echo(f"  {perm.code:<28} {perm.name}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def grant_permission_cli(role_name, permission_code):
    """Grant a permission to a role."""
    try:
        permission_service.grant_permission_to_role(role_name, permission_code)
        click.echo(f"PASS Granted '{permission_code}' to role '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def revoke_permission_cli(role_name, permission_code):
    """Revoke a permission from a role."""
    try:
        if permission_service.revoke_permission_from_role(role_name, permission_code):
            click.echo(f"PASS Revoked '{permission_code}' from role '{role_name}'")
        else:
            click.echo(f"WARN  Permission '{permission_code}' was not granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Delete expired or revoked session tokens older than the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    db.session.commit()
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


@click.group('rentals')
def rentals_group():
    """Rental follow-up commands."""


@rentals_group.command('notify-overdue')
@click.option('--as-of', help='Reference date (YYYY-MM-DD); defaults to today')
@with_appcontext
def notify_overdue_cli(as_of):
    """Notify branch staff about active rentals past their return date."""
    try:
        day = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter("Use YYYY-MM-DD", param_hint="--as-of")
    count = notification_service.notify_overdue_rentals(day)
    db.session.commit()
    click.echo(f"PASS Notified staff about {count} overdue rental(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(maintenance_group)
    app.cli.add_command(rentals_group)
