# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/wasteflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - export FLASK_APP=wsgi.py
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables (sql backend) and seed default roles and permissions. Idempotent.
#
# User bootstrap:
# - python -m flask users create-staff --phone 0500000000 --password secret1 --role admin
#   Create a staff account (prompts if options are omitted).
#
# Permission inspection/repair:
# - python -m flask perms check 0500000000 orders.assign
#   Check whether a user has a permission.
# - python -m flask perms grant dispatcher orders.update_status
#   Grant a permission to a role.
# - python -m flask perms revoke dispatcher orders.update_status
#   Revoke a permission from a role.
#
# Maintenance:
# - python -m flask maintenance purge-idempotency
#   Delete expired idempotency records.
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

import click
from flask.cli import with_appcontext

from .errors import ApiError
from .permissions import get_permission_definition, validate_permission_name
from .services import auth_service, maintenance_service, permission_service
from .storage import get_storage


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the system: schema and RBAC defaults.

    Creates:
    - All tables (sql backend only; a no-op for memory)
    - Permissions from the catalogue
    - Roles: admin, manager, accountant, support, dispatcher
    - Default role -> permission grants
    """
    click.echo("START Initializing system...")
    store = get_storage()
    store.create_schema()
    click.echo(f"PASS Schema ready ({store.name} backend)")

    counts = permission_service.initialize_defaults(store)
    click.echo(
        f"PASS Created {counts['permissions']} permissions, {counts['roles']} roles, "
        f"{counts['grants']} role grants"
    )


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create-staff')
@click.option('--phone', prompt=True, help='Login phone number')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--email', default=None, help='Optional email')
@click.option('--role', 'role_name', default=None, help='Role to assign (e.g. admin)')
@with_appcontext
def create_staff_cli(phone, password, email, role_name):
    """Create a staff user, optionally with one role."""
    try:
        user = auth_service.create_staff_user(
            get_storage(),
            phone=phone,
            password=password,
            email=email,
            role_name=role_name,
        )
    except ApiError as e:
        click.echo(f"FAIL Error: {e.key} {e.params}")
        raise SystemExit(1)
    role_note = f" with role '{role_name}'" if role_name else ""
    click.echo(f"PASS Created staff user {user.phone} (ID: {user.id}){role_note}")


@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('check')
@click.argument('phone')
@click.argument('permission_name')
@with_appcontext
def check_permission_cli(phone, permission_name):
    """Check if a user has a specific permission."""
    store = get_storage()
    user = store.get_user_by_phone(phone)

    if not user or user.deleted_at is not None:
        click.echo(f"FAIL User '{phone}' not found")
        return

    if not validate_permission_name(permission_name):
        click.echo(f"FAIL Unknown permission '{permission_name}'")
        return
    definition = get_permission_definition(permission_name)
    click.echo(f"{definition['name']} [{definition['category']}]: {definition['description']}")

    if permission_service.user_has_permission(store, user.id, permission_name):
        click.echo(f"PASS User '{phone}' HAS permission '{permission_name}'")
    else:
        click.echo(f"FAIL User '{phone}' DOES NOT HAVE permission '{permission_name}'")

    roles = permission_service.get_user_role_names(store, user.id)
    all_perms = permission_service.get_user_permissions(store, user.id)

    click.echo(f"\nUser roles: {', '.join(roles)}")
    click.echo(f"Total permissions: {len(all_perms)}")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_name')
@with_appcontext
def grant_permission_cli(role_name, permission_name):
    """Grant a permission to a role."""
    try:
        granted = permission_service.grant_permission_to_role(get_storage(), role_name, permission_name)
        if granted:
            click.echo(f"PASS Granted '{permission_name}' to role '{role_name}'")
        else:
            click.echo(f"WARN  Role '{role_name}' already has '{permission_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_name')
@with_appcontext
def revoke_permission_cli(role_name, permission_name):
    """Revoke a permission from a role."""
    try:
        revoked = permission_service.revoke_permission_from_role(get_storage(), role_name, permission_name)
        if revoked:
            click.echo(f"PASS Revoked '{permission_name}' from role '{role_name}'")
        else:
            click.echo(f"WARN  Permission '{permission_name}' was not granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-idempotency')
@with_appcontext
def purge_idempotency_cli():
    """Delete idempotency records past their expiry."""
    deleted = maintenance_service.purge_idempotency_records(get_storage())
    click.echo(f"Deleted {deleted} expired idempotency records.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_security_events(get_storage(), retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(maintenance_group)
