# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopreq/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use 'flask db upgrade' for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Profile inspection/bootstrap:
# - python -m flask profiles create --email admin@example.com --full-name "Admin" --password "Password123!" --role admin
#   Create a profile (prompts if options are omitted).
# - python -m flask profiles create --email ana@example.com --full-name "Ana" --password "Password123!" --role user --manager-email boss@example.com
#   Create a profile reporting to an existing manager.
# - python -m flask profiles list
#   List all profiles with role, manager and active status.
#
# Request numbers:
# - python -m flask numbers peek [--year 2025]
#   Show the last issued sequence value for a year (never increments).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Profile
from .permissions import ROLE_VALUES
from .services import sequence_service
from .services.auth_service import create_profile, PasswordValidationError
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the request number counters!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask profiles create' to add an admin.")


@click.group('profiles')
def profiles_group():
    """Profile inspection and bootstrap commands."""


@profiles_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_VALUES), default='user', show_default=True, help='Role')
@click.option('--manager-email', default=None, help='Email of the approving manager')
@click.option('--cost-center', default=None, help='Cost center code')
@with_appcontext
def create_profile_cli(email, full_name, password, role, manager_email, cost_center):
    """
    Create a new profile.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    manager_id = None
    if manager_email:
        manager = db.session.query(Profile).filter_by(email=manager_email.strip().lower()).first()
        if not manager:
            click.echo(f"FAIL Manager '{manager_email}' not found")
            return
        manager_id = manager.id

    try:
        profile = create_profile(
            email=email,
            full_name=full_name,
            password=password,
            role=role,
            manager_id=manager_id,
            cost_center=cost_center,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create profile: {str(e)}")
        return

    click.echo(f"PASS Created profile: {profile.full_name} ({profile.email}) with role '{profile.role}'")
    click.echo(f"     Profile ID: {profile.id}")
    if manager_id:
        click.echo(f"     Manager: {manager_email}")


@profiles_group.command('list')
@with_appcontext
def list_profiles():
    """List all profiles with role and manager."""
    profiles = db.session.query(Profile).order_by(Profile.id.asc()).all()

    if not profiles:
        click.echo("No profiles found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Email':<32} {'Name':<24} {'Role':<12} {'Manager':<8} {'Active'}")
    click.echo("="*100)

    for profile in profiles:
        manager = str(profile.manager_id) if profile.manager_id else "-"
        active = "yes" if profile.is_active else "no"
        click.echo(
            f"{profile.id:<5} {profile.email:<32} {profile.full_name[:24]:<24} "
            f"{profile.role:<12} {manager:<8} {active}"
        )

    click.echo("="*100 + "\n")


@click.group('numbers')
def numbers_group():
    """Request number counter inspection."""


@numbers_group.command('peek')
@click.option('--year', type=int, default=None, help='Year (defaults to the current UTC year)')
@with_appcontext
def peek_numbers(year):
    """Show the last issued sequence value for a year. Does not increment."""
    try:
        last_number = sequence_service.peek_counter(year)
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")
        return

    label = year if year is not None else "current year"
    click.echo(f"Year {label}: last issued sequence {last_number}, "
               f"{sequence_service.MAX_SEQUENCE - last_number} remaining")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(profiles_group)
    app.cli.add_command(numbers_group)
