# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent; use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username admin --email admin@storepos.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#   List all users with roles and active status.
#
# Reports:
# - python -m flask reports generate --date 2026-10-18
#   Generate (or regenerate) the daily report for a date.
#
# Loyalty:
# - python -m flask loyalty reconcile
#   Accrue every completed customer sale that is missing its loyalty accrual.

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import User
from .permissions import Role, get_role_permissions
from .services.auth_service import create_user, PasswordValidationError
from .services import loyalty_service, reporting_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', default=None, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, full_name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            full_name=full_name or username,
            role=Role.parse(role),
        )
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Role':<10} {'Caps'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        caps = len(get_role_permissions(user.role_enum))
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {user.role:<10} {caps}")

    click.echo("="*90 + "\n")


@click.group('reports')
def reports_group():
    """Daily report commands."""


@reports_group.command('generate')
@click.option('--date', 'report_date', required=True, help='Report date (YYYY-MM-DD)')
@click.option('--top', 'top_n', type=int, default=None, help='Number of top products (default from config)')
@with_appcontext
def generate_report_cli(report_date, top_n):
    """Generate or regenerate the report for one date."""
    try:
        report = reporting_service.generate_daily_report(report_date, top_n=top_n)
    except PosError as e:
        raise click.ClickException(str(e))

    data = report.to_dict()
    click.echo(f"PASS Report {data['report_date']}")
    click.echo(f"     Transactions: {data['total_transactions']}")
    click.echo(f"     Total sales:  {data['total_sales']}")
    click.echo(f"     Items sold:   {data['items_sold']}")
    click.echo(f"     Hash:         {data['content_hash']}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger maintenance commands."""


@loyalty_group.command('reconcile')
@with_appcontext
def reconcile_loyalty_cli():
    """Accrue completed customer sales that have no accrual yet."""
    accrued = loyalty_service.reconcile_missing_accruals()
    if not accrued:
        click.echo("PASS Loyalty ledger is consistent; nothing to accrue.")
        return
    click.echo(f"FIXED Accrued {len(accrued)} sale(s): {', '.join(str(i) for i in accrued)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(reports_group)
    app.cli.add_command(loyalty_group)
