# Overview: Flask CLI command groups for bootstrap, operator identities, and ledger checks.

# backend/counterpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and tokens:
# - python -m flask users create --username alice --name "Alice" --role cashier
#   Create an actor identity.
# - python -m flask users issue-token --username alice
#   Print a bearer token for an existing active user.
# - python -m flask users revoke-token --token <token>
#   Revoke a previously issued token.
#
# Ledger:
# - python -m flask ledger verify [--product-id 1]
#   Replay stock ledgers and report products whose stock disagrees.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PosError
from .models import Product, User, UserRole
from .services import session_service
from .services.stock_service import verify_stock_ledger


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create database schema."""
    db.create_all()
    click.echo("PASS Database schema ready")


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
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', default=None, help='Display name')
@click.option('--role', type=click.Choice(['admin', 'manager', 'cashier']), default='cashier', help='Role')
@with_appcontext
def create_user_cmd(username, name, role):
    """Create a new user."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        raise SystemExit(1)

    user = User(username=username, name=name, role=UserRole(role.upper()), is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, Role: {user.role.value})")


@users_group.command('issue-token')
@click.option('--username', required=True, help='Username')
@with_appcontext
def issue_token_cmd(username):
    """Issue a bearer token for an existing user."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        raise SystemExit(1)

    try:
        session, token = session_service.create_session(user.id)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Token for {user.username} (expires {session.expires_at.isoformat()}Z):")
    click.echo(token)


@users_group.command('revoke-token')
@click.option('--token', required=True, help='Bearer token to revoke')
@with_appcontext
def revoke_token_cmd(token):
    """Revoke a bearer token."""
    if session_service.revoke_session(token):
        click.echo("PASS Token revoked")
    else:
        click.echo("WARN Token unknown or already revoked")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Only verify this product')
@with_appcontext
def verify_ledger_cmd(product_id):
    """Replay stock ledgers and compare them with stock_quantity."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id.asc()).all()]

    failures = 0
    for pid in product_ids:
        try:
            report = verify_stock_ledger(pid)
        except PosError as e:
            failures += 1
            click.echo(f"FAIL product {pid}: {e.message}")
            continue
        if report["consistent"]:
            click.echo(f"PASS product {pid}: stock {report['stock_quantity']} ({report['entries']} entries)")
        else:
            failures += 1
            click.echo(f"FAIL product {pid}: {report['error']}")

    click.echo(f"\nChecked {len(product_ids)} product(s), {failures} inconsistent")
    if failures:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
