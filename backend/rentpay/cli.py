# Overview: Flask CLI command groups for bootstrap, operator inspection, and commission management.

# backend/rentpay/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables (if missing) and seed the default commission rate. Idempotent.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and tokens (the auth service normally owns these):
# - python -m flask users create --email admin@rentpay.local --name "Admin" --role admin
# - python -m flask users create --email ll@rentpay.local --name "Landlord" --role landlord --kyc
# - python -m flask users token --email admin@rentpay.local
#   Issue a bearer token for API calls.
#
# Commission:
# - python -m flask commission show
# - python -m flask commission set --rate 0.05 --reason "Promo" --actor-email admin@rentpay.local
# - python -m flask commission history
#
# Escrow:
# - python -m flask escrow overdue
#   List completed rent still held past its release window.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import User
from .services import commission_service, escrow_service, session_service
from .states import Role
from .time_utils import utcnow, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables and seed the default commission rate."""
    click.echo("START Initializing payment ledger...")
    db.create_all()
    current = commission_service.get_current()
    click.echo(f"PASS Commission rate: {current.rate} (effective {to_utc_z(current.effective_from)})")
    click.echo("DONE System initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DANGER: Drop all tables and recreate schema."""
    if not yes:
        click.confirm("This will DELETE ALL DATA. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset complete. Run 'python -m flask system init' to seed.")


@click.group('users')
def users_group():
    """Ledger principal bootstrap."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', 'full_name', default=None, help='Full name')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@click.option('--kyc', is_flag=True, help='Mark KYC as verified')
@with_appcontext
def create_user_cli(email, full_name, role, kyc):
    """Create a user."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User {email} already exists")
        return

    user = User(
        email=email,
        full_name=full_name,
        role=role,
        is_active=True,
        kyc_verified=kyc,
        kyc_verified_at=utcnow() if kyc else None,
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created {role} {email} (ID: {user.id})")


@users_group.command('token')
@click.option('--email', prompt=True, help='Email address')
@with_appcontext
def issue_token_cli(email):
    """Issue a bearer token for a user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User {email} not found")
        return
    try:
        session, token = session_service.create_session(user.id)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Token for {user.email} (expires {to_utc_z(session.expires_at)}):")
    click.echo(token)


@click.group('commission')
def commission_group():
    """Platform commission rate."""


@commission_group.command('show')
@with_appcontext
def show_commission():
    current = commission_service.get_current()
    click.echo(f"Rate: {current.rate}")
    click.echo(f"Effective from: {to_utc_z(current.effective_from)}")
    click.echo(f"Last updated by: {current.last_updated_by_user_id or '-'}")
    click.echo(f"Reason: {current.change_reason or '-'}")


@commission_group.command('set')
@click.option('--rate', required=True, help='New rate as a fraction, e.g. 0.05')
@click.option('--reason', required=True, help='Reason for the change')
@click.option('--actor-email', required=True, help='Admin making the change')
@with_appcontext
def set_commission(rate, reason, actor_email):
    actor = db.session.query(User).filter_by(email=actor_email.strip().lower()).first()
    if not actor or actor.role != Role.ADMIN.value:
        click.echo(f"FAIL {actor_email} is not an admin")
        return
    try:
        current = commission_service.update_rate(rate, actor.id, reason)
    except LedgerError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Commission rate is now {current.rate}")


@commission_group.command('history')
@with_appcontext
def commission_history():
    history = commission_service.get_history()
    if not history:
        click.echo("No rate changes recorded")
        return
    for change in history:
        click.echo(
            f"{to_utc_z(change.changed_at)}  {change.previous_rate} -> {change.rate}  "
            f"by {change.changed_by_user_id}: {change.reason}"
        )


@click.group('escrow')
def escrow_group():
    """Escrow inspection."""


@escrow_group.command('overdue')
@with_appcontext
def overdue_escrow():
    now = utcnow()
    entries = escrow_service.list_overdue_escrow(now)
    if not entries:
        click.echo("No overdue escrow")
        return
    for entry in entries:
        days = escrow_service.days_held(entry.escrow_held_at, now)
        click.echo(
            f"Payment {entry.id}  landlord {entry.landlord_id}  {entry.amount} {entry.currency}  "
            f"held {days}d (expired {to_utc_z(entry.escrow_expires_at)})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(commission_group)
    app.cli.add_command(escrow_group)
