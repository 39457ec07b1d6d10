# Overview: Flask CLI command groups for bootstrap, user administration, and maintenance.

# backend/inventory_flow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username admin --email admin@example.com --role admin --approved
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#   List all users with role and approval status.
# - python -m flask users approve admin
#   Approve a pending user so they can act.
# - python -m flask users issue-token admin [--ttl-hours 24]
#   Print a new bearer token for the user (shown once).
# - python -m flask users revoke-tokens admin
#   Revoke every active token of the user.
#
# Products:
# - python -m flask products create --sku SKU-1 --name "Soda 330ml" --price-cents 2500 --pieces-per-case 24 --initial-pieces 240 --as admin
#   Create a product; initial stock is booked as a restock by the given admin.
#
# Maintenance:
# - python -m flask drafts reap [--max-age-hours 24]
#   Delete draft orders older than the cutoff. Safe to schedule from cron.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, USER_ROLES
from .services import products_service, reaper_service, session_service
from .services.concurrency import run_in_transaction
from .services.errors import DomainError


def _user_by_username(username: str) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise click.ClickException(f"User '{username}' not found")
    return user


# =============================================================================
# SYSTEM
# =============================================================================


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, audit history included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# USERS
# =============================================================================


@click.group('users')
def users_group():
    """User administration commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--display-name', default=None)
@click.option('--role', type=click.Choice(USER_ROLES), default='staff', show_default=True)
@click.option('--approved', is_flag=True, help='Approve immediately')
@with_appcontext
def create_user(username, email, display_name, role, approved):
    """Create a user. Registration flows live outside this service."""
    if db.session.query(User).filter((User.username == username) | (User.email == email)).first():
        raise click.ClickException("Username or email already exists")

    def _op():
        user = User(
            username=username.strip(),
            email=email.strip().lower(),
            display_name=display_name,
            role=role,
            is_approved=approved,
            is_active=True,
        )
        db.session.add(user)
        return user

    user = run_in_transaction(_op)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role}, approved: {user.is_approved})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        flags = []
        if not user.is_approved:
            flags.append("pending")
        if not user.is_active:
            flags.append("inactive")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<6} {user.email}{suffix}")


@users_group.command('approve')
@click.argument('username')
@click.option('--as', 'actor', default=None, help='Username of the approving administrator (recorded in the audit log)')
@with_appcontext
def approve_user(username, actor):
    """Approve a pending user."""
    user = _user_by_username(username)
    actor_id = _user_by_username(actor).id if actor else None
    user_id = user.id

    def _op():
        target = db.session.get(User, user_id)
        target.is_approved = True
        return target

    run_in_transaction(_op, actor_user_id=actor_id)
    click.echo(f"PASS Approved {username}")


@users_group.command('issue-token')
@click.argument('username')
@click.option('--ttl-hours', type=int, default=None, help='Override SESSION_TTL_HOURS')
@with_appcontext
def issue_token(username, ttl_hours):
    """Print a new bearer token for USERNAME. The token is not stored in plaintext."""
    user = _user_by_username(username)
    try:
        session, token = session_service.create_session(user.id, ttl_hours=ttl_hours)
    except DomainError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Token for {username} (expires {session.expires_at:%Y-%m-%d %H:%M} UTC):")
    click.echo(token)


@users_group.command('revoke-tokens')
@click.argument('username')
@with_appcontext
def revoke_tokens(username):
    """Revoke every active bearer token of USERNAME."""
    user = _user_by_username(username)
    count = session_service.revoke_all_user_sessions(user.id)
    click.echo(f"PASS Revoked {count} token(s) for {username}")


# =============================================================================
# PRODUCTS
# =============================================================================


@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('create')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True, help='Price per piece in cents')
@click.option('--pieces-per-case', type=int, default=1, show_default=True)
@click.option('--cost-cents', type=int, default=None, help='Wholesale cost per piece in cents')
@click.option('--low-stock-threshold', type=int, default=0, show_default=True)
@click.option('--initial-pieces', type=int, default=0, show_default=True)
@click.option('--as', 'actor', required=True, help='Administrator username performing the change')
@with_appcontext
def create_product(sku, name, price_cents, pieces_per_case, cost_cents, low_stock_threshold, initial_pieces, actor):
    """Create a product."""
    admin = _user_by_username(actor)
    payload = {
        "sku": sku,
        "name": name,
        "price_per_piece_cents": price_cents,
        "pieces_per_case": pieces_per_case,
        "wholesale_cost_per_piece_cents": cost_cents,
        "low_stock_threshold": low_stock_threshold,
    }
    try:
        product = products_service.create_product(
            payload=payload,
            actor_user_id=admin.id,
            initial_pieces=initial_pieces,
        )
    except DomainError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product {product.sku} (ID: {product.id}, on hand: {product.on_hand_pieces})")


# =============================================================================
# DRAFTS
# =============================================================================


@click.group('drafts')
def drafts_group():
    """Draft order maintenance."""


@drafts_group.command('reap')
@click.option('--max-age-hours', type=float, default=None, help='Override DRAFT_MAX_AGE_HOURS')
@with_appcontext
def reap_drafts(max_age_hours):
    """Delete abandoned draft orders. Idempotent; safe to re-run."""
    result = reaper_service.sweep_expired_drafts(max_age_hours=max_age_hours)
    click.echo(
        f"PASS Scanned {result.scanned}, deleted {result.deleted}, "
        f"skipped {result.skipped}, failed {result.failed}"
    )
    for order_number in result.order_numbers:
        click.echo(f"  deleted {order_number}")
    if result.failed:
        raise click.ClickException(f"{result.failed} draft(s) could not be deleted; see log")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(drafts_group)
