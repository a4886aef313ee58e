# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask db upgrade
#   Create or migrate the schema.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --email admin@store.local --password "Password123!" --role ADMIN --name "Admin"
#   Create a user (prompts if options are omitted).
# - python -m flask users deactivate --email clerk@store.local
#   Deactivate a user and revoke every open session.
#
# Catalog/stock bootstrap:
# - python -m flask products create --code P001 --name "Coffee 500g" --price-cents 1590 --cost-cents 900 --tax-rate-bps 825 --min-stock 5
# - python -m flask stock receive --product-code P001 --quantity 24 --user-email admin@store.local [--location BACKROOM]
#   Bring stock in (records an IN movement).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Product, ROLES
from .services.auth_service import create_user, normalize_email, PasswordValidationError
from .services.session_service import revoke_all_user_sessions
from .services.products_service import create_product
from .services.inventory_service import receive_stock, get_stock_totals


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask users create' to add an administrator.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', default=None, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES), case_sensitive=False), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, name, password, role):
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
        user = create_user(email=email, password=password, role=role, name=name)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {user.email} with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<25} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {(user.name or '-'):<25} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@users_group.command('deactivate')
@click.option('--email', required=True, help='Email address')
@with_appcontext
def deactivate_user_cli(email):
    """Deactivate a user and revoke all of their sessions."""
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if not user:
        click.echo(f"FAIL User {email} not found")
        return

    user.is_active = False
    db.session.commit()

    revoked = revoke_all_user_sessions(user.id, reason="User deactivated")
    click.echo(f"PASS Deactivated {user.email}; revoked {revoked} session(s)")


@click.group('products')
def products_group():
    """Catalog bootstrap commands."""


@products_group.command('create')
@click.option('--code', required=True, help='Product code (unique)')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, required=True, help='Selling price in cents')
@click.option('--cost-cents', type=int, default=0, show_default=True, help='Unit cost in cents')
@click.option('--tax-rate-bps', type=int, default=0, show_default=True, help='Tax rate in basis points (825 = 8.25%)')
@click.option('--min-stock', type=int, default=0, show_default=True, help='Reorder point')
@with_appcontext
def create_product_cli(code, name, price_cents, cost_cents, tax_rate_bps, min_stock):
    """Create an active product."""
    try:
        product = create_product(
            code=code,
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
            tax_rate_bps=tax_rate_bps,
            min_stock_level=min_stock,
        )
    except ValueError as e:
        click.echo(f"FAIL Failed to create product: {str(e)}")
        return

    click.echo(f"PASS Created product {product.code} (ID: {product.id})")


@click.group('stock')
def stock_group():
    """Stock bootstrap commands."""


@stock_group.command('receive')
@click.option('--product-code', required=True, help='Product code')
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--user-email', required=True, help='User recorded on the movement')
@click.option('--location', default='MAIN', show_default=True, help='Stock location')
@click.option('--reference', default=None, help='Delivery note / invoice reference')
@with_appcontext
def receive_stock_cli(product_code, quantity, user_email, location, reference):
    """Receive stock into a location (records an IN movement)."""
    product = db.session.query(Product).filter_by(code=product_code).first()
    if not product:
        click.echo(f"FAIL Product {product_code} not found")
        return

    user = db.session.query(User).filter_by(email=normalize_email(user_email)).first()
    if not user:
        click.echo(f"FAIL User {user_email} not found")
        return

    product_id = product.id
    try:
        row = receive_stock(
            product_id=product_id,
            quantity=quantity,
            user_id=user.id,
            location=location,
            reference=reference,
        )
    except ValueError as e:
        click.echo(f"FAIL Failed to receive stock: {str(e)}")
        return

    totals = get_stock_totals(product_id)
    click.echo(f"PASS {product_code} @ {row.location}: {row.quantity} on hand (product total {totals.quantity})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(stock_group)
