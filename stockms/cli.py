# Overview: Flask CLI command groups for bootstrap, master data, and inspection.

# stockms/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockms (PowerShell: $env:FLASK_APP="stockms").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--location-code MAIN --location-name "Main Store"]
#   Idempotent bootstrap: creates tables, a default location and the default users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Master data:
# - python -m flask users create --username op1 --email op1@stock.local --password "Password123!" --role OPERATOR
# - python -m flask users grant --username op1 --location-code MAIN --level POST
# - python -m flask users list
# - python -m flask locations create --code K1 --name "Kitchen 1" --type KITCHEN
# - python -m flask locations list
# - python -m flask items create --code RICE-5 --name "Rice 5kg" --unit KG --category FOOD
# - python -m flask suppliers create --code SUP1 --name "Fresh Foods"
#
# Inspection:
# - python -m flask periods list [--status OPEN]
# - python -m flask stock show --location-code MAIN [--low-stock]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Item, Location, Supplier, User
from .models.auth import ACCESS_LEVELS, ROLES, ROLE_ADMIN, ROLE_OPERATOR, ROLE_PROCUREMENT_SPECIALIST, ROLE_SUPERVISOR
from .models.masterdata import ITEM_UNITS, LOCATION_TYPES
from .services.auth_service import create_user, grant_location_access
from .services import inventory_service, period_service
from stockms.validation import DomainError


def _location_by_code(code: str) -> Location | None:
    return db.session.query(Location).filter_by(code=code.strip().upper()).first()


# =============================================================================
# SYSTEM COMMANDS
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--location-code', default='MAIN', help='Default location code')
@click.option('--location-name', default='Main Store', help='Default location name')
@with_appcontext
def init_system(location_code, location_name):
    """
    Initialize the system: tables, a default location and default users.

    Creates:
    - Default location (if none exists)
    - Users: admin, supervisor, operator, procurement (one per role)
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing stock system...")
    db.create_all()

    location = db.session.query(Location).first()
    if not location:
        location = Location(code=location_code.upper(), name=location_name, type="STORE")
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created default location: {location.name} (ID: {location.id}, Code: {location.code})")
    else:
        click.echo(f"PASS Using existing location: {location.name} (ID: {location.id})")

    default_password = "Password123!"
    default_users = [
        ("admin", "admin@stock.local", ROLE_ADMIN),
        ("supervisor", "supervisor@stock.local", ROLE_SUPERVISOR),
        ("operator", "operator@stock.local", ROLE_OPERATOR),
        ("procurement", "procurement@stock.local", ROLE_PROCUREMENT_SPECIALIST),
    ]

    click.echo("\nUSERS Creating default users...")
    for username, email, role in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            user = create_user(
                username,
                email,
                default_password,
                role=role,
                default_location_id=location.id,
            )
            if role in (ROLE_OPERATOR, ROLE_PROCUREMENT_SPECIALIST):
                grant_location_access(user.id, location.id, "POST")
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        except DomainError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Stock System Initialized")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for username, _, role in default_users:
        click.echo(f"   {username:<12} -> Password123!  ({role})")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ROLES)), prompt=True, help='Role')
@click.option('--full-name', default=None, help='Display name')
@click.option('--location-code', default=None, help='Default location code')
@with_appcontext
def create_user_cli(username, email, password, role, full_name, location_code):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    location_id = None
    if location_code:
        location = _location_by_code(location_code)
        if not location:
            click.echo(f"FAIL Location '{location_code}' not found")
            return
        location_id = location.id

    try:
        user = create_user(username, email, password, role=role, full_name=full_name, default_location_id=location_id)
    except DomainError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('grant')
@click.option('--username', required=True, help='Username')
@click.option('--location-code', required=True, help='Location code')
@click.option('--level', type=click.Choice(sorted(ACCESS_LEVELS)), default='VIEW', help='Access level')
@with_appcontext
def grant_location_cli(username, location_code, level):
    """Grant a user VIEW, POST or MANAGE access at a location."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    location = _location_by_code(location_code)
    if not location:
        click.echo(f"FAIL Location '{location_code}' not found")
        return
    grant_location_access(user.id, location.id, level)
    click.echo(f"PASS {user.username} -> {location.code}: {level}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.username).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<24} {'Active'}")
    click.echo("=" * 80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<24} {active_str}")
    click.echo("=" * 80 + "\n")


# =============================================================================
# MASTER DATA COMMANDS
# =============================================================================

@click.group('locations')
def locations_group():
    """Location management commands."""


@locations_group.command('create')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--name', required=True, help='Location name')
@click.option('--type', 'location_type', type=click.Choice(sorted(LOCATION_TYPES)), default='STORE')
@with_appcontext
def create_location_cli(code, name, location_type):
    """Create a stock-holding location."""
    if _location_by_code(code):
        click.echo(f"FAIL Location with code '{code}' already exists")
        return
    location = Location(code=code.strip().upper(), name=name, type=location_type)
    db.session.add(location)
    db.session.commit()
    click.echo(f"PASS Created location: {location.name} (ID: {location.id}, Code: {location.code})")


@locations_group.command('list')
@with_appcontext
def list_locations_cli():
    """List all locations."""
    locations = db.session.query(Location).order_by(Location.code).all()
    if not locations:
        click.echo("No locations found.")
        return
    for loc in locations:
        active_str = "Yes" if loc.is_active else "No"
        click.echo(f"{loc.id:<5} {loc.code:<12} {loc.name:<30} {loc.type:<10} {active_str}")


@click.group('items')
def items_group():
    """Item master commands."""


@items_group.command('create')
@click.option('--code', required=True, help='Item code (unique)')
@click.option('--name', required=True, help='Item name')
@click.option('--unit', type=click.Choice(sorted(ITEM_UNITS)), default='EA')
@click.option('--category', default=None)
@click.option('--sub-category', default=None)
@with_appcontext
def create_item_cli(code, name, unit, category, sub_category):
    """Create an item in the master list."""
    if db.session.query(Item).filter_by(code=code).first():
        click.echo(f"FAIL Item with code '{code}' already exists")
        return
    item = Item(code=code, name=name, unit=unit, category=category, sub_category=sub_category)
    db.session.add(item)
    db.session.commit()
    click.echo(f"PASS Created item: {item.name} (ID: {item.id}, Code: {item.code})")


@click.group('suppliers')
def suppliers_group():
    """Supplier master commands."""


@suppliers_group.command('create')
@click.option('--code', required=True, help='Supplier code (unique)')
@click.option('--name', required=True, help='Supplier name')
@click.option('--contact', default=None)
@click.option('--email', default=None)
@click.option('--phone', default=None)
@click.option('--vat-reg-no', default=None)
@with_appcontext
def create_supplier_cli(code, name, contact, email, phone, vat_reg_no):
    """Create a supplier."""
    if db.session.query(Supplier).filter_by(code=code).first():
        click.echo(f"FAIL Supplier with code '{code}' already exists")
        return
    supplier = Supplier(code=code, name=name, contact=contact, email=email, phone=phone, vat_reg_no=vat_reg_no)
    db.session.add(supplier)
    db.session.commit()
    click.echo(f"PASS Created supplier: {supplier.name} (ID: {supplier.id}, Code: {supplier.code})")


# =============================================================================
# INSPECTION COMMANDS
# =============================================================================

@click.group('periods')
def periods_group():
    """Period inspection commands."""


@periods_group.command('list')
@click.option('--status', default=None, help='Filter by status')
@with_appcontext
def list_periods_cli(status):
    """List periods, newest first."""
    periods, _ = period_service.list_periods(status=status, limit=500)
    if not periods:
        click.echo("No periods found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Name':<24} {'Start':<12} {'End':<12} {'Status'}")
    click.echo("=" * 80)
    for period in periods:
        click.echo(
            f"{period.id:<5} {period.name:<24} {period.start_date.isoformat():<12} "
            f"{period.end_date.isoformat():<12} {period.status}"
        )
    click.echo("=" * 80 + "\n")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('show')
@click.option('--location-code', required=True, help='Location code')
@click.option('--low-stock', is_flag=True, help='Only balances under their minimum')
@with_appcontext
def show_stock(location_code, low_stock):
    """Show balances, WAC and value at a location."""
    location = _location_by_code(location_code)
    if not location:
        click.echo(f"FAIL Location '{location_code}' not found")
        return

    rows = inventory_service.list_location_stock(location.id, low_stock=low_stock)
    if not rows:
        click.echo("No stock found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'Code':<16} {'Item':<30} {'On hand':>12} {'WAC':>12} {'Value':>14}")
    click.echo("=" * 90)
    for row in rows:
        click.echo(
            f"{row.item.code:<16} {row.item.name[:30]:<30} {row.on_hand:>12} {row.wac:>12} {row.value:>14}"
        )
    click.echo("=" * 90)
    click.echo(f"Total value: {inventory_service.location_stock_value(location.id)}\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(items_group)
    app.cli.add_command(suppliers_group)
    app.cli.add_command(periods_group)
    app.cli.add_command(stock_group)
