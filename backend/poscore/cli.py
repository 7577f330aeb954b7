# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/poscore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to poscore (PowerShell: $env:FLASK_APP="poscore").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--business "Business Name"] [--vat]
#   Idempotent bootstrap: business, chart of accounts, store, till, units and
#   default users (owner, manager, cashier).
# - python -m flask system seed-chart --business-id 1
#   Insert any missing standard accounts for a business.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list --business-id 1
#   List users with roles and active status.
# - python -m flask users create --business-id 1 --username sam --password "Password123!" --role MANAGER --pin 4321
#   Create a user (prompts if options are omitted).
# - python -m flask users set-pin sam --business-id 1 --pin 4321
#   Set or replace an approval PIN (owners and managers only).
#
# Till inspection/bootstrap:
# - python -m flask tills list --store-id 1
# - python -m flask tills create --store-id 1 --name "Till 2"
#
# Ledger inspection:
# - python -m flask ledger trial-balance --business-id 1

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Business, Store, Till, Unit, User
from .permissions import ROLES
from .services import auth_service, ledger_service
from .services.auth_service import PasswordValidationError, UserError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--business', 'business_name', default='Default Business', help='Business name')
@click.option('--store', 'store_name', default='Main Store', help='First store name')
@click.option('--vat/--no-vat', default=False, help='Business is VAT registered')
@with_appcontext
def init_system(business_name, store_name, vat):
    """
    Initialize a business ready to trade.

    Creates (skipping anything that already exists):
    - Business and its standard chart of accounts
    - One store with one till
    - Units: Piece, Pack, Carton
    - Users: owner (PIN 1111), manager (PIN 2222), cashier
    - All passwords default to: "Password123!"

    SECURITY: Change passwords and PINs immediately in production!
    """
    click.echo("START Initializing poscore...")

    business = db.session.query(Business).filter_by(name=business_name).first()
    if not business:
        business = Business(name=business_name, vat_enabled=vat, is_active=True)
        db.session.add(business)
        db.session.commit()
        click.echo(f"PASS Created business: {business.name} (ID: {business.id})")
    else:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")

    created = ledger_service.ensure_chart_of_accounts(business.id)
    db.session.commit()
    click.echo(f"PASS Chart of accounts ready ({created} accounts created)")

    store = db.session.query(Store).filter_by(business_id=business.id, name=store_name).first()
    if not store:
        store = Store(business_id=business.id, name=store_name, code="MAIN")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")

    till = db.session.query(Till).filter_by(store_id=store.id).first()
    if not till:
        till = Till(store_id=store.id, name="Till 1")
        db.session.add(till)
        db.session.commit()
        click.echo(f"PASS Created till: {till.name} (ID: {till.id})")

    for name, symbol in (("Piece", "pc"), ("Pack", "pk"), ("Carton", "ctn")):
        if not db.session.query(Unit).filter_by(business_id=business.id, name=name).first():
            db.session.add(Unit(business_id=business.id, name=name, symbol=symbol))
    db.session.commit()

    default_password = "Password123!"
    default_users = [
        ("owner", "OWNER", "1111"),
        ("manager", "MANAGER", "2222"),
        ("cashier", "CASHIER", None),
    ]
    click.echo("\nUSERS Creating default users...")
    for username, role, pin in default_users:
        try:
            auth_service.create_user(
                business_id=business.id,
                username=username,
                password=default_password,
                role=role,
                store_id=store.id,
                approval_pin=pin,
            )
            click.echo(f"PASS Created user: {username} ({role})")
        except UserError as e:
            click.echo(f"WARN  {e}, skipping...")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {str(e)}")

    click.echo("\n" + "="*60)
    click.echo("DONE poscore initialized")
    click.echo("="*60)
    click.echo(f"\nBusiness: {business.name} (ID: {business.id})")
    click.echo(f"Store: {store.name} (ID: {store.id}), Till ID: {till.id}")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   owner   / Password123!  PIN 1111")
    click.echo("   manager / Password123!  PIN 2222")
    click.echo("   cashier / Password123!")


@system_group.command('seed-chart')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def seed_chart(business_id):
    """Insert any missing standard accounts for a business."""
    if not db.session.get(Business, business_id):
        click.echo(f"FAIL Business {business_id} not found")
        raise SystemExit(1)
    created = ledger_service.ensure_chart_of_accounts(business_id)
    db.session.commit()
    click.echo(f"PASS {created} accounts created")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def list_users(business_id):
    users = db.session.query(User).filter_by(business_id=business_id).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        pin = "pin" if user.approval_pin_hash else "-"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status:<8} {pin}")


@users_group.command('create')
@click.option('--business-id', type=int, required=True)
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES, case_sensitive=False), prompt=True)
@click.option('--store-id', type=int, default=None)
@click.option('--pin', default=None, help='Approval PIN (owners and managers only)')
@with_appcontext
def create_user_command(business_id, username, password, role, store_id, pin):
    try:
        user = auth_service.create_user(
            business_id=business_id,
            username=username,
            password=password,
            role=role.upper(),
            store_id=store_id,
            approval_pin=pin,
        )
    except (UserError, PasswordValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role {user.role})")


@users_group.command('set-pin')
@click.argument('username')
@click.option('--business-id', type=int, required=True)
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def set_pin_command(username, business_id, pin):
    user = db.session.query(User).filter_by(business_id=business_id, username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        raise SystemExit(1)
    try:
        auth_service.set_approval_pin(user.id, pin)
    except (UserError, PasswordValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Approval PIN set for {username}")


@click.group('tills')
def tills_group():
    """Till inspection and bootstrap commands."""


@tills_group.command('list')
@click.option('--store-id', type=int, required=True)
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive tills')
@with_appcontext
def list_tills(store_id, include_inactive):
    query = db.session.query(Till).filter_by(store_id=store_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    for till in query.order_by(Till.id).all():
        click.echo(f"{till.id:>4}  {till.name:<20} {'active' if till.is_active else 'inactive'}")


@tills_group.command('create')
@click.option('--store-id', type=int, required=True)
@click.option('--name', required=True)
@with_appcontext
def create_till(store_id, name):
    if not db.session.get(Store, store_id):
        click.echo(f"FAIL Store {store_id} not found")
        raise SystemExit(1)
    till = Till(store_id=store_id, name=name)
    db.session.add(till)
    db.session.commit()
    click.echo(f"PASS Created till {till.name} (ID: {till.id})")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('trial-balance')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def trial_balance_command(business_id):
    report = ledger_service.trial_balance(business_id)
    for row in report["accounts"]:
        click.echo(f"{row['code']:<6} {row['name']:<28} {row['debit_pence']:>12} {row['credit_pence']:>12}")
    click.echo(f"{'':<6} {'TOTAL':<28} {report['total_debit_pence']:>12} {report['total_credit_pence']:>12}")
    click.echo("PASS Balanced" if report["balanced"] else "FAIL Not balanced")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(tills_group)
    app.cli.add_command(ledger_group)
