# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# Stores and locations:
# - python -m flask stores create --name "Golden Hive" --slug golden-hive [--stripe-account acct_123]
# - python -m flask stores list
# - python -m flask locations create --store-id 1 --name "Warehouse" [--default]
#
# Users:
# - python -m flask users create --email owner@shop.test --name "Owner" --password "Password123" [--admin] [--store-id 1]
# - python -m flask users list
#
# Maintenance:
# - python -m flask balances release
#   Move matured pending seller funds to available (run daily).
# - python -m flask inventory replay --level-id 1
#   Recompute a level's counters from its adjustment ledger.

import click
from flask.cli import with_appcontext

from .errors import MarketplaceError
from .extensions import db
from .models import InventoryLocation, Store, User
from .services import balance_service, inventory_service
from .services.auth_service import create_user


@click.group('stores')
def stores_group():
    """Store (tenant) management commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--slug', required=True, help='URL slug (unique)')
@click.option('--currency', default='EUR', show_default=True, help='ISO currency code')
@click.option('--stripe-account', 'stripe_account', help='Connected payout account id')
@with_appcontext
def create_store_cli(name, slug, currency, stripe_account):
    """Create a new store."""
    if db.session.query(Store).filter_by(slug=slug).first():
        click.echo(f"FAIL Store with slug '{slug}' already exists")
        return

    store = Store(name=name, slug=slug, currency=currency.upper(), stripe_account_id=stripe_account)
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Slug: {store.slug})")


@stores_group.command('list')
@with_appcontext
def list_stores_cli():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id.asc()).all()
    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Slug':<20} {'Payouts':<8} {'Account'}")
    click.echo("="*80)
    for store in stores:
        payouts = "Yes" if store.stripe_payouts_enabled else "No"
        click.echo(f"{store.id:<5} {store.name:<30} {store.slug:<20} {payouts:<8} {store.stripe_account_id or '-'}")
    click.echo("="*80 + "\n")


@click.group('locations')
def locations_group():
    """Inventory location commands."""


@locations_group.command('create')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--name', required=True, help='Location name')
@click.option('--default', 'is_default', is_flag=True, help='Make this the store default location')
@with_appcontext
def create_location_cli(store_id, name, is_default):
    """Create an inventory location for a store."""
    if db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    if is_default:
        db.session.query(InventoryLocation).filter_by(store_id=store_id, is_default=True).update(
            {"is_default": False}
        )

    location = InventoryLocation(store_id=store_id, name=name, is_default=is_default, is_active=True)
    db.session.add(location)
    db.session.commit()

    suffix = " [default]" if is_default else ""
    click.echo(f"PASS Created location: {location.name} (ID: {location.id}){suffix}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant platform-wide access')
@click.option('--store-id', type=int, help='Add the user as owner of this store')
@with_appcontext
def create_user_cli(email, name, password, is_admin, store_id):
    """
    Create a dashboard user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = create_user(email, password, name=name, is_admin=is_admin, store_id=store_id)
    except MarketplaceError as e:
        click.echo(f"FAIL Failed to create user: {e}")
        return

    click.echo(f"PASS Created user: {user.email} (ID: {user.id})")
    if store_id is not None:
        click.echo(f"     Store: {store_id}")
    if is_admin:
        click.echo("     Role: platform admin")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with their stores."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Admin':<7} {'Active':<8} {'Stores'}")
    click.echo("="*80)
    for user in users:
        stores = ", ".join(str(m.store_id) for m in user.memberships) or "-"
        admin = "Yes" if user.is_admin else "No"
        active = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {admin:<7} {active:<8} {stores}")
    click.echo("="*80 + "\n")


@click.group('balances')
def balances_group():
    """Seller balance maintenance commands."""


@balances_group.command('release')
@with_appcontext
def release_balances_cli():
    """Move pending funds whose hold period has passed to available."""
    result = balance_service.release_matured_funds()
    click.echo(f"PASS Released {result['released']} of {result['total']} matured balance entries")


@click.group('inventory')
def inventory_group():
    """Inventory ledger inspection commands."""


@inventory_group.command('replay')
@click.option('--level-id', type=int, required=True, help='Inventory level ID')
@with_appcontext
def replay_level_cli(level_id):
    """Recompute a level's counters from its adjustment ledger."""
    try:
        replay = inventory_service.replay_level(level_id)
    except MarketplaceError as e:
        click.echo(f"FAIL {e}")
        return

    status = "PASS" if replay["consistent"] else "FAIL"
    click.echo(
        f"{status} Level {level_id}: available={replay['available']} committed={replay['committed']} "
        f"on_hand={replay['on_hand']} incoming={replay['incoming']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stores_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(users_group)
    app.cli.add_command(balances_group)
    app.cli.add_command(inventory_group)
