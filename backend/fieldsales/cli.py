# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/fieldsales/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Demo users, stores, products, central inventory and store stock.
#
# Identity mirror:
# - python -m flask users mirror user_abc123 --role stock-manager --email stock@demo.com
#   Create or update the local row for an identity-provider user.
#
# Central inventory:
# - python -m flask inventory list [--low-stock]
# - python -m flask inventory set 1 500 --note "Quarterly count"
#
# Orders:
# - python -m flask orders list --status PENDING
# - python -m flask orders fulfill 7 --allocate 1=80 --allocate 2=50 [--strict] [--as-user user_abc123]

import click
from datetime import date
from flask.cli import with_appcontext

from .extensions import db
from .identity import Actor
from .models import OrderStatus, Product, Store
from .services import catalog_service, fulfillment_service, order_service, store_service, user_service
from .services.concurrency import atomic
from .services.stock_ledger_service import create_position, find_position
from .validation import FieldSalesError


DEMO_USERS = [
    ("demo-admin", "admin@demo.com", "Admin User", "ADMIN"),
    ("demo-salesman", "salesman@demo.com", "Sales Person", "SALESMAN"),
    ("demo-stock", "stock@demo.com", "Stock Manager", "STOCK_MANAGER"),
]

DEMO_STORES = [
    ("Central Medical Store", "MG Road, Bangalore", 12.9716, 77.5946),
    ("City Pharma", "Indiranagar, Bangalore", 12.9784, 77.6408),
]

# (name, manufacturer, mrp, central quantity)
DEMO_PRODUCTS = [
    ("Paracetamol 500mg", "ABC Pharma", "25.00", 500),
    ("Vitamin C Tablets", "HealthPlus", "120.00", 300),
]

# (store index, product index, quantity, batch, expiry)
DEMO_POSITIONS = [
    (0, 0, 100, "PCM-001", date(2026, 1, 1)),
    (0, 1, 50, "VTC-001", date(2025, 10, 1)),
    (1, 0, 60, "PCM-002", date(2026, 2, 1)),
]


def _fail(e: FieldSalesError):
    raise click.ClickException(f"{e.kind}: {e}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Idempotent demo data.

    Existing rows (matched by external id, store name, product name) are left alone.
    """
    db.create_all()

    for external_id, email, name, role in DEMO_USERS:
        if user_service.get_user_by_external_id(external_id) is None:
            user_service.upsert_user(external_id=external_id, role=role, email=email, name=name)
            click.echo(f"PASS User {email} ({role})")

    stores = []
    for name, address, lat, lng in DEMO_STORES:
        store = db.session.query(Store).filter_by(name=name).first()
        if store is None:
            store = store_service.create_store(name=name, address=address, latitude=lat, longitude=lng)
            click.echo(f"PASS Store {name}")
        stores.append(store)

    products = []
    for name, manufacturer, mrp, qty in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(name=name).first()
        if product is None:
            product = catalog_service.create_product(name=name, mrp=mrp, manufacturer=manufacturer)
            catalog_service.set_inventory_quantity(product.id, qty, note="Seed")
            click.echo(f"PASS Product {name} with {qty} in central inventory")
        products.append(product)

    with atomic():
        for store_idx, product_idx, qty, batch, expiry in DEMO_POSITIONS:
            store, product = stores[store_idx], products[product_idx]
            if find_position(store.id, product.id, batch, expiry) is None:
                create_position(
                    store_id=store.id,
                    product_id=product.id,
                    quantity=qty,
                    batch_number=batch,
                    expiry_date=expiry,
                )
                click.echo(f"PASS {qty} x {product.name} batch {batch} at {store.name}")

    click.echo("PASS Seed complete.")


@click.group('users')
def users_group():
    """Identity mirror commands."""


@users_group.command('mirror')
@click.argument('external_id')
@click.option('--role', required=True, help='admin, salesman or stock-manager')
@click.option('--email', default=None)
@click.option('--name', default=None)
@with_appcontext
def mirror_user(external_id, role, email, name):
    """Create or update the local row for an identity-provider user."""
    try:
        user = user_service.upsert_user(external_id=external_id, role=role, email=email, name=name)
    except FieldSalesError as e:
        _fail(e)
    click.echo(f"PASS User {user.external_id} -> id {user.id} ({user.role.value})")


@click.group('inventory')
def inventory_group():
    """Central warehouse inventory commands."""


@inventory_group.command('list')
@click.option('--low-stock', is_flag=True, help='Only products at or below their threshold')
@with_appcontext
def list_inventory_cli(low_stock):
    rows = catalog_service.list_inventory()
    if low_stock:
        rows = [r for r in rows if r["is_low_stock"]]
    if not rows:
        click.echo("No products.")
        return
    for r in rows:
        flag = " LOW" if r["is_low_stock"] else ""
        click.echo(f"{r['product_id']:>5}  {r['name']:<30} qty={r['quantity']:<6} value={r['stock_value']}{flag}")


@inventory_group.command('set')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--note', default=None, help='Reason for the manual count')
@with_appcontext
def set_inventory_cli(product_id, quantity, note):
    """Overwrite the central on-hand quantity for a product."""
    try:
        row = catalog_service.set_inventory_quantity(product_id, quantity, note=note)
    except FieldSalesError as e:
        _fail(e)
    click.echo(f"PASS Product {product_id} now has {row.quantity} in central inventory")


@click.group('orders')
def orders_group():
    """Order inspection and fulfillment commands."""


@orders_group.command('list')
@click.option('--status', default=None, type=click.Choice([s.value for s in OrderStatus], case_sensitive=False))
@click.option('--store-id', default=None, type=int)
@with_appcontext
def list_orders_cli(status, store_id):
    try:
        orders = order_service.list_orders(store_id=store_id, status=status)
    except FieldSalesError as e:
        _fail(e)
    if not orders:
        click.echo("No orders.")
        return
    for order in orders:
        lines = ", ".join(f"{i.product_id}x{i.quantity}" for i in order.items)
        click.echo(f"#{order.id:<5} store={order.store_id:<4} {order.status.value:<12} {lines}")


def _parse_allocations(values) -> dict[int, int]:
    plan = {}
    for raw in values:
        product, sep, qty = raw.partition("=")
        if not sep:
            raise click.BadParameter(f"expected PRODUCT_ID=QTY, got {raw!r}", param_hint="--allocate")
        try:
            plan[int(product)] = int(qty)
        except ValueError:
            raise click.BadParameter(f"expected integers, got {raw!r}", param_hint="--allocate")
    return plan


@orders_group.command('fulfill')
@click.argument('order_id', type=int)
@click.option('--allocate', 'allocations', multiple=True, help='PRODUCT_ID=QTY, repeatable')
@click.option('--strict', is_flag=True, help='Fail unless every line is allocated in full')
@click.option('--as-user', 'as_user', default=None, help='External id of the fulfilling stock manager')
@with_appcontext
def fulfill_cli(order_id, allocations, strict, as_user):
    """Fulfill a PENDING order from central inventory."""
    plan = _parse_allocations(allocations)

    actor = None
    if as_user:
        user = user_service.get_user_by_external_id(as_user)
        if user is None:
            raise click.ClickException(f"Unknown user: {as_user}")
        actor = Actor(user_id=user.id, role=user.role)

    try:
        result = fulfillment_service.fulfill(order_id, plan, strict_mode=strict, actor=actor)
    except FieldSalesError as e:
        _fail(e)

    click.echo(f"PASS Order {order_id} -> {result.status.value}")
    for line in result.lines:
        suffix = f" (short {line.shortfall})" if line.shortfall else ""
        click.echo(f"  product {line.product_id}: {line.allocated}/{line.requested}{suffix}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
