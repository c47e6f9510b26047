# Overview: Flask CLI command groups for ledger inspection, audits, and maintenance.

# backend/superpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to superpos (PowerShell: $env:FLASK_APP="superpos").
# - Use: python -m flask <group> <command> [options]
#
# Stock ledger:
# - python -m flask stock audit
#   Compare every cached stock_quantity with its movement ledger; exits 1 on mismatch.
# - python -m flask stock low
#   List active products that are out of stock or below min_stock_level.
# - python -m flask stock history <product_id> [--limit 50]
#   Print a product's movement history, newest first.
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo catalog with opening balances.

import sys
from decimal import Decimal

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import catalog_service, stock_ledger
from .errors import PosError
from .time_utils import to_utc_z


DEMO_PRODUCTS = [
    {"name": "Basmati Rice 5kg", "barcode": "8901000000011", "category": "Grocery",
     "price": Decimal("12.50"), "discount": Decimal("0"), "discount_type": "percentage",
     "min_stock_level": 5, "opening": 40},
    {"name": "Olive Oil 1L", "barcode": "8901000000028", "category": "Grocery",
     "price": Decimal("9.90"), "discount": Decimal("10"), "discount_type": "percentage",
     "min_stock_level": 6, "opening": 18},
    {"name": "Whole Milk 1L", "barcode": "8901000000035", "category": "Dairy",
     "price": Decimal("1.20"), "discount": Decimal("0"), "discount_type": "percentage",
     "min_stock_level": 24, "opening": 60},
    {"name": "Cheddar 200g", "barcode": "8901000000042", "category": "Dairy",
     "price": Decimal("3.75"), "discount": Decimal("0.25"), "discount_type": "fixed",
     "min_stock_level": 10, "opening": 4},
    {"name": "Dish Soap 500ml", "barcode": "8901000000059", "category": "Household",
     "price": Decimal("2.40"), "discount": Decimal("0"), "discount_type": "percentage",
     "min_stock_level": 8, "opening": 0},
]


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('audit')
@with_appcontext
def audit_stock():
    """Verify cached stock quantities against the movement ledger."""
    mismatches = stock_ledger.audit_ledger()
    total = db.session.query(Product).count()

    if not mismatches:
        click.echo(f"PASS {total} product(s) checked; every cached balance matches its ledger.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'PRODUCT':<38} {'NAME':<20} {'CACHED':>6} {'LEDGER':>6} {'DIFF':>6}")
    click.echo("=" * 80)
    for row in mismatches:
        click.echo(
            f"{row['product_id']:<38} {row['name'][:20]:<20} "
            f"{row['cached']:>6} {row['ledger']:>6} {row['difference']:>+6}"
        )
    click.echo("=" * 80 + "\n")
    click.echo(f"FAIL {len(mismatches)} of {total} product(s) disagree with the stock ledger.")
    sys.exit(1)


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List products that need reordering."""
    products = catalog_service.low_stock_products()
    if not products:
        click.echo("PASS No products below their reorder level.")
        return

    click.echo(f"\n{'NAME':<30} {'BARCODE':<16} {'ON HAND':>7} {'MIN':>5}  STATUS")
    click.echo("-" * 75)
    for p in products:
        click.echo(f"{p.name[:30]:<30} {(p.barcode or '-'):<16} {p.stock_quantity:>7} {p.min_stock_level:>5}  {p.stock_status}")
    click.echo("")


@stock_group.command('history')
@click.argument('product_id')
@click.option('--limit', type=int, default=None, help='Max movements (defaults to HISTORY_DEFAULT_LIMIT)')
@with_appcontext
def stock_history(product_id, limit):
    """Print a product's movements, newest first."""
    if limit is None:
        limit = current_app.config.get("HISTORY_DEFAULT_LIMIT", 200)
    try:
        movements = stock_ledger.history(product_id, limit=limit)
        balance = stock_ledger.current_balance(product_id)
    except PosError as e:
        click.echo(f"ERROR {e}")
        sys.exit(1)

    click.echo(f"\nBalance: {balance}")
    click.echo(f"{'ID':<6} {'DATE':<21} {'TYPE':<7} {'QTY':>6}  REASON")
    click.echo("-" * 60)
    for m in movements:
        click.echo(f"{m.id:<6} {to_utc_z(m.date):<21} {m.type:<7} {m.signed_quantity:>+6}  {m.reason or ''}")
    click.echo("")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create the demo catalog (skips products whose barcode exists)."""
    created = 0
    for spec in DEMO_PRODUCTS:
        existing = db.session.query(Product).filter_by(barcode=spec["barcode"]).first()
        if existing is not None:
            click.echo(f"SKIP  {spec['name']} already exists")
            continue
        patch = {k: v for k, v in spec.items() if k != "opening"}
        product = catalog_service.create_product(
            patch=patch, initial_quantity=spec["opening"], created_by="seed-demo",
        )
        created += 1
        click.echo(f"OK    {product.name} (stock {product.stock_quantity})")

    click.echo(f"PASS Seeded {created} product(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
    app.cli.add_command(system_group)
