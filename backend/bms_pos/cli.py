# Overview: Flask CLI command groups for bootstrap, stock audits and the exchange rate.

# backend/bms_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory integrity:
# - python -m flask inventory audit [--product-id 7]
#   Compare Product.stock, SUM(batches) and the kardex replay per product.
# - python -m flask inventory resync --product-id 7
#   Re-derive one product's aggregate from its batches.
#
# Exchange rate:
# - python -m flask rates show [--fetch]
#   Print the rate new sales would freeze (optionally fetch the source once).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import batch_service, kardex_service
from .services.errors import ProductNotFoundError
from .services.rate_service import RateUnavailableError, fetch_bcv_rate, get_rate_provider


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the kardex!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('inventory')
def inventory_group():
    """Stock integrity commands."""


@inventory_group.command('audit')
@click.option('--product-id', type=int, default=None, help='Audit a single product')
@with_appcontext
def audit(product_id):
    """Exit code 1 when any product's three stock surfaces disagree."""
    if product_id is not None:
        ids = [product_id]
    else:
        ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    bad = 0
    for pid in ids:
        try:
            row = kardex_service.audit_product(pid)
        except ProductNotFoundError as exc:
            raise click.ClickException(str(exc))
        status = "OK  " if row["consistent"] else "FAIL"
        if not row["consistent"]:
            bad += 1
        click.echo(
            f"{status} #{row['product_id']:<5} {row['name'][:30]:<30} "
            f"aggregate={row['aggregate']} batches={row['batch_total']} kardex={row['kardex_total']}"
        )

    click.echo(f"{len(ids)} product(s) checked, {bad} inconsistent.")
    if bad:
        raise SystemExit(1)


@inventory_group.command('resync')
@click.option('--product-id', type=int, required=True)
@with_appcontext
def resync(product_id):
    """Rewrite the cached aggregate as SUM(batch stock)."""
    try:
        old, new = batch_service.resync_product_stock(product_id)
    except ProductNotFoundError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Product {product_id}: stock {old} -> {new}")


@click.group('rates')
def rates_group():
    """Exchange rate inspection."""


@rates_group.command('show')
@click.option('--fetch', is_flag=True, help='Fetch the source once instead of reading the provider')
@with_appcontext
def show_rate(fetch):
    if fetch:
        try:
            rate = fetch_bcv_rate(current_app.config["EXCHANGE_RATE_SOURCE_URL"])
        except RateUnavailableError as exc:
            raise click.ClickException(f"Rate unavailable: {exc}")
        click.echo(f"{rate} Bs/USD (fetched)")
        return

    provider = get_rate_provider()
    source = "live" if provider.has_live_rate else "fallback"
    click.echo(f"{provider.current()} Bs/USD ({source})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(rates_group)
