# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add-product --name "Linen Shirt" --price-cents 4500 --variant "LS-M-BLU:M:Blue:10"
#   Create a product; each --variant is SKU:SIZE:COLOR:INITIAL_STOCK.
# - python -m flask catalog list [--all]
#   List products with their variants and stock.
#
# Inventory:
# - python -m flask inventory adjust --variant-id 1 --change 10 --type RESTOCK --reason "Supplier delivery"
#   Apply one stock adjustment (writes a ledger entry).
# - python -m flask inventory low-stock --threshold 5
#   List active variants at or below a threshold.
# - python -m flask inventory audit [--variant-id 1]
#   Compare stock quantities with ledger sums; exits non-zero on drift.
#
# Orders and payments:
# - python -m flask orders list --status PENDING --limit 20
#   List recent orders with optional filters.
# - python -m flask orders transition MLA-20261018-0001 PROCESSING --note "Packed"
#   Move an order to a new status.
# - python -m flask payments verify <reference>
#   Ask the payment provider for a reference's status and reconcile it.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401

    click.echo("BUILD  Creating tables...")
    db.create_all()
    click.echo("PASS Database ready")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock ledger.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete")


@click.group('catalog')
def catalog_group():
    """Product and variant commands."""


def _parse_variant_option(raw: str) -> dict:
    parts = raw.split(":")
    if len(parts) != 4:
        raise click.BadParameter(f"expected SKU:SIZE:COLOR:INITIAL_STOCK, got '{raw}'")
    sku, size, color, stock = parts
    try:
        initial_stock = int(stock)
    except ValueError:
        raise click.BadParameter(f"initial stock must be an integer in '{raw}'")
    return {"sku": sku, "size": size or None, "color": color or None, "initial_stock": initial_stock}


@catalog_group.command('add-product')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, required=True, help='Base price in cents')
@click.option('--description', help='Product description')
@click.option('--variant', 'variants', multiple=True, required=True, help='SKU:SIZE:COLOR:INITIAL_STOCK')
@with_appcontext
def add_product_cli(name, price_cents, description, variants):
    """
    Create a product with one or more variants.

    Example:
        flask catalog add-product --name "Linen Shirt" --price-cents 4500 \\
            --variant "LS-M-BLU:M:Blue:10" --variant "LS-L-BLU:L:Blue:4"
    """
    from .services import catalog_service

    specs = [_parse_variant_option(v) for v in variants]
    try:
        product = catalog_service.create_product(
            name=name,
            base_price_cents=price_cents,
            description=description,
            variants=specs,
            performed_by="cli",
        )
    except DomainError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Created product: {product.name} (ID: {product.id})")
    for variant in product.variants:
        click.echo(f"   {variant.sku:<20} stock={variant.stock_quantity}")


@catalog_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(show_all):
    """List products with variant stock."""
    from .services import catalog_service

    products = catalog_service.list_products(include_inactive=show_all)
    if not products:
        click.echo("No products found.")
        return

    for product in products:
        status = "ACTIVE" if product.is_active else "INACTIVE"
        click.echo(f"{product.id:<5} {product.name:<40} {product.base_price_cents:>8}c  {status}")
        for variant in product.variants:
            flag = "" if variant.is_active else " (inactive)"
            click.echo(f"      {variant.sku:<20} {variant.size or '-':<6} {variant.color or '-':<12} "
                       f"stock={variant.stock_quantity}{flag}")


@click.group('inventory')
def inventory_group():
    """Stock ledger commands."""


@inventory_group.command('adjust')
@click.option('--variant-id', type=int, required=True, help='Variant ID')
@click.option('--change', 'quantity_change', type=int, required=True, help='Signed quantity change')
@click.option('--type', 'change_type', type=click.Choice(['RESTOCK', 'ADJUSTMENT', 'RETURN']),
              default='ADJUSTMENT', show_default=True, help='Ledger change type')
@click.option('--reason', required=True, help='Reason recorded on the ledger entry')
@click.option('--by', 'performed_by', default='cli', show_default=True, help='Actor recorded on the entry')
@with_appcontext
def adjust_cli(variant_id, quantity_change, change_type, reason, performed_by):
    """Apply one stock adjustment."""
    from .services.stock_service import adjust_stock

    try:
        change = adjust_stock(variant_id, quantity_change, change_type, reason, performed_by=performed_by)
    except DomainError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)
    click.echo(f"PASS New quantity: {change.new_quantity} (ledger entry {change.ledger_entry_id})")


@inventory_group.command('low-stock')
@click.option('--threshold', type=int, default=5, show_default=True, help='Stock threshold')
@with_appcontext
def low_stock_cli(threshold):
    """List active variants at or below a stock threshold."""
    from .services.stock_service import list_stock

    variants = list_stock(low_stock_threshold=threshold)
    if not variants:
        click.echo(f"No variants at or below {threshold} units.")
        return
    for variant in variants:
        click.echo(f"{variant.id:<5} {variant.sku:<20} {variant.stock_quantity:>6}")


@inventory_group.command('audit')
@click.option('--variant-id', type=int, help='Audit a single variant')
@with_appcontext
def audit_cli(variant_id):
    """
    Compare each variant's stock quantity with the sum of its ledger.

    Exits with status 1 when any variant has drifted.
    """
    from .services.stock_service import verify_ledger

    report = verify_ledger(variant_id)
    drift = [row for row in report if not row["consistent"]]
    for row in drift:
        click.echo(f"FAIL {row['sku']}: stock={row['stock_quantity']} ledger={row['ledger_sum']}")

    click.echo(f"Checked {len(report)} variants, {len(drift)} inconsistent")
    if drift:
        raise SystemExit(1)
    click.echo("PASS Ledger consistent")


@click.group('orders')
def orders_group():
    """Order inspection and lifecycle commands."""


@orders_group.command('list')
@click.option('--status', help='Filter by order status')
@click.option('--source', type=click.Choice(['ONLINE', 'IN_STORE'], case_sensitive=False), help='Filter by source')
@click.option('--limit', type=int, default=20, show_default=True, help='Max orders to show')
@with_appcontext
def list_orders_cli(status, source, limit):
    """List recent orders."""
    from .services.order_service import list_orders

    try:
        orders, total = list_orders(status=status, source=source, limit=limit)
    except DomainError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"Showing {len(orders)} of {total} orders")
    for order in orders:
        click.echo(
            f"{order.order_number:<20} {order.status:<17} {order.payment_status:<9} "
            f"{order.source:<9} {order.total_cents:>8}c"
        )


@orders_group.command('transition')
@click.argument('order_number')
@click.argument('status')
@click.option('--note', help='Note recorded in the status history')
@with_appcontext
def transition_order_cli(order_number, status, note):
    """Move an order to a new status."""
    from .services import order_service

    try:
        order = order_service.get_order_by_number(order_number)
        order = order_service.transition_order(order.id, status, actor_id="cli", note=note)
    except DomainError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)
    click.echo(f"PASS {order.order_number} is now {order.status}")


@click.group('payments')
def payments_group():
    """Payment reconciliation commands."""


@payments_group.command('verify')
@click.argument('reference')
@with_appcontext
def verify_payment_cli(reference):
    """Query the provider for a payment reference and reconcile it."""
    from .services.payment_service import verify_payment

    try:
        tx, provider_status = verify_payment(reference, verified_by="cli")
    except DomainError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)
    click.echo(f"Provider status: {provider_status}")
    click.echo(f"Transaction {tx.reference}: {tx.status}")


@click.group('sales')
def sales_group():
    """Point-of-sale reporting commands."""


@sales_group.command('report')
@click.option('--date', 'day', help='Day to report (YYYY-MM-DD, UTC); defaults to today')
@with_appcontext
def daily_report_cli(day):
    """Print the daily till summary."""
    from .services.report_service import daily_sales_report

    try:
        report = daily_sales_report(day)
    except DomainError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    summary = report["summary"]
    click.echo(f"Sales for {report['date']}")
    click.echo(f"  Transactions: {summary['transaction_count']}")
    click.echo(f"  Total:        {summary['total_sales_cents']}c")
    click.echo(f"  Items sold:   {summary['items_sold']}")
    for row in report["payment_methods"]:
        click.echo(f"  {row['method']:<13} {row['count']:>4} {row['amount_cents']:>10}c {row['percentage']:>5}%")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(sales_group)
