# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/cajapos/cli.py
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
# - python -m flask system seed-demo
#   Small demo catalog: a lot-managed ingredient, a legacy product and a recipe.
#
# Stats:
# - python -m flask stats show
#   Print the running totals.
# - python -m flask stats rebuild
#   Recompute running and daily stats from sales and batches.
#
# Stock:
# - python -m flask stock reconcile [--product-id 3]
#   Repair product stock caches that drifted from their batches.
#
# Cash drawer:
# - python -m flask cash status [--device-id front-1]
#   Show (auto-opening if needed) the device's session and expected cash.
# - python -m flask cash sessions --limit 10
#   List recent sessions for the device.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import BatchedProduct, Product, RecipeComponent, RecipeProduct
from .services import batch_service, cash_service, stats_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing data is untouched."""
    db.create_all()
    click.echo("PASS Database ready.")


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
    """Seed a tiny catalog to try checkout against."""
    if db.session.query(Product).count():
        click.echo("SKIP Catalog already has products.")
        return

    beef = BatchedProduct(name="Ground beef", unit="kg", price=0.0, cost=0.0, track_stock=True, stock=0.0)
    bun = Product(name="Bun", unit="u", price=0.5, cost=0.2, track_stock=True, stock=100.0)
    burger = RecipeProduct(name="Burger", unit="u", price=8.0, cost=0.0, track_stock=False, stock=0.0)
    db.session.add_all([beef, bun, burger])
    db.session.flush()

    burger.components.append(RecipeComponent(ingredient_id=beef.id, quantity=0.15, position=0))
    burger.components.append(RecipeComponent(ingredient_id=bun.id, quantity=1, position=1))
    db.session.commit()

    batch_service.create_batch(beef.id, 5, 9.5)
    batch_service.adjust_inventory_valuation_delta(bun.cost * bun.stock)
    db.session.commit()
    click.echo(f"PASS Seeded products: beef={beef.id} bun={bun.id} burger={burger.id}")


@click.group('stats')
def stats_group():
    """Running and daily stats."""


@stats_group.command('show')
@with_appcontext
def show_stats():
    snapshot = stats_service.get_running_stats().to_dict()
    for key, value in snapshot.items():
        click.echo(f"{key:>20}: {value}")


@stats_group.command('rebuild')
@with_appcontext
def rebuild_stats():
    """Recompute every aggregate from sales and batches."""
    snapshot = stats_service.rebuild()
    click.echo(
        f"PASS Rebuilt: orders={snapshot.orders} revenue={snapshot.revenue:.2f} "
        f"profit={snapshot.net_profit:.2f} valuation={snapshot.inventory_valuation:.2f}"
    )


@click.group('stock')
def stock_group():
    """Stock cache maintenance."""


@stock_group.command('reconcile')
@click.option('--product-id', type=int, help='Only this product')
@with_appcontext
def reconcile_stock(product_id):
    corrections = batch_service.reconcile(product_id)
    if not corrections:
        click.echo("PASS No drift found.")
        return
    for c in corrections:
        click.echo(
            f"FIX  {c['product_id']:>5} {c['name']:<30} cached={c['cached_stock']:g} "
            f"batches={c['batch_stock']:g} deactivated={len(c['deactivated_batches'])}"
        )


@click.group('cash')
def cash_group():
    """Cash drawer inspection."""


@cash_group.command('status')
@click.option('--device-id', help='Device (defaults to DEVICE_ID)')
@with_appcontext
def cash_status(device_id):
    session = cash_service.open_or_get_active_session(device_id)
    summary = cash_service.get_session_summary(session)
    totals = summary["totals"]
    click.echo(f"Session {session.id} on {session.device_id} opened {summary['session']['opened_at']}")
    click.echo(f"  opening float : {session.opening_float:.2f}")
    click.echo(f"  cash sales    : {totals['cash_sales']:.2f}")
    click.echo(f"  down payments : {totals['credit_payments']:.2f}")
    click.echo(f"  cash in       : {totals['cash_in']:.2f}")
    click.echo(f"  cash out      : {totals['cash_out']:.2f}")
    click.echo(f"  expected      : {summary['theoretical']:.2f}")


@cash_group.command('sessions')
@click.option('--device-id', help='Device (defaults to DEVICE_ID)')
@click.option('--limit', type=int, default=10, show_default=True)
@with_appcontext
def cash_sessions(device_id, limit):
    sessions = cash_service.list_sessions(device_id, limit=limit)
    if not sessions:
        click.echo("No sessions.")
        return
    for s in sessions:
        variance = f"{s.variance:+.2f}" if s.variance is not None else "-"
        click.echo(f"{s.id:>5} {s.status:<6} opened={s.opened_at:%Y-%m-%d %H:%M} float={s.opening_float:.2f} variance={variance}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stats_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(cash_group)
