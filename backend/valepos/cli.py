# Overview: Flask CLI command groups for bootstrap, vale maintenance and settings.

# backend/valepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent) and store the default settings.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Warehouses SALA / BOD01 / BOD02 / VIRTUAL, a few fabric variants and stock.
#
# Vales:
# - python -m flask vouchers release-expired
#   Cancel voucher_pending vales whose reservation expired (run from cron).
# - python -m flask vouchers list --state voucher_pending
#   List today's vales, optionally filtered by state.
#
# Settings:
# - python -m flask settings list
# - python -m flask settings set stock.allow_oversell true

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import PriceModality, ProductVariant, SystemSetting, Warehouse
from .services import inventory_service, order_service
from .services.concurrency import vale_transaction
from .services.config_service import DEFAULT_SETTINGS, get_configuration
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and persist default settings that are not stored yet."""
    db.create_all()
    config = get_configuration()
    stored = {key for (key,) in db.session.query(SystemSetting.key).all()}
    created = 0
    for key, (raw, value_type, category, description) in DEFAULT_SETTINGS.items():
        if key in stored:
            continue
        config.set(key, raw, value_type=value_type, category=category, description=description)
        created += 1
    db.session.commit()
    click.echo(f"PASS Schema ready, {created} default settings stored")


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
    get_configuration().invalidate()

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to initialize.")


DEMO_WAREHOUSES = [
    # code, name, point of sale, virtual
    ("SALA", "Sala de ventas", True, False),
    ("BOD01", "Bodega principal", False, False),
    ("BOD02", "Bodega secundaria", False, False),
    ("VIRTUAL", "Sobreventa", False, True),
]

DEMO_VARIANTS = [
    # sku, name, unit, standard price, invoice price, SALA stock, BOD01 stock
    ("LIN-BLA-M", "Lino blanco (metro)", "meter", 4500, 3800, "25.00", "120.00"),
    ("GAB-AZU-M", "Gabardina azul (metro)", "meter", 3900, 3300, "40.00", "80.00"),
    ("BOT-MAD-U", "Botones madera (unidad)", "unit", 150, 120, "500.00", "0.00"),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Load demo warehouses, variants and stock. Skips rows that exist."""
    warehouses = {}
    for code, name, pos, virtual in DEMO_WAREHOUSES:
        wh = db.session.query(Warehouse).filter_by(code=code).first()
        if not wh:
            wh = Warehouse(code=code, name=name, is_point_of_sale=pos, is_virtual=virtual, is_active=True)
            db.session.add(wh)
            db.session.flush()
            click.echo(f"PASS Created warehouse {code}")
        warehouses[code] = wh
    db.session.commit()

    for sku, name, unit, standard, invoice, sala_qty, bod_qty in DEMO_VARIANTS:
        if db.session.query(ProductVariant).filter_by(sku=sku).first():
            click.echo(f"SKIP Variant {sku} exists")
            continue
        with vale_transaction():
            variant = ProductVariant(sku=sku, name=name, unit=unit, is_active=True)
            db.session.add(variant)
            db.session.flush()
            db.session.add(PriceModality(
                variant_id=variant.id,
                name="Precio lista",
                standard_price=standard,
                invoice_price=invoice,
                is_active=True,
            ))
            for code, qty in (("SALA", sala_qty), ("BOD01", bod_qty)):
                if qty != "0.00":
                    inventory_service.receive_stock(
                        variant.id, warehouses[code].id, qty, reason="Demo seed", reference="SEED",
                    )
        click.echo(f"PASS Created variant {sku}")


@click.group('vouchers')
def vouchers_group():
    """Vale maintenance commands."""


@vouchers_group.command('release-expired')
@with_appcontext
def release_expired():
    """Cancel expired voucher_pending vales and release their stock."""
    cancelled = order_service.release_expired_reservations()
    for number in cancelled:
        click.echo(f"RELEASED {number}")
    click.echo(f"PASS {len(cancelled)} expired vale(s) released")


@vouchers_group.command('list')
@click.option('--state', default=None, help='Filter by state')
@click.option('--all-days', is_flag=True, help='Do not restrict to today')
@with_appcontext
def list_vouchers(state, all_days):
    """List vales (today by default)."""
    day = None if all_days else utcnow().date()
    vouchers = order_service.list_vouchers(state=state, day=day)
    if not vouchers:
        click.echo("No vales found")
        return
    for v in vouchers:
        lock = f" locked_by={v['locked_by']}" if v["locked_by"] else ""
        click.echo(f"{v['number']}  #{v['daily_sequence']:<4} {v['state']:<24} total={v['total']}{lock}")


@click.group('settings')
def settings_group():
    """System settings commands."""


@settings_group.command('list')
@with_appcontext
def list_settings():
    """Show every setting with its effective value."""
    for s in get_configuration().list_settings():
        stored = "" if s["id"] else " (default)"
        click.echo(f"{s['key']:<40} {s['value_type']:<8} {s['value']}{stored}")


@settings_group.command('set')
@click.argument('key')
@click.argument('value')
@click.option('--type', 'value_type', default=None,
              type=click.Choice(['string', 'number', 'boolean', 'json']),
              help='Value type (inferred for known keys)')
@with_appcontext
def set_setting(key, value, value_type):
    """Store KEY=VALUE."""
    config = get_configuration()
    row = config.set(key, value, value_type=value_type)
    db.session.commit()
    config.invalidate(key)
    click.echo(f"PASS {row.key} = {row.value} ({row.value_type})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(vouchers_group)
    app.cli.add_command(settings_group)
