# Overview: Flask CLI command groups for bootstrap, scheduled lifecycle jobs, and inspection.

# backend/printshop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system seed
#   Idempotent: create the Standard/Premium/Deluxe tiers, weekday capacity,
#   and a sample business-card service with its stock item.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Scheduled lifecycle jobs (run from cron or a scheduler):
# - python -m flask lifecycle expire-quotes [--now 2026-01-31T00:00:00Z]
#   Expire open quotes past expires_at and release their bookings.
# - python -m flask lifecycle scan-breaches [--now 2026-01-31T00:00:00Z]
#   Record a breach for every running SLA timer past due.
#
# Inspection:
# - python -m flask orders list [--status IN_PRODUCTION] [--limit 20]
#   List orders with totals and balance due.
# - python -m flask orders payments ORD-000001
#   Payment summary for one order.
# - python -m flask inventory reorder
#   Items at or below their reorder point.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .errors import LifecycleError
from .models import (
    ServiceCategory, Service, ServiceOption, Tier, TierDeliverable, CapacitySetting,
    InventoryItem, MaterialConsumptionRule, Order,
)
from .money_utils import format_cents
from .services import inventory_service, payment_service, quote_service, sla_service
from .services.order_service import list_orders
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to load reference data.")


DEFAULT_TIERS = [
    {
        "name": "Standard", "slug": "standard", "sort_order": 1,
        "turnaround_days_min": 5, "turnaround_days_max": 7,
        "revisions_allowed": 2, "rush_fee_bps": 2500, "deposit_percentage_bps": 5000,
        "price_multiplier_bps": 10_000, "sla_response_hours": 48,
        "deliverables": ["Print-ready files archived", "Final quality check signed off"],
    },
    {
        "name": "Premium", "slug": "premium", "sort_order": 2,
        "turnaround_days_min": 3, "turnaround_days_max": 5,
        "revisions_allowed": 5, "rush_fee_bps": 2000, "deposit_percentage_bps": 5000,
        "price_multiplier_bps": 12_500, "sla_response_hours": 24,
        "deliverables": ["Print-ready files archived", "Colour proof approved", "Final quality check signed off"],
    },
    {
        "name": "Deluxe", "slug": "deluxe", "sort_order": 3,
        "turnaround_days_min": 1, "turnaround_days_max": 3,
        "revisions_allowed": 999, "rush_fee_bps": 1500, "deposit_percentage_bps": 3000,
        "price_multiplier_bps": 15_000, "sla_response_hours": 12,
        "deliverables": [
            "Print-ready files archived", "Colour proof approved",
            "Source files delivered", "Final quality check signed off",
        ],
    },
]


def _seed_tiers() -> int:
    created = 0
    for spec in DEFAULT_TIERS:
        if db.session.query(Tier).filter_by(slug=spec["slug"]).first() is not None:
            continue
        fields = {k: v for k, v in spec.items() if k != "deliverables"}
        tier = Tier(**fields)
        db.session.add(tier)
        db.session.flush()
        for idx, description in enumerate(spec["deliverables"]):
            db.session.add(TierDeliverable(tier_id=tier.id, description=description, sort_order=idx))
        created += 1
    return created


def _seed_capacity() -> int:
    created = 0
    for day in range(7):
        if db.session.query(CapacitySetting).filter_by(day_of_week=day).first() is not None:
            continue
        working = day < 5
        db.session.add(CapacitySetting(
            day_of_week=day,
            is_working_day=working,
            start_time="09:00" if working else None,
            end_time="17:00" if working else None,
            default_slots=5 if working else 0,
            emergency_slots_max=2 if working else 0,
            emergency_fee_bps=2000,
        ))
        created += 1
    return created


def _seed_sample_service() -> Service | None:
    if db.session.query(Service).filter_by(slug="business-cards").first() is not None:
        return None

    category = db.session.query(ServiceCategory).filter_by(slug="print").first()
    if category is None:
        category = ServiceCategory(name="Print", slug="print", sort_order=1)
        db.session.add(category)
        db.session.flush()

    service = Service(
        category_id=category.id,
        name="Business Cards",
        slug="business-cards",
        description="Full-colour business cards on premium stock.",
        requires_proof=True,
        requires_booking=False,
        base_price_cents=2500,
        deposit_percentage_bps=5000,
    )
    db.session.add(service)
    db.session.flush()

    db.session.add_all([
        ServiceOption(
            service_id=service.id, field_key="quantity", label="Quantity", field_type="number",
            is_required=True, pricing_impact={"per_unit_cents": 12},
            validation_rules={"min": 50, "max": 10000}, sort_order=1,
        ),
        ServiceOption(
            service_id=service.id, field_key="finish", label="Finish", field_type="select",
            is_required=True, choices=["matte", "gloss"],
            pricing_impact={"per_choice": {"matte": 0, "gloss": 1500}}, sort_order=2,
        ),
        ServiceOption(
            service_id=service.id, field_key="rounded_corners", label="Rounded corners", field_type="checkbox",
            pricing_impact={"flat_cents": 800}, sort_order=3,
        ),
    ])

    stock = db.session.query(InventoryItem).filter_by(sku="CARD-STOCK-350").first()
    if stock is None:
        stock = InventoryItem(
            sku="CARD-STOCK-350", name="350gsm card stock (sheet)", category="paper", unit="sheet",
            reorder_point=500, reorder_qty=2000, cost_per_unit_cents=9,
        )
        db.session.add(stock)
        db.session.flush()

    # 24 cards per sheet
    db.session.add(MaterialConsumptionRule(
        service_id=service.id, inventory_item_id=stock.id, qty_per_unit=Decimal("0.042"),
    ))
    return service


@system_group.command('seed')
@with_appcontext
def seed():
    """Load reference data. Safe to run repeatedly."""
    click.echo("START Seeding reference data...")

    tiers = _seed_tiers()
    click.echo(f"PASS Tiers created: {tiers}")

    days = _seed_capacity()
    click.echo(f"PASS Capacity days created: {days}")

    service = _seed_sample_service()
    if service is None:
        click.echo("WARN  Sample service already exists, skipping...")
    else:
        click.echo(f"PASS Created sample service: {service.name} (ID: {service.id})")

    db.session.commit()
    click.echo("DONE Seed complete. Stock starts at zero; record a PURCHASE movement before production.")


@click.group('lifecycle')
def lifecycle_group():
    """Scheduled lifecycle jobs."""


def _parse_now(now: str | None):
    if not now:
        return None
    try:
        return parse_iso_datetime(now)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--now")


@lifecycle_group.command('expire-quotes')
@click.option('--now', default=None, help='Evaluate as of this ISO-8601 instant (default: current time)')
@with_appcontext
def expire_quotes(now):
    result = quote_service.expire_stale_quotes(_parse_now(now))
    click.echo(f"PASS Scanned {result['scanned']} quotes, expired {result['expired']}, failed {result['failed']}")
    if result["failed"]:
        raise SystemExit(1)


@lifecycle_group.command('scan-breaches')
@click.option('--now', default=None, help='Evaluate as of this ISO-8601 instant (default: current time)')
@with_appcontext
def scan_breaches(now):
    result = sla_service.scan_for_breaches(_parse_now(now))
    click.echo(f"PASS Scanned {result['scanned']} timers, breached {result['breached']}, failed {result['failed']}")
    if result["failed"]:
        raise SystemExit(1)


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('list')
@click.option('--status', default=None, help='Filter by order status')
@click.option('--limit', type=int, default=20, help='Max rows to show')
@with_appcontext
def list_orders_cli(status, limit):
    orders, total = list_orders(status=status, limit=limit, offset=0, sort_by="created_at", sort_order="desc")
    if not orders:
        click.echo("No orders found.")
        return

    click.echo("\n" + "=" * 88)
    click.echo(f"{'Number':<12} {'Status':<20} {'Customer':<10} {'Total':>12} {'Balance':>12} {'Priority':>9} {'SLA'}")
    click.echo("=" * 88)
    for order in orders:
        click.echo(
            f"{order.order_number:<12} {order.status:<20} {order.customer_id:<10} "
            f"{format_cents(order.total_amount_cents):>12} {format_cents(order.balance_due_cents):>12} "
            f"{order.priority:>9} {'BREACHED' if order.sla_breached else '-'}"
        )
    click.echo("=" * 88)
    click.echo(f"Showing {len(orders)} of {total}\n")


@orders_group.command('payments')
@click.argument('order_number')
@with_appcontext
def order_payments_cli(order_number):
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        click.echo(f"FAIL Order {order_number} not found")
        raise SystemExit(1)

    try:
        summary = payment_service.payment_summary(order.id)
    except LifecycleError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"\n{order.order_number} ({summary['payment_status']})")
    click.echo(f"  Total:    {format_cents(summary['total_amount_cents'])}")
    click.echo(f"  Deposit:  {format_cents(summary['deposit_amount_cents'])}")
    click.echo(f"  Paid:     {format_cents(summary['amount_paid_cents'])}")
    click.echo(f"  Pending:  {format_cents(summary['amount_pending_cents'])}")
    click.echo(f"  Refunded: {format_cents(summary['refunded_cents'])}")
    click.echo(f"  Balance:  {format_cents(summary['balance_due_cents'])}")
    for p in summary["payments"]:
        click.echo(f"    {p['payment_number']:<12} {p['method']:<14} {p['status']:<10} {format_cents(p['amount_cents']):>12}")
    click.echo("")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('reorder')
@with_appcontext
def reorder_cli():
    items = inventory_service.reorder_alert_items()
    if not items:
        click.echo("PASS Nothing at or below its reorder point.")
        return
    for item in items:
        click.echo(
            f"WARN  {item.sku:<20} on hand {item.qty_on_hand:>6} {item.unit:<8} "
            f"(reorder point {item.reorder_point}, reorder qty {item.reorder_qty})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(lifecycle_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(inventory_group)
