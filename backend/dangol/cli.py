# Overview: Flask CLI command groups for bootstrap, merchant onboarding and deal inspection.

# backend/dangol/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Merchant onboarding:
# - python -m flask merchants create --name "Dangol Cafe" --address "서울시 중구 명동 명동길 1" --lat 37.5636 --lng 126.9826 --email owner@cafe.kr
# - python -m flask merchants move --merchant-id 1 --lat 37.5640 --lng 126.9830
#   Fix a merchant's location; refused once any of its deals has been claimed.
# - python -m flask merchants list
#
# Deal inspection:
# - python -m flask deals list [--merchant-id 1]
#   List deals with remaining capacity and derived state.
# - python -m flask deals legacy-report
#   List deals whose deadlines are still stored as naive UTC (below the cutoff id).

import click
from flask.cli import with_appcontext

from .errors import DealEngineError
from .extensions import db
from .models import Deal
from .services import merchant_service
from .services.deal_service import deal_state
from .services.expiry_service import deal_deadline, legacy_cutoff_deal_id
from .time_utils import deal_timezone, to_utc_z


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

    click.echo("PASS Database reset complete.")


@click.group('merchants')
def merchants_group():
    """Merchant onboarding commands."""


@merchants_group.command('create')
@click.option('--name', 'business_name', prompt=True, help='Business name')
@click.option('--address', prompt=True, help='Street address')
@click.option('--lat', 'latitude', type=float, prompt=True, help='Latitude')
@click.option('--lng', 'longitude', type=float, prompt=True, help='Longitude')
@click.option('--email', prompt=True, help='Contact email')
@click.option('--phone', default=None, help='Contact phone')
@with_appcontext
def create_merchant_cli(business_name, address, latitude, longitude, email, phone):
    """Register a merchant at a fixed location."""
    try:
        merchant = merchant_service.create_merchant(
            business_name=business_name,
            address=address,
            latitude=latitude,
            longitude=longitude,
            email=email,
            phone=phone,
        )
    except DealEngineError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created merchant {merchant.business_name} (ID: {merchant.id})")


@merchants_group.command('move')
@click.option('--merchant-id', type=int, required=True, help='Merchant to move')
@click.option('--lat', 'latitude', type=float, required=True, help='New latitude')
@click.option('--lng', 'longitude', type=float, required=True, help='New longitude')
@with_appcontext
def move_merchant_cli(merchant_id, latitude, longitude):
    """Correct a merchant's location (refused once customers have claimed)."""
    try:
        merchant = merchant_service.update_merchant_location(merchant_id, latitude, longitude)
    except DealEngineError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Moved {merchant.business_name} to ({merchant.latitude:.5f}, {merchant.longitude:.5f})")


@merchants_group.command('list')
@with_appcontext
def list_merchants_cli():
    """List all merchants."""
    merchants = merchant_service.list_merchants()
    if not merchants:
        click.echo("No merchants found.")
        return

    click.echo(f"\n{'ID':<5} {'Name':<30} {'Lat':>10} {'Lng':>11}  Address")
    click.echo("-" * 90)
    for m in merchants:
        click.echo(f"{m.id:<5} {m.business_name[:30]:<30} {m.latitude:>10.5f} {m.longitude:>11.5f}  {m.address}")


@click.group('deals')
def deals_group():
    """Deal inspection commands."""


@deals_group.command('list')
@click.option('--merchant-id', type=int, help='Only deals of this merchant')
@with_appcontext
def list_deals_cli(merchant_id):
    """List deals with capacity and derived state."""
    query = db.session.query(Deal)
    if merchant_id:
        query = query.filter(Deal.merchant_id == merchant_id)
    deals = query.order_by(Deal.id.asc()).all()
    if not deals:
        click.echo("No deals found.")
        return

    click.echo(f"\n{'ID':<5} {'Merchant':<9} {'Claims':<11} {'State':<10} {'Expires (UTC)':<21} Title")
    click.echo("-" * 90)
    for d in deals:
        claims = f"{d.current_claims}/{d.max_claims}"
        click.echo(
            f"{d.id:<5} {d.merchant_id:<9} {claims:<11} {deal_state(d):<10} "
            f"{to_utc_z(deal_deadline(d)):<21} {d.title}"
        )


@deals_group.command('legacy-report')
@with_appcontext
def legacy_report_cli():
    """
    Deals whose starts_at/expires_at are still stored as naive UTC.

    Rewriting these rows into deal-timezone wall clock would let the cutoff
    branch in expiry_service be retired.
    """
    cutoff = legacy_cutoff_deal_id()
    deals = db.session.query(Deal).filter(Deal.id < cutoff).order_by(Deal.id.asc()).all()
    click.echo(f"Cutoff deal id: {cutoff} ({len(deals)} legacy deals)")
    tz = deal_timezone()
    for d in deals:
        deadline = deal_deadline(d)
        click.echo(
            f"{d.id:<5} stored={d.expires_at.isoformat()}  "
            f"utc={to_utc_z(deadline)}  local={deadline.astimezone(tz).replace(tzinfo=None).isoformat()}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(merchants_group)
    app.cli.add_command(deals_group)
