# Overview: Flask CLI command groups for bootstrap, stock verification, legacy import and reports.

# backend/medstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to medstock (PowerShell: $env:FLASK_APP="medstock").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "City Pharmacy" --code "CITY"
#
# Stock:
# - python -m flask stock verify --org-id 1
#   Replay every batch's movement history and report mismatches (exit 1 if any).
# - python -m flask stock import-legacy medicines.json --org-id 1
#   Migrate legacy one-row-per-medicine stock (JSON list or CSV) into batches.
#
# Reports:
# - python -m flask reports low-stock --org-id 1 [--threshold 20]
# - python -m flask reports valuation --org-id 1

import csv
import json
import sys

import click
from flask.cli import with_appcontext

from .errors import InventoryError
from .extensions import db
from .models import Organization
from .services import legacy_import_service, reconciliation_service
from .services.concurrency import commit_with_retry


def _require_org(org_id: int) -> Organization:
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        sys.exit(1)
    return org


def _cents(value: int) -> str:
    return f"{value / 100:,.2f}"


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("PASS Schema created")


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
    db.create_all()
    click.echo("PASS Schema recreated")


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active'}")
    click.echo("="*60)

    for org in orgs:
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str}")

    click.echo("="*60 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    commit_with_retry()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# STOCK
# =============================================================================

@click.group('stock')
def stock_group():
    """Batch ledger verification and migration commands."""


@stock_group.command('verify')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def verify_stock(org_id):
    """Check that every batch quantity equals the replay of its movements."""
    _require_org(org_id)
    discrepancies = reconciliation_service.ledger_discrepancies(org_id)

    if not discrepancies:
        click.echo("PASS Batch quantities match their movement history")
        return

    for row in discrepancies:
        click.echo(
            f"FAIL batch {row['batch_id']} ({row['batch_number']}): "
            f"quantity {row['quantity']} != replayed {row['replayed_quantity']}"
        )
    sys.exit(1)


def _load_records(path: str) -> list[dict]:
    if path.lower().endswith(".csv"):
        with open(path, newline="", encoding="utf-8") as fh:
            return list(csv.DictReader(fh))
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("records", [])
    if not isinstance(data, list):
        raise click.BadParameter("expected a JSON list of records", param_hint="FILE")
    return data


@stock_group.command('import-legacy')
@click.argument('path', metavar='FILE', type=click.Path(exists=True, dir_okay=False))
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def import_legacy(path, org_id):
    """Migrate legacy flat-stock records (JSON list or CSV) into products and batches."""
    _require_org(org_id)
    records = _load_records(path)

    try:
        result = legacy_import_service.migrate_flat_stock(org_id=org_id, records=records)
    except InventoryError as e:
        click.echo(f"FAIL {e.message}")
        sys.exit(1)

    click.echo(
        f"PASS Imported {len(records)} records: {result.products_created} products created, "
        f"{result.batches_created} batches created, {len(result.skipped)} skipped"
    )
    for skipped in result.skipped:
        click.echo(f"  SKIP record {skipped['record']} {skipped['name']} ({skipped['batch_number']}): {skipped['reason']}")


# =============================================================================
# REPORTS
# =============================================================================

@click.group('reports')
def reports_group():
    """Stock report commands."""


@reports_group.command('low-stock')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--threshold', type=int, default=None, help='Override every product threshold')
@with_appcontext
def low_stock_report(org_id, threshold):
    """Products below their low-stock threshold."""
    _require_org(org_id)
    rows = reconciliation_service.low_stock(org_id, threshold_override=threshold)

    if not rows:
        click.echo("No products below threshold.")
        return

    click.echo(f"{'ID':<6} {'Product':<40} {'On hand':>8} {'Threshold':>10}")
    for product, quantity in rows:
        limit = threshold if threshold is not None else product.low_stock_threshold
        click.echo(f"{product.id:<6} {product.name[:40]:<40} {quantity:>8} {limit:>10}")


@reports_group.command('valuation')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def valuation_report(org_id):
    """Stock value at cost over active batches."""
    _require_org(org_id)
    for row in reconciliation_service.valuation_by_product(org_id):
        click.echo(f"{row['product_name'][:40]:<40} {row['quantity']:>8} {_cents(row['value_cents']):>14}")
    click.echo(f"TOTAL {_cents(reconciliation_service.valuation(org_id))}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(reports_group)
