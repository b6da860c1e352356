# Overview: Flask CLI command groups for barcode issuance, expiry sweeps, and inspection.

# backend/warranty/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the app factory (PowerShell: $env:FLASK_APP="warranty:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Barcodes:
# - python -m flask barcodes expire [--now 2025-02-01T00:00:00Z] [--storefront-id 1]
#   Expire every generated/distributed/activated barcode whose warranty has lapsed.
# - python -m flask barcodes generate-batch --product-id 10 --storefront-id 1 --quantity 500 --months 24 --requested-by 7
#   Generate a tracked batch and print its statistics.
# - python -m flask barcodes stats [--storefront-id 1] [--product-id 10]
#   Generation health: totals, collision rate, entropy utilization.
# - python -m flask barcodes generator-info
#   Print the generator format and security parameters.
#
# Claims:
# - python -m flask claims list --storefront-id 1 [--status pending]
#   List recent claims.
# - python -m flask claims stats --storefront-id 1
#   Counts per status, costs and satisfaction.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import barcode_generator, barcode_lifecycle, batch_service, claim_service, reporting_service
from .errors import WarrantyError
from .time_utils import parse_iso_datetime, utcnow


def _parse_now(value):
    if not value:
        return utcnow()
    try:
        return parse_iso_datetime(value)
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO datetime: {value}") from exc


@click.group('barcodes')
def barcodes_group():
    """Warranty barcode commands."""


@barcodes_group.command('expire')
@click.option('--now', 'now_value', default=None, help='Reference time (ISO-8601); defaults to current UTC time')
@click.option('--storefront-id', type=int, default=None, help='Limit the sweep to one storefront')
@with_appcontext
def expire_barcodes(now_value, storefront_id):
    """Expire lapsed warranty barcodes."""
    now = _parse_now(now_value)
    expired = barcode_lifecycle.expire_due_barcodes(now=now, storefront_id=storefront_id)
    click.echo(f"PASS Expired {expired} barcodes as of {now.date().isoformat()}")


@barcodes_group.command('generate-batch')
@click.option('--product-id', type=int, required=True)
@click.option('--storefront-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--months', 'warranty_period_months', type=int, required=True, help='Warranty period in months')
@click.option('--requested-by', type=int, required=True, help='Acting user id')
@click.option('--batch-number', default=None)
@click.option('--recipient', 'intended_recipient', default=None)
@click.option('--show-barcodes', is_flag=True, help='Print every generated barcode number')
@with_appcontext
def generate_batch_cli(product_id, storefront_id, quantity, warranty_period_months, requested_by,
                       batch_number, intended_recipient, show_barcodes):
    """Generate a barcode batch from the shell."""
    try:
        result = batch_service.generate_batch(
            product_id=product_id,
            storefront_id=storefront_id,
            quantity=quantity,
            warranty_period_months=warranty_period_months,
            requested_by=requested_by,
            batch_number=batch_number,
            intended_recipient=intended_recipient,
        )
    except WarrantyError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    batch = result.batch
    stats = result.statistics
    click.echo(f"PASS Batch {batch.batch_number} (ID: {batch.id}) {batch.generation_status}")
    click.echo(f"   generated  {stats.generated_quantity}/{stats.requested_quantity}")
    click.echo(f"   failed     {stats.failed_quantity}")
    click.echo(f"   collisions {stats.collision_count} ({stats.collision_rate:.4f}%)")
    click.echo(f"   security   {stats.security_score} -> {stats.recommended_action}")
    if show_barcodes:
        for barcode in result.barcodes:
            click.echo(barcode.barcode_number)


@barcodes_group.command('stats')
@click.option('--storefront-id', type=int, default=None)
@click.option('--product-id', type=int, default=None)
@with_appcontext
def barcode_stats(storefront_id, product_id):
    """Print generation health statistics."""
    stats = reporting_service.generation_stats(storefront_id=storefront_id, product_id=product_id)
    click.echo(f"Total generated:       {stats['total_generated']}")
    for status, count in sorted(stats['by_status'].items()):
        click.echo(f"  {status:<12} {count}")
    click.echo(f"Collisions:            {stats['collision_count']} ({stats['collision_rate']:.4f}%)")
    click.echo(f"Entropy utilization:   {stats['entropy_utilization']:.10f}%")
    click.echo(f"Security status:       {stats['security_status']} -> {stats['recommended_action']}")


@barcodes_group.command('generator-info')
@with_appcontext
def generator_info():
    """Print the barcode generator configuration."""
    for key, value in barcode_generator.describe().items():
        click.echo(f"{key:<24} {value}")


@click.group('claims')
def claims_group():
    """Warranty claim inspection commands."""


@claims_group.command('list')
@click.option('--storefront-id', type=int, required=True)
@click.option('--status', default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_claims(storefront_id, status, limit):
    """List recent claims for a storefront."""
    claims = claim_service.list_claims(storefront_id=storefront_id, status=status, limit=limit)
    if not claims:
        click.echo("No claims found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Number':<24} {'Status':<12} {'Priority':<10} {'Total'}")
    click.echo("="*80)
    for claim in claims:
        click.echo(f"{claim.id:<6} {claim.claim_number:<24} {claim.status:<12} {claim.priority:<10} {claim.total_cost}")
    click.echo("="*80 + "\n")


@claims_group.command('stats')
@click.option('--storefront-id', type=int, required=True)
@with_appcontext
def claim_stats(storefront_id):
    """Print claim statistics for a storefront."""
    stats = reporting_service.claim_statistics(storefront_id)
    click.echo(f"Total claims: {stats['total_claims']}")
    for status, count in sorted(stats['by_status'].items()):
        click.echo(f"  {status:<12} {count}")
    click.echo(f"Total cost:   {stats['total_cost']}")
    if stats['average_satisfaction'] is not None:
        click.echo(f"Satisfaction: {stats['average_satisfaction']:.2f}")


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

    click.echo("PASS Database reset complete.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(barcodes_group)
    app.cli.add_command(claims_group)
    app.cli.add_command(system_group)
