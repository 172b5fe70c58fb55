# Overview: Flask CLI command groups for the expiration sweeper, reporting, and slot maintenance.

# backend/vending/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Database:
# - python -m flask db upgrade
#   Apply migrations (Flask-Migrate).
#
# Sales:
# - python -m flask sales sweep
#   Run one expiration pass: expire overdue reserved/paid sales and release their stock.
# - python -m flask sales sweep --loop --interval 60
#   Keep sweeping every N seconds (defaults to SWEEP_INTERVAL_SECONDS).
# - python -m flask sales stats
#   Print per-state counts, revenue and reserved stock.
#
# Slots:
# - python -m flask slots restock 12 --quantity 5
#   Add 5 units to slot 12 (refused if it would exceed capacity).
# - python -m flask slots low-stock [--machine-id 3]
#   List active slots with less than half their capacity available.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import VendingError
from .extensions import db
from .services import expiration_service, reporting_service, slot_service


@click.group('sales')
def sales_group():
    """Sale lifecycle maintenance commands."""


@sales_group.command('sweep')
@click.option('--loop', is_flag=True, help='Keep sweeping until interrupted')
@click.option('--interval', type=int, default=None, help='Seconds between passes (with --loop)')
@click.option('--limit', type=int, default=None, help='Max sales examined per pass')
@with_appcontext
def sweep_command(loop, interval, limit):
    """Expire overdue sales and release their stock."""
    interval = interval or current_app.config["SWEEP_INTERVAL_SECONDS"]

    while True:
        result = expiration_service.sweep_expired_sales(limit=limit)
        click.echo(
            f"PASS Sweep: {result.expired} expired, {result.units_released} units released"
            + (f", {result.failed} deferred" if result.failed else "")
        )
        db.session.remove()
        if not loop:
            break
        time.sleep(interval)


@sales_group.command('stats')
@with_appcontext
def stats_command():
    """Print sales statistics."""
    stats = reporting_service.get_sales_stats()
    click.echo("Sales by state:")
    for state, count in stats["counts"].items():
        click.echo(f"  {state:<10} {count}")
    click.echo(f"Total sales:        {stats['total_sales']}")
    click.echo(f"Completed revenue:  {stats['completed_revenue']}")
    click.echo(f"Pending revenue:    {stats['pending_revenue']}")
    click.echo(f"Reserved stock:     {stats['reserved_stock']}")
    click.echo(f"Expired (24h):      {stats['expired_last_24h']}")
    if stats["avg_pickup_minutes"] is not None:
        click.echo(f"Avg pickup minutes: {stats['avg_pickup_minutes']}")


@click.group('slots')
def slots_group():
    """Slot stock maintenance commands."""


@slots_group.command('restock')
@click.argument('slot_id', type=int)
@click.option('--quantity', type=int, required=True, help='Units to add')
@with_appcontext
def restock_command(slot_id, quantity):
    """Add units to a slot."""
    try:
        slot = slot_service.restock_slot(slot_id, quantity)
    except VendingError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"PASS Slot {slot.id}: available={slot.available} reserved={slot.reserved} capacity={slot.capacity}"
    )


@slots_group.command('low-stock')
@click.option('--machine-id', type=int, default=None, help='Restrict to one machine')
@with_appcontext
def low_stock_command(machine_id):
    """List slots below half capacity."""
    slots = slot_service.find_low_stock(machine_id)
    if not slots:
        click.echo("No low-stock slots")
        return
    for slot in slots:
        click.echo(
            f"  machine={slot.machine_id} slot={slot.slot_number} (id {slot.id}) "
            f"available={slot.available}/{slot.capacity} reserved={slot.reserved}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(sales_group)
    app.cli.add_command(slots_group)
