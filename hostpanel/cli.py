# hostpanel/cli.py
"""`flask billing ...` maintenance commands for schedulers without HTTP access."""

import click
from flask import Blueprint

from hostpanel.services import invoices, payments, renewal

billing_cli = Blueprint("billing_cli", __name__, cli_group="billing")


@billing_cli.cli.command("renew")
@click.option("--grace-days", type=int, default=None, help="Days a server may stay suspended.")
def renew_command(grace_days):
    """Run the server renewal sweep."""
    summary = renewal.process_server_renewals(grace_days=grace_days)
    click.echo(
        f"renewed={summary.renewed} suspended={summary.suspended} "
        f"terminated={summary.terminated} notifications={summary.notifications}"
    )
    for error in summary.errors:
        click.echo(f"error: {error}", err=True)


@billing_cli.cli.command("overdue")
def overdue_command():
    """Mark unpaid invoices past their due date as overdue."""
    count = invoices.check_overdue_invoices()
    click.echo(f"overdue={count}")


@billing_cli.cli.command("reconcile")
@click.option("--older-than", "older_than", type=int, default=None, help="Minutes a payment must be pending.")
def reconcile_command(older_than):
    """Poll providers for pending payments."""
    summary = payments.reconcile_pending_payments(older_than_minutes=older_than)
    click.echo(
        f"checked={summary['checked']} confirmed={summary['confirmed']} "
        f"failed={summary['failed']} pending={summary['pending']}"
    )
    for error in summary["errors"]:
        click.echo(f"error: {error}", err=True)
