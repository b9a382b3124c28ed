"""
CLI commands for ledger maintenance.

These can be run manually or from cron:

# Replay failed cascade steps (hourly)
15 * * * * cd /app && flask ledger replay-cascades

# Reconcile cached balances against the ledger (nightly)
0 2 * * * cd /app && flask ledger reconcile
"""
from datetime import datetime

import click
from flask import current_app
from flask.cli import with_appcontext

from ..models.rewards import seed_stepup_config
from ..services.reconciliation import ReconciliationService
from ..services.merchant_customers import MerchantCustomerProjector


@click.group('ledger')
def ledger_cli():
    """Points ledger maintenance commands."""
    pass


@ledger_cli.command('seed-stepup')
@with_appcontext
def seed_stepup():
    """Insert any missing StepUp levels from DEFAULT_STEPUP_LEVELS."""
    levels = current_app.config['DEFAULT_STEPUP_LEVELS']
    created = seed_stepup_config(levels)
    click.echo(f"StepUp levels: {created} created, {len(levels) - created} already present")


@ledger_cli.command('reconcile')
@click.option('--repair', is_flag=True, help='Rewrite drifted balance caches from the ledger')
@with_appcontext
def reconcile(repair):
    """Compare every cached balance with the ledger fold."""
    result = ReconciliationService().reconcile_balances(repair=repair)

    click.echo(f"Accounts checked: {result['accounts_checked']}")
    click.echo(f"Drifted: {len(result['drifted'])}")
    for report in result['drifted'][:20]:
        click.echo(
            f"  - Account {report['account_id']}: cached={report['cached']['balance']} "
            f"ledger={report['folded']['balance']}"
            f"{' (repaired)' if report['repaired'] else ''}"
        )
    if repair:
        click.echo(f"Repaired: {result['repaired']}")


@ledger_cli.command('replay-cascades')
@click.option('--since', type=click.DateTime(formats=['%Y-%m-%d']), help='Only entries created on or after this date')
@with_appcontext
def replay_cascades(since: datetime):
    """Run cascade steps that failed or never ran."""
    result = ReconciliationService().replay_cascades(since=since)

    click.echo(f"Entries scanned: {result['entries_scanned']}")
    click.echo(f"Steps replayed: {len(result['replayed'])}")
    if result['still_failing']:
        click.echo(f"Still failing: {len(result['still_failing'])}")
        for failure in result['still_failing'][:10]:
            click.echo(f"  - {failure['distribution_id']}:{failure['step']}: {failure.get('error')}")


@ledger_cli.command('verify-conservation')
@with_appcontext
def verify_conservation():
    """Check that points issued by system equal points held by accounts."""
    result = ReconciliationService().verify_conservation()

    click.echo(f"System issued: {result['system_issued_total']}")
    click.echo(f"Held by accounts: {result['network_total']}")
    if result['balanced']:
        click.echo("Conservation OK")
    else:
        click.echo(f"MISMATCH: difference {result['difference']}")
        raise SystemExit(1)


@ledger_cli.command('rebuild-merchant-customers')
@with_appcontext
def rebuild_merchant_customers():
    """Recompute the merchant customer read model from the ledger."""
    count = MerchantCustomerProjector().rebuild_all()
    click.echo(f"Rebuilt {count} merchant customer rows")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(ledger_cli)
