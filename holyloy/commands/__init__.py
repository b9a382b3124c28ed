"""
CLI Commands for the HolyLoy ledger.

Usage:
    flask ledger seed-stepup                 # Seed StepUp levels from config
    flask ledger reconcile [--repair]        # Cached balances vs ledger fold
    flask ledger replay-cascades [--since]   # Re-run failed reward steps
    flask ledger verify-conservation         # System issued == held by accounts
    flask ledger rebuild-merchant-customers  # Rebuild the merchant customer read model
"""
from .ledger import init_app as init_ledger_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_ledger_commands(app)
