"""
Reconciliation jobs.

- reconcile_balances: cached balance columns vs the ledger fold, optionally repaired
- replay_cascades: re-run cascade steps that never ran or failed
- verify_conservation: points issued by system == points held by accounts

Run nightly by the scheduler and on demand via `flask ledger ...`.
"""
from datetime import datetime
from typing import Dict, Any
from flask import current_app

from ..extensions import db
from ..models.account import Account
from ..models.ledger import PointDistribution, DistributionType
from .balance_projector import BalanceProjector
from .cascade import CascadeCoordinator
from .ledger_store import LedgerStore


class ReconciliationService:

    def __init__(self, projector: BalanceProjector = None, coordinator: CascadeCoordinator = None,
                 store: LedgerStore = None):
        self.projector = projector or BalanceProjector()
        self.coordinator = coordinator or CascadeCoordinator()
        self.store = store or LedgerStore()

    def reconcile_balances(self, repair: bool = False) -> Dict[str, Any]:
        """
        Check every account's cached projection against the fold.

        Returns:
            Dict with accounts checked, drifted account reports and repair count
        """
        account_ids = [row.id for row in db.session.query(Account.id).order_by(Account.id).all()]
        drifted = []
        repaired = 0
        for account_id in account_ids:
            report = self.projector.reconcile(account_id, repair=repair)
            if report['drift']:
                drifted.append(report)
                if report['repaired']:
                    repaired += 1

        current_app.logger.info(
            f"Balance reconciliation: {len(account_ids)} accounts, {len(drifted)} drifted, {repaired} repaired"
        )
        return {
            'accounts_checked': len(account_ids),
            'drifted': drifted,
            'repaired': repaired,
        }

    def replay_cascades(self, since: datetime = None) -> Dict[str, Any]:
        """
        Walk completed merchant_to_customer entries and run any cascade step
        that has no run record or an 'error' record.
        """
        entries = self.store.completed_of_type(DistributionType.MERCHANT_TO_CUSTOMER.value, since=since)
        replayed = []
        still_failing = []
        for entry in entries:
            entry_id = entry.id
            for step_name in self.coordinator.pending_steps(entry_id):
                result = self.coordinator.run_step(db.session.get(PointDistribution, entry_id), step_name)
                record = {'distribution_id': entry_id, 'step': step_name, 'status': result.status}
                if result.error:
                    record['error'] = result.error
                    still_failing.append(record)
                else:
                    replayed.append(record)

        current_app.logger.info(
            f"Cascade replay: {len(entries)} entries scanned, {len(replayed)} steps replayed, "
            f"{len(still_failing)} still failing"
        )
        return {
            'entries_scanned': len(entries),
            'replayed': replayed,
            'still_failing': still_failing,
        }

    def verify_conservation(self) -> Dict[str, Any]:
        issued = self.projector.system_issued_total()
        held = self.projector.network_total()
        balanced = issued == held
        if not balanced:
            current_app.logger.error(f"Conservation check failed: issued={issued} held={held}")
        return {
            'system_issued_total': issued,
            'network_total': held,
            'difference': held - issued,
            'balanced': balanced,
        }

    def run_all(self, repair: bool = False) -> Dict[str, Any]:
        """Nightly job: replay cascades, then balances, then conservation."""
        return {
            'cascades': self.replay_cascades(),
            'balances': self.reconcile_balances(repair=repair),
            'conservation': self.verify_conservation(),
        }
