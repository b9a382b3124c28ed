"""
Transaction History Reporter.

Running balances are rebuilt from the ledger, never read from a stored
running total:

    starting balance = current canonical balance - net of all entries
    running balance  = starting balance + each delta, oldest first

so the last running balance always equals the current balance.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Any, Optional, Union

from ..extensions import db
from ..models.account import Account
from ..models.ledger import PointDistribution, SYSTEM_ACCOUNT
from ..utils.exceptions import AccountNotFound
from .balance_projector import BalanceProjector
from .ledger_store import LedgerStore


GENERATED = 'Generated'
RECEIVED = 'Received'
DISTRIBUTED = 'Distributed'

EXPORT_COLUMNS = [
    'date', 'type', 'distribution_type', 'amount', 'delta',
    'counterparty', 'description', 'running_balance', 'distribution_id',
]


@dataclass
class HistoryItem:
    distribution_id: int
    type: str
    amount: int
    delta: int
    description: Optional[str]
    distribution_type: str
    counterparty_id: Union[int, str]
    timestamp: datetime
    running_balance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'distribution_id': self.distribution_id,
            'type': self.type,
            'amount': self.amount,
            'delta': self.delta,
            'description': self.description,
            'distribution_type': self.distribution_type,
            'counterparty_id': self.counterparty_id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'running_balance': self.running_balance,
        }


class HistoryReporter:
    """Chronological account statement with running balances."""

    def __init__(self, store: LedgerStore = None, projector: BalanceProjector = None):
        self.store = store or LedgerStore()
        self.projector = projector or BalanceProjector()

    def history(self, account_id: int) -> List[HistoryItem]:
        if not db.session.get(Account, account_id):
            raise AccountNotFound(account_id)

        entries = self.store.query(account_id, role='either')
        current = self.projector.fold(account_id).balance
        net = sum(self._delta(entry, account_id) for entry in entries)

        running = current - net
        items = []
        for entry in entries:
            delta = self._delta(entry, account_id)
            running += delta
            items.append(HistoryItem(
                distribution_id=entry.id,
                type=self._kind(entry, account_id),
                amount=entry.points,
                delta=delta,
                description=entry.description,
                distribution_type=entry.distribution_type,
                counterparty_id=entry.recipient if entry.from_account_id == account_id else entry.sender,
                timestamp=entry.created_at,
                running_balance=running,
            ))
        return items

    def export_rows(self, account_id: int) -> List[Dict[str, Any]]:
        """History flattened to EXPORT_COLUMNS for CSV writers."""
        rows = []
        for item in self.history(account_id):
            rows.append({
                'date': item.timestamp.strftime('%Y-%m-%d %H:%M:%S') if item.timestamp else '',
                'type': item.type,
                'distribution_type': item.distribution_type,
                'amount': item.amount,
                'delta': item.delta,
                'counterparty': str(item.counterparty_id),
                'description': item.description or '',
                'running_balance': item.running_balance,
                'distribution_id': item.distribution_id,
            })
        return rows

    @staticmethod
    def _delta(entry: PointDistribution, account_id: int) -> int:
        if entry.from_account_id == account_id:
            return -entry.points
        return entry.points

    @staticmethod
    def _kind(entry: PointDistribution, account_id: int) -> str:
        if entry.from_account_id == account_id:
            return DISTRIBUTED
        if entry.sender == SYSTEM_ACCOUNT:
            return GENERATED
        return RECEIVED
