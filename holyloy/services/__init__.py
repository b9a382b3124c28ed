"""
Business logic services for the HolyLoy points ledger.
"""
from .ledger_store import LedgerStore, PointDistributionDraft
from .balance_projector import BalanceProjector, BalanceSnapshot
from .distribution_engine import DistributionEngine, with_retry
from .cascade import CascadeCoordinator, CascadeResult
from .generation_requests import GenerationRequestService
from .history import HistoryReporter
from .reconciliation import ReconciliationService
from .notifications import NotificationPort, AuditTrailNotifier
from .merchant_customers import MerchantCustomerProjector

__all__ = [
    'LedgerStore',
    'PointDistributionDraft',
    'BalanceProjector',
    'BalanceSnapshot',
    'DistributionEngine',
    'with_retry',
    'CascadeCoordinator',
    'CascadeResult',
    'GenerationRequestService',
    'HistoryReporter',
    'ReconciliationService',
    'NotificationPort',
    'AuditTrailNotifier',
    'MerchantCustomerProjector',
]
