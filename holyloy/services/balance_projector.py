"""
Account Balance Projector.

fold() is the one canonical balance computation:

    balance = sum(points credited to the account) - sum(points debited from it)

over completed ledger entries. Entries from 'system' (from_account_id NULL)
only ever count as credits. The cached columns on Account are maintained by
the distribution engine and must always agree with fold(); reconcile()
checks that and can repair drift.
"""
from dataclasses import dataclass, asdict
from typing import Dict, Any
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models.account import Account
from ..models.ledger import PointDistribution, DistributionStatus, INCOME_TYPES
from ..utils.exceptions import AccountNotFound


@dataclass
class BalanceSnapshot:
    """Balance figures for one account."""
    balance: int
    total_received: int
    total_distributed: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class BalanceProjector:
    """Canonical ledger fold plus the cached projection checks built on it."""

    def _sum(self, *criteria) -> int:
        total = db.session.query(
            func.coalesce(func.sum(PointDistribution.points), 0)
        ).filter(
            PointDistribution.status == DistributionStatus.COMPLETED.value,
            *criteria
        ).scalar()
        return int(total or 0)

    def fold(self, account_id: int) -> BalanceSnapshot:
        received = self._sum(PointDistribution.to_account_id == account_id)
        distributed = self._sum(PointDistribution.from_account_id == account_id)
        return BalanceSnapshot(
            balance=received - distributed,
            total_received=received,
            total_distributed=distributed,
        )

    def get_balance(self, account_id: int) -> BalanceSnapshot:
        """Cached figures. Kept in step with the ledger by the distribution engine."""
        account = db.session.get(Account, account_id)
        if not account:
            raise AccountNotFound(account_id)
        return BalanceSnapshot(
            balance=account.points_balance,
            total_received=account.total_received,
            total_distributed=account.total_distributed,
        )

    def reconcile(self, account_id: int, repair: bool = False) -> Dict[str, Any]:
        """
        Compare the cached columns with the fold.

        Args:
            account_id: Account to check
            repair: Overwrite the cache with the fold when they differ (commits)

        Returns:
            Dict with cached, folded, drift flag and whether a repair was made
        """
        account = db.session.get(Account, account_id)
        if not account:
            raise AccountNotFound(account_id)

        folded = self.fold(account_id)
        cached = BalanceSnapshot(
            balance=account.points_balance,
            total_received=account.total_received,
            total_distributed=account.total_distributed,
        )
        drift = cached != folded

        repaired = False
        if drift:
            current_app.logger.warning(
                f"Balance drift on account {account_id}: cached={cached.balance} fold={folded.balance}"
            )
            if repair:
                account.points_balance = folded.balance
                account.total_received = folded.total_received
                account.total_distributed = folded.total_distributed
                db.session.commit()
                repaired = True

        return {
            'account_id': account_id,
            'cached': cached.to_dict(),
            'folded': folded.to_dict(),
            'drift': drift,
            'repaired': repaired,
        }

    # ==================== Conservation ====================

    def system_issued_total(self) -> int:
        """Points minted by system minus points reversed back to system."""
        minted = self._sum(PointDistribution.from_account_id.is_(None))
        returned = self._sum(PointDistribution.to_account_id.is_(None))
        return minted - returned

    def network_total(self) -> int:
        """Sum of all cached account balances."""
        total = db.session.query(func.coalesce(func.sum(Account.points_balance), 0)).scalar()
        return int(total or 0)

    # ==================== Read models ====================

    def income_summary(self, account_id: int) -> Dict[str, Any]:
        """
        Reward income received by an account, grouped by distribution type.

        This is the merchant/customer "income wallet" view. It is derived from
        the ledger and never stored.
        """
        if not db.session.get(Account, account_id):
            raise AccountNotFound(account_id)

        rows = db.session.query(
            PointDistribution.distribution_type,
            func.coalesce(func.sum(PointDistribution.points), 0),
            func.count(PointDistribution.id),
        ).filter(
            PointDistribution.status == DistributionStatus.COMPLETED.value,
            PointDistribution.to_account_id == account_id,
            PointDistribution.distribution_type.in_(INCOME_TYPES),
        ).group_by(PointDistribution.distribution_type).all()

        by_type = {t: {'points': 0, 'count': 0} for t in INCOME_TYPES}
        for distribution_type, points, count in rows:
            by_type[distribution_type] = {'points': int(points), 'count': int(count)}

        return {
            'account_id': account_id,
            'by_type': by_type,
            'total': sum(v['points'] for v in by_type.values()),
        }
