"""
Merchant customer list - a read model derived from the ledger.

Rows are recomputed from completed merchant_to_customer entries and the
customer account. Nothing else writes merchant_customers.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models.account import Account
from ..models.ledger import PointDistribution, DistributionType, DistributionStatus
from ..models.merchant_customer import MerchantCustomer
from ..utils.exceptions import AccountNotFound


def tier_for(points_from_merchant: int, tiers) -> str:
    for name, minimum in tiers:
        if points_from_merchant >= minimum:
            return name
    return tiers[-1][0] if tiers else None


class MerchantCustomerProjector:
    """Builds and serves the merchant -> customer read model."""

    def refresh(self, merchant_id: int, customer_id: int) -> Optional[MerchantCustomer]:
        """
        Recompute one merchant/customer row from the ledger and commit.

        Also brings customer_balance up to date on the customer's rows under
        other merchants, since any credit changes it.
        """
        customer = db.session.get(Account, customer_id)
        if not customer:
            raise AccountNotFound(customer_id)

        total, count, last_at = db.session.query(
            func.coalesce(func.sum(PointDistribution.points), 0),
            func.count(PointDistribution.id),
            func.max(PointDistribution.created_at),
        ).filter(
            PointDistribution.from_account_id == merchant_id,
            PointDistribution.to_account_id == customer_id,
            PointDistribution.distribution_type == DistributionType.MERCHANT_TO_CUSTOMER.value,
            PointDistribution.status == DistributionStatus.COMPLETED.value,
        ).one()

        row = MerchantCustomer.query.filter_by(merchant_id=merchant_id, customer_id=customer_id).first()
        if not count and row is None:
            return None
        if row is None:
            row = MerchantCustomer(merchant_id=merchant_id, customer_id=customer_id)
            db.session.add(row)

        row.customer_name = customer.display_name
        row.customer_email = customer.email
        row.points_from_merchant = int(total)
        row.transfer_count = int(count)
        row.last_transfer_at = last_at
        row.tier = tier_for(int(total), current_app.config['MERCHANT_CUSTOMER_TIERS'])

        MerchantCustomer.query.filter_by(customer_id=customer_id).update(
            {'customer_balance': customer.points_balance, 'refreshed_at': datetime.utcnow()},
            synchronize_session=False,
        )
        row.customer_balance = customer.points_balance

        db.session.commit()
        return row

    def rebuild_all(self) -> int:
        """Recompute every row from the ledger. Returns the number of pairs refreshed."""
        pairs = db.session.query(
            PointDistribution.from_account_id,
            PointDistribution.to_account_id,
        ).filter(
            PointDistribution.distribution_type == DistributionType.MERCHANT_TO_CUSTOMER.value,
            PointDistribution.status == DistributionStatus.COMPLETED.value,
        ).distinct().all()

        for merchant_id, customer_id in pairs:
            self.refresh(merchant_id, customer_id)

        current_app.logger.info(f"Rebuilt merchant customer read model: {len(pairs)} rows")
        return len(pairs)

    def list_customers(self, merchant_id: int) -> List[Dict[str, Any]]:
        """Customers of a merchant, most recent transfer first, with live balances."""
        rows = db.session.query(MerchantCustomer, Account.points_balance).join(
            Account, Account.id == MerchantCustomer.customer_id
        ).filter(
            MerchantCustomer.merchant_id == merchant_id
        ).order_by(MerchantCustomer.last_transfer_at.desc()).all()

        result = []
        for row, live_balance in rows:
            data = row.to_dict()
            data['customer_balance'] = live_balance
            result.append(data)
        return result
