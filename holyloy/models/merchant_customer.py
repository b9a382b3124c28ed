"""
Merchant -> customer read model.

Derived from the ledger and the customer account, never written directly.
See MerchantCustomerProjector.
"""
from datetime import datetime
from typing import Dict, Any
from ..extensions import db


class MerchantCustomer(db.Model):
    """One customer as seen from one merchant's customer list."""
    __tablename__ = 'merchant_customers'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)

    customer_name = db.Column(db.String(200))
    customer_email = db.Column(db.String(255))

    points_from_merchant = db.Column(db.Integer, default=0, nullable=False)
    transfer_count = db.Column(db.Integer, default=0, nullable=False)
    customer_balance = db.Column(db.Integer, default=0, nullable=False)
    tier = db.Column(db.String(20))
    last_transfer_at = db.Column(db.DateTime)

    refreshed_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'customer_id', name='uq_merchant_customer'),
    )

    def __repr__(self):
        return f'<MerchantCustomer merchant={self.merchant_id} customer={self.customer_id}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'merchant_id': self.merchant_id,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'points_from_merchant': self.points_from_merchant,
            'transfer_count': self.transfer_count,
            'customer_balance': self.customer_balance,
            'tier': self.tier,
            'last_transfer_at': self.last_transfer_at.isoformat() if self.last_transfer_at else None,
        }
