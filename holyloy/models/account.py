"""
Account model: every party that can hold a points balance.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Any
from ..extensions import db


class AccountRole(str, Enum):
    """Position of an account in the distribution hierarchy."""
    GLOBAL_ADMIN = 'global_admin'
    LOCAL_ADMIN = 'local_admin'
    MERCHANT = 'merchant'
    CUSTOMER = 'customer'


ADMIN_ROLES = (AccountRole.GLOBAL_ADMIN.value, AccountRole.LOCAL_ADMIN.value)


class Account(db.Model):
    """
    Global admin, local (country) admin, merchant or customer.

    points_balance / total_received / total_distributed are a cached
    projection of the ledger. They are only written by the distribution
    engine, in the same transaction as the ledger append, and can always be
    recomputed with BalanceProjector.fold().
    """
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)
    role = db.Column(db.String(20), nullable=False)  # AccountRole
    display_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255))
    country = db.Column(db.String(64))  # NULL only for the global admin
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Cached projection of the ledger
    points_balance = db.Column(db.Integer, default=0, nullable=False)
    total_received = db.Column(db.Integer, default=0, nullable=False)
    total_distributed = db.Column(db.Integer, default=0, nullable=False)

    # Global Number counter (customers only)
    accumulated_points = db.Column(db.Integer, default=0, nullable=False)

    # Referral upline: merchant -> merchant, customer -> customer
    referred_by_account_id = db.Column(db.Integer, db.ForeignKey('accounts.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    referred_by = db.relationship('Account', remote_side=[id], backref='referrals')

    __table_args__ = (
        db.CheckConstraint('points_balance >= 0', name='ck_accounts_balance_non_negative'),
        db.Index('ix_accounts_role_country', 'role', 'country'),
    )

    def __repr__(self):
        return f'<Account {self.id} {self.role} pts={self.points_balance}>'

    @property
    def is_customer(self) -> bool:
        return self.role == AccountRole.CUSTOMER.value

    @property
    def is_merchant(self) -> bool:
        return self.role == AccountRole.MERCHANT.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'role': self.role,
            'display_name': self.display_name,
            'email': self.email,
            'country': self.country,
            'is_active': self.is_active,
            'points_balance': self.points_balance,
            'total_received': self.total_received,
            'total_distributed': self.total_distributed,
            'accumulated_points': self.accumulated_points if self.is_customer else None,
            'referred_by_account_id': self.referred_by_account_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
