"""
Point distribution ledger - the authoritative record of every point movement.

Design notes:
- Append-only. Entries are never deleted or edited; the only mutation is the
  status transition pending -> completed / failed.
- from_account_id NULL is the 'system' sender (generation and reward minting).
  to_account_id NULL is only used by reversals of system-minted entries,
  which return the points to 'system'.
- Undo is a new 'reversal' entry pointing at the original via
  related_distribution_id.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Any
from ..extensions import db


SYSTEM_ACCOUNT = 'system'


class DistributionType(str, Enum):
    """Kinds of point movement."""
    POINT_GENERATION = 'point_generation'          # system -> global admin
    MANUAL_ADDITION = 'manual_addition'            # system -> global admin
    ADMIN_TO_ADMIN = 'admin_to_admin'              # global admin -> local admin
    ADMIN_TO_MERCHANT = 'admin_to_merchant'        # local admin -> merchant (same country)
    MERCHANT_TO_CUSTOMER = 'merchant_to_customer'  # merchant -> customer
    REFERRAL_COMMISSION = 'referral_commission'    # affiliate commission to referring merchant
    INSTANT_CASHBACK = 'instant_cashback'          # cashback to transferring merchant
    STEPUP_REWARD = 'stepup_reward'
    RIPPLE_REWARD = 'ripple_reward'
    INFINITY_REWARD = 'infinity_reward'
    SHOPPING_VOUCHER = 'shopping_voucher'
    REVERSAL = 'reversal'


class DistributionStatus(str, Enum):
    """Ledger entry lifecycle."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


# Reward income buckets (the merchant/customer "income wallet" view)
INCOME_TYPES = (
    DistributionType.INSTANT_CASHBACK.value,
    DistributionType.REFERRAL_COMMISSION.value,
    DistributionType.STEPUP_REWARD.value,
    DistributionType.RIPPLE_REWARD.value,
    DistributionType.INFINITY_REWARD.value,
)


class PointDistribution(db.Model):
    """One immutable transfer of points between two parties."""
    __tablename__ = 'point_distributions'

    id = db.Column(db.Integer, primary_key=True)
    from_account_id = db.Column(db.Integer, db.ForeignKey('accounts.id'))  # NULL = system
    to_account_id = db.Column(db.Integer, db.ForeignKey('accounts.id'))    # NULL = system (reversals only)
    points = db.Column(db.Integer, nullable=False)
    distribution_type = db.Column(db.String(40), nullable=False)  # DistributionType
    description = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default=DistributionStatus.PENDING.value)

    # Client-supplied key; replays return the original entry
    idempotency_key = db.Column(db.String(200), unique=True)

    # Reversal tracking
    related_distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))

    created_by = db.Column(db.String(100))  # account id or 'system'
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)

    from_account = db.relationship('Account', foreign_keys=[from_account_id])
    to_account = db.relationship('Account', foreign_keys=[to_account_id])
    related_distribution = db.relationship('PointDistribution', remote_side=[id])

    __table_args__ = (
        db.CheckConstraint('points > 0', name='ck_point_distributions_points_positive'),
        db.Index('ix_point_distributions_from_created', 'from_account_id', 'created_at'),
        db.Index('ix_point_distributions_to_created', 'to_account_id', 'created_at'),
        db.Index('ix_point_distributions_type', 'distribution_type'),
    )

    def __repr__(self):
        return (
            f'<PointDistribution {self.id}: {self.points} pts '
            f'{self.sender} -> {self.recipient} ({self.distribution_type})>'
        )

    @property
    def sender(self):
        return self.from_account_id if self.from_account_id is not None else SYSTEM_ACCOUNT

    @property
    def recipient(self):
        return self.to_account_id if self.to_account_id is not None else SYSTEM_ACCOUNT

    @property
    def is_completed(self) -> bool:
        return self.status == DistributionStatus.COMPLETED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'from_account_id': self.sender,
            'to_account_id': self.recipient,
            'points': self.points,
            'distribution_type': self.distribution_type,
            'description': self.description,
            'status': self.status,
            'idempotency_key': self.idempotency_key,
            'related_distribution_id': self.related_distribution_id,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class SequenceCounter(db.Model):
    """
    Named monotonically increasing counter.

    Read with SELECT ... FOR UPDATE so concurrent assignments serialize.
    Names: 'global_number', 'global_number:<country>', 'infinity'.
    """
    __tablename__ = 'sequence_counters'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    current_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<SequenceCounter {self.name}={self.current_value}>'
