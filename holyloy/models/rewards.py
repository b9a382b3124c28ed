"""
Reward cascade records.

Every reward the cascade pays is backed by a ledger entry (distribution_id)
plus one of the records below. The unique constraints on these records are
what make a cascade replay safe: a reward that already has its record is
never paid twice.
"""
import json
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List
from ..extensions import db


# ==================== Enums ====================

class CascadeStep(str, Enum):
    """Cascade steps, in execution order."""
    GLOBAL_NUMBER = 'global_number'
    STEPUP = 'stepup'
    AFFILIATE_COMMISSION = 'affiliate_commission'
    INSTANT_CASHBACK = 'instant_cashback'
    RIPPLE = 'ripple'
    INFINITY = 'infinity'
    SHOPPING_VOUCHER = 'shopping_voucher'


CASCADE_STEP_ORDER = [step.value for step in CascadeStep]


class StepRunStatus(str, Enum):
    """Outcome of one cascade step for one source credit."""
    ASSIGNED = 'assigned'          # Step fired (something was recorded/paid)
    NOT_ELIGIBLE = 'not_eligible'  # Evaluated, nothing to do yet
    ERROR = 'error'                # Failed; eligible for replay


def _load_json(value, default=None):
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


# ==================== Global Numbers ====================

class GlobalNumberAssignment(db.Model):
    """A Global Number held by a customer."""
    __tablename__ = 'global_number_assignments'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    global_number = db.Column(db.Integer, nullable=False, unique=True)
    local_number = db.Column(db.Integer, nullable=False)  # sequence within the country
    country = db.Column(db.String(64))
    points_at_assignment = db.Column(db.Integer, nullable=False)  # threshold in force
    source_distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    customer = db.relationship('Account', backref=db.backref('global_numbers', lazy='dynamic'))

    __table_args__ = (
        db.UniqueConstraint('country', 'local_number', name='uq_global_number_country_local'),
        db.Index('ix_global_number_assignments_customer', 'customer_id'),
        db.Index('ix_global_number_assignments_source', 'source_distribution_id'),
    )

    def __repr__(self):
        return f'<GlobalNumberAssignment #{self.global_number} customer={self.customer_id}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'global_number': self.global_number,
            'local_number': self.local_number,
            'country': self.country,
            'points_at_assignment': self.points_at_assignment,
            'source_distribution_id': self.source_distribution_id,
            'assigned_at': self.assigned_at.isoformat() if self.assigned_at else None,
        }


# ==================== StepUp ====================

class StepUpConfig(db.Model):
    """
    One StepUp level: the holder of Global Number M is paid reward_points
    when Global Number M * multiplier is assigned.
    """
    __tablename__ = 'stepup_config'

    id = db.Column(db.Integer, primary_key=True)
    multiplier = db.Column(db.Integer, nullable=False, unique=True)
    reward_points = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<StepUpConfig x{self.multiplier} -> {self.reward_points}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'multiplier': self.multiplier,
            'reward_points': self.reward_points,
            'is_active': self.is_active,
        }


class StepUpReward(db.Model):
    """A StepUp payment. At most one per (beneficiary, trigger, multiplier)."""
    __tablename__ = 'stepup_rewards'

    id = db.Column(db.Integer, primary_key=True)
    beneficiary_customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    beneficiary_global_number = db.Column(db.Integer, nullable=False)
    trigger_global_number = db.Column(db.Integer, nullable=False)
    multiplier = db.Column(db.Integer, nullable=False)
    reward_points = db.Column(db.Integer, nullable=False)
    source_distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    beneficiary = db.relationship('Account', foreign_keys=[beneficiary_customer_id])

    __table_args__ = (
        db.UniqueConstraint(
            'beneficiary_global_number', 'trigger_global_number', 'multiplier',
            name='uq_stepup_reward_once'
        ),
        db.Index('ix_stepup_rewards_beneficiary', 'beneficiary_customer_id'),
        db.Index('ix_stepup_rewards_source', 'source_distribution_id'),
    )

    def __repr__(self):
        return (
            f'<StepUpReward #{self.beneficiary_global_number} <- #{self.trigger_global_number} '
            f'x{self.multiplier} {self.reward_points}>'
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'beneficiary_customer_id': self.beneficiary_customer_id,
            'beneficiary_global_number': self.beneficiary_global_number,
            'trigger_global_number': self.trigger_global_number,
            'multiplier': self.multiplier,
            'reward_points': self.reward_points,
            'distribution_id': self.distribution_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# ==================== Merchant income ====================

class AffiliateCommission(db.Model):
    """Commission paid to a referring merchant for a referred merchant's transfer."""
    __tablename__ = 'affiliate_commissions'

    id = db.Column(db.Integer, primary_key=True)
    referring_merchant_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    referred_merchant_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    source_distribution_id = db.Column(
        db.Integer, db.ForeignKey('point_distributions.id'), nullable=False, unique=True
    )
    base_points = db.Column(db.Integer, nullable=False)
    commission_points = db.Column(db.Integer, nullable=False)
    commission_rate = db.Column(db.Float, nullable=False)
    distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_affiliate_commissions_referrer_created', 'referring_merchant_id', 'created_at'),
    )

    def __repr__(self):
        return f'<AffiliateCommission {self.referred_merchant_id} -> {self.referring_merchant_id} {self.commission_points}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'referring_merchant_id': self.referring_merchant_id,
            'referred_merchant_id': self.referred_merchant_id,
            'source_distribution_id': self.source_distribution_id,
            'base_points': self.base_points,
            'commission_points': self.commission_points,
            'commission_rate': self.commission_rate,
            'distribution_id': self.distribution_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# ==================== Customer upline rewards ====================

class RippleReward(db.Model):
    """Paid to the customer who referred a StepUp beneficiary."""
    __tablename__ = 'ripple_rewards'

    id = db.Column(db.Integer, primary_key=True)
    referrer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    referred_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    stepup_reward_id = db.Column(db.Integer, db.ForeignKey('stepup_rewards.id'), nullable=False, unique=True)
    stepup_points = db.Column(db.Integer, nullable=False)
    ripple_points = db.Column(db.Integer, nullable=False)
    distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<RippleReward {self.referred_id} -> {self.referrer_id} {self.ripple_points}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'referrer_id': self.referrer_id,
            'referred_id': self.referred_id,
            'stepup_reward_id': self.stepup_reward_id,
            'stepup_points': self.stepup_points,
            'ripple_points': self.ripple_points,
            'distribution_id': self.distribution_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class InfinityCycle(db.Model):
    """An Infinity cycle opened for a customer once lifetime StepUp income crosses a cycle threshold."""
    __tablename__ = 'infinity_cycles'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    cycle_number = db.Column(db.Integer, nullable=False)
    reward_numbers = db.Column(db.Text)  # JSON: [1000000, 1000001, ...]
    points_per_reward = db.Column(db.Integer, nullable=False)
    total_points = db.Column(db.Integer, nullable=False)
    trigger_global_number = db.Column(db.Integer)
    distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('customer_id', 'cycle_number', name='uq_infinity_cycle_per_customer'),
    )

    def __repr__(self):
        return f'<InfinityCycle customer={self.customer_id} cycle={self.cycle_number}>'

    @property
    def reward_number_list(self) -> List[int]:
        return _load_json(self.reward_numbers, [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'cycle_number': self.cycle_number,
            'reward_numbers': self.reward_number_list,
            'points_per_reward': self.points_per_reward,
            'total_points': self.total_points,
            'trigger_global_number': self.trigger_global_number,
            'distribution_id': self.distribution_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ShoppingVoucher(db.Model):
    """Voucher redeemable at one merchant, funded by the shopping voucher reward."""
    __tablename__ = 'shopping_vouchers'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    merchant_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    voucher_code = db.Column(db.String(32), nullable=False, unique=True)
    points_allocated = db.Column(db.Integer, nullable=False)
    points_used = db.Column(db.Integer, default=0, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_shopping_vouchers_customer', 'customer_id'),
    )

    def __repr__(self):
        return f'<ShoppingVoucher {self.voucher_code} {self.points_allocated}>'

    @property
    def points_remaining(self) -> int:
        return self.points_allocated - (self.points_used or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'merchant_id': self.merchant_id,
            'voucher_code': self.voucher_code,
            'points_allocated': self.points_allocated,
            'points_used': self.points_used,
            'points_remaining': self.points_remaining,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_active': self.is_active,
            'distribution_id': self.distribution_id,
        }


# ==================== Cascade bookkeeping ====================

class CascadeStepRun(db.Model):
    """
    Outcome of one cascade step for one source credit.

    The reconciliation job replays every step of a completed
    merchant_to_customer entry that has no run row or an 'error' row.
    """
    __tablename__ = 'cascade_step_runs'

    id = db.Column(db.Integer, primary_key=True)
    source_distribution_id = db.Column(
        db.Integer, db.ForeignKey('point_distributions.id'), nullable=False
    )
    step = db.Column(db.String(40), nullable=False)  # CascadeStep
    status = db.Column(db.String(20), nullable=False)  # StepRunStatus
    detail = db.Column(db.Text)  # JSON
    error = db.Column(db.Text)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('source_distribution_id', 'step', name='uq_cascade_step_run'),
        db.Index('ix_cascade_step_runs_status', 'status'),
    )

    def __repr__(self):
        return f'<CascadeStepRun {self.source_distribution_id}:{self.step} {self.status}>'

    @property
    def detail_dict(self) -> Dict[str, Any]:
        return _load_json(self.detail, {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_distribution_id': self.source_distribution_id,
            'step': self.step,
            'status': self.status,
            'detail': self.detail_dict,
            'error': self.error,
            'attempts': self.attempts,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


# ==================== Seeders ====================

def seed_stepup_config(levels) -> int:
    """
    Insert any missing StepUp levels. Existing multipliers are left alone so
    operators can tune reward_points in the table.

    Returns the number of levels created.
    """
    created = 0
    for multiplier, reward_points in levels:
        existing = StepUpConfig.query.filter_by(multiplier=multiplier).first()
        if not existing:
            db.session.add(StepUpConfig(multiplier=multiplier, reward_points=reward_points))
            created += 1
    db.session.commit()
    return created
