"""
Database models for the HolyLoy points ledger.
Accounts, the append-only distribution ledger and reward cascade records.
"""
from .account import Account, AccountRole, ADMIN_ROLES
from .ledger import (
    PointDistribution,
    SequenceCounter,
    DistributionType,
    DistributionStatus,
    SYSTEM_ACCOUNT,
    INCOME_TYPES,
)
from .generation_request import PointGenerationRequest, GenerationRequestStatus
from .rewards import (
    # Enums
    CascadeStep,
    StepRunStatus,
    CASCADE_STEP_ORDER,
    # Models
    GlobalNumberAssignment,
    StepUpConfig,
    StepUpReward,
    AffiliateCommission,
    RippleReward,
    InfinityCycle,
    ShoppingVoucher,
    CascadeStepRun,
    # Seeders
    seed_stepup_config,
)
from .merchant_customer import MerchantCustomer
from .audit import AuditEvent

__all__ = [
    'Account',
    'AccountRole',
    'ADMIN_ROLES',
    # Ledger
    'PointDistribution',
    'SequenceCounter',
    'DistributionType',
    'DistributionStatus',
    'SYSTEM_ACCOUNT',
    'INCOME_TYPES',
    # Requests
    'PointGenerationRequest',
    'GenerationRequestStatus',
    # Reward cascade
    'CascadeStep',
    'StepRunStatus',
    'CASCADE_STEP_ORDER',
    'GlobalNumberAssignment',
    'StepUpConfig',
    'StepUpReward',
    'AffiliateCommission',
    'RippleReward',
    'InfinityCycle',
    'ShoppingVoucher',
    'CascadeStepRun',
    'seed_stepup_config',
    # Read models
    'MerchantCustomer',
    'AuditEvent',
]
