"""
Reward cascade steps, in execution order.
"""
from .base import RewardStep, CascadeContext, StepOutcome, percentage_of
from .global_numbers import GlobalNumberStep
from .stepup import StepUpStep
from .affiliate import AffiliateCommissionStep
from .cashback import InstantCashbackStep
from .ripple import RippleStep, ripple_points_for
from .infinity import InfinityStep
from .vouchers import ShoppingVoucherStep, allocate_proportionally


def default_steps():
    """Fresh step instances in cascade order."""
    return [
        GlobalNumberStep(),
        StepUpStep(),
        AffiliateCommissionStep(),
        InstantCashbackStep(),
        RippleStep(),
        InfinityStep(),
        ShoppingVoucherStep(),
    ]


__all__ = [
    'RewardStep',
    'CascadeContext',
    'StepOutcome',
    'percentage_of',
    'GlobalNumberStep',
    'StepUpStep',
    'AffiliateCommissionStep',
    'InstantCashbackStep',
    'RippleStep',
    'ripple_points_for',
    'InfinityStep',
    'ShoppingVoucherStep',
    'allocate_proportionally',
    'default_steps',
]
