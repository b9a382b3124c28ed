"""
Ripple rewards: the customer who referred a StepUp beneficiary earns a tiered
share whenever that beneficiary is paid a StepUp reward.
"""
from typing import Optional

from ...extensions import db
from ...models.account import Account
from ...models.ledger import DistributionType
from ...models.rewards import StepUpReward, RippleReward, CascadeStep
from .base import RewardStep, CascadeContext, StepOutcome


def ripple_points_for(stepup_points: int, tiers) -> int:
    """Look up the ripple amount for a StepUp payment in RIPPLE_REWARD_TIERS."""
    for low, high, ripple in tiers:
        if stepup_points >= low and (high is None or stepup_points <= high):
            return ripple
    return 0


class RippleStep(RewardStep):
    name = CascadeStep.RIPPLE.value
    depends_on = (CascadeStep.STEPUP.value,)

    def run(self, ctx: CascadeContext) -> StepOutcome:
        rewards = StepUpReward.query.filter_by(source_distribution_id=ctx.source_id).order_by(StepUpReward.id).all()
        if not rewards:
            return StepOutcome.not_eligible('no_stepup_reward')

        tiers = ctx.config['RIPPLE_REWARD_TIERS']
        paid = []
        notifications = []
        for reward in rewards:
            referrer = self._referrer_of(reward.beneficiary_customer_id)
            if referrer is None:
                continue
            if RippleReward.query.filter_by(stepup_reward_id=reward.id).first():
                continue

            ripple = ripple_points_for(reward.reward_points, tiers)
            if ripple <= 0:
                continue

            entry = ctx.engine.credit_from_system(
                referrer.id,
                ripple,
                DistributionType.RIPPLE_REWARD.value,
                description=f'Ripple reward for StepUp #{reward.id} of customer {reward.beneficiary_customer_id}',
                idempotency_key=f'ripple:{reward.id}',
                commit=False,
            )
            record = RippleReward(
                referrer_id=referrer.id,
                referred_id=reward.beneficiary_customer_id,
                stepup_reward_id=reward.id,
                stepup_points=reward.reward_points,
                ripple_points=ripple,
                distribution_id=entry.id,
            )
            db.session.add(record)
            db.session.flush()

            paid.append(record.to_dict())
            notifications.append((referrer.id, 'ripple_reward', {
                'referred_id': reward.beneficiary_customer_id,
                'ripple_points': ripple,
            }))

        if not paid:
            return StepOutcome.not_eligible('no_referrer')
        return StepOutcome.assigned({'rewards': paid}, notifications)

    def _referrer_of(self, customer_id: int) -> Optional[Account]:
        customer = db.session.get(Account, customer_id)
        if not customer or not customer.referred_by_account_id:
            return None
        referrer = db.session.get(Account, customer.referred_by_account_id)
        if not referrer or not referrer.is_customer or not referrer.is_active:
            return None
        return referrer
