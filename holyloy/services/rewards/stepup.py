"""
StepUp rewards.

When Global Number N is assigned, every active StepUp level with multiplier
m dividing N pays the holder of Global Number N / m that level's
reward_points. A (beneficiary, trigger, multiplier) triple pays at most once.
"""
from typing import List
from sqlalchemy import func

from ...extensions import db
from ...models.account import Account
from ...models.ledger import DistributionType
from ...models.rewards import (
    GlobalNumberAssignment,
    StepUpConfig,
    StepUpReward,
    CascadeStep,
)
from .base import RewardStep, CascadeContext, StepOutcome


def beneficiaries_of(source_distribution_id: int) -> List[int]:
    """Customers paid a StepUp reward by one cascade, in payment order."""
    rows = StepUpReward.query.filter_by(
        source_distribution_id=source_distribution_id
    ).order_by(StepUpReward.id).all()
    seen = []
    for row in rows:
        if row.beneficiary_customer_id not in seen:
            seen.append(row.beneficiary_customer_id)
    return seen


def lifetime_stepup_points(customer_id: int) -> int:
    total = db.session.query(
        func.coalesce(func.sum(StepUpReward.reward_points), 0)
    ).filter(StepUpReward.beneficiary_customer_id == customer_id).scalar()
    return int(total or 0)


class StepUpStep(RewardStep):
    name = CascadeStep.STEPUP.value
    depends_on = (CascadeStep.GLOBAL_NUMBER.value,)

    def run(self, ctx: CascadeContext) -> StepOutcome:
        triggers = GlobalNumberAssignment.query.filter_by(
            source_distribution_id=ctx.source_id
        ).order_by(GlobalNumberAssignment.global_number).all()

        if not triggers:
            return StepOutcome.not_eligible('no_new_global_number')

        levels = StepUpConfig.query.filter_by(is_active=True).order_by(StepUpConfig.multiplier).all()

        paid = []
        notifications = []
        for trigger in triggers:
            n = trigger.global_number
            for level in levels:
                m = level.multiplier
                if m <= 1 or n % m != 0:
                    continue
                beneficiary_number = n // m

                holder = GlobalNumberAssignment.query.filter_by(global_number=beneficiary_number).first()
                if not holder:
                    continue
                beneficiary = db.session.get(Account, holder.customer_id)
                if not beneficiary or not beneficiary.is_active:
                    continue

                already = StepUpReward.query.filter_by(
                    beneficiary_global_number=beneficiary_number,
                    trigger_global_number=n,
                    multiplier=m,
                ).first()
                if already:
                    continue

                entry = ctx.engine.credit_from_system(
                    holder.customer_id,
                    level.reward_points,
                    DistributionType.STEPUP_REWARD.value,
                    description=f'StepUp reward: Global Number #{beneficiary_number} x{m} reached #{n}',
                    idempotency_key=f'stepup:{beneficiary_number}:{n}:{m}',
                    commit=False,
                )
                reward = StepUpReward(
                    beneficiary_customer_id=holder.customer_id,
                    beneficiary_global_number=beneficiary_number,
                    trigger_global_number=n,
                    multiplier=m,
                    reward_points=level.reward_points,
                    source_distribution_id=ctx.source_id,
                    distribution_id=entry.id,
                )
                db.session.add(reward)
                db.session.flush()

                paid.append(reward.to_dict())
                notifications.append((holder.customer_id, 'stepup_reward', {
                    'global_number': beneficiary_number,
                    'trigger_global_number': n,
                    'multiplier': m,
                    'reward_points': level.reward_points,
                }))

        detail = {
            'evaluated_global_numbers': [t.global_number for t in triggers],
            'rewards': paid,
        }
        if not paid:
            return StepOutcome.not_eligible('no_beneficiary', **detail)
        return StepOutcome.assigned(detail, notifications)
