"""
Instant cashback: the transferring merchant earns INSTANT_CASHBACK_RATE of
every transfer to a customer.
"""
from ...models.ledger import DistributionType
from ...models.rewards import CascadeStep
from .base import RewardStep, CascadeContext, StepOutcome, percentage_of


class InstantCashbackStep(RewardStep):
    name = CascadeStep.INSTANT_CASHBACK.value

    def run(self, ctx: CascadeContext) -> StepOutcome:
        rate = ctx.config['INSTANT_CASHBACK_RATE']
        cashback = percentage_of(ctx.source.points, rate)
        if cashback <= 0:
            return StepOutcome.not_eligible('cashback_rounds_to_zero')

        entry = ctx.engine.credit_from_system(
            ctx.merchant.id,
            cashback,
            DistributionType.INSTANT_CASHBACK.value,
            description=f'Instant cashback {rate:.0%} on distribution #{ctx.source_id}',
            idempotency_key=f'cashback:{ctx.source_id}',
            commit=False,
        )

        return StepOutcome.assigned(
            {'merchant_id': ctx.merchant.id, 'cashback_points': cashback, 'distribution_id': entry.id},
            [(ctx.merchant.id, 'cashback_received', {
                'cashback_points': cashback,
                'source_distribution_id': ctx.source_id,
            })],
        )
