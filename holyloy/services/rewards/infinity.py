"""
Infinity cycles.

Each INFINITY_THRESHOLD of lifetime StepUp income opens the customer's next
cycle. Cycle n draws INFINITY_INITIAL_REWARD_COUNT * INFINITY_CYCLE_MULTIPLIER^(n-1)
reward numbers from the 'infinity' sequence, each worth
INFINITY_POINTS_PER_REWARD.
"""
import json
from typing import List

from ...extensions import db
from ...models.account import Account
from ...models.ledger import DistributionType
from ...models.rewards import InfinityCycle, CascadeStep, GlobalNumberAssignment
from ..account_locks import sequence_key
from ..sequences import next_value, INFINITY_SEQUENCE
from .base import RewardStep, CascadeContext, StepOutcome
from .stepup import beneficiaries_of, lifetime_stepup_points


def reward_count_for_cycle(cycle_number: int, initial: int, multiplier: int) -> int:
    return initial * multiplier ** (cycle_number - 1)


class InfinityStep(RewardStep):
    name = CascadeStep.INFINITY.value
    depends_on = (CascadeStep.STEPUP.value,)

    def lock_keys(self, ctx: CascadeContext) -> List[str]:
        return [sequence_key(INFINITY_SEQUENCE)]

    def run(self, ctx: CascadeContext) -> StepOutcome:
        candidates = beneficiaries_of(ctx.source_id)
        if not candidates:
            return StepOutcome.not_eligible('no_stepup_reward')

        cfg = ctx.config
        threshold = cfg['INFINITY_THRESHOLD']
        trigger = GlobalNumberAssignment.query.filter_by(
            source_distribution_id=ctx.source_id
        ).order_by(GlobalNumberAssignment.global_number.desc()).first()

        opened = []
        notifications = []
        for customer_id in candidates:
            customer = db.session.get(Account, customer_id)
            if not customer or not customer.is_active:
                continue

            lifetime = lifetime_stepup_points(customer_id)
            cycles_done = InfinityCycle.query.filter_by(customer_id=customer_id).count()

            while lifetime >= threshold * (cycles_done + 1):
                cycle_number = cycles_done + 1
                count = reward_count_for_cycle(
                    cycle_number,
                    cfg['INFINITY_INITIAL_REWARD_COUNT'],
                    cfg['INFINITY_CYCLE_MULTIPLIER'],
                )
                numbers = [
                    next_value(INFINITY_SEQUENCE, start=cfg['INFINITY_NUMBER_START'])
                    for _ in range(count)
                ]
                total = count * cfg['INFINITY_POINTS_PER_REWARD']

                entry = ctx.engine.credit_from_system(
                    customer_id,
                    total,
                    DistributionType.INFINITY_REWARD.value,
                    description=f'Infinity cycle {cycle_number}: {count} reward numbers',
                    idempotency_key=f'infinity:{customer_id}:{cycle_number}',
                    commit=False,
                )
                cycle = InfinityCycle(
                    customer_id=customer_id,
                    cycle_number=cycle_number,
                    reward_numbers=json.dumps(numbers),
                    points_per_reward=cfg['INFINITY_POINTS_PER_REWARD'],
                    total_points=total,
                    trigger_global_number=trigger.global_number if trigger else None,
                    distribution_id=entry.id,
                )
                db.session.add(cycle)
                db.session.flush()

                opened.append(cycle.to_dict())
                notifications.append((customer_id, 'infinity_reward', {
                    'cycle_number': cycle_number,
                    'reward_numbers': numbers,
                    'total_points': total,
                }))
                cycles_done = cycle_number

        if not opened:
            return StepOutcome.not_eligible('below_cycle_threshold', threshold=threshold)
        return StepOutcome.assigned({'cycles': opened}, notifications)
