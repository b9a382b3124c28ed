"""
Global Number assignment.

Every merchant -> customer credit adds to the customer's accumulated points.
Each time the counter reaches GLOBAL_NUMBER_THRESHOLD the customer receives
the next system-wide Global Number plus the next local number for their
country.

GLOBAL_NUMBER_OVERFLOW_POLICY:
    carry - subtract the threshold and keep the remainder, so one large
            credit can assign several numbers
    reset - assign one number and set the counter to 0
"""
from typing import List

from ...extensions import db
from ...models.account import Account
from ...models.rewards import GlobalNumberAssignment, CascadeStep
from ..account_locks import account_key, sequence_key
from ..sequences import next_value, local_number_sequence, GLOBAL_NUMBER_SEQUENCE
from .base import RewardStep, CascadeContext, StepOutcome


class GlobalNumberStep(RewardStep):
    name = CascadeStep.GLOBAL_NUMBER.value

    def lock_keys(self, ctx: CascadeContext) -> List[str]:
        return [account_key(ctx.customer.id), sequence_key(GLOBAL_NUMBER_SEQUENCE)]

    def run(self, ctx: CascadeContext) -> StepOutcome:
        threshold = ctx.config['GLOBAL_NUMBER_THRESHOLD']
        policy = ctx.config['GLOBAL_NUMBER_OVERFLOW_POLICY']

        customer = Account.query.filter_by(id=ctx.customer.id).with_for_update().populate_existing().one()
        customer.accumulated_points += ctx.source.points

        assigned = []
        while customer.accumulated_points >= threshold:
            global_number = next_value(GLOBAL_NUMBER_SEQUENCE)
            local_number = next_value(local_number_sequence(customer.country))
            db.session.add(GlobalNumberAssignment(
                customer_id=customer.id,
                global_number=global_number,
                local_number=local_number,
                country=customer.country,
                points_at_assignment=threshold,
                source_distribution_id=ctx.source_id,
            ))
            assigned.append({'global_number': global_number, 'local_number': local_number})

            if policy == 'reset':
                customer.accumulated_points = 0
                break
            customer.accumulated_points -= threshold

        db.session.flush()

        detail = {
            'accumulated_points': customer.accumulated_points,
            'threshold': threshold,
            'global_numbers': [a['global_number'] for a in assigned],
        }
        if not assigned:
            return StepOutcome.not_eligible('below_threshold', **detail)

        notifications = [
            (customer.id, 'global_number_assigned', dict(a, country=customer.country))
            for a in assigned
        ]
        return StepOutcome.assigned(detail, notifications)
