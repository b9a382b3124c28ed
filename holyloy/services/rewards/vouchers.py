"""
Shopping vouchers.

Once a customer's lifetime StepUp income reaches SHOPPING_VOUCHER_THRESHOLD
they receive SHOPPING_VOUCHER_AMOUNT points, split into one voucher per
merchant that has credited them, proportional to each merchant's volume.
A customer is issued vouchers once.
"""
import secrets
from datetime import datetime, timedelta
from typing import List, Tuple
from sqlalchemy import func

from ...extensions import db
from ...models.account import Account
from ...models.ledger import PointDistribution, DistributionType, DistributionStatus
from ...models.rewards import ShoppingVoucher, CascadeStep
from .base import RewardStep, CascadeContext, StepOutcome
from .stepup import beneficiaries_of, lifetime_stepup_points


def allocate_proportionally(total: int, weights: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """
    Split `total` across (key, weight) pairs in whole points.

    Shares are floored; the remainder goes to the heaviest weight so the
    parts always sum to `total`.
    """
    weight_sum = sum(w for _, w in weights)
    if weight_sum <= 0:
        return []
    ordered = sorted(weights, key=lambda kw: (-kw[1], kw[0]))
    shares = [(key, total * weight // weight_sum) for key, weight in ordered]
    remainder = total - sum(share for _, share in shares)
    if remainder:
        key, share = shares[0]
        shares[0] = (key, share + remainder)
    return [(key, share) for key, share in shares if share > 0]


def generate_voucher_code() -> str:
    return f'SV-{secrets.token_hex(5).upper()}'


class ShoppingVoucherStep(RewardStep):
    name = CascadeStep.SHOPPING_VOUCHER.value
    depends_on = (CascadeStep.STEPUP.value,)

    def run(self, ctx: CascadeContext) -> StepOutcome:
        candidates = beneficiaries_of(ctx.source_id)
        if not candidates:
            return StepOutcome.not_eligible('no_stepup_reward')

        cfg = ctx.config
        threshold = cfg['SHOPPING_VOUCHER_THRESHOLD']
        issued = []
        notifications = []
        for customer_id in candidates:
            customer = db.session.get(Account, customer_id)
            if not customer or not customer.is_active:
                continue
            if lifetime_stepup_points(customer_id) < threshold:
                continue
            if ShoppingVoucher.query.filter_by(customer_id=customer_id).first():
                continue

            volumes = db.session.query(
                PointDistribution.from_account_id,
                func.sum(PointDistribution.points),
            ).filter(
                PointDistribution.to_account_id == customer_id,
                PointDistribution.distribution_type == DistributionType.MERCHANT_TO_CUSTOMER.value,
                PointDistribution.status == DistributionStatus.COMPLETED.value,
            ).group_by(PointDistribution.from_account_id).all()

            allocation = allocate_proportionally(
                cfg['SHOPPING_VOUCHER_AMOUNT'],
                [(merchant_id, int(volume)) for merchant_id, volume in volumes],
            )
            if not allocation:
                continue

            total = sum(share for _, share in allocation)
            entry = ctx.engine.credit_from_system(
                customer_id,
                total,
                DistributionType.SHOPPING_VOUCHER.value,
                description=f'Shopping vouchers across {len(allocation)} merchant(s)',
                idempotency_key=f'voucher:{customer_id}',
                commit=False,
            )

            expires_at = datetime.utcnow() + timedelta(days=cfg['SHOPPING_VOUCHER_EXPIRY_DAYS'])
            vouchers = []
            for merchant_id, share in allocation:
                voucher = ShoppingVoucher(
                    customer_id=customer_id,
                    merchant_id=merchant_id,
                    voucher_code=generate_voucher_code(),
                    points_allocated=share,
                    expires_at=expires_at,
                    distribution_id=entry.id,
                )
                db.session.add(voucher)
                vouchers.append(voucher)
            db.session.flush()

            issued.extend(v.to_dict() for v in vouchers)
            notifications.append((customer_id, 'shopping_voucher_issued', {
                'total_points': total,
                'voucher_codes': [v.voucher_code for v in vouchers],
            }))

        if not issued:
            return StepOutcome.not_eligible('below_voucher_threshold', threshold=threshold)
        return StepOutcome.assigned({'vouchers': issued}, notifications)
