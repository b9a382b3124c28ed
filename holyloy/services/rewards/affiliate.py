"""
Affiliate commission for referring merchants.

A merchant referred by another merchant earns its referrer
AFFILIATE_COMMISSION_RATE of each transfer to a customer, once the referred
merchant's cumulative merchant -> customer volume reaches
AFFILIATE_COMMISSION_MIN_VOLUME. Velocity limits per referrer guard against
commission farming.
"""
from datetime import datetime, timedelta
from sqlalchemy import func

from ...extensions import db
from ...models.account import Account
from ...models.ledger import PointDistribution, DistributionType, DistributionStatus
from ...models.rewards import AffiliateCommission, CascadeStep
from .base import RewardStep, CascadeContext, StepOutcome, percentage_of


class AffiliateCommissionStep(RewardStep):
    name = CascadeStep.AFFILIATE_COMMISSION.value

    def run(self, ctx: CascadeContext) -> StepOutcome:
        merchant = ctx.merchant
        if not merchant.referred_by_account_id:
            return StepOutcome.not_eligible('not_referred')

        referrer = db.session.get(Account, merchant.referred_by_account_id)
        if not referrer or not referrer.is_merchant or not referrer.is_active:
            return StepOutcome.not_eligible('referrer_unavailable', referrer_id=merchant.referred_by_account_id)

        if AffiliateCommission.query.filter_by(source_distribution_id=ctx.source_id).first():
            return StepOutcome.not_eligible('already_paid')

        volume = db.session.query(
            func.coalesce(func.sum(PointDistribution.points), 0)
        ).filter(
            PointDistribution.from_account_id == merchant.id,
            PointDistribution.distribution_type == DistributionType.MERCHANT_TO_CUSTOMER.value,
            PointDistribution.status == DistributionStatus.COMPLETED.value,
        ).scalar()
        volume = int(volume or 0)

        min_volume = ctx.config['AFFILIATE_COMMISSION_MIN_VOLUME']
        if volume < min_volume:
            return StepOutcome.not_eligible('below_min_volume', volume=volume, min_volume=min_volume)

        rate = ctx.config['AFFILIATE_COMMISSION_RATE']
        commission = percentage_of(ctx.source.points, rate)
        if commission <= 0:
            return StepOutcome.not_eligible('commission_rounds_to_zero')

        now = datetime.utcnow()
        hourly_count = AffiliateCommission.query.filter(
            AffiliateCommission.referring_merchant_id == referrer.id,
            AffiliateCommission.created_at >= now - timedelta(hours=1),
        ).count()
        if hourly_count >= ctx.config['AFFILIATE_MAX_COMMISSIONS_PER_HOUR']:
            return StepOutcome.not_eligible('hourly_limit', hourly_count=hourly_count)

        daily_total = db.session.query(
            func.coalesce(func.sum(AffiliateCommission.commission_points), 0)
        ).filter(
            AffiliateCommission.referring_merchant_id == referrer.id,
            AffiliateCommission.created_at >= now - timedelta(days=1),
        ).scalar()
        daily_total = int(daily_total or 0)
        if daily_total + commission > ctx.config['AFFILIATE_MAX_COMMISSION_POINTS_PER_DAY']:
            return StepOutcome.not_eligible('daily_limit', daily_total=daily_total)

        entry = ctx.engine.credit_from_system(
            referrer.id,
            commission,
            DistributionType.REFERRAL_COMMISSION.value,
            description=f'Affiliate commission {rate:.0%} on distribution #{ctx.source_id} by merchant {merchant.id}',
            idempotency_key=f'affiliate:{ctx.source_id}',
            commit=False,
        )
        record = AffiliateCommission(
            referring_merchant_id=referrer.id,
            referred_merchant_id=merchant.id,
            source_distribution_id=ctx.source_id,
            base_points=ctx.source.points,
            commission_points=commission,
            commission_rate=rate,
            distribution_id=entry.id,
        )
        db.session.add(record)
        db.session.flush()

        return StepOutcome.assigned(
            {'referrer_id': referrer.id, 'commission_points': commission, 'volume': volume},
            [(referrer.id, 'affiliate_commission', {
                'referred_merchant_id': merchant.id,
                'commission_points': commission,
                'source_distribution_id': ctx.source_id,
            })],
        )
