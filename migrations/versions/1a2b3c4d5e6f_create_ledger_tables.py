"""Create points ledger and reward cascade tables

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a2b3c4d5e6f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('display_name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('country', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('points_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_received', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_distributed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accumulated_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('referred_by_account_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('points_balance >= 0', name='ck_accounts_balance_non_negative'),
        sa.ForeignKeyConstraint(['referred_by_account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_accounts_role_country', 'accounts', ['role', 'country'])

    op.create_table('point_distributions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_account_id', sa.Integer(), nullable=True),
        sa.Column('to_account_id', sa.Integer(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('distribution_type', sa.String(length=40), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('idempotency_key', sa.String(length=200), nullable=True),
        sa.Column('related_distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('points > 0', name='ck_point_distributions_points_positive'),
        sa.ForeignKeyConstraint(['from_account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['to_account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['related_distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key')
    )
    op.create_index('ix_point_distributions_from_created', 'point_distributions', ['from_account_id', 'created_at'])
    op.create_index('ix_point_distributions_to_created', 'point_distributions', ['to_account_id', 'created_at'])
    op.create_index('ix_point_distributions_type', 'point_distributions', ['distribution_type'])

    op.create_table('sequence_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('current_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table('point_generation_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('requester_country', sa.String(length=64), nullable=True),
        sa.Column('points_requested', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_note', sa.String(length=500), nullable=True),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['requester_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_point_generation_requests_status', 'point_generation_requests', ['status'])
    op.create_index('ix_point_generation_requests_requester', 'point_generation_requests', ['requester_id'])

    op.create_table('global_number_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('global_number', sa.Integer(), nullable=False),
        sa.Column('local_number', sa.Integer(), nullable=False),
        sa.Column('country', sa.String(length=64), nullable=True),
        sa.Column('points_at_assignment', sa.Integer(), nullable=False),
        sa.Column('source_distribution_id', sa.Integer(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['source_distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('global_number'),
        sa.UniqueConstraint('country', 'local_number', name='uq_global_number_country_local')
    )
    op.create_index('ix_global_number_assignments_customer', 'global_number_assignments', ['customer_id'])
    op.create_index('ix_global_number_assignments_source', 'global_number_assignments', ['source_distribution_id'])

    op.create_table('stepup_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('multiplier', sa.Integer(), nullable=False),
        sa.Column('reward_points', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('multiplier')
    )

    op.create_table('stepup_rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('beneficiary_customer_id', sa.Integer(), nullable=False),
        sa.Column('beneficiary_global_number', sa.Integer(), nullable=False),
        sa.Column('trigger_global_number', sa.Integer(), nullable=False),
        sa.Column('multiplier', sa.Integer(), nullable=False),
        sa.Column('reward_points', sa.Integer(), nullable=False),
        sa.Column('source_distribution_id', sa.Integer(), nullable=True),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['beneficiary_customer_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['source_distribution_id'], ['point_distributions.id'], ),
        sa.ForeignKeyConstraint(['distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('beneficiary_global_number', 'trigger_global_number', 'multiplier',
                            name='uq_stepup_reward_once')
    )
    op.create_index('ix_stepup_rewards_beneficiary', 'stepup_rewards', ['beneficiary_customer_id'])
    op.create_index('ix_stepup_rewards_source', 'stepup_rewards', ['source_distribution_id'])

    op.create_table('affiliate_commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('referring_merchant_id', sa.Integer(), nullable=False),
        sa.Column('referred_merchant_id', sa.Integer(), nullable=False),
        sa.Column('source_distribution_id', sa.Integer(), nullable=False),
        sa.Column('base_points', sa.Integer(), nullable=False),
        sa.Column('commission_points', sa.Integer(), nullable=False),
        sa.Column('commission_rate', sa.Float(), nullable=False),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['referring_merchant_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['referred_merchant_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['source_distribution_id'], ['point_distributions.id'], ),
        sa.ForeignKeyConstraint(['distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_distribution_id')
    )
    op.create_index('ix_affiliate_commissions_referrer_created', 'affiliate_commissions',
                    ['referring_merchant_id', 'created_at'])

    op.create_table('ripple_rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('referrer_id', sa.Integer(), nullable=False),
        sa.Column('referred_id', sa.Integer(), nullable=False),
        sa.Column('stepup_reward_id', sa.Integer(), nullable=False),
        sa.Column('stepup_points', sa.Integer(), nullable=False),
        sa.Column('ripple_points', sa.Integer(), nullable=False),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['referrer_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['referred_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['stepup_reward_id'], ['stepup_rewards.id'], ),
        sa.ForeignKeyConstraint(['distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stepup_reward_id')
    )

    op.create_table('infinity_cycles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('cycle_number', sa.Integer(), nullable=False),
        sa.Column('reward_numbers', sa.Text(), nullable=True),
        sa.Column('points_per_reward', sa.Integer(), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False),
        sa.Column('trigger_global_number', sa.Integer(), nullable=True),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('customer_id', 'cycle_number', name='uq_infinity_cycle_per_customer')
    )

    op.create_table('shopping_vouchers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('voucher_code', sa.String(length=32), nullable=False),
        sa.Column('points_allocated', sa.Integer(), nullable=False),
        sa.Column('points_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['merchant_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('voucher_code')
    )
    op.create_index('ix_shopping_vouchers_customer', 'shopping_vouchers', ['customer_id'])

    op.create_table('cascade_step_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source_distribution_id', sa.Integer(), nullable=False),
        sa.Column('step', sa.String(length=40), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['source_distribution_id'], ['point_distributions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_distribution_id', 'step', name='uq_cascade_step_run')
    )
    op.create_index('ix_cascade_step_runs_status', 'cascade_step_runs', ['status'])

    op.create_table('merchant_customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=200), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('points_from_merchant', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transfer_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tier', sa.String(length=20), nullable=True),
        sa.Column('last_transfer_at', sa.DateTime(), nullable=True),
        sa.Column('refreshed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['merchant_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('merchant_id', 'customer_id', name='uq_merchant_customer')
    )

    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_events_account_created', 'audit_events', ['account_id', 'created_at'])
    op.create_index('ix_audit_events_type', 'audit_events', ['event_type'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('merchant_customers')
    op.drop_table('cascade_step_runs')
    op.drop_table('shopping_vouchers')
    op.drop_table('infinity_cycles')
    op.drop_table('ripple_rewards')
    op.drop_table('affiliate_commissions')
    op.drop_table('stepup_rewards')
    op.drop_table('stepup_config')
    op.drop_table('global_number_assignments')
    op.drop_table('point_generation_requests')
    op.drop_table('sequence_counters')
    op.drop_table('point_distributions')
    op.drop_table('accounts')
