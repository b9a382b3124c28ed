"""
Tests for the Distribution Engine.

This test module covers:
- Generation (system -> global admin) and manual additions
- Hierarchy enforcement (role pairs, same-country rule, inactive accounts)
- Balance checks against the ledger fold
- Idempotent replay
- Reversals
- Lock contention and retry
"""
import threading

import pytest
from unittest.mock import MagicMock

from holyloy.extensions import db
from holyloy.models import Account, AccountRole, PointDistribution, DistributionType, DistributionStatus
from holyloy.services.account_locks import AccountLockRegistry, account_key
from holyloy.services.distribution_engine import DistributionEngine, with_retry
from holyloy.utils.exceptions import (
    AccountNotFound,
    ConcurrencyConflict,
    IdempotencyKeyReused,
    InsufficientBalance,
    InvalidHierarchy,
    InvalidState,
    ValidationError,
)

ADMIN_TO_ADMIN = DistributionType.ADMIN_TO_ADMIN.value
ADMIN_TO_MERCHANT = DistributionType.ADMIN_TO_MERCHANT.value
MERCHANT_TO_CUSTOMER = DistributionType.MERCHANT_TO_CUSTOMER.value


def _balance(account_id):
    return db.session.get(Account, account_id).points_balance


class TestGenerate:
    """Tests for DistributionEngine.generate."""

    def test_generate_credits_global_admin(self, app, accounts):
        with app.app_context():
            entry = DistributionEngine().generate(accounts.global_admin, 10000, 'Initial mint')

            assert entry.status == DistributionStatus.COMPLETED.value
            assert entry.sender == 'system'
            assert entry.distribution_type == DistributionType.POINT_GENERATION.value
            assert _balance(accounts.global_admin) == 10000

    def test_manual_addition(self, app, accounts):
        with app.app_context():
            entry = DistributionEngine().generate(
                accounts.global_admin, 250,
                distribution_type=DistributionType.MANUAL_ADDITION.value,
            )
            assert entry.distribution_type == DistributionType.MANUAL_ADDITION.value
            assert _balance(accounts.global_admin) == 250

    def test_generate_to_local_admin_rejected(self, app, accounts):
        """Only the global admin can receive minted points."""
        with app.app_context():
            with pytest.raises(InvalidHierarchy):
                DistributionEngine().generate(accounts.local_admin, 100)
            assert PointDistribution.query.count() == 0

    def test_generate_other_type_rejected(self, app, accounts):
        with app.app_context():
            with pytest.raises(ValidationError):
                DistributionEngine().generate(accounts.global_admin, 100, distribution_type=ADMIN_TO_ADMIN)

    @pytest.mark.parametrize('points', [0, -5, 1.5, '100', True, None])
    def test_invalid_points_rejected(self, app, accounts, points):
        with app.app_context():
            with pytest.raises(ValidationError):
                DistributionEngine().generate(accounts.global_admin, points)
            assert PointDistribution.query.count() == 0


class TestTransfer:
    """Tests for DistributionEngine.transfer."""

    def test_transfer_moves_points(self, app, accounts):
        """Sender loses exactly what the recipient gains."""
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 10000)

            entry = engine.transfer(accounts.global_admin, accounts.local_admin, 4000,
                                    distribution_type=ADMIN_TO_ADMIN)

            assert entry.points == 4000
            assert _balance(accounts.global_admin) == 6000
            assert _balance(accounts.local_admin) == 4000

            admin = db.session.get(Account, accounts.global_admin)
            assert admin.total_received == 10000
            assert admin.total_distributed == 4000

    def test_insufficient_balance_leaves_no_trace(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 100)

            with pytest.raises(InsufficientBalance) as exc:
                engine.transfer(accounts.global_admin, accounts.local_admin, 101,
                                distribution_type=ADMIN_TO_ADMIN)

            assert exc.value.current == 100
            assert exc.value.required == 101
            assert PointDistribution.query.count() == 1
            assert _balance(accounts.global_admin) == 100
            assert _balance(accounts.local_admin) == 0

    def test_balance_check_uses_ledger_not_cache(self, app, accounts):
        """An inflated cache does not let a sender overspend."""
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 100)
            db.session.get(Account, accounts.global_admin).points_balance = 100000
            db.session.commit()

            with pytest.raises(InsufficientBalance):
                engine.transfer(accounts.global_admin, accounts.local_admin, 500,
                                distribution_type=ADMIN_TO_ADMIN)

    def test_merchant_to_merchant_admin_type_rejected(self, app, accounts, make_account):
        """admin_to_merchant from a merchant is a hierarchy violation."""
        other = make_account(AccountRole.MERCHANT, 'Other Mart', country='BD')
        with app.app_context():
            with pytest.raises(InvalidHierarchy):
                DistributionEngine().transfer(accounts.merchant, other, 10,
                                              distribution_type=ADMIN_TO_MERCHANT)

    def test_cross_country_admin_to_merchant_rejected(self, app, accounts, make_account):
        indian_merchant = make_account(AccountRole.MERCHANT, 'Mumbai Mart', country='IN')
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)
            engine.transfer(accounts.global_admin, accounts.local_admin, 1000,
                            distribution_type=ADMIN_TO_ADMIN)

            with pytest.raises(InvalidHierarchy) as exc:
                engine.transfer(accounts.local_admin, indian_merchant, 100,
                                distribution_type=ADMIN_TO_MERCHANT)

            assert 'same country' in exc.value.message
            assert _balance(accounts.local_admin) == 1000

    def test_customer_cannot_send_to_merchant(self, app, accounts):
        with app.app_context():
            with pytest.raises(InvalidHierarchy):
                DistributionEngine().transfer(accounts.customer, accounts.merchant, 10,
                                              distribution_type=MERCHANT_TO_CUSTOMER)

    def test_self_transfer_rejected(self, app, accounts):
        with app.app_context():
            with pytest.raises(InvalidHierarchy):
                DistributionEngine().transfer(accounts.global_admin, accounts.global_admin, 10,
                                              distribution_type=ADMIN_TO_ADMIN)

    def test_inactive_recipient_rejected(self, app, accounts, make_account):
        dormant = make_account(AccountRole.LOCAL_ADMIN, 'Dormant', country='NP', is_active=False)
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)

            with pytest.raises(InvalidHierarchy):
                engine.transfer(accounts.global_admin, dormant, 100, distribution_type=ADMIN_TO_ADMIN)

    def test_unknown_account(self, app, accounts):
        with app.app_context():
            with pytest.raises(AccountNotFound):
                DistributionEngine().transfer(accounts.global_admin, 99999, 10,
                                              distribution_type=ADMIN_TO_ADMIN)

    def test_unknown_distribution_type(self, app, accounts):
        with app.app_context():
            with pytest.raises(InvalidHierarchy):
                DistributionEngine().transfer(accounts.global_admin, accounts.local_admin, 10,
                                              distribution_type='gift')

    def test_notifies_both_parties(self, app, accounts):
        with app.app_context():
            notifier = MagicMock()
            engine = DistributionEngine(notifier=notifier)
            engine.generate(accounts.global_admin, 500)
            notifier.reset_mock()

            engine.transfer(accounts.global_admin, accounts.local_admin, 200,
                            distribution_type=ADMIN_TO_ADMIN)

            events = [(c.args[0], c.args[1]) for c in notifier.emit.call_args_list]
            assert (accounts.local_admin, 'points_received') in events
            assert (accounts.global_admin, 'points_sent') in events

    def test_no_commit_mode_defers_notifications(self, app, accounts):
        """With commit=False the caller owns the transaction and notifications."""
        with app.app_context():
            notifier = MagicMock()
            engine = DistributionEngine(notifier=notifier)
            engine.credit_from_system(accounts.global_admin, 50, DistributionType.POINT_GENERATION.value,
                                      commit=False)
            db.session.rollback()

            notifier.emit.assert_not_called()
            assert PointDistribution.query.count() == 0
            assert _balance(accounts.global_admin) == 0


class TestIdempotency:

    def test_same_key_applies_once(self, app, accounts):
        """Replaying a transfer returns the original entry and moves nothing."""
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)

            first = engine.transfer(accounts.global_admin, accounts.local_admin, 300,
                                    distribution_type=ADMIN_TO_ADMIN, idempotency_key='req-1')
            second = engine.transfer(accounts.global_admin, accounts.local_admin, 300,
                                     distribution_type=ADMIN_TO_ADMIN, idempotency_key='req-1')

            assert first.id == second.id
            assert PointDistribution.query.filter_by(idempotency_key='req-1').count() == 1
            assert _balance(accounts.global_admin) == 700
            assert _balance(accounts.local_admin) == 300

    def test_different_keys_apply_twice(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)

            engine.transfer(accounts.global_admin, accounts.local_admin, 300,
                            distribution_type=ADMIN_TO_ADMIN, idempotency_key='req-1')
            engine.transfer(accounts.global_admin, accounts.local_admin, 300,
                            distribution_type=ADMIN_TO_ADMIN, idempotency_key='req-2')

            assert _balance(accounts.local_admin) == 600

    def test_key_reused_with_different_points(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)
            first = engine.transfer(accounts.global_admin, accounts.local_admin, 300,
                                    distribution_type=ADMIN_TO_ADMIN, idempotency_key='req-1')

            with pytest.raises(IdempotencyKeyReused) as exc_info:
                engine.transfer(accounts.global_admin, accounts.local_admin, 500,
                                distribution_type=ADMIN_TO_ADMIN, idempotency_key='req-1')

            assert exc_info.value.distribution_id == first.id
            assert exc_info.value.status_code == 409
            assert _balance(accounts.global_admin) == 700
            assert _balance(accounts.local_admin) == 300

    def test_key_reused_by_another_sender(self, app, accounts, make_account, fund_merchant):
        other = make_account('merchant', 'Chittagong Traders')
        fund_merchant(1000)
        fund_merchant(1000, merchant_id=other)
        with app.app_context():
            engine = DistributionEngine()
            engine.transfer(accounts.merchant, accounts.customer, 100,
                            distribution_type=MERCHANT_TO_CUSTOMER, idempotency_key='k1')

            with pytest.raises(IdempotencyKeyReused):
                engine.transfer(other, accounts.customer, 100,
                                distribution_type=MERCHANT_TO_CUSTOMER, idempotency_key='k1')

            assert _balance(other) == 1000
            assert _balance(accounts.merchant) == 900


class TestReverse:
    """Tests for DistributionEngine.reverse."""

    def test_reverse_transfer(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)
            original = engine.transfer(accounts.global_admin, accounts.local_admin, 400,
                                       distribution_type=ADMIN_TO_ADMIN)

            reversal = engine.reverse(original.id, reason='Sent to wrong admin', created_by='ops')

            assert reversal.distribution_type == DistributionType.REVERSAL.value
            assert reversal.related_distribution_id == original.id
            assert reversal.from_account_id == accounts.local_admin
            assert reversal.to_account_id == accounts.global_admin
            assert _balance(accounts.global_admin) == 1000
            assert _balance(accounts.local_admin) == 0
            assert db.session.get(PointDistribution, original.id).status == DistributionStatus.COMPLETED.value

    def test_reverse_twice_rejected(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            minted = engine.generate(accounts.global_admin, 1000)
            engine.reverse(minted.id)

            with pytest.raises(InvalidState):
                engine.reverse(minted.id)

    def test_reversal_cannot_be_reversed(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            minted = engine.generate(accounts.global_admin, 1000)
            reversal = engine.reverse(minted.id)

            with pytest.raises(InvalidState):
                engine.reverse(reversal.id)

    def test_reverse_needs_recipient_balance(self, app, accounts):
        """Points already passed on cannot be pulled back."""
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 1000)
            original = engine.transfer(accounts.global_admin, accounts.local_admin, 400,
                                       distribution_type=ADMIN_TO_ADMIN)
            engine.transfer(accounts.local_admin, accounts.merchant, 400,
                            distribution_type=ADMIN_TO_MERCHANT)

            with pytest.raises(InsufficientBalance):
                engine.reverse(original.id)

    def test_reverse_unknown_distribution(self, app, accounts):
        with app.app_context():
            with pytest.raises(AccountNotFound):
                DistributionEngine().reverse(12345)


class TestConcurrency:
    """Lock contention and retry."""

    def test_lock_timeout_raises_conflict(self, app, accounts):
        """A transfer waiting on a held account lock gives up with ConcurrencyConflict."""
        locks = AccountLockRegistry()
        held = threading.Event()
        release = threading.Event()

        def hold_lock():
            with locks.acquire([account_key(accounts.global_admin)], timeout=1):
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        held.wait(5)
        try:
            with app.app_context():
                engine = DistributionEngine(locks=locks)
                with pytest.raises(ConcurrencyConflict):
                    engine.generate(accounts.global_admin, 100)
                assert PointDistribution.query.count() == 0
        finally:
            release.set()
            holder.join()

    def test_with_retry_retries_conflicts(self, app):
        with app.app_context():
            operation = MagicMock(side_effect=[ConcurrencyConflict(), ConcurrencyConflict(), 'done'])
            assert with_retry(operation, max_retries=3, backoff=0) == 'done'
            assert operation.call_count == 3

    def test_with_retry_gives_up(self, app):
        with app.app_context():
            operation = MagicMock(side_effect=ConcurrencyConflict())
            with pytest.raises(ConcurrencyConflict):
                with_retry(operation, max_retries=2, backoff=0)
            assert operation.call_count == 3

    def test_with_retry_does_not_retry_business_errors(self, app):
        with app.app_context():
            operation = MagicMock(side_effect=InsufficientBalance(1, 0, 10))
            with pytest.raises(InsufficientBalance):
                with_retry(operation, max_retries=5, backoff=0)
            assert operation.call_count == 1


class TestAccountLockRegistry:
    """Tests for the process-local lock registry."""

    def test_locks_are_reentrant(self):
        """A thread already holding a lock can take it again."""
        locks = AccountLockRegistry()
        with locks.acquire(['account:1'], timeout=0.1):
            with locks.acquire(['account:1', 'account:2'], timeout=0.1):
                pass

    def test_other_thread_waits_then_times_out(self):
        locks = AccountLockRegistry()
        results = []

        def contender():
            try:
                with locks.acquire(['account:7'], timeout=0.05):
                    results.append('acquired')
            except ConcurrencyConflict:
                results.append('conflict')

        with locks.acquire(['account:7'], timeout=0.1):
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join()

        assert results == ['conflict']

    def test_partial_acquire_is_released(self):
        """If the second lock times out the first one is not left held."""
        locks = AccountLockRegistry()
        held = threading.Event()
        release = threading.Event()

        def hold_b():
            with locks.acquire(['account:b'], timeout=1):
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_b)
        holder.start()
        held.wait(5)
        try:
            with pytest.raises(ConcurrencyConflict):
                with locks.acquire(['account:a', 'account:b'], timeout=0.05):
                    pass
        finally:
            release.set()
            holder.join()

        outcome = []

        def take_a():
            with locks.acquire(['account:a'], timeout=0.5):
                outcome.append('ok')

        thread = threading.Thread(target=take_a)
        thread.start()
        thread.join()
        assert outcome == ['ok']

    def test_lock_count_is_fixed(self):
        locks = AccountLockRegistry(stripes=8)
        for account_id in range(1000):
            with locks.acquire([account_key(account_id)], timeout=0.1):
                pass
        assert locks.size == 8
        assert all(0 <= locks.stripe_for(account_key(i)) < 8 for i in range(1000))

    def test_keys_sharing_a_stripe(self):
        """Two keys on one stripe are taken once and fully released."""
        locks = AccountLockRegistry(stripes=1)
        with locks.acquire(['account:1', 'account:2'], timeout=0.1):
            pass

        outcome = []

        def take():
            with locks.acquire(['account:3'], timeout=0.5):
                outcome.append('ok')

        thread = threading.Thread(target=take)
        thread.start()
        thread.join()
        assert outcome == ['ok']
