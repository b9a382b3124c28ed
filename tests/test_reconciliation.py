"""
Tests for reconciliation jobs and the CLI commands that run them.
"""
from unittest.mock import patch

from holyloy.extensions import db
from holyloy.models import Account, MerchantCustomer, StepUpConfig
from holyloy.services.reconciliation import ReconciliationService
from holyloy.services.rewards import InstantCashbackStep


class TestReconcileBalances:

    def test_clean_ledger_has_no_drift(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        credit_customer(1500)
        with app.app_context():
            result = ReconciliationService().reconcile_balances()
            assert result['accounts_checked'] == 4
            assert result['drifted'] == []

    def test_repairs_drift(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        with app.app_context():
            db.session.get(Account, accounts.local_admin).points_balance = 77
            db.session.commit()

            service = ReconciliationService()
            report = service.reconcile_balances()
            assert [d['account_id'] for d in report['drifted']] == [accounts.local_admin]
            assert report['repaired'] == 0

            report = service.reconcile_balances(repair=True)
            assert report['repaired'] == 1
            assert db.session.get(Account, accounts.local_admin).points_balance == 0
            assert service.reconcile_balances()['drifted'] == []


class TestConservation:

    def test_balanced_after_cascade(self, app, accounts, make_account, fund_merchant, credit_customer):
        """Minted rewards keep system issuance equal to what accounts hold."""
        second = make_account('customer', 'Karim')
        fund_merchant(7500)
        credit_customer(1500)
        credit_customer(6000, customer_id=second)

        with app.app_context():
            result = ReconciliationService().verify_conservation()
            assert result['balanced'] is True
            assert result['difference'] == 0
            # 7500 funded + 150 + 600 cashback + 500 StepUp
            assert result['system_issued_total'] == 8750

    def test_detects_imbalance(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        with app.app_context():
            db.session.get(Account, accounts.merchant).points_balance = 1200
            db.session.commit()

            result = ReconciliationService().verify_conservation()
            assert result['balanced'] is False
            assert result['difference'] == 200


class TestReplay:

    def test_nothing_to_replay(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        credit_customer(1500)
        with app.app_context():
            result = ReconciliationService().replay_cascades()
            assert result['entries_scanned'] == 1
            assert result['replayed'] == []

    def test_replays_error_steps(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        with patch.object(InstantCashbackStep, 'run', side_effect=RuntimeError('boom')):
            entry_id, result = credit_customer(1500)
        assert result.errors == ['instant_cashback']

        with app.app_context():
            result = ReconciliationService().replay_cascades()
            assert result['replayed'] == [
                {'distribution_id': entry_id, 'step': 'instant_cashback', 'status': 'assigned'}
            ]
            assert db.session.get(Account, accounts.merchant).points_balance == 650

    def test_still_failing_is_reported(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        with patch.object(InstantCashbackStep, 'run', side_effect=RuntimeError('boom')):
            entry_id, _ = credit_customer(1500)

            with app.app_context():
                result = ReconciliationService().replay_cascades()

        assert result['still_failing'] == [
            {'distribution_id': entry_id, 'step': 'instant_cashback', 'status': 'error', 'error': 'boom'}
        ]


class TestLedgerCommands:
    """flask ledger ... commands."""

    def test_seed_stepup_is_idempotent(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=['ledger', 'seed-stepup'])
        assert result.exit_code == 0
        assert '0 created' in result.output

        with app.app_context():
            assert StepUpConfig.query.count() == len(app.config['DEFAULT_STEPUP_LEVELS'])

    def test_verify_conservation_ok(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        result = app.test_cli_runner().invoke(args=['ledger', 'verify-conservation'])
        assert result.exit_code == 0
        assert 'Conservation OK' in result.output

    def test_verify_conservation_mismatch_exits_nonzero(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        with app.app_context():
            db.session.get(Account, accounts.merchant).points_balance = 900
            db.session.commit()

        result = app.test_cli_runner().invoke(args=['ledger', 'verify-conservation'])
        assert result.exit_code == 1
        assert 'MISMATCH' in result.output

    def test_reconcile_repair(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        with app.app_context():
            db.session.get(Account, accounts.merchant).points_balance = 900
            db.session.commit()

        result = app.test_cli_runner().invoke(args=['ledger', 'reconcile', '--repair'])
        assert result.exit_code == 0
        assert 'Repaired: 1' in result.output
        with app.app_context():
            assert db.session.get(Account, accounts.merchant).points_balance == 1000

    def test_rebuild_merchant_customers(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        credit_customer(1500)
        with app.app_context():
            MerchantCustomer.query.delete()
            db.session.commit()

        result = app.test_cli_runner().invoke(args=['ledger', 'rebuild-merchant-customers'])
        assert result.exit_code == 0
        assert 'Rebuilt 1' in result.output
        with app.app_context():
            assert MerchantCustomer.query.count() == 1
