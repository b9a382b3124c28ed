"""
Tests for transaction history with running balances.
"""
import pytest

from holyloy.models import DistributionType
from holyloy.services.balance_projector import BalanceProjector
from holyloy.services.distribution_engine import DistributionEngine
from holyloy.services.history import HistoryReporter, EXPORT_COLUMNS
from holyloy.utils.exceptions import AccountNotFound


class TestHistory:

    def test_global_admin_statement(self, app, accounts):
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, 10000, 'Initial mint')
            engine.transfer(accounts.global_admin, accounts.local_admin, 4000,
                            distribution_type=DistributionType.ADMIN_TO_ADMIN.value)

            items = HistoryReporter().history(accounts.global_admin)

            assert [i.type for i in items] == ['Generated', 'Distributed']
            assert [i.delta for i in items] == [10000, -4000]
            assert [i.running_balance for i in items] == [10000, 6000]
            assert items[0].counterparty_id == 'system'
            assert items[1].counterparty_id == accounts.local_admin

    def test_received_entries(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        with app.app_context():
            items = HistoryReporter().history(accounts.merchant)
            assert len(items) == 1
            assert items[0].type == 'Received'
            assert items[0].counterparty_id == accounts.local_admin
            assert items[0].running_balance == 1000

    def test_deltas_sum_to_current_balance(self, app, accounts, make_account, fund_merchant, credit_customer):
        """Summing the statement reproduces the canonical balance."""
        second = make_account('customer', 'Karim')
        fund_merchant(7500)
        credit_customer(1500)
        credit_customer(6000, customer_id=second)

        with app.app_context():
            reporter = HistoryReporter()
            projector = BalanceProjector()
            for account_id in (accounts.merchant, accounts.customer, second, accounts.global_admin):
                items = reporter.history(account_id)
                balance = projector.fold(account_id).balance
                assert sum(i.delta for i in items) == balance
                assert items[-1].running_balance == balance

    def test_empty_history(self, app, accounts):
        with app.app_context():
            assert HistoryReporter().history(accounts.customer) == []

    def test_unknown_account(self, app):
        with app.app_context():
            with pytest.raises(AccountNotFound):
                HistoryReporter().history(31337)


class TestExport:

    def test_export_rows_have_fixed_columns(self, app, accounts, fund_merchant):
        fund_merchant(1000)
        with app.app_context():
            rows = HistoryReporter().export_rows(accounts.local_admin)

            assert len(rows) == 2
            for row in rows:
                assert list(row.keys()) == EXPORT_COLUMNS
            assert rows[0]['type'] == 'Received'
            assert rows[1]['type'] == 'Distributed'
            assert rows[1]['counterparty'] == str(accounts.merchant)
            assert rows[1]['running_balance'] == 0
