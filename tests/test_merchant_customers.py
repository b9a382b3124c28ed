"""
Tests for the merchant customer read model.
"""
from holyloy.extensions import db
from holyloy.models import MerchantCustomer
from holyloy.services.merchant_customers import MerchantCustomerProjector, tier_for


class TestTierFor:

    def test_tiers(self, app):
        tiers = app.config['MERCHANT_CUSTOMER_TIERS']
        assert tier_for(0, tiers) == 'bronze'
        assert tier_for(4999, tiers) == 'bronze'
        assert tier_for(5000, tiers) == 'silver'
        assert tier_for(20000, tiers) == 'gold'
        assert tier_for(75000, tiers) == 'platinum'


class TestMerchantCustomerProjector:

    def test_cascade_refreshes_row(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(3000)
        credit_customer(1500)
        credit_customer(1000)

        with app.app_context():
            row = MerchantCustomer.query.filter_by(merchant_id=accounts.merchant,
                                                   customer_id=accounts.customer).one()
            assert row.points_from_merchant == 2500
            assert row.transfer_count == 2
            assert row.customer_balance == 2500
            assert row.customer_name == 'Rahim'
            assert row.tier == 'bronze'

    def test_balance_follows_other_merchants(self, app, accounts, make_account, fund_merchant, credit_customer):
        """A credit from one merchant updates the customer's balance on every merchant's list."""
        other = make_account('merchant', 'Other Mart')
        fund_merchant(1000)
        fund_merchant(1000, merchant_id=other)
        credit_customer(400)
        credit_customer(600, merchant_id=other)

        with app.app_context():
            first = MerchantCustomer.query.filter_by(merchant_id=accounts.merchant).one()
            assert first.points_from_merchant == 400
            assert first.customer_balance == 1000

    def test_list_customers_uses_live_balance(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        credit_customer(1500)

        with app.app_context():
            customers = MerchantCustomerProjector().list_customers(accounts.merchant)
            assert len(customers) == 1
            assert customers[0]['customer_id'] == accounts.customer
            assert customers[0]['customer_balance'] == 1500

    def test_rebuild_all(self, app, accounts, fund_merchant, credit_customer):
        fund_merchant(2000)
        credit_customer(1500)

        with app.app_context():
            MerchantCustomer.query.delete()
            db.session.commit()

            assert MerchantCustomerProjector().rebuild_all() == 1
            row = MerchantCustomer.query.one()
            assert row.points_from_merchant == 1500

    def test_refresh_without_transfers_creates_nothing(self, app, accounts):
        with app.app_context():
            assert MerchantCustomerProjector().refresh(accounts.merchant, accounts.customer) is None
            assert MerchantCustomer.query.count() == 0
