"""
API endpoint tests for /api/merchant and /api/accounts.
"""
from holyloy.models import PointDistribution


def _transfer(client, as_account, merchant_id, customer_id, points, key=None):
    headers = as_account(merchant_id)
    if key:
        headers['Idempotency-Key'] = key
    return client.post('/api/merchant/transfer-to-customer',
                       json={'customer_id': customer_id, 'points': points},
                       headers=headers)


class TestTransferToCustomer:
    """Test /api/merchant/transfer-to-customer."""

    def test_transfer_runs_cascade(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        response = _transfer(client, as_account, accounts.merchant, accounts.customer, 1500)

        assert response.status_code == 201
        data = response.get_json()
        assert data['success'] is True
        assert data['new_balance'] == 650
        cascade = data['cascade_result']
        assert cascade['distribution_id'] == data['transaction_id']
        assert cascade['fired'] == ['global_number', 'instant_cashback']
        assert cascade['errors'] == []

    def test_insufficient_balance(self, app, client, accounts, as_account, fund_merchant):
        fund_merchant(1000)
        response = _transfer(client, as_account, accounts.merchant, accounts.customer, 1500)

        assert response.status_code == 422
        assert response.get_json()['error']['code'] == 'INSUFFICIENT_BALANCE'
        with app.app_context():
            assert PointDistribution.query.filter_by(distribution_type='merchant_to_customer').count() == 0

    def test_replay_with_same_key(self, app, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        first = _transfer(client, as_account, accounts.merchant, accounts.customer, 1500, key='order-881')
        second = _transfer(client, as_account, accounts.merchant, accounts.customer, 1500, key='order-881')

        assert first.get_json()['transaction_id'] == second.get_json()['transaction_id']
        assert second.get_json()['new_balance'] == 650
        assert second.get_json()['cascade_result']['fired'] == ['global_number', 'instant_cashback']
        with app.app_context():
            assert PointDistribution.query.filter_by(distribution_type='instant_cashback').count() == 1

    def test_recipient_must_be_customer(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        response = _transfer(client, as_account, accounts.merchant, accounts.local_admin, 100)
        assert response.status_code == 422

    def test_customer_cannot_call(self, client, accounts, as_account):
        response = _transfer(client, as_account, accounts.customer, accounts.customer, 100)
        assert response.status_code == 403

    def test_missing_customer_id(self, client, accounts, as_account):
        response = client.post('/api/merchant/transfer-to-customer', json={'points': 100},
                               headers=as_account(accounts.merchant))
        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_CUSTOMER_ID'

    def test_unknown_customer(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        response = _transfer(client, as_account, accounts.merchant, 424242, 100)
        assert response.status_code == 404


class TestCustomerList:

    def test_lists_credited_customers(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        _transfer(client, as_account, accounts.merchant, accounts.customer, 1500)

        data = client.get('/api/merchant/customers', headers=as_account(accounts.merchant)).get_json()
        assert data['count'] == 1
        assert data['customers'][0]['customer_id'] == accounts.customer
        assert data['customers'][0]['points_from_merchant'] == 1500


class TestAccountEndpoints:
    """Test /api/accounts/<id>/..."""

    def test_own_balance(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        _transfer(client, as_account, accounts.merchant, accounts.customer, 1000)

        data = client.get(f'/api/accounts/{accounts.customer}/balance',
                          headers=as_account(accounts.customer)).get_json()
        assert data['balance'] == 1000
        assert data['total_received'] == 1000
        assert data['accumulated_points'] == 1000

    def test_cannot_read_other_account(self, client, accounts, as_account):
        response = client.get(f'/api/accounts/{accounts.merchant}/balance',
                              headers=as_account(accounts.customer))
        assert response.status_code == 403

    def test_admin_reads_any_account(self, client, accounts, as_account):
        response = client.get(f'/api/accounts/{accounts.customer}/balance',
                              headers=as_account(accounts.local_admin))
        assert response.status_code == 200

    def test_unknown_account(self, client, accounts, as_account):
        response = client.get('/api/accounts/99999/balance', headers=as_account(accounts.global_admin))
        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'ACCOUNT_NOT_FOUND'

    def test_history_and_export(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        _transfer(client, as_account, accounts.merchant, accounts.customer, 1500)

        history = client.get(f'/api/accounts/{accounts.merchant}/history',
                             headers=as_account(accounts.merchant)).get_json()
        assert [t['type'] for t in history['transactions']] == ['Received', 'Distributed', 'Generated']
        assert history['transactions'][-1]['running_balance'] == 650

        export = client.get(f'/api/accounts/{accounts.merchant}/history/export',
                            headers=as_account(accounts.merchant)).get_json()
        assert export['columns'][0] == 'date'
        assert len(export['rows']) == 3

    def test_income(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        _transfer(client, as_account, accounts.merchant, accounts.customer, 1500)

        data = client.get(f'/api/accounts/{accounts.merchant}/income',
                          headers=as_account(accounts.merchant)).get_json()
        assert data['by_type']['instant_cashback']['points'] == 150
        assert data['total'] == 150

    def test_global_numbers_and_stepup(self, client, accounts, as_account, make_account, fund_merchant):
        second = make_account('customer', 'Karim')
        fund_merchant(7500)
        _transfer(client, as_account, accounts.merchant, accounts.customer, 1500)
        _transfer(client, as_account, accounts.merchant, second, 6000)

        numbers = client.get(f'/api/accounts/{second}/global-numbers',
                             headers=as_account(second)).get_json()
        assert [n['global_number'] for n in numbers['global_numbers']] == [2, 3, 4, 5]

        rewards = client.get(f'/api/accounts/{accounts.customer}/stepup-rewards',
                             headers=as_account(accounts.customer)).get_json()
        assert rewards['total_points'] == 500
        assert rewards['rewards'][0]['trigger_global_number'] == 5


class TestIdempotencyKeyScope:
    """Idempotency-Key headers are scoped to the caller."""

    def test_header_cannot_claim_cashback_key(self, app, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        with app.app_context():
            next_id = PointDistribution.query.count() + 1

        response = _transfer(client, as_account, accounts.merchant, accounts.customer, 1500,
                             key=f'cashback:{next_id}')

        data = response.get_json()
        assert data['transaction_id'] == next_id
        assert data['new_balance'] == 650
        with app.app_context():
            cashback = PointDistribution.query.filter_by(distribution_type='instant_cashback').one()
            assert cashback.points == 150
            assert cashback.idempotency_key == f'cashback:{next_id}'

    def test_same_key_from_two_merchants(self, app, client, accounts, as_account, make_account, fund_merchant):
        other = make_account('merchant', 'Sylhet Stores')
        fund_merchant(1000)
        fund_merchant(1000, merchant_id=other)

        first = _transfer(client, as_account, accounts.merchant, accounts.customer, 100, key='k1')
        second = _transfer(client, as_account, other, accounts.customer, 300, key='k1')

        assert second.status_code == 201
        assert second.get_json()['transaction_id'] != first.get_json()['transaction_id']
        assert second.get_json()['new_balance'] == 1000 - 300 + 30

    def test_key_reused_with_different_points(self, client, accounts, as_account, fund_merchant):
        fund_merchant(2000)
        _transfer(client, as_account, accounts.merchant, accounts.customer, 100, key='order-9')

        response = _transfer(client, as_account, accounts.merchant, accounts.customer, 300, key='order-9')

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'IDEMPOTENCY_KEY_REUSED'
