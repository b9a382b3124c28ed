"""
Shared fixtures for the ledger test suite.

Each test gets a fresh app on an in-memory SQLite database with the StepUp
levels seeded. Account fixtures hand back ids, not ORM objects, so tests can
reload them inside their own app context.
"""
from types import SimpleNamespace

import pytest

from holyloy import create_app
from holyloy.extensions import db
from holyloy.models import Account, AccountRole, DistributionType, seed_stepup_config


@pytest.fixture
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        seed_stepup_config(app.config['DEFAULT_STEPUP_LEVELS'])

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def make_account(app):
    """Factory: create an account and return its id."""
    def _make(role, name=None, country='BD', referred_by=None, email=None, is_active=True):
        role_value = role.value if isinstance(role, AccountRole) else role
        with app.app_context():
            account = Account(
                role=role_value,
                display_name=name or f'{role_value} account',
                email=email,
                country=country,
                referred_by_account_id=referred_by,
                is_active=is_active,
            )
            db.session.add(account)
            db.session.commit()
            return account.id
    return _make


@pytest.fixture
def accounts(make_account):
    """Global admin, a BD local admin, a BD merchant and a BD customer (ids)."""
    return SimpleNamespace(
        global_admin=make_account(AccountRole.GLOBAL_ADMIN, 'Global Admin', country=None),
        local_admin=make_account(AccountRole.LOCAL_ADMIN, 'BD Admin', country='BD'),
        merchant=make_account(AccountRole.MERCHANT, 'Dhaka Mart', country='BD', email='mart@example.com'),
        customer=make_account(AccountRole.CUSTOMER, 'Rahim', country='BD', email='rahim@example.com'),
    )


@pytest.fixture
def fund_merchant(app, accounts):
    """Push points down the hierarchy: system -> global admin -> local admin -> merchant."""
    from holyloy.services.distribution_engine import DistributionEngine

    def _fund(points, merchant_id=None):
        with app.app_context():
            engine = DistributionEngine()
            engine.generate(accounts.global_admin, points)
            engine.transfer(accounts.global_admin, accounts.local_admin, points,
                            distribution_type=DistributionType.ADMIN_TO_ADMIN.value)
            engine.transfer(accounts.local_admin, merchant_id or accounts.merchant, points,
                            distribution_type=DistributionType.ADMIN_TO_MERCHANT.value)
    return _fund


@pytest.fixture
def credit_customer(app, accounts):
    """Merchant -> customer transfer followed by the reward cascade. Returns (entry id, result)."""
    from holyloy.services.cascade import CascadeCoordinator
    from holyloy.services.distribution_engine import DistributionEngine

    def _credit(points, customer_id=None, merchant_id=None, idempotency_key=None):
        with app.app_context():
            engine = DistributionEngine()
            entry = engine.transfer(
                merchant_id or accounts.merchant,
                customer_id or accounts.customer,
                points,
                description='Purchase reward',
                distribution_type=DistributionType.MERCHANT_TO_CUSTOMER.value,
                idempotency_key=idempotency_key,
            )
            result = CascadeCoordinator(engine).run(entry)
            return entry.id, result
    return _credit


@pytest.fixture
def as_account():
    """Headers that identify the caller to the API."""
    def _headers(account_id, **extra):
        headers = {'X-Account-ID': str(account_id)}
        headers.update(extra)
        return headers
    return _headers
