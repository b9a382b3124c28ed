"""
Merchant API endpoints.

Every merchant -> customer credit goes through transfer-to-customer, which
runs the reward cascade exactly once per ledger entry.
"""
from flask import Blueprint, jsonify, g

from ..extensions import db
from ..models.account import Account, AccountRole
from ..models.ledger import DistributionType
from ..middleware.principal import require_role
from ..services.cascade import CascadeCoordinator
from ..services.distribution_engine import DistributionEngine, with_retry
from ..services.merchant_customers import MerchantCustomerProjector
from .common import json_body, parse_positive_int, idempotency_key

merchant_bp = Blueprint('merchant', __name__)

MERCHANT = AccountRole.MERCHANT.value


@merchant_bp.route('/transfer-to-customer', methods=['POST'])
@require_role(MERCHANT)
def transfer_to_customer():
    """
    Send points to a customer and run the reward cascade.

    Request body:
        customer_id: Recipient customer (required)
        points: Positive whole number (required)
        description: Optional text

    Headers:
        Idempotency-Key: Optional replay protection. A replay returns the
            original transaction and the recorded cascade outcome.

    Returns:
        transaction_id, new_balance (merchant, after cashback) and cascade_result
    """
    data = json_body()
    points = parse_positive_int(data, 'points')
    customer_id = parse_positive_int(data, 'customer_id')
    merchant_id = g.principal.account_id

    engine = DistributionEngine()
    entry = with_retry(lambda: engine.transfer(
        merchant_id,
        customer_id,
        points,
        description=data.get('description') or 'Points transfer',
        distribution_type=DistributionType.MERCHANT_TO_CUSTOMER.value,
        idempotency_key=idempotency_key(),
        created_by=str(merchant_id),
    ))

    result = CascadeCoordinator(engine).run(entry)

    return jsonify({
        'success': True,
        'transaction_id': entry.id,
        'new_balance': db.session.get(Account, merchant_id).points_balance,
        'cascade_result': result.to_dict(),
    }), 201


@merchant_bp.route('/customers', methods=['GET'])
@require_role(MERCHANT)
def list_customers():
    """Customers this merchant has credited, most recent first."""
    customers = MerchantCustomerProjector().list_customers(g.principal.account_id)
    return jsonify({
        'customers': customers,
        'count': len(customers),
    })
