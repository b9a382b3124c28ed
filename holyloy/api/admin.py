"""
Admin API endpoints.

Handles:
- Point generation by the global admin
- Distribution down the hierarchy (global -> local admin -> merchant)
- Point generation requests from local admins and their review
- Reversals and reconciliation reports
"""
from flask import Blueprint, jsonify, g, request, current_app

from ..extensions import db
from ..models.account import Account, AccountRole
from ..models.ledger import DistributionType
from ..middleware.principal import require_role
from ..services.distribution_engine import DistributionEngine, ADMIN_DISTRIBUTION_TYPES, with_retry
from ..services.generation_requests import GenerationRequestService
from ..services.reconciliation import ReconciliationService
from .common import json_body, parse_positive_int, idempotency_key

admin_bp = Blueprint('admin', __name__)

GLOBAL_ADMIN = AccountRole.GLOBAL_ADMIN.value
LOCAL_ADMIN = AccountRole.LOCAL_ADMIN.value


def _balance_of(account_id: int) -> int:
    return db.session.get(Account, account_id).points_balance


# ==============================================================================
# GENERATION & DISTRIBUTION
# ==============================================================================

@admin_bp.route('/generate', methods=['POST'])
@require_role(GLOBAL_ADMIN)
def generate_points():
    """
    Mint points into the global admin account.

    Request body:
        points: Positive whole number (required)
        description: Optional text

    Headers:
        Idempotency-Key: Optional replay protection
    """
    data = json_body()
    points = parse_positive_int(data, 'points')
    admin_id = g.principal.account_id

    engine = DistributionEngine()
    entry = with_retry(lambda: engine.generate(
        admin_id, points,
        description=data.get('description'),
        idempotency_key=idempotency_key(),
    ))

    return jsonify({
        'success': True,
        'distribution_id': entry.id,
        'new_balance': _balance_of(admin_id),
        'distribution': entry.to_dict(),
    }), 201


@admin_bp.route('/add-points', methods=['POST'])
@require_role(GLOBAL_ADMIN)
def add_points():
    """Manual top-up of the global admin account (manual_addition)."""
    data = json_body()
    points = parse_positive_int(data, 'points')
    admin_id = g.principal.account_id

    engine = DistributionEngine()
    entry = with_retry(lambda: engine.generate(
        admin_id, points,
        description=data.get('description') or 'Manual point addition',
        idempotency_key=idempotency_key(),
        distribution_type=DistributionType.MANUAL_ADDITION.value,
    ))

    return jsonify({
        'success': True,
        'distribution_id': entry.id,
        'new_balance': _balance_of(admin_id),
    }), 201


@admin_bp.route('/distribute', methods=['POST'])
@require_role(GLOBAL_ADMIN, LOCAL_ADMIN)
def distribute_points():
    """
    Distribute points one level down the hierarchy.

    The distribution type follows the caller's role: global admins fund local
    admins (admin_to_admin), local admins fund merchants in their country
    (admin_to_merchant).

    Request body:
        to_account_id: Recipient (required)
        points: Positive whole number (required)
        description: Optional text
    """
    data = json_body()
    points = parse_positive_int(data, 'points')
    to_account_id = parse_positive_int(data, 'to_account_id')
    principal = g.principal
    distribution_type = ADMIN_DISTRIBUTION_TYPES[principal.role]

    engine = DistributionEngine()
    entry = with_retry(lambda: engine.transfer(
        principal.account_id,
        to_account_id,
        points,
        description=data.get('description'),
        distribution_type=distribution_type,
        idempotency_key=idempotency_key(),
        created_by=str(principal.account_id),
    ))

    return jsonify({
        'success': True,
        'distribution_id': entry.id,
        'new_from_balance': _balance_of(principal.account_id),
        'distribution': entry.to_dict(),
    }), 201


@admin_bp.route('/distributions/<int:distribution_id>/reverse', methods=['POST'])
@require_role(GLOBAL_ADMIN)
def reverse_distribution(distribution_id):
    """Write the compensating entry for a completed distribution."""
    data = json_body()
    entry = DistributionEngine().reverse(
        distribution_id,
        reason=data.get('reason'),
        created_by=str(g.principal.account_id),
    )
    return jsonify({
        'success': True,
        'reversal_id': entry.id,
        'distribution': entry.to_dict(),
    }), 201


# ==============================================================================
# GENERATION REQUESTS
# ==============================================================================

@admin_bp.route('/generation-requests', methods=['POST'])
@require_role(LOCAL_ADMIN)
def create_generation_request():
    """
    Ask the global admin for points.

    Request body:
        points: Positive whole number (required)
        reason: Optional text
    """
    data = json_body()
    points = parse_positive_int(data, 'points')

    req = GenerationRequestService().request_generation(
        g.principal.account_id, points, data.get('reason')
    )
    return jsonify({
        'success': True,
        'request_id': req.id,
        'status': req.status,
    }), 201


@admin_bp.route('/generation-requests', methods=['GET'])
@require_role(GLOBAL_ADMIN, LOCAL_ADMIN)
def list_generation_requests():
    """
    List generation requests.

    Global admins see every request, local admins only their own.

    Query params:
        status: pending | approved | rejected
    """
    principal = g.principal
    requester_id = principal.account_id if principal.role == LOCAL_ADMIN else None

    requests = GenerationRequestService().list_requests(
        status=request.args.get('status'),
        requester_id=requester_id,
    )
    return jsonify({
        'requests': [r.to_dict() for r in requests],
        'count': len(requests),
    })


@admin_bp.route('/generation-requests/<int:request_id>/approve', methods=['POST'])
@require_role(GLOBAL_ADMIN)
def approve_generation_request(request_id):
    data = json_body()
    req = GenerationRequestService().approve(request_id, g.principal.account_id, data.get('note'))
    return jsonify({
        'success': True,
        'request': req.to_dict(),
        'new_balance': _balance_of(g.principal.account_id),
    })


@admin_bp.route('/generation-requests/<int:request_id>/reject', methods=['POST'])
@require_role(GLOBAL_ADMIN)
def reject_generation_request(request_id):
    data = json_body()
    req = GenerationRequestService().reject(request_id, g.principal.account_id, data.get('note'))
    return jsonify({
        'success': True,
        'request': req.to_dict(),
    })


# ==============================================================================
# RECONCILIATION
# ==============================================================================

@admin_bp.route('/reconciliation', methods=['GET'])
@require_role(GLOBAL_ADMIN)
def reconciliation_report():
    """Drift report and conservation check. Read-only."""
    service = ReconciliationService()
    return jsonify({
        'balances': service.reconcile_balances(repair=False),
        'conservation': service.verify_conservation(),
    })


@admin_bp.route('/reconciliation/repair', methods=['POST'])
@require_role(GLOBAL_ADMIN)
def repair_balances():
    """Rewrite drifted cached balances from the ledger, then re-check conservation."""
    service = ReconciliationService()
    balances = service.reconcile_balances(repair=True)
    current_app.logger.info(
        f"Balance repair by {g.principal.account_id}: {balances['repaired']} accounts rewritten"
    )
    return jsonify({
        'balances': balances,
        'conservation': service.verify_conservation(),
    })
