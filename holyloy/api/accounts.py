"""
Account read endpoints: balance, history, income and reward records.

An account may read its own data; admins may read any account.
"""
from flask import Blueprint, jsonify, g

from ..extensions import db
from ..models.account import Account
from ..models.rewards import GlobalNumberAssignment, StepUpReward
from ..middleware.principal import require_principal
from ..services.balance_projector import BalanceProjector
from ..services.history import HistoryReporter, EXPORT_COLUMNS
from ..utils.errors import forbidden
from ..utils.exceptions import AccountNotFound

accounts_bp = Blueprint('accounts', __name__)


def _visible_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if not account:
        raise AccountNotFound(account_id)
    return account


@accounts_bp.route('/<int:account_id>/balance', methods=['GET'])
@require_principal
def get_balance(account_id):
    if not g.principal.can_view(account_id):
        return forbidden()
    account = _visible_account(account_id)
    snapshot = BalanceProjector().get_balance(account_id)

    data = {'account_id': account_id, 'role': account.role}
    data.update(snapshot.to_dict())
    if account.is_customer:
        data['accumulated_points'] = account.accumulated_points
    return jsonify(data)


@accounts_bp.route('/<int:account_id>/history', methods=['GET'])
@require_principal
def get_history(account_id):
    """Chronological statement with running balances."""
    if not g.principal.can_view(account_id):
        return forbidden()
    _visible_account(account_id)

    items = HistoryReporter().history(account_id)
    return jsonify({
        'account_id': account_id,
        'transactions': [item.to_dict() for item in items],
        'count': len(items),
    })


@accounts_bp.route('/<int:account_id>/history/export', methods=['GET'])
@require_principal
def export_history(account_id):
    """History as flat rows for CSV export."""
    if not g.principal.can_view(account_id):
        return forbidden()
    _visible_account(account_id)

    return jsonify({
        'account_id': account_id,
        'columns': EXPORT_COLUMNS,
        'rows': HistoryReporter().export_rows(account_id),
    })


@accounts_bp.route('/<int:account_id>/income', methods=['GET'])
@require_principal
def get_income(account_id):
    """Reward income by type (cashback, commission, StepUp, ripple, infinity)."""
    if not g.principal.can_view(account_id):
        return forbidden()
    _visible_account(account_id)
    return jsonify(BalanceProjector().income_summary(account_id))


@accounts_bp.route('/<int:account_id>/global-numbers', methods=['GET'])
@require_principal
def get_global_numbers(account_id):
    if not g.principal.can_view(account_id):
        return forbidden()
    account = _visible_account(account_id)

    assignments = GlobalNumberAssignment.query.filter_by(
        customer_id=account_id
    ).order_by(GlobalNumberAssignment.global_number).all()

    return jsonify({
        'account_id': account_id,
        'accumulated_points': account.accumulated_points,
        'global_numbers': [a.to_dict() for a in assignments],
    })


@accounts_bp.route('/<int:account_id>/stepup-rewards', methods=['GET'])
@require_principal
def get_stepup_rewards(account_id):
    if not g.principal.can_view(account_id):
        return forbidden()
    _visible_account(account_id)

    rewards = StepUpReward.query.filter_by(
        beneficiary_customer_id=account_id
    ).order_by(StepUpReward.created_at, StepUpReward.id).all()

    return jsonify({
        'account_id': account_id,
        'rewards': [r.to_dict() for r in rewards],
        'total_points': sum(r.reward_points for r in rewards),
    })
