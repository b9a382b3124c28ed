"""
Distribution Engine - the only writer of point movements.

Every transfer is one unit of work:
    lock both accounts -> re-check balance against the ledger fold ->
    append the ledger entry -> update both cached projections -> commit

Nothing is written until every precondition holds, so a rejected transfer
(hierarchy, balance, validation) leaves no trace. A committed entry is never
cancelled; reverse() writes a compensating entry instead.

Usage:
    engine = DistributionEngine()
    entry = engine.transfer(merchant.id, customer.id, 1500, 'Purchase reward',
                            DistributionType.MERCHANT_TO_CUSTOMER.value,
                            idempotency_key=request_key)
"""
import time
from typing import Optional, Callable, Any
from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..extensions import db
from ..models.account import Account, AccountRole
from ..models.ledger import (
    PointDistribution,
    DistributionType,
    DistributionStatus,
    SYSTEM_ACCOUNT,
)
from ..utils.exceptions import (
    LedgerError,
    ValidationError,
    AccountNotFound,
    InvalidHierarchy,
    InsufficientBalance,
    InvalidState,
    ConcurrencyConflict,
    PersistenceFailure,
    IdempotencyKeyReused,
)
from .account_locks import account_locks, account_key
from .balance_projector import BalanceProjector
from .ledger_store import LedgerStore, PointDistributionDraft
from .notifications import AuditTrailNotifier


GLOBAL_ADMIN = AccountRole.GLOBAL_ADMIN.value
LOCAL_ADMIN = AccountRole.LOCAL_ADMIN.value
MERCHANT = AccountRole.MERCHANT.value
CUSTOMER = AccountRole.CUSTOMER.value

# distribution_type -> allowed (sender role, recipient role) pairs.
# 'system' stands for the minting sender (from_account_id NULL).
HIERARCHY_RULES = {
    DistributionType.POINT_GENERATION.value: {(SYSTEM_ACCOUNT, GLOBAL_ADMIN)},
    DistributionType.MANUAL_ADDITION.value: {(SYSTEM_ACCOUNT, GLOBAL_ADMIN)},
    DistributionType.ADMIN_TO_ADMIN.value: {(GLOBAL_ADMIN, LOCAL_ADMIN)},
    DistributionType.ADMIN_TO_MERCHANT.value: {(LOCAL_ADMIN, MERCHANT)},
    DistributionType.MERCHANT_TO_CUSTOMER.value: {(MERCHANT, CUSTOMER)},
    DistributionType.REFERRAL_COMMISSION.value: {(SYSTEM_ACCOUNT, MERCHANT), (MERCHANT, MERCHANT)},
    DistributionType.INSTANT_CASHBACK.value: {(SYSTEM_ACCOUNT, MERCHANT), (MERCHANT, MERCHANT)},
    DistributionType.STEPUP_REWARD.value: {(SYSTEM_ACCOUNT, CUSTOMER)},
    DistributionType.RIPPLE_REWARD.value: {(SYSTEM_ACCOUNT, CUSTOMER)},
    DistributionType.INFINITY_REWARD.value: {(SYSTEM_ACCOUNT, CUSTOMER)},
    DistributionType.SHOPPING_VOUCHER.value: {(SYSTEM_ACCOUNT, CUSTOMER)},
}

# Types where sender and recipient must be in the same country
SAME_COUNTRY_TYPES = {DistributionType.ADMIN_TO_MERCHANT.value}

# Distribution type an admin uses when distributing down the hierarchy
ADMIN_DISTRIBUTION_TYPES = {
    GLOBAL_ADMIN: DistributionType.ADMIN_TO_ADMIN.value,
    LOCAL_ADMIN: DistributionType.ADMIN_TO_MERCHANT.value,
}


def _is_lock_timeout(error: OperationalError) -> bool:
    pgcode = getattr(getattr(error, 'orig', None), 'pgcode', None)
    if pgcode in ('55P03', '40P01'):  # lock_not_available, deadlock_detected
        return True
    message = str(error).lower()
    return 'lock timeout' in message or 'database is locked' in message


class DistributionEngine:
    """
    Moves points between accounts under the hierarchy rules.

    Collaborators are injectable for tests; the defaults share the process
    lock registry so every engine instance serializes on the same accounts.
    """

    def __init__(self, store: LedgerStore = None, projector: BalanceProjector = None,
                 notifier=None, locks=None):
        self.store = store or LedgerStore()
        self.projector = projector or BalanceProjector()
        self.notifier = notifier or AuditTrailNotifier()
        self.locks = locks or account_locks

    # ==================== Public operations ====================

    def transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        points: int,
        description: str = None,
        distribution_type: str = DistributionType.ADMIN_TO_MERCHANT.value,
        idempotency_key: str = None,
        created_by: str = None,
        commit: bool = True
    ) -> PointDistribution:
        """
        Move points from one account to another.

        Args:
            from_account_id: Sender, or None for system minting
            to_account_id: Recipient
            points: Positive integer amount
            description: Free text stored on the entry
            distribution_type: DistributionType value, checked against HIERARCHY_RULES
            idempotency_key: Replays with the same key return the original entry
            created_by: Actor recorded on the entry
            commit: Commit and notify (False when the caller owns the transaction)

        Returns:
            The completed ledger entry

        Raises:
            ValidationError, AccountNotFound, InvalidHierarchy, InsufficientBalance,
            ConcurrencyConflict (retryable), PersistenceFailure
        """
        return self._execute(
            from_account_id, to_account_id, points, distribution_type,
            description=description,
            idempotency_key=idempotency_key,
            created_by=created_by,
            commit=commit,
        )

    def generate(
        self,
        global_admin_id: int,
        points: int,
        description: str = None,
        idempotency_key: str = None,
        distribution_type: str = DistributionType.POINT_GENERATION.value
    ) -> PointDistribution:
        """Mint points from system to the global admin."""
        if distribution_type not in (DistributionType.POINT_GENERATION.value,
                                     DistributionType.MANUAL_ADDITION.value):
            raise ValidationError(
                "Generation must be point_generation or manual_addition",
                field='distribution_type'
            )
        return self._execute(
            None, global_admin_id, points, distribution_type,
            description=description or 'Point generation',
            idempotency_key=idempotency_key,
            created_by=str(global_admin_id),
        )

    def credit_from_system(
        self,
        to_account_id: int,
        points: int,
        distribution_type: str,
        description: str = None,
        idempotency_key: str = None,
        commit: bool = True
    ) -> PointDistribution:
        """Mint a reward credit (cashback, commission, StepUp, ...) from system."""
        return self._execute(
            None, to_account_id, points, distribution_type,
            description=description,
            idempotency_key=idempotency_key,
            created_by=SYSTEM_ACCOUNT,
            commit=commit,
        )

    def reverse(self, distribution_id: int, reason: str = None, created_by: str = None) -> PointDistribution:
        """
        Write the compensating entry for a completed distribution.

        Points go from the original recipient back to the original sender
        (or back to system for minted entries). Each entry is reversed at
        most once; reversals themselves cannot be reversed.
        """
        original = self.store.get(distribution_id)
        if not original:
            raise AccountNotFound(distribution_id, resource='Distribution')
        if original.distribution_type == DistributionType.REVERSAL.value:
            raise InvalidState('distribution', DistributionType.REVERSAL.value, 'reversed')
        if original.status != DistributionStatus.COMPLETED.value:
            raise InvalidState('distribution', original.status, 'reversed')

        already = PointDistribution.query.filter_by(
            related_distribution_id=distribution_id,
            distribution_type=DistributionType.REVERSAL.value,
        ).first()
        if already:
            raise InvalidState('distribution', 'reversed', 'reversed')

        entry = self._execute(
            original.to_account_id,
            original.from_account_id,
            original.points,
            DistributionType.REVERSAL.value,
            description=reason or f'Reversal of distribution #{distribution_id}',
            idempotency_key=f'reversal:{distribution_id}',
            created_by=created_by,
            related_distribution_id=distribution_id,
        )

        for account_id in (entry.from_account_id, entry.to_account_id):
            if account_id is not None:
                self.notifier.emit(account_id, 'distribution_reversed', {
                    'distribution_id': entry.id,
                    'reversed_distribution_id': distribution_id,
                    'points': entry.points,
                })
        return entry

    # ==================== Internals ====================

    def _execute(
        self,
        from_account_id: Optional[int],
        to_account_id: Optional[int],
        points: int,
        distribution_type: str,
        description: str = None,
        idempotency_key: str = None,
        created_by: str = None,
        related_distribution_id: int = None,
        commit: bool = True
    ) -> PointDistribution:
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            raise ValidationError('Points must be a positive integer', field='points')

        if idempotency_key:
            existing = self.store.find_by_idempotency_key(idempotency_key)
            if existing:
                return self._replay(existing, from_account_id, to_account_id, points, distribution_type)

        if from_account_id is not None and from_account_id == to_account_id:
            raise InvalidHierarchy('Cannot transfer points to the same account')

        sender = self._load_account(from_account_id)
        recipient = self._load_account(to_account_id)
        if distribution_type != DistributionType.REVERSAL.value:
            self._check_hierarchy(distribution_type, sender, recipient)

        timeout = current_app.config.get('TRANSFER_LOCK_TIMEOUT', 5)
        keys = [account_key(a) for a in (from_account_id, to_account_id) if a is not None]

        with self.locks.acquire(keys, timeout):
            try:
                self._apply_lock_timeout(timeout)
                sender, recipient = self._lock_rows(from_account_id, to_account_id)

                if sender is not None:
                    available = self.projector.fold(sender.id).balance
                    if available < points:
                        raise InsufficientBalance(sender.id, available, points)

                entry = self.store.append(PointDistributionDraft(
                    from_account_id=from_account_id,
                    to_account_id=to_account_id,
                    points=points,
                    distribution_type=distribution_type,
                    description=description,
                    idempotency_key=idempotency_key,
                    related_distribution_id=related_distribution_id,
                    created_by=created_by,
                ))

                if sender is not None:
                    sender.points_balance -= points
                    sender.total_distributed += points
                if recipient is not None:
                    recipient.points_balance += points
                    recipient.total_received += points

                self.store.mark_completed(entry)

                if commit:
                    db.session.commit()
                else:
                    db.session.flush()

            except PersistenceFailure:
                # LedgerStore already rolled back. A lost idempotency race
                # surfaces here as a unique violation.
                if idempotency_key:
                    existing = self.store.find_by_idempotency_key(idempotency_key)
                    if existing:
                        return self._replay(existing, from_account_id, to_account_id,
                                            points, distribution_type)
                raise
            except LedgerError:
                if commit:
                    db.session.rollback()
                raise
            except OperationalError as e:
                db.session.rollback()
                if _is_lock_timeout(e):
                    current_app.logger.warning(f"Lock timeout on {keys}: {e}")
                    raise ConcurrencyConflict()
                raise PersistenceFailure('Database error during transfer', original_error=e)
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.error(f"Transfer commit failed: {e}")
                raise PersistenceFailure('Failed to commit transfer', original_error=e)

        current_app.logger.info(
            f"Distribution {entry.id}: {points} pts "
            f"{from_account_id or SYSTEM_ACCOUNT} -> {to_account_id or SYSTEM_ACCOUNT} ({distribution_type})"
        )

        if commit:
            self.notify_transfer(entry)
        return entry

    def _replay(self, existing: PointDistribution, from_account_id: Optional[int],
                to_account_id: Optional[int], points: int, distribution_type: str) -> PointDistribution:
        """Return the entry already recorded under a key, if it is the same movement."""
        same = (
            existing.from_account_id == from_account_id
            and existing.to_account_id == to_account_id
            and existing.points == points
            and existing.distribution_type == distribution_type
        )
        if not same:
            current_app.logger.warning(
                f"Idempotency key '{existing.idempotency_key}' reused: recorded distribution {existing.id} "
                f"does not match {points} pts {from_account_id} -> {to_account_id} ({distribution_type})"
            )
            raise IdempotencyKeyReused(existing.idempotency_key, existing.id)
        current_app.logger.info(
            f"Idempotent replay of '{existing.idempotency_key}' -> distribution {existing.id}"
        )
        return existing

    def _load_account(self, account_id: Optional[int]) -> Optional[Account]:
        if account_id is None:
            return None
        account = db.session.get(Account, account_id)
        if not account:
            raise AccountNotFound(account_id)
        if not account.is_active:
            raise InvalidHierarchy(f'Account {account_id} is inactive')
        return account

    def _check_hierarchy(self, distribution_type: str, sender: Optional[Account],
                         recipient: Optional[Account]) -> None:
        allowed = HIERARCHY_RULES.get(distribution_type)
        if allowed is None:
            raise InvalidHierarchy(f"Unknown distribution type '{distribution_type}'")

        sender_role = sender.role if sender is not None else SYSTEM_ACCOUNT
        recipient_role = recipient.role if recipient is not None else SYSTEM_ACCOUNT
        if (sender_role, recipient_role) not in allowed:
            raise InvalidHierarchy(
                f"{distribution_type} is not allowed from {sender_role} to {recipient_role}"
            )

        if distribution_type in SAME_COUNTRY_TYPES and sender.country != recipient.country:
            raise InvalidHierarchy(
                f"{distribution_type} requires the same country "
                f"({sender.country} -> {recipient.country})"
            )

    def _apply_lock_timeout(self, timeout: float) -> None:
        """Bound row-lock waits on PostgreSQL for the current transaction."""
        if db.session.get_bind().dialect.name == 'postgresql':
            db.session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))

    def _lock_rows(self, from_account_id, to_account_id):
        ids = sorted(a for a in (from_account_id, to_account_id) if a is not None)
        rows = Account.query.filter(Account.id.in_(ids)).order_by(Account.id).with_for_update().populate_existing().all()
        by_id = {row.id: row for row in rows}
        return by_id.get(from_account_id), by_id.get(to_account_id)

    def notify_transfer(self, entry: PointDistribution) -> None:
        """points_received / points_sent events. Called after commit."""
        payload = {
            'distribution_id': entry.id,
            'points': entry.points,
            'distribution_type': entry.distribution_type,
            'from_account_id': entry.sender,
            'to_account_id': entry.recipient,
        }
        if entry.to_account_id is not None:
            self.notifier.emit(entry.to_account_id, 'points_received', payload)
        if entry.from_account_id is not None:
            self.notifier.emit(entry.from_account_id, 'points_sent', payload)


def with_retry(operation: Callable[[], Any], max_retries: int = None, backoff: float = None) -> Any:
    """
    Run `operation`, retrying ConcurrencyConflict with exponential backoff.

    Any other error propagates immediately.
    """
    if max_retries is None:
        max_retries = current_app.config.get('TRANSFER_MAX_RETRIES', 3)
    if backoff is None:
        backoff = current_app.config.get('TRANSFER_RETRY_BACKOFF', 0.05)

    attempt = 0
    while True:
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt >= max_retries:
                raise
            delay = backoff * (2 ** attempt)
            current_app.logger.info(f"Concurrency conflict, retry {attempt + 1}/{max_retries} in {delay:.2f}s")
            if delay:
                time.sleep(delay)
            attempt += 1
