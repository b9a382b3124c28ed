"""
Ledger Store - append-only persistence for PointDistribution entries.

There is deliberately no update or delete API. The only mutation is the
pending -> completed / failed status transition. Corrections are new
'reversal' entries written by the distribution engine.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.ledger import PointDistribution, DistributionStatus
from ..utils.exceptions import InvalidState, PersistenceFailure, ValidationError


QUERY_ROLES = ('from', 'to', 'either')


@dataclass
class PointDistributionDraft:
    """An entry that has not been assigned an id or timestamp yet."""
    from_account_id: Optional[int]
    to_account_id: Optional[int]
    points: int
    distribution_type: str
    description: Optional[str] = None
    idempotency_key: Optional[str] = None
    related_distribution_id: Optional[int] = None
    created_by: Optional[str] = None
    status: str = DistributionStatus.PENDING.value


class LedgerStore:
    """
    Append and read ledger entries.

    append() flushes but does not commit; the caller's transaction decides
    durability so the entry and the balance projection land together.
    """

    def append(self, draft: PointDistributionDraft) -> PointDistribution:
        """
        Persist a new entry.

        Raises:
            PersistenceFailure: the database rejected the row. The session is
                rolled back, so nothing from the caller's unit of work survives.
        """
        entry = PointDistribution(
            from_account_id=draft.from_account_id,
            to_account_id=draft.to_account_id,
            points=draft.points,
            distribution_type=draft.distribution_type,
            description=draft.description,
            status=draft.status,
            idempotency_key=draft.idempotency_key,
            related_distribution_id=draft.related_distribution_id,
            created_by=draft.created_by,
            created_at=datetime.utcnow(),
        )
        if draft.status == DistributionStatus.COMPLETED.value:
            entry.completed_at = entry.created_at

        try:
            db.session.add(entry)
            db.session.flush()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Ledger append failed ({draft.distribution_type}): {e}")
            raise PersistenceFailure('Failed to write ledger entry', original_error=e)

        return entry

    def get(self, entry_id: int) -> Optional[PointDistribution]:
        return db.session.get(PointDistribution, entry_id)

    def find_by_idempotency_key(self, key: str) -> Optional[PointDistribution]:
        if not key:
            return None
        return PointDistribution.query.filter_by(idempotency_key=key).first()

    def query(self, account_id: int, role: str = 'either') -> List[PointDistribution]:
        """
        Completed entries touching an account, oldest first.

        Args:
            account_id: Account to scan
            role: 'from' (debits), 'to' (credits) or 'either'
        """
        if role not in QUERY_ROLES:
            raise ValidationError(f"role must be one of {', '.join(QUERY_ROLES)}", field='role')

        q = PointDistribution.query.filter(
            PointDistribution.status == DistributionStatus.COMPLETED.value
        )
        if role == 'from':
            q = q.filter(PointDistribution.from_account_id == account_id)
        elif role == 'to':
            q = q.filter(PointDistribution.to_account_id == account_id)
        else:
            q = q.filter(or_(
                PointDistribution.from_account_id == account_id,
                PointDistribution.to_account_id == account_id,
            ))

        return q.order_by(PointDistribution.created_at.asc(), PointDistribution.id.asc()).all()

    def completed_of_type(self, distribution_type: str, since: datetime = None) -> List[PointDistribution]:
        """Completed entries of one type, oldest first. Used by cascade replay."""
        q = PointDistribution.query.filter(
            PointDistribution.status == DistributionStatus.COMPLETED.value,
            PointDistribution.distribution_type == distribution_type,
        )
        if since:
            q = q.filter(PointDistribution.created_at >= since)
        return q.order_by(PointDistribution.created_at.asc(), PointDistribution.id.asc()).all()

    def mark_completed(self, entry: PointDistribution) -> PointDistribution:
        self._transition(entry, DistributionStatus.COMPLETED.value)
        entry.completed_at = datetime.utcnow()
        return entry

    def mark_failed(self, entry: PointDistribution) -> PointDistribution:
        self._transition(entry, DistributionStatus.FAILED.value)
        return entry

    def _transition(self, entry: PointDistribution, target: str) -> None:
        if entry.status != DistributionStatus.PENDING.value:
            raise InvalidState('distribution', entry.status, target)
        entry.status = target
