"""
Point generation request workflow.

    pending -> approved   (global admin transfers the points to the requester)
    pending -> rejected   (no ledger side effect)

Terminal states are final. Approval is all-or-nothing: if the global admin
cannot fund the request the engine raises InsufficientBalance and the
request stays pending.
"""
from datetime import datetime
from typing import Optional, List
from flask import current_app

from ..extensions import db
from ..models.account import Account, AccountRole
from ..models.ledger import DistributionType
from ..models.generation_request import PointGenerationRequest, GenerationRequestStatus
from ..utils.exceptions import (
    ValidationError,
    AccountNotFound,
    AuthorizationError,
    InvalidState,
)
from .distribution_engine import DistributionEngine


class GenerationRequestService:
    """Create, list and resolve PointGenerationRequests."""

    def __init__(self, engine: DistributionEngine = None):
        self.engine = engine or DistributionEngine()

    @property
    def notifier(self):
        return self.engine.notifier

    def request_generation(self, requester_id: int, points_requested: int, reason: str = None) -> PointGenerationRequest:
        requester = self._account(requester_id)
        if requester.role != AccountRole.LOCAL_ADMIN.value:
            raise AuthorizationError('Only local admins can request point generation')
        if isinstance(points_requested, bool) or not isinstance(points_requested, int) or points_requested <= 0:
            raise ValidationError('Points must be a positive integer', field='points')

        request = PointGenerationRequest(
            requester_id=requester.id,
            requester_country=requester.country,
            points_requested=points_requested,
            reason=reason,
            status=GenerationRequestStatus.PENDING.value,
        )
        db.session.add(request)
        db.session.commit()

        current_app.logger.info(
            f"Generation request {request.id}: {points_requested} pts by local admin {requester.id}"
        )
        return request

    def approve(self, request_id: int, reviewer_id: int, note: str = None) -> PointGenerationRequest:
        """
        Approve a pending request and fund the requester.

        The transfer and the status change commit together while the request
        row is still locked, so a concurrent reject either waits and finds it
        approved, or wins and this approval fails with InvalidState. The
        transfer uses the idempotency key 'generation-request:<id>'.
        """
        reviewer = self._reviewer(reviewer_id)
        request = self._locked_pending(request_id, GenerationRequestStatus.APPROVED.value)

        try:
            entry = self.engine.transfer(
                reviewer.id,
                request.requester_id,
                request.points_requested,
                description=f'Approved generation request #{request_id}',
                distribution_type=DistributionType.ADMIN_TO_ADMIN.value,
                idempotency_key=f'generation-request:{request_id}',
                created_by=str(reviewer.id),
                commit=False,
            )

            request.status = GenerationRequestStatus.APPROVED.value
            request.reviewed_by = reviewer.id
            request.reviewed_at = datetime.utcnow()
            request.review_note = note
            request.distribution_id = entry.id
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        self.engine.notify_transfer(entry)

        current_app.logger.info(f"Generation request {request_id} approved by {reviewer.id}")
        self.notifier.emit(request.requester_id, 'generation_request_approved', {
            'request_id': request_id,
            'points': request.points_requested,
            'distribution_id': entry.id,
        })
        return request

    def reject(self, request_id: int, reviewer_id: int, note: str = None) -> PointGenerationRequest:
        reviewer = self._reviewer(reviewer_id)
        request = self._locked_pending(request_id, GenerationRequestStatus.REJECTED.value)

        request.status = GenerationRequestStatus.REJECTED.value
        request.reviewed_by = reviewer.id
        request.reviewed_at = datetime.utcnow()
        request.review_note = note
        db.session.commit()

        current_app.logger.info(f"Generation request {request_id} rejected by {reviewer.id}")
        self.notifier.emit(request.requester_id, 'generation_request_rejected', {
            'request_id': request_id,
            'points': request.points_requested,
            'note': note,
        })
        return request

    def list_requests(self, status: str = None, requester_id: int = None) -> List[PointGenerationRequest]:
        q = PointGenerationRequest.query
        if status:
            valid = [s.value for s in GenerationRequestStatus]
            if status not in valid:
                raise ValidationError(f"status must be one of {', '.join(valid)}", field='status')
            q = q.filter_by(status=status)
        if requester_id is not None:
            q = q.filter_by(requester_id=requester_id)
        return q.order_by(PointGenerationRequest.created_at.desc(), PointGenerationRequest.id.desc()).all()

    def get(self, request_id: int) -> Optional[PointGenerationRequest]:
        return db.session.get(PointGenerationRequest, request_id)

    # ==================== Internals ====================

    def _account(self, account_id: int) -> Account:
        account = db.session.get(Account, account_id)
        if not account:
            raise AccountNotFound(account_id)
        return account

    def _reviewer(self, reviewer_id: int) -> Account:
        reviewer = self._account(reviewer_id)
        if reviewer.role != AccountRole.GLOBAL_ADMIN.value:
            raise AuthorizationError('Only the global admin can review generation requests')
        return reviewer

    def _locked_pending(self, request_id: int, target: str) -> PointGenerationRequest:
        request = PointGenerationRequest.query.filter_by(id=request_id).with_for_update().populate_existing().first()
        if not request:
            raise AccountNotFound(request_id, resource='Generation request')
        if not request.is_pending:
            current_status = request.status
            db.session.rollback()
            raise InvalidState('generation request', current_status, target)
        return request
