"""
Point generation requests: a local admin asks the global admin for points.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Any
from ..extensions import db


class GenerationRequestStatus(str, Enum):
    """Request lifecycle. approved and rejected are terminal."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class PointGenerationRequest(db.Model):
    """A local admin's request to be funded by the global admin."""
    __tablename__ = 'point_generation_requests'

    id = db.Column(db.Integer, primary_key=True)
    requester_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    requester_country = db.Column(db.String(64))
    points_requested = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default=GenerationRequestStatus.PENDING.value)

    # Review
    reviewed_by = db.Column(db.Integer, db.ForeignKey('accounts.id'))
    reviewed_at = db.Column(db.DateTime)
    review_note = db.Column(db.String(500))

    # Ledger entry created on approval
    distribution_id = db.Column(db.Integer, db.ForeignKey('point_distributions.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    requester = db.relationship('Account', foreign_keys=[requester_id])
    reviewer = db.relationship('Account', foreign_keys=[reviewed_by])

    __table_args__ = (
        db.Index('ix_point_generation_requests_status', 'status'),
        db.Index('ix_point_generation_requests_requester', 'requester_id'),
    )

    def __repr__(self):
        return f'<PointGenerationRequest {self.id} {self.points_requested} pts {self.status}>'

    @property
    def is_pending(self) -> bool:
        return self.status == GenerationRequestStatus.PENDING.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'requester_id': self.requester_id,
            'requester_country': self.requester_country,
            'points_requested': self.points_requested,
            'reason': self.reason,
            'status': self.status,
            'reviewed_by': self.reviewed_by,
            'reviewed_at': self.reviewed_at.isoformat() if self.reviewed_at else None,
            'review_note': self.review_note,
            'distribution_id': self.distribution_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
