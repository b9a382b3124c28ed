"""
Audit trail of emitted notification events.
"""
import json
from datetime import datetime
from typing import Dict, Any
from ..extensions import db


class AuditEvent(db.Model):
    """One emitted event (points_received, global_number_assigned, ...)."""
    __tablename__ = 'audit_events'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id'))
    event_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.Text)  # JSON
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_audit_events_account_created', 'account_id', 'created_at'),
        db.Index('ix_audit_events_type', 'event_type'),
    )

    def __repr__(self):
        return f'<AuditEvent {self.event_type} account={self.account_id}>'

    def to_dict(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self.payload) if self.payload else {}
        except (TypeError, ValueError):
            payload = {}
        return {
            'id': self.id,
            'account_id': self.account_id,
            'event_type': self.event_type,
            'payload': payload,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
