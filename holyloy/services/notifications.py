"""
Notification port.

Services receive a notifier instead of reaching for a process-wide socket or
event bus. emit() is fire-and-forget: a failed notification is logged and
never fails the operation that produced it.

Event types:
    points_received, points_sent, global_number_assigned, stepup_reward,
    cashback_received, affiliate_commission, ripple_reward, infinity_reward,
    shopping_voucher_issued, generation_request_approved,
    generation_request_rejected, distribution_reversed
"""
import json
import logging
from typing import Dict, Any, Optional

from ..extensions import db
from ..models.audit import AuditEvent

logger = logging.getLogger(__name__)


class NotificationPort:
    """Interface for emitting account events."""

    def emit(self, account_id: Optional[int], event_type: str, payload: Dict[str, Any] = None) -> None:
        raise NotImplementedError


class AuditTrailNotifier(NotificationPort):
    """
    Persist every event as an AuditEvent row and log it.

    Call after the business transaction has committed; the event is written
    and committed on its own.
    """

    def emit(self, account_id: Optional[int], event_type: str, payload: Dict[str, Any] = None) -> None:
        payload = payload or {}
        try:
            db.session.add(AuditEvent(
                account_id=account_id,
                event_type=event_type,
                payload=json.dumps(payload, default=str),
            ))
            db.session.commit()
            logger.info(f"[Notify] {event_type} -> account {account_id}")
        except Exception as e:
            db.session.rollback()
            logger.warning(f"[Notify] failed to record {event_type} for account {account_id}: {e}")
