# Overview: Service-layer operations for the audit trail; independent, best-effort write path.

"""
Audit Trail Service

WHY: Every mutating ledger action must be attributable (actor, IP, user
agent, before/after) for compliance review.

INVARIANTS:
- Append-only. No updates or deletes.
- Written AFTER the financial commit, on its own commit. An audit failure
  is logged and swallowed; it never undoes or blocks money movement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow


# Action codes
COMMISSION_RATE_UPDATED = "COMMISSION_RATE_UPDATED"
PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
ESCROW_RELEASED = "ESCROW_RELEASED"
ESCROW_FLAGS_UPDATED = "ESCROW_FLAGS_UPDATED"
CHECKOUT_STARTED = "CHECKOUT_STARTED"
CHECKOUT_CONFIRMED = "CHECKOUT_CONFIRMED"
PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
PAYOUT_CANCELLED = "PAYOUT_CANCELLED"
PAYOUT_APPROVED = "PAYOUT_APPROVED"
PAYOUT_REJECTED = "PAYOUT_REJECTED"
PAYOUT_PROCESSED = "PAYOUT_PROCESSED"
PAYOUT_EXECUTION_FAILED = "PAYOUT_EXECUTION_FAILED"


@dataclass(frozen=True)
class RequestContext:
    """Client details captured by the route for the audit trail."""
    ip_address: str | None = None
    user_agent: str | None = None


def emit(
    *,
    action: str,
    entity_type: str,
    entity_id,
    actor_user_id: int | None,
    before: dict | None = None,
    after: dict | None = None,
    note: str | None = None,
    context: RequestContext | None = None,
) -> AuditEvent | None:
    """
    Append an audit record on its own commit.

    Returns the event, or None when the write failed (already logged).
    """
    context = context or RequestContext()
    event = AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        actor_user_id=actor_user_id,
        before=before,
        after=after,
        note=note,
        ip_address=context.ip_address,
        user_agent=(context.user_agent or "")[:255] or None,
        occurred_at=utcnow(),
    )
    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to write audit event %s for %s %s", action, entity_type, entity_id)
        return None
    return event


def list_events(
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id=None,
    actor_user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Query of audit events, newest first. Callers paginate."""
    query = db.session.query(AuditEvent)
    if action:
        query = query.filter(AuditEvent.action == action)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == str(entity_id))
    if actor_user_id is not None:
        query = query.filter(AuditEvent.actor_user_id == actor_user_id)
    if start is not None:
        query = query.filter(AuditEvent.occurred_at >= start)
    if end is not None:
        query = query.filter(AuditEvent.occurred_at <= end)
    return query.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
