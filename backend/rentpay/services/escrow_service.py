# Overview: Service-layer operations for escrow; releases held rent and applies late-release interest.

"""
Escrow Controller

WHY: Rent is held by the platform until an admin releases it to the
landlord. A release later than ESCROW_HOLD_DAYS after the hold began costs
the landlord daily interest on the gross amount.

RULES:
- held -> released exactly once (conditional update on escrow_status=held).
- interest = round_half_up(amount * daily_rate * (days_held - hold_days))
  when days_held > hold_days, capped so landlord_net_amount never goes
  negative.
- No funds move on release; the entry simply becomes payout-eligible.
- property_visited / documents_received are informational and never gate
  release.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..errors import AuthorizationError, ConflictError, ValidationError
from ..extensions import db
from ..models import PaymentEntry, User
from ..money import to_rate, round_half_up
from ..states import EscrowStatus, PaymentStatus, Role, ESCROW_TRANSITIONS, sources_for
from ..time_utils import utcnow
from . import audit_service
from .concurrency import conditional_update, run_with_retry
from .ledger_service import get_payment


def days_held(held_at: datetime, now: datetime) -> int:
    """Whole days elapsed, floored."""
    if held_at is None or now <= held_at:
        return 0
    return (now - held_at).days


def compute_interest(entry: PaymentEntry, now: datetime, *, hold_days: int = 10, daily_rate="0.02") -> int:
    """Late-release interest for entry if released at now. Pure."""
    overdue_days = days_held(entry.escrow_held_at, now) - hold_days
    if overdue_days <= 0:
        return 0
    interest = round_half_up(Decimal(entry.amount) * to_rate(daily_rate) * overdue_days)
    return min(interest, entry.amount - entry.commission_amount)


def _policy() -> tuple[int, str]:
    return (
        int(current_app.config.get("ESCROW_HOLD_DAYS", 10)),
        current_app.config.get("ESCROW_DAILY_INTEREST_RATE", "0.02"),
    )


def release_escrow(
    payment_id: int,
    actor_id: int,
    context: audit_service.RequestContext | None = None,
) -> PaymentEntry:
    """
    Release held rent to the landlord's balance.

    Raises:
        NotFoundError: unknown payment
        ConflictError: not an escrowed, completed, still-held payment
    """
    hold_days, daily_rate = _policy()

    def _op():
        entry = get_payment(payment_id)
        if not entry.is_escrow:
            raise ConflictError(f"Payment {payment_id} is not held in escrow")
        if entry.status != PaymentStatus.COMPLETED.value:
            raise ConflictError(f"Payment {payment_id} is {entry.status}; only completed payments can be released")
        if entry.escrow_status != EscrowStatus.HELD.value:
            raise ConflictError(f"Escrow for payment {payment_id} is already {entry.escrow_status}")

        before = entry.to_dict()
        now = utcnow()
        interest = compute_interest(entry, now, hold_days=hold_days, daily_rate=daily_rate)

        updated = conditional_update(
            PaymentEntry,
            [
                PaymentEntry.id == entry.id,
                PaymentEntry.status == PaymentStatus.COMPLETED.value,
                PaymentEntry.escrow_status.in_(sources_for(ESCROW_TRANSITIONS, EscrowStatus.RELEASED)),
            ],
            {
                PaymentEntry.escrow_status: EscrowStatus.RELEASED.value,
                PaymentEntry.escrow_released_at: now,
                PaymentEntry.escrow_released_by_user_id: actor_id,
                PaymentEntry.escrow_interest: interest,
                PaymentEntry.landlord_net_amount: entry.amount - entry.commission_amount - interest,
            },
        )
        if updated == 0:
            db.session.rollback()
            raise ConflictError(f"Escrow for payment {payment_id} was already released")
        db.session.commit()
        db.session.refresh(entry)
        return entry, before

    entry, before = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.ESCROW_RELEASED,
        entity_type="payment",
        entity_id=entry.id,
        actor_user_id=actor_id,
        before=before,
        after=entry.to_dict(),
        note=f"interest={entry.escrow_interest}",
        context=context,
    )
    return entry


def update_escrow_flags(
    payment_id: int,
    actor: User,
    property_visited: bool | None = None,
    documents_received: bool | None = None,
    context: audit_service.RequestContext | None = None,
) -> PaymentEntry:
    """
    Set the informational flags on an escrowed payment.

    Raises:
        AuthorizationError: actor is neither the payer nor an admin
        ValidationError: no flag given, or a non-boolean value
        ConflictError: payment is not escrowed
    """
    if property_visited is None and documents_received is None:
        raise ValidationError("Provide property_visited and/or documents_received")
    for name, value in (("property_visited", property_visited), ("documents_received", documents_received)):
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"{name} must be a boolean")

    entry = get_payment(payment_id)
    if actor.role != Role.ADMIN.value and entry.payer_user_id != actor.id:
        raise AuthorizationError("Only the payer or an admin can update escrow flags")
    if not entry.is_escrow:
        raise ConflictError(f"Payment {payment_id} is not held in escrow")

    before = entry.to_dict()
    if property_visited is not None:
        entry.property_visited = property_visited
    if documents_received is not None:
        entry.documents_received = documents_received
    db.session.commit()

    audit_service.emit(
        action=audit_service.ESCROW_FLAGS_UPDATED,
        entity_type="payment",
        entity_id=entry.id,
        actor_user_id=actor.id,
        before=before,
        after=entry.to_dict(),
        context=context,
    )
    return entry


def list_overdue_escrow(now: datetime | None = None) -> list[PaymentEntry]:
    """Completed rent still held past its expiry, oldest hold first."""
    now = now or utcnow()
    return (
        db.session.query(PaymentEntry)
        .filter(
            PaymentEntry.is_escrow.is_(True),
            PaymentEntry.status == PaymentStatus.COMPLETED.value,
            PaymentEntry.escrow_status == EscrowStatus.HELD.value,
            PaymentEntry.escrow_expires_at < now,
        )
        .order_by(PaymentEntry.escrow_held_at.asc(), PaymentEntry.id.asc())
        .all()
    )
