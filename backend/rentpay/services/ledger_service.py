# Overview: Service-layer operations for the payment ledger; records, confirms, fails and refunds payments.

"""
Payment Ledger Service

WHY: Every money movement (application fee or rent) is one PaymentEntry.
Landlord balances, commission totals and payout claims are all computed
from these rows, so writes here must be exactly-once and never rewrite
what was stamped at creation.

INVARIANTS:
- external_reference is unique; recording the same reference twice yields
  one entry (the loser of a concurrent insert returns the winner's row).
- commission_rate is stamped from the register at creation and never changed.
- landlord_net_amount + commission_amount + escrow_interest == amount.
- Rent entries are escrowed: completed rent starts escrow_status=held.
- Status moves only along PAYMENT_TRANSITIONS, each as a conditional update.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError, NotFoundError, ConflictError
from ..extensions import db
from ..models import Application, PaymentEntry
from ..money import is_minor_amount
from ..states import PaymentKind, PaymentStatus, EscrowStatus, PAYMENT_TRANSITIONS, sources_for
from ..time_utils import utcnow
from . import audit_service, commission_service
from .concurrency import conditional_update, run_with_retry


# =============================================================================
# VALIDATION
# =============================================================================

def _validate_kind(kind) -> PaymentKind:
    try:
        return PaymentKind(kind)
    except ValueError:
        raise ValidationError(f"Invalid payment kind: {kind}. Must be one of {[k.value for k in PaymentKind]}")


def _validate_amount(amount) -> int:
    if not is_minor_amount(amount) or amount <= 0:
        raise ValidationError("Amount must be a positive integer in minor units")
    return amount


def _normalize_currency(currency: str | None) -> str:
    value = (currency or current_app.config.get("DEFAULT_CURRENCY", "NGN")).strip().upper()
    if len(value) != 3 or not value.isalpha():
        raise ValidationError(f"Invalid currency: {currency}")
    return value


def load_application(application_id: int) -> Application:
    application = db.session.get(Application, application_id)
    if not application:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def get_by_reference(external_reference: str) -> PaymentEntry | None:
    return db.session.query(PaymentEntry).filter_by(external_reference=external_reference).first()


def get_payment(payment_id: int) -> PaymentEntry:
    entry = db.session.get(PaymentEntry, payment_id)
    if not entry:
        raise NotFoundError(f"Payment {payment_id} not found")
    return entry


def _escrow_window(now: datetime) -> tuple[datetime, datetime]:
    hold_days = int(current_app.config.get("ESCROW_HOLD_DAYS", 10))
    return now, now + timedelta(days=hold_days)


# =============================================================================
# RECORDING
# =============================================================================

def _new_entry(
    *,
    status: PaymentStatus,
    external_reference: str,
    application: Application,
    payer_user_id: int,
    amount: int,
    currency: str,
    kind: PaymentKind,
    payment_intent_id: str | None,
    description: str | None,
) -> PaymentEntry:
    rate = commission_service.get_current_rate()
    commission = commission_service.calculate_commission(amount, rate)
    now = utcnow()

    is_escrow = kind == PaymentKind.RENT
    entry = PaymentEntry(
        application_id=application.id,
        payer_user_id=payer_user_id,
        landlord_id=application.landlord_id,
        amount=amount,
        currency=currency,
        status=status.value,
        kind=kind.value,
        is_escrow=is_escrow,
        escrow_status=EscrowStatus.HELD.value if is_escrow else None,
        escrow_interest=0,
        commission_rate=rate,
        commission_amount=commission,
        landlord_net_amount=amount - commission,
        external_reference=external_reference,
        payment_intent_id=payment_intent_id,
        allocated_to_payout=False,
        description=description,
        created_at=now,
    )
    if status == PaymentStatus.COMPLETED:
        entry.completed_at = now
        if is_escrow:
            entry.escrow_held_at, entry.escrow_expires_at = _escrow_window(now)
    return entry


def _insert_idempotent(entry: PaymentEntry) -> tuple[PaymentEntry, bool]:
    """Insert or, on a unique-reference collision, return the existing row."""
    db.session.add(entry)
    try:
        db.session.commit()
        return entry, True
    except IntegrityError:
        db.session.rollback()
        winner = get_by_reference(entry.external_reference)
        if winner is None:
            raise
        return winner, False


def _complete_pending(entry: PaymentEntry, payment_intent_id: str | None = None) -> bool:
    """Conditional pending -> completed; stamps escrow hold for rent."""
    now = utcnow()
    values = {
        PaymentEntry.status: PaymentStatus.COMPLETED.value,
        PaymentEntry.completed_at: now,
    }
    if entry.is_escrow:
        held_at, expires_at = _escrow_window(now)
        values[PaymentEntry.escrow_held_at] = held_at
        values[PaymentEntry.escrow_expires_at] = expires_at
    if payment_intent_id and not entry.payment_intent_id:
        values[PaymentEntry.payment_intent_id] = payment_intent_id

    updated = conditional_update(
        PaymentEntry,
        [
            PaymentEntry.id == entry.id,
            PaymentEntry.status.in_(sources_for(PAYMENT_TRANSITIONS, PaymentStatus.COMPLETED)),
        ],
        values,
    )
    db.session.commit()
    db.session.refresh(entry)
    return updated == 1


def record_confirmed_payment(
    external_reference: str,
    application_id: int,
    payer_user_id: int,
    amount: int,
    currency: str | None,
    kind,
    payment_intent_id: str | None = None,
    description: str | None = None,
) -> PaymentEntry:
    """
    Record a gateway-confirmed payment exactly once.

    - Existing completed/failed/refunded entry with this reference: returned unchanged.
    - Existing pending entry (checkout initiated here): confirmed in place,
      keeping the commission stamped at initiation.
    - Otherwise a new completed entry stamped with the current rate.

    Raises:
        ValidationError: bad amount, kind, currency or reference
        NotFoundError: unknown application
    """
    if not external_reference:
        raise ValidationError("external_reference is required")
    kind = _validate_kind(kind)
    amount = _validate_amount(amount)
    currency = _normalize_currency(currency)

    def _op():
        existing = get_by_reference(external_reference)
        if existing is None:
            application = load_application(application_id)
            entry = _new_entry(
                status=PaymentStatus.COMPLETED,
                external_reference=external_reference,
                application=application,
                payer_user_id=payer_user_id,
                amount=amount,
                currency=currency,
                kind=kind,
                payment_intent_id=payment_intent_id,
                description=description,
            )
            entry, created = _insert_idempotent(entry)
            if created:
                return entry
            existing = entry

        if existing.status == PaymentStatus.PENDING.value:
            _complete_pending(existing, payment_intent_id)
        return existing

    return run_with_retry(_op)


def record_pending_payment(
    external_reference: str,
    application_id: int,
    payer_user_id: int,
    amount: int,
    currency: str | None,
    kind,
    description: str | None = None,
) -> PaymentEntry:
    """Checkout initiation. Idempotent on external_reference."""
    if not external_reference:
        raise ValidationError("external_reference is required")
    kind = _validate_kind(kind)
    amount = _validate_amount(amount)
    currency = _normalize_currency(currency)

    def _op():
        existing = get_by_reference(external_reference)
        if existing is not None:
            return existing
        application = load_application(application_id)
        entry = _new_entry(
            status=PaymentStatus.PENDING,
            external_reference=external_reference,
            application=application,
            payer_user_id=payer_user_id,
            amount=amount,
            currency=currency,
            kind=kind,
            payment_intent_id=None,
            description=description,
        )
        entry, _ = _insert_idempotent(entry)
        return entry

    return run_with_retry(_op)


# =============================================================================
# GATEWAY STATUS UPDATES
# =============================================================================

def confirm_payment_intent(payment_intent_id: str) -> PaymentEntry | None:
    """pending -> completed keyed by intent id. No-op if unknown or already past pending."""
    if not payment_intent_id:
        return None

    def _op():
        entry = db.session.query(PaymentEntry).filter_by(payment_intent_id=payment_intent_id).first()
        if entry is None:
            return None
        if entry.status == PaymentStatus.PENDING.value:
            _complete_pending(entry)
        elif entry.status != PaymentStatus.COMPLETED.value:
            current_app.logger.warning(
                "Ignoring success for payment %s in status %s", entry.id, entry.status
            )
        return entry

    return run_with_retry(_op)


def mark_failed(reference: str, reason: str | None, code: str | None = None) -> PaymentEntry | None:
    """
    pending -> failed, keyed by external reference or payment intent id.

    Returns None for an unknown reference. A repeated failure for an already
    failed entry returns it unchanged.

    Raises:
        ConflictError: entry already completed or refunded
    """
    if not reference:
        return None

    def _op():
        entry = (
            db.session.query(PaymentEntry)
            .filter(or_(
                PaymentEntry.external_reference == reference,
                PaymentEntry.payment_intent_id == reference,
            ))
            .first()
        )
        if entry is None:
            return None

        updated = conditional_update(
            PaymentEntry,
            [
                PaymentEntry.id == entry.id,
                PaymentEntry.status.in_(sources_for(PAYMENT_TRANSITIONS, PaymentStatus.FAILED)),
            ],
            {
                PaymentEntry.status: PaymentStatus.FAILED.value,
                PaymentEntry.failure_reason: (reason or "Payment failed")[:500],
                PaymentEntry.failure_code: code,
            },
        )
        db.session.commit()
        db.session.refresh(entry)

        if updated == 0 and entry.status != PaymentStatus.FAILED.value:
            raise ConflictError(f"Payment {entry.id} is {entry.status}; cannot mark failed")
        return entry

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def mark_refunded(
    payment_id: int,
    refund_amount: int,
    reason: str,
    actor_id: int,
    context: audit_service.RequestContext | None = None,
) -> PaymentEntry:
    """
    completed -> refunded.

    Raises:
        ValidationError: refund_amount not in (0, amount], or empty reason
        ConflictError: entry not completed, or already claimed by a payout
    """
    if not is_minor_amount(refund_amount) or refund_amount <= 0:
        raise ValidationError("Refund amount must be a positive integer in minor units")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A refund reason is required")

    def _op():
        entry = get_payment(payment_id)
        if refund_amount > entry.amount:
            raise ValidationError("Refund amount cannot exceed the payment amount")
        if entry.status != PaymentStatus.COMPLETED.value:
            raise ConflictError(f"Only completed payments can be refunded (status is {entry.status})")
        if entry.allocated_to_payout:
            raise ConflictError("Payment is allocated to a payout request and cannot be refunded")

        before = entry.to_dict()
        updated = conditional_update(
            PaymentEntry,
            [
                PaymentEntry.id == entry.id,
                PaymentEntry.status.in_(sources_for(PAYMENT_TRANSITIONS, PaymentStatus.REFUNDED)),
                PaymentEntry.allocated_to_payout.is_(False),
            ],
            {
                PaymentEntry.status: PaymentStatus.REFUNDED.value,
                PaymentEntry.refund_amount: refund_amount,
                PaymentEntry.refund_reason: reason[:500],
                PaymentEntry.refunded_at: utcnow(),
                PaymentEntry.refunded_by_user_id: actor_id,
            },
        )
        if updated == 0:
            db.session.rollback()
            raise ConflictError("Payment changed state before the refund could be recorded")
        db.session.commit()
        db.session.refresh(entry)
        return entry, before

    entry, before = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.PAYMENT_REFUNDED,
        entity_type="payment",
        entity_id=entry.id,
        actor_user_id=actor_id,
        before=before,
        after=entry.to_dict(),
        note=reason,
        context=context,
    )
    return entry


# =============================================================================
# QUERIES
# =============================================================================

def _apply_filters(query, *, status=None, kind=None, start=None, end=None):
    if status:
        try:
            query = query.filter(PaymentEntry.status == PaymentStatus(status).value)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
    if kind:
        query = query.filter(PaymentEntry.kind == _validate_kind(kind).value)
    if start is not None:
        query = query.filter(PaymentEntry.created_at >= start)
    if end is not None:
        query = query.filter(PaymentEntry.created_at <= end)
    return query


def landlord_payments_query(
    landlord_id: int,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    kind: str | None = None,
):
    query = db.session.query(PaymentEntry).filter(PaymentEntry.landlord_id == landlord_id)
    query = _apply_filters(query, status=status, kind=kind, start=start, end=end)
    return query.order_by(PaymentEntry.created_at.desc(), PaymentEntry.id.desc())


def list_for_landlord(
    landlord_id: int,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    kind: str | None = None,
) -> list[PaymentEntry]:
    return landlord_payments_query(landlord_id, status=status, start=start, end=end, kind=kind).all()


def list_payments(
    *,
    status: str | None = None,
    kind: str | None = None,
    landlord_id: int | None = None,
    payer_user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Admin query over all entries, newest first. Callers paginate."""
    query = db.session.query(PaymentEntry)
    if landlord_id is not None:
        query = query.filter(PaymentEntry.landlord_id == landlord_id)
    if payer_user_id is not None:
        query = query.filter(PaymentEntry.payer_user_id == payer_user_id)
    query = _apply_filters(query, status=status, kind=kind, start=start, end=end)
    return query.order_by(PaymentEntry.created_at.desc(), PaymentEntry.id.desc())
