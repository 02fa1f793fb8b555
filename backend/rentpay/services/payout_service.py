# Overview: Service-layer operations for payouts; request, claim entries, review, and execute transfers.

"""
Payout Workflow Service

WHY: A landlord withdraws earnings by requesting a payout. The request must
be funded by specific ledger entries, and no entry may ever fund two
withdrawals.

STATE MACHINE (PAYOUT_TRANSITIONS):
    pending -> approved -> processed
    pending | approved -> rejected      (claimed entries released)

ALLOCATION:
- Eligible entries (completed, not held, unallocated) are walked oldest
  first. Each is claimed with UPDATE ... WHERE allocated_to_payout = false.
  A lost claim is skipped and the walk continues, re-querying when the
  snapshot runs out, until the claimed net total covers the request.
- All claims and the request row commit together. If the amount cannot be
  covered, the whole transaction rolls back.
- The request's amount is the claimed total (whole entries, never split),
  so it may exceed requested_amount.

EXECUTION:
- process() first marks execution_started_at (approved only). reject() and
  cancel() refuse while the marker is set.
- The external transfer runs outside any transaction. Stripe transfers use
  idempotency key "payout-<id>", so a retried process() cannot pay twice.
- Success: conditional approved -> processed. Failure: request stays
  approved, marker cleared, failure recorded, ExternalServiceError raised.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import AuthorizationError, ConflictError, ExternalServiceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import PaymentEntry, PayoutRequest, User
from ..money import is_minor_amount
from ..states import (
    EscrowStatus, PaymentStatus, PayoutMethod, PayoutStatus, Role,
    PAYOUT_TRANSITIONS, sources_for,
)
from ..time_utils import utcnow
from . import account_service, audit_service
from .concurrency import conditional_update, run_with_retry
from .gateways import GatewayError, get_transfer_gateway

CANCELLED_BY_LANDLORD = "Cancelled by landlord"

REQUIRED_BANK_FIELDS = ("bank_name", "account_name", "account_number")

# An execution marker older than this is treated as abandoned
EXECUTION_LEASE = timedelta(minutes=15)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_request(request_id: int) -> PayoutRequest:
    payout = db.session.get(PayoutRequest, request_id)
    if not payout:
        raise NotFoundError(f"Payout request {request_id} not found")
    return payout


def get_request_for(user: User, request_id: int) -> PayoutRequest:
    """Owner or admin only."""
    payout = get_request(request_id)
    if user.role != Role.ADMIN.value and payout.landlord_id != user.id:
        raise AuthorizationError("Not authorized to view this payout request")
    return payout


def list_requests(landlord_id: int, status: str | None = None) -> list[PayoutRequest]:
    query = db.session.query(PayoutRequest).filter(PayoutRequest.landlord_id == landlord_id)
    if status:
        query = query.filter(PayoutRequest.status == _validate_status(status).value)
    return query.order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc()).all()


def list_pending() -> list[PayoutRequest]:
    return (
        db.session.query(PayoutRequest)
        .filter(PayoutRequest.status == PayoutStatus.PENDING.value)
        .order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())
        .all()
    )


def history_query(
    *,
    status: str | None = None,
    landlord_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Admin history, newest first. Callers paginate."""
    query = db.session.query(PayoutRequest)
    if status:
        query = query.filter(PayoutRequest.status == _validate_status(status).value)
    if landlord_id is not None:
        query = query.filter(PayoutRequest.landlord_id == landlord_id)
    if start is not None:
        query = query.filter(PayoutRequest.requested_at >= start)
    if end is not None:
        query = query.filter(PayoutRequest.requested_at <= end)
    return query.order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())


def _validate_status(status) -> PayoutStatus:
    try:
        return PayoutStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid status: {status}. Must be one of {[s.value for s in PayoutStatus]}")


# =============================================================================
# REQUEST
# =============================================================================

def _validate_method(method, bank_details, stripe_account_id) -> PayoutMethod:
    try:
        method = PayoutMethod(method)
    except ValueError:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {[m.value for m in PayoutMethod]}")

    if method == PayoutMethod.BANK_TRANSFER:
        if not isinstance(bank_details, dict):
            raise ValidationError("bank_details are required for bank transfer payouts")
        missing = [f for f in REQUIRED_BANK_FIELDS if not str(bank_details.get(f) or "").strip()]
        if missing:
            raise ValidationError(f"bank_details missing: {', '.join(missing)}")
    elif not (stripe_account_id or "").strip():
        raise ValidationError("stripe_account_id is required for Stripe Connect payouts")
    return method


def _claim(entry_id: int, payout_id: int, now: datetime) -> bool:
    """Conditional claim of one entry; False when another request got it first."""
    return conditional_update(
        PaymentEntry,
        [
            PaymentEntry.id == entry_id,
            PaymentEntry.allocated_to_payout.is_(False),
            PaymentEntry.status == PaymentStatus.COMPLETED.value,
            or_(
                PaymentEntry.is_escrow.is_(False),
                PaymentEntry.escrow_status == EscrowStatus.RELEASED.value,
            ),
        ],
        {
            PaymentEntry.allocated_to_payout: True,
            PaymentEntry.payout_request_id: payout_id,
            PaymentEntry.payout_allocated_at: now,
        },
    ) == 1


def _release_entries(payout_id: int) -> int:
    return conditional_update(
        PaymentEntry,
        [PaymentEntry.payout_request_id == payout_id],
        {
            PaymentEntry.allocated_to_payout: False,
            PaymentEntry.payout_request_id: None,
            PaymentEntry.payout_allocated_at: None,
        },
    )


def create_request(
    landlord_id: int,
    amount: int,
    method,
    bank_details: dict | None = None,
    stripe_account_id: str | None = None,
    context: audit_service.RequestContext | None = None,
) -> PayoutRequest:
    """
    Create a pending payout request funded by the landlord's oldest eligible entries.

    Entries are claimed whole, oldest first, until their net covers the
    requested amount. The request's amount is the sum of the claimed nets,
    so it can exceed requested_amount, and the available balance drops by
    that larger figure. Example: three entries netting 60000 each and a
    request for 100000 claim two entries; amount is 120000.

    Raises:
        ValidationError: bad amount/method/details, below minimum, KYC
            required, or amount above the available balance
        NotFoundError: unknown landlord
        ConflictError: entries were claimed concurrently and the amount can
            no longer be covered
    """
    if not is_minor_amount(amount) or amount <= 0:
        raise ValidationError("Payout amount must be a positive integer in minor units")
    method = _validate_method(method, bank_details, stripe_account_id)

    minimum = int(current_app.config.get("PAYOUT_MINIMUM_AMOUNT", 0) or 0)
    if minimum and amount < minimum:
        raise ValidationError(f"Minimum payout amount is {minimum}")

    landlord = account_service.get_landlord(landlord_id)
    if current_app.config.get("PAYOUT_REQUIRE_KYC") and not landlord.kyc_verified:
        raise ValidationError("KYC verification required")

    currency = current_app.config.get("DEFAULT_CURRENCY", "NGN").upper()

    def _op():
        available = account_service.available_balance(landlord_id, currency)
        if amount > available:
            raise ValidationError(f"Insufficient available balance. Available: {available}, requested: {amount}")

        now = utcnow()
        payout = PayoutRequest(
            landlord_id=landlord_id,
            requested_amount=amount,
            amount=amount,
            currency=currency,
            payment_method=method.value,
            bank_details=bank_details if method == PayoutMethod.BANK_TRANSFER else None,
            stripe_account_id=stripe_account_id if method == PayoutMethod.STRIPE_CONNECT else None,
            status=PayoutStatus.PENDING.value,
            related_payment_ids=[],
            requested_at=now,
            failure_count=0,
        )
        db.session.add(payout)
        db.session.flush()

        claimed: list[int] = []
        total = 0
        seen: set[int] = set()
        while total < amount:
            candidates = account_service.eligible_entries(landlord_id, currency, exclude_ids=seen)
            if not candidates:
                break
            for entry in candidates:
                seen.add(entry.id)
                if _claim(entry.id, payout.id, now):
                    claimed.append(entry.id)
                    total += entry.landlord_net_amount
                    if total >= amount:
                        break

        if total < amount:
            db.session.rollback()
            raise ConflictError("Available balance changed while claiming payments; please retry")

        payout.amount = total
        payout.related_payment_ids = claimed
        db.session.commit()
        return payout

    payout = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.PAYOUT_REQUESTED,
        entity_type="payout_request",
        entity_id=payout.id,
        actor_user_id=landlord_id,
        after=payout.to_dict(),
        context=context,
    )
    return payout


# =============================================================================
# REVIEW
# =============================================================================

def _transition(payout_id: int, target: PayoutStatus, values: dict, extra_criteria=()) -> int:
    values = dict(values)
    values[PayoutRequest.status] = target.value
    return conditional_update(
        PayoutRequest,
        [
            PayoutRequest.id == payout_id,
            PayoutRequest.status.in_(sources_for(PAYOUT_TRANSITIONS, target)),
            *extra_criteria,
        ],
        values,
    )


def _refuse(payout: PayoutRequest, action: str):
    db.session.rollback()
    db.session.refresh(payout)
    if payout.execution_started_at is not None and payout.status == PayoutStatus.APPROVED.value:
        raise ConflictError(f"Cannot {action} payout request {payout.id}: a transfer is in progress")
    raise ConflictError(f"Cannot {action} payout request {payout.id} in status {payout.status}")


def cancel(
    request_id: int,
    landlord_id: int,
    context: audit_service.RequestContext | None = None,
) -> PayoutRequest:
    """
    Landlord withdraws their own pending request; claimed entries are released.

    Raises:
        AuthorizationError: not the requesting landlord
        ConflictError: request no longer pending
    """
    def _op():
        payout = get_request(request_id)
        if payout.landlord_id != landlord_id:
            raise AuthorizationError("Only the requesting landlord can cancel this payout request")
        if payout.status != PayoutStatus.PENDING.value:
            raise ConflictError(f"Only pending payout requests can be cancelled (status is {payout.status})")

        before = payout.to_dict()
        updated = conditional_update(
            PayoutRequest,
            [
                PayoutRequest.id == payout.id,
                PayoutRequest.status == PayoutStatus.PENDING.value,
                PayoutRequest.execution_started_at.is_(None),
            ],
            {
                PayoutRequest.status: PayoutStatus.REJECTED.value,
                PayoutRequest.rejection_reason: CANCELLED_BY_LANDLORD,
                PayoutRequest.reviewed_at: utcnow(),
            },
        )
        if updated == 0:
            _refuse(payout, "cancel")
        _release_entries(payout.id)
        db.session.commit()
        db.session.refresh(payout)
        return payout, before

    payout, before = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.PAYOUT_CANCELLED,
        entity_type="payout_request",
        entity_id=payout.id,
        actor_user_id=landlord_id,
        before=before,
        after=payout.to_dict(),
        note=CANCELLED_BY_LANDLORD,
        context=context,
    )
    return payout


def approve(
    request_id: int,
    admin_id: int,
    notes: str | None = None,
    context: audit_service.RequestContext | None = None,
) -> PayoutRequest:
    """pending -> approved."""
    def _op():
        payout = get_request(request_id)
        before = payout.to_dict()
        updated = _transition(payout.id, PayoutStatus.APPROVED, {
            PayoutRequest.reviewed_by_user_id: admin_id,
            PayoutRequest.reviewed_at: utcnow(),
            PayoutRequest.admin_notes: notes,
        })
        if updated == 0:
            _refuse(payout, "approve")
        db.session.commit()
        db.session.refresh(payout)
        return payout, before

    payout, before = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.PAYOUT_APPROVED,
        entity_type="payout_request",
        entity_id=payout.id,
        actor_user_id=admin_id,
        before=before,
        after=payout.to_dict(),
        note=notes,
        context=context,
    )
    return payout


def reject(
    request_id: int,
    admin_id: int,
    reason: str,
    notes: str | None = None,
    context: audit_service.RequestContext | None = None,
) -> PayoutRequest:
    """
    pending | approved -> rejected; claimed entries are released.

    Raises:
        ValidationError: empty reason
        ConflictError: terminal status, or a transfer is in progress
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    def _op():
        payout = get_request(request_id)
        before = payout.to_dict()
        updated = _transition(
            payout.id,
            PayoutStatus.REJECTED,
            {
                PayoutRequest.reviewed_by_user_id: admin_id,
                PayoutRequest.reviewed_at: utcnow(),
                PayoutRequest.admin_notes: notes,
                PayoutRequest.rejection_reason: reason[:500],
            },
            extra_criteria=(PayoutRequest.execution_started_at.is_(None),),
        )
        if updated == 0:
            _refuse(payout, "reject")
        _release_entries(payout.id)
        db.session.commit()
        db.session.refresh(payout)
        return payout, before

    payout, before = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.PAYOUT_REJECTED,
        entity_type="payout_request",
        entity_id=payout.id,
        actor_user_id=admin_id,
        before=before,
        after=payout.to_dict(),
        note=reason,
        context=context,
    )
    return payout


# =============================================================================
# EXECUTION
# =============================================================================

def _start_execution(payout: PayoutRequest) -> None:
    now = utcnow()
    updated = conditional_update(
        PayoutRequest,
        [
            PayoutRequest.id == payout.id,
            PayoutRequest.status == PayoutStatus.APPROVED.value,
            or_(
                PayoutRequest.execution_started_at.is_(None),
                PayoutRequest.execution_started_at < now - EXECUTION_LEASE,
            ),
        ],
        {PayoutRequest.execution_started_at: now},
    )
    if updated == 0:
        _refuse(payout, "process")
    db.session.commit()


def _record_failure(payout_id: int, reason: str) -> None:
    conditional_update(
        PayoutRequest,
        [PayoutRequest.id == payout_id, PayoutRequest.status == PayoutStatus.APPROVED.value],
        {
            PayoutRequest.execution_started_at: None,
            PayoutRequest.last_failure_reason: reason[:500],
            PayoutRequest.failure_count: PayoutRequest.failure_count + 1,
        },
    )
    db.session.commit()


def _execute_transfer(payout: PayoutRequest, transfer_id: str | None) -> str:
    """Method-specific execution. Runs outside any open transaction."""
    if payout.payment_method == PayoutMethod.BANK_TRANSFER.value:
        # Manual bank transfer; the admin supplies the bank reference
        return transfer_id

    gateway = get_transfer_gateway()
    return gateway.transfer(
        payout_request_id=payout.id,
        amount=payout.amount,
        currency=payout.currency,
        destination=payout.stripe_account_id,
    )


def process(
    request_id: int,
    admin_id: int,
    transfer_id: str | None = None,
    context: audit_service.RequestContext | None = None,
) -> PayoutRequest:
    """
    Execute an approved payout and mark it processed.

    Raises:
        ValidationError: bank transfer without a transfer reference, or a
            reference already used by another payout
        ConflictError: not approved (including already processed), or a
            transfer for this request is already in flight
        ExternalServiceError: the transfer failed; request stays approved
    """
    payout = get_request(request_id)
    if payout.status == PayoutStatus.PROCESSED.value:
        raise ConflictError(f"Payout request {payout.id} has already been processed")
    if payout.status != PayoutStatus.APPROVED.value:
        raise ConflictError(f"Payout request must be approved before processing (status is {payout.status})")

    transfer_id = (transfer_id or "").strip() or None
    if payout.payment_method == PayoutMethod.BANK_TRANSFER.value:
        if not transfer_id:
            raise ValidationError("transfer_id (bank reference) is required for bank transfer payouts")
        clash = db.session.query(PayoutRequest.id).filter(
            PayoutRequest.transfer_id == transfer_id,
            PayoutRequest.id != payout.id,
        ).first()
        if clash:
            raise ValidationError(f"Transfer reference {transfer_id} is already recorded on another payout")

    before = payout.to_dict()
    _start_execution(payout)

    try:
        executed_id = _execute_transfer(payout, transfer_id)
    except GatewayError as e:
        current_app.logger.warning("Payout %s transfer failed: %s", payout.id, e)
        _record_failure(payout.id, str(e))
        audit_service.emit(
            action=audit_service.PAYOUT_EXECUTION_FAILED,
            entity_type="payout_request",
            entity_id=payout.id,
            actor_user_id=admin_id,
            note=str(e)[:500],
            context=context,
        )
        raise ExternalServiceError(f"Transfer failed: {e}")

    now = utcnow()
    try:
        updated = _transition(payout.id, PayoutStatus.PROCESSED, {
            PayoutRequest.transfer_id: executed_id,
            PayoutRequest.processed_at: now,
            PayoutRequest.processed_by_user_id: admin_id,
            PayoutRequest.execution_started_at: None,
        })
        if updated == 0:
            db.session.rollback()
            raise ConflictError(f"Payout request {payout.id} changed state during execution")
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        _record_failure(payout.id, f"Duplicate transfer reference {executed_id}")
        raise ValidationError(f"Transfer reference {executed_id} is already recorded on another payout")

    db.session.refresh(payout)
    current_app.logger.info(
        "Payout %s processed via %s (transfer %s, amount %s %s)",
        payout.id, payout.payment_method, payout.transfer_id, payout.amount, payout.currency,
    )

    audit_service.emit(
        action=audit_service.PAYOUT_PROCESSED,
        entity_type="payout_request",
        entity_id=payout.id,
        actor_user_id=admin_id,
        before=before,
        after=payout.to_dict(),
        context=context,
    )
    return payout
