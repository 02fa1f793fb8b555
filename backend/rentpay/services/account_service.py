# Overview: Service-layer read operations for landlord accounts; balances and earnings derived from the ledger.

"""
Landlord Account & Earnings Aggregator

WHY: A stored balance can drift from the entries that justify it. Every
figure here is recomputed from PaymentEntry (and PayoutRequest) rows on
each read. Nothing in this module writes.

BALANCES (single currency, DEFAULT_CURRENCY unless asked):
- available_balance: net of completed, non-held, unallocated entries
- escrow_held_balance: net of completed rent still held in escrow
- in_payout_balance: net of entries claimed by pending/approved requests
- total_paid_out: amount of processed payout requests
- lifetime totals: gross / commission / net over all completed entries
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFoundError
from ..extensions import db
from ..models import PaymentEntry, PayoutRequest, User
from ..states import EscrowStatus, PaymentStatus, PayoutStatus, Role
from ..time_utils import to_utc_z


@dataclass
class LandlordBalance:
    landlord_id: int
    currency: str
    available_balance: int
    escrow_held_balance: int
    in_payout_balance: int
    total_paid_out: int
    total_gross_earnings: int
    total_commission_paid: int
    total_net_earnings: int
    kyc_verified: bool

    def to_dict(self) -> dict:
        return asdict(self)


def get_landlord(landlord_id: int) -> User:
    user = db.session.get(User, landlord_id)
    if not user or user.role != Role.LANDLORD.value:
        raise NotFoundError(f"Landlord {landlord_id} not found")
    return user


def _currency(currency: str | None) -> str:
    return (currency or current_app.config.get("DEFAULT_CURRENCY", "NGN")).upper()


def _completed(landlord_id: int, currency: str):
    return db.session.query(PaymentEntry).filter(
        PaymentEntry.landlord_id == landlord_id,
        PaymentEntry.currency == currency,
        PaymentEntry.status == PaymentStatus.COMPLETED.value,
    )


def _not_held():
    return or_(
        PaymentEntry.is_escrow.is_(False),
        PaymentEntry.escrow_status == EscrowStatus.RELEASED.value,
    )


def _sum(query, column) -> int:
    return int(query.with_entities(db.func.coalesce(db.func.sum(column), 0)).scalar() or 0)


def eligible_query(landlord_id: int, currency: str | None = None):
    """Completed, non-held, unallocated entries, oldest first."""
    return (
        _completed(landlord_id, _currency(currency))
        .filter(_not_held(), PaymentEntry.allocated_to_payout.is_(False))
        .order_by(PaymentEntry.created_at.asc(), PaymentEntry.id.asc())
    )


def eligible_entries(landlord_id: int, currency: str | None = None, exclude_ids=()) -> list[PaymentEntry]:
    query = eligible_query(landlord_id, currency)
    if exclude_ids:
        query = query.filter(PaymentEntry.id.notin_(list(exclude_ids)))
    return query.all()


def available_balance(landlord_id: int, currency: str | None = None) -> int:
    return _sum(eligible_query(landlord_id, currency).order_by(None), PaymentEntry.landlord_net_amount)


def get_balance(landlord_id: int, currency: str | None = None) -> LandlordBalance:
    landlord = get_landlord(landlord_id)
    currency = _currency(currency)
    completed = _completed(landlord_id, currency)

    in_payout = _sum(
        completed.join(PayoutRequest, PayoutRequest.id == PaymentEntry.payout_request_id).filter(
            PaymentEntry.allocated_to_payout.is_(True),
            PayoutRequest.status.in_([PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value]),
        ),
        PaymentEntry.landlord_net_amount,
    )
    paid_out = _sum(
        db.session.query(PayoutRequest).filter(
            PayoutRequest.landlord_id == landlord_id,
            PayoutRequest.currency == currency,
            PayoutRequest.status == PayoutStatus.PROCESSED.value,
        ),
        PayoutRequest.amount,
    )

    return LandlordBalance(
        landlord_id=landlord_id,
        currency=currency,
        available_balance=available_balance(landlord_id, currency),
        escrow_held_balance=_sum(
            completed.filter(PaymentEntry.escrow_status == EscrowStatus.HELD.value),
            PaymentEntry.landlord_net_amount,
        ),
        in_payout_balance=in_payout,
        total_paid_out=paid_out,
        total_gross_earnings=_sum(completed, PaymentEntry.amount),
        total_commission_paid=_sum(completed, PaymentEntry.commission_amount),
        total_net_earnings=_sum(completed, PaymentEntry.landlord_net_amount),
        kyc_verified=bool(landlord.kyc_verified),
    )


def line_item(entry: PaymentEntry) -> dict:
    return {
        "id": entry.id,
        "application_id": entry.application_id,
        "kind": entry.kind,
        "amount": entry.amount,
        "commission_rate": float(entry.commission_rate),
        "commission_amount": entry.commission_amount,
        "escrow_interest": entry.escrow_interest,
        "net_amount": entry.landlord_net_amount,
        "currency": entry.currency,
        "escrow_status": entry.escrow_status,
        "allocated_to_payout": entry.allocated_to_payout,
        "payout_request_id": entry.payout_request_id,
        "date": to_utc_z(entry.created_at),
    }


def get_earnings_breakdown(
    landlord_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    currency: str | None = None,
) -> dict:
    """Totals plus one line item per completed payment in [start, end]."""
    get_landlord(landlord_id)
    query = _completed(landlord_id, _currency(currency))
    if start is not None:
        query = query.filter(PaymentEntry.created_at >= start)
    if end is not None:
        query = query.filter(PaymentEntry.created_at <= end)

    entries = query.order_by(PaymentEntry.created_at.asc(), PaymentEntry.id.asc()).all()
    return {
        "total_gross_earnings": sum(e.amount for e in entries),
        "total_commission_paid": sum(e.commission_amount for e in entries),
        "total_escrow_interest": sum(e.escrow_interest for e in entries),
        "total_net_earnings": sum(e.landlord_net_amount for e in entries),
        "payment_count": len(entries),
        "payments": [line_item(e) for e in entries],
    }
