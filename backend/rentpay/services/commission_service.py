# Overview: Service-layer operations for the commission rate register; current rate, history, reporting.

"""
Commission Rate Register

WHY: The platform takes a percentage of every payment. The rate changes over
time, but each payment keeps the rate that was in effect when it was
recorded, so history must be preserved and past entries never rewritten.

DESIGN:
- One current-rate row (id=1), created with DEFAULT_COMMISSION_RATE on first
  read. A concurrent first read loses the insert on the primary key and
  re-reads the winner.
- Rate updates bump an optimistic version; a concurrent update raises
  StaleDataError and is retried by run_with_retry.
- Every update appends a CommissionRateChange carrying the prior rate.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import CommissionRate, CommissionRateChange, PaymentEntry, User
from ..models.commission import CURRENT_RATE_ID
from ..money import to_rate, apply_rate, is_minor_amount
from ..states import PaymentStatus
from ..time_utils import utcnow, to_utc_z
from . import audit_service
from .concurrency import run_with_retry


def _default_rate() -> Decimal:
    return to_rate(current_app.config.get("DEFAULT_COMMISSION_RATE", "0.10"))


def get_current() -> CommissionRate:
    """Current rate row, created with the configured default on first read."""
    current = db.session.get(CommissionRate, CURRENT_RATE_ID)
    if current is not None:
        return current

    current = CommissionRate(
        id=CURRENT_RATE_ID,
        rate=_default_rate(),
        effective_from=utcnow(),
        change_reason="Default platform commission rate",
    )
    db.session.add(current)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created it first
        db.session.rollback()
        current = db.session.get(CommissionRate, CURRENT_RATE_ID)
    return current


def get_current_rate() -> Decimal:
    return Decimal(get_current().rate)


def validate_rate(value) -> Decimal:
    try:
        rate = to_rate(value)
    except ValueError:
        raise ValidationError("Commission rate must be a number between 0 and 1")
    if rate < 0 or rate > 1:
        raise ValidationError("Commission rate must be between 0 and 1")
    return rate


def update_rate(
    new_rate,
    actor_id: int,
    reason: str,
    context: audit_service.RequestContext | None = None,
) -> CommissionRate:
    """
    Set a new platform commission rate.

    Raises:
        ValidationError: rate outside [0, 1] or empty reason
    """
    rate = validate_rate(new_rate)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to change the commission rate")

    def _op():
        current = get_current()
        previous_rate = Decimal(current.rate)
        before = current.to_dict()
        now = utcnow()

        current.rate = rate
        current.effective_from = now
        current.last_updated_by_user_id = actor_id
        current.last_updated_at = now
        current.change_reason = reason

        db.session.add(CommissionRateChange(
            rate=rate,
            previous_rate=previous_rate,
            reason=reason,
            changed_by_user_id=actor_id,
            changed_at=now,
        ))
        db.session.commit()
        return current, before

    current, before = run_with_retry(_op)

    audit_service.emit(
        action=audit_service.COMMISSION_RATE_UPDATED,
        entity_type="commission_rate",
        entity_id=current.id,
        actor_user_id=actor_id,
        before=before,
        after=current.to_dict(),
        note=reason,
        context=context,
    )
    return current


def get_history(start: datetime | None = None, end: datetime | None = None) -> list[CommissionRateChange]:
    """Rate changes ordered by changed_at ascending; bounds are inclusive."""
    query = db.session.query(CommissionRateChange)
    if start is not None:
        query = query.filter(CommissionRateChange.changed_at >= start)
    if end is not None:
        query = query.filter(CommissionRateChange.changed_at <= end)
    return query.order_by(CommissionRateChange.changed_at.asc(), CommissionRateChange.id.asc()).all()


def calculate_commission(amount: int, rate) -> int:
    """round_half_up(amount * rate) in minor units."""
    if not is_minor_amount(amount) or amount < 0:
        raise ValidationError("Amount must be a non-negative integer in minor units")
    return apply_rate(amount, validate_rate(rate))


# =============================================================================
# REPORTING
# =============================================================================

def _commission_query(start: datetime | None, end: datetime | None):
    query = db.session.query(PaymentEntry).filter(
        PaymentEntry.status == PaymentStatus.COMPLETED.value,
        PaymentEntry.commission_amount > 0,
    )
    if start is not None:
        query = query.filter(PaymentEntry.created_at >= start)
    if end is not None:
        query = query.filter(PaymentEntry.created_at <= end)
    return query


def total_commission_collected(start: datetime | None = None, end: datetime | None = None) -> int:
    total = (
        _commission_query(start, end)
        .with_entities(db.func.coalesce(db.func.sum(PaymentEntry.commission_amount), 0))
        .scalar()
    )
    return int(total or 0)


def commission_stats(start: datetime | None = None, end: datetime | None = None) -> dict:
    """Totals, per-landlord breakdown (largest first), and per-month breakdown."""
    by_landlord_rows = (
        _commission_query(start, end)
        .join(User, User.id == PaymentEntry.landlord_id)
        .with_entities(
            PaymentEntry.landlord_id,
            User.full_name,
            User.email,
            db.func.sum(PaymentEntry.commission_amount),
            db.func.sum(PaymentEntry.amount),
            db.func.count(PaymentEntry.id),
        )
        .group_by(PaymentEntry.landlord_id, User.full_name, User.email)
        .all()
    )
    by_landlord = [
        {
            "landlord_id": landlord_id,
            "landlord_name": name,
            "landlord_email": email,
            "total_commission": int(commission or 0),
            "total_gross": int(gross or 0),
            "payment_count": int(count),
        }
        for landlord_id, name, email, commission, gross, count in by_landlord_rows
    ]
    by_landlord.sort(key=lambda row: row["total_commission"], reverse=True)

    # Month bucketing done here; strftime/date_trunc differ per dialect
    monthly: dict[tuple[int, int], dict] = {}
    rows = _commission_query(start, end).with_entities(
        PaymentEntry.created_at, PaymentEntry.commission_amount, PaymentEntry.amount
    )
    for created_at, commission, gross in rows:
        key = (created_at.year, created_at.month)
        bucket = monthly.setdefault(key, {
            "year": key[0],
            "month": key[1],
            "total_commission": 0,
            "total_gross": 0,
            "payment_count": 0,
        })
        bucket["total_commission"] += commission
        bucket["total_gross"] += gross
        bucket["payment_count"] += 1

    return {
        "total_commission": total_commission_collected(start, end),
        "commission_by_landlord": by_landlord,
        "monthly_breakdown": [monthly[key] for key in sorted(monthly)],
        "period": {"start": to_utc_z(start), "end": to_utc_z(end)},
    }


REPORT_COLUMNS = [
    ("payment_id", "Payment ID"),
    ("date", "Date"),
    ("landlord_id", "Landlord ID"),
    ("landlord_name", "Landlord Name"),
    ("landlord_email", "Landlord Email"),
    ("client_id", "Client ID"),
    ("client_name", "Client Name"),
    ("gross_amount", "Gross Amount"),
    ("commission_rate", "Commission Rate"),
    ("commission_amount", "Commission Amount"),
    ("net_amount", "Net Amount"),
    ("currency", "Currency"),
    ("status", "Status"),
]


def commission_report(start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    """One row per commissioned payment, newest first."""
    entries = _commission_query(start, end).order_by(PaymentEntry.created_at.desc(), PaymentEntry.id.desc()).all()
    report = []
    for entry in entries:
        landlord = entry.landlord
        payer = entry.payer
        report.append({
            "payment_id": entry.id,
            "date": to_utc_z(entry.created_at),
            "landlord_id": entry.landlord_id,
            "landlord_name": landlord.full_name if landlord else None,
            "landlord_email": landlord.email if landlord else None,
            "client_id": entry.payer_user_id,
            "client_name": payer.full_name if payer else None,
            "gross_amount": entry.amount,
            "commission_rate": float(entry.commission_rate),
            "commission_amount": entry.commission_amount,
            "net_amount": entry.landlord_net_amount,
            "currency": entry.currency,
            "status": entry.status,
        })
    return report


def report_to_csv(report: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([label for _, label in REPORT_COLUMNS])
    for row in report:
        writer.writerow(["" if row.get(key) is None else row.get(key) for key, _ in REPORT_COLUMNS])
    return buffer.getvalue()
