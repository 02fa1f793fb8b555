from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PayoutRequest(db.Model):
    """
    Landlord withdrawal request.

    LIFECYCLE:
    pending -> approved -> processed
    pending | approved -> rejected (entries deallocated)

    related_payment_ids is the snapshot of entries claimed at creation and is
    never rewritten. The live link is PaymentEntry.payout_request_id, which is
    cleared again on rejection.

    EXECUTION: execution_started_at is set while a transfer is in flight so a
    racing reject is refused. A failed transfer clears it and bumps
    failure_count; the request stays approved and retryable.
    """
    __tablename__ = "payout_requests"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payout_requests_amount_positive"),
        db.CheckConstraint("amount >= requested_amount", name="ck_payout_requests_covers_request"),
        db.Index("ix_payout_requests_landlord_status", "landlord_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    landlord_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    requested_amount = db.Column(db.Integer, nullable=False)
    # Sum of landlord_net_amount over the claimed entries
    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    payment_method = db.Column(db.String(24), nullable=False)
    bank_details = db.Column(db.JSON, nullable=True)
    stripe_account_id = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, index=True)
    related_payment_ids = db.Column(db.JSON, nullable=False, default=list)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_notes = db.Column(db.String(1000), nullable=True)
    rejection_reason = db.Column(db.String(500), nullable=True)

    transfer_id = db.Column(db.String(255), nullable=True, unique=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    execution_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_failure_reason = db.Column(db.String(500), nullable=True)
    failure_count = db.Column(db.Integer, nullable=False, default=0)

    landlord = db.relationship("User", foreign_keys=[landlord_id])
    entries = db.relationship("PaymentEntry", backref="payout_request", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "landlord_id": self.landlord_id,
            "requested_amount": self.requested_amount,
            "amount": self.amount,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "bank_details": self.bank_details,
            "stripe_account_id": self.stripe_account_id,
            "status": self.status,
            "related_payments": list(self.related_payment_ids or []),
            "requested_at": to_utc_z(self.requested_at),
            "reviewed_by": self.reviewed_by_user_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "admin_notes": self.admin_notes,
            "rejection_reason": self.rejection_reason,
            "transfer_id": self.transfer_id,
            "processed_at": to_utc_z(self.processed_at),
            "processed_by": self.processed_by_user_id,
            "execution_in_progress": self.execution_started_at is not None,
            "last_failure_reason": self.last_failure_reason,
            "failure_count": self.failure_count,
        }
