from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PaymentEntry(db.Model):
    """
    One money movement: an application fee or a rent payment.

    WHY: The ledger is the only source of truth for landlord earnings.
    Balances are always recomputed from these rows.

    MONEY: amount, commission_amount, escrow_interest and landlord_net_amount
    are integer minor units. commission_rate is stamped at creation and never
    rewritten, even when the platform rate changes.

    IDEMPOTENCY: external_reference (the gateway checkout session id) is
    unique. A duplicate webhook insert loses on this constraint.

    ALLOCATION: payout_request_id is the live back-reference to the payout
    request that claimed this entry. It is set by a conditional update
    guarded on allocated_to_payout = false.
    """
    __tablename__ = "payment_entries"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payment_entries_amount_positive"),
        db.CheckConstraint(
            "landlord_net_amount + commission_amount + escrow_interest = amount",
            name="ck_payment_entries_net_balance",
        ),
        db.CheckConstraint("escrow_interest >= 0", name="ck_payment_entries_interest_nonneg"),
        db.CheckConstraint(
            "(is_escrow AND escrow_status IS NOT NULL) OR (NOT is_escrow AND escrow_status IS NULL)",
            name="ck_payment_entries_escrow_status",
        ),
        db.CheckConstraint(
            "(allocated_to_payout AND payout_request_id IS NOT NULL) "
            "OR (NOT allocated_to_payout AND payout_request_id IS NULL)",
            name="ck_payment_entries_allocation",
        ),
        db.Index("ix_payment_entries_landlord_status", "landlord_id", "status"),
        db.Index("ix_payment_entries_eligible", "landlord_id", "allocated_to_payout", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    application_id = db.Column(db.Integer, db.ForeignKey("applications.id"), nullable=False, index=True)
    payer_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    landlord_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    # PaymentStatus / PaymentKind values
    status = db.Column(db.String(16), nullable=False, index=True)
    kind = db.Column(db.String(24), nullable=False, index=True)

    # Escrow (rent only)
    is_escrow = db.Column(db.Boolean, nullable=False, default=False)
    escrow_status = db.Column(db.String(16), nullable=True, index=True)
    escrow_held_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    escrow_interest = db.Column(db.Integer, nullable=False, default=0)

    # Informational only; release is an admin decision
    property_visited = db.Column(db.Boolean, nullable=False, default=False)
    documents_received = db.Column(db.Boolean, nullable=False, default=False)

    commission_rate = db.Column(db.Numeric(7, 6), nullable=False)
    commission_amount = db.Column(db.Integer, nullable=False)
    landlord_net_amount = db.Column(db.Integer, nullable=False)

    external_reference = db.Column(db.String(255), nullable=False, unique=True, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    failure_reason = db.Column(db.String(500), nullable=True)
    failure_code = db.Column(db.String(100), nullable=True)

    refund_amount = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(500), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    allocated_to_payout = db.Column(db.Boolean, nullable=False, default=False, index=True)
    payout_request_id = db.Column(db.Integer, db.ForeignKey("payout_requests.id"), nullable=True, index=True)
    payout_allocated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    description = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    application = db.relationship("Application")
    payer = db.relationship("User", foreign_keys=[payer_user_id])
    landlord = db.relationship("User", foreign_keys=[landlord_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "payer_user_id": self.payer_user_id,
            "landlord_id": self.landlord_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "kind": self.kind,
            "is_escrow": self.is_escrow,
            "escrow_status": self.escrow_status,
            "escrow_held_at": to_utc_z(self.escrow_held_at),
            "escrow_expires_at": to_utc_z(self.escrow_expires_at),
            "escrow_released_at": to_utc_z(self.escrow_released_at),
            "escrow_released_by": self.escrow_released_by_user_id,
            "escrow_interest": self.escrow_interest,
            "property_visited": self.property_visited,
            "documents_received": self.documents_received,
            "commission_rate": float(self.commission_rate),
            "commission_amount": self.commission_amount,
            "landlord_net_amount": self.landlord_net_amount,
            "external_reference": self.external_reference,
            "payment_intent_id": self.payment_intent_id,
            "failure_reason": self.failure_reason,
            "failure_code": self.failure_code,
            "refund_amount": self.refund_amount,
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at),
            "refunded_by": self.refunded_by_user_id,
            "allocated_to_payout": self.allocated_to_payout,
            "payout_request_id": self.payout_request_id,
            "payout_allocated_at": to_utc_z(self.payout_allocated_at),
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
