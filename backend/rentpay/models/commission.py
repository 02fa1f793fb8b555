from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z

CURRENT_RATE_ID = 1


class CommissionRate(db.Model):
    """
    Current platform commission rate (singleton row, id=1).

    WHY: Every PaymentEntry stamps the rate in effect at creation time, so
    the register only ever needs "the rate now". The past lives in
    CommissionRateChange.

    Optimistic locking (version_id) serializes concurrent admin updates.
    """
    __tablename__ = "commission_rates"
    __table_args__ = (
        db.CheckConstraint("rate >= 0 AND rate <= 1", name="ck_commission_rates_range"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Fraction 0-1
    rate = db.Column(db.Numeric(7, 6), nullable=False)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False)

    last_updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    last_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    change_reason = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    last_updated_by = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "commission_rate": float(self.rate),
            "effective_from": to_utc_z(self.effective_from),
            "last_updated_by": self.last_updated_by_user_id,
            "last_updated_at": to_utc_z(self.last_updated_at),
            "change_reason": self.change_reason,
        }


class CommissionRateChange(db.Model):
    """
    Append-only history of commission rate changes.

    IMMUTABLE: Records are never updated or deleted. The ORM refuses both
    (see listeners below).
    """
    __tablename__ = "commission_rate_changes"
    __table_args__ = (
        db.Index("ix_commission_rate_changes_changed_at", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rate = db.Column(db.Numeric(7, 6), nullable=False)
    previous_rate = db.Column(db.Numeric(7, 6), nullable=False)
    reason = db.Column(db.String(500), nullable=False)

    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    changed_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rate": float(self.rate),
            "previous_rate": float(self.previous_rate),
            "reason": self.reason,
            "changed_by": self.changed_by_user_id,
            "changed_at": to_utc_z(self.changed_at),
        }


class ImmutableRecordError(RuntimeError):
    pass


@event.listens_for(CommissionRateChange, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise ImmutableRecordError("Commission rate history is append-only")


@event.listens_for(CommissionRateChange, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise ImmutableRecordError("Commission rate history is append-only")
