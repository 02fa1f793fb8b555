from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Application(db.Model):
    """
    Read model of a rental application, owned by the applications service.

    The ledger only consumes the parties, the property, and the fee amount.
    landlord_id is copied onto every PaymentEntry at record time so earnings
    aggregation never has to join back through applications.
    """
    __tablename__ = "applications"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    landlord_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    property_id = db.Column(db.Integer, nullable=True, index=True)
    property_title = db.Column(db.String(255), nullable=True)

    # Minor units
    application_fee_amount = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    client = db.relationship("User", foreign_keys=[client_id])
    landlord = db.relationship("User", foreign_keys=[landlord_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "landlord_id": self.landlord_id,
            "property_id": self.property_id,
            "property_title": self.property_title,
            "application_fee_amount": self.application_fee_amount,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
        }
