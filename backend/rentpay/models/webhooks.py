from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class WebhookEvent(db.Model):
    """Processed gateway events, keyed by the gateway's event id."""
    __tablename__ = "webhook_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(100), nullable=False)

    # processed | ignored | skipped
    outcome = db.Column(db.String(16), nullable=False)
    detail = db.Column(db.String(500), nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "outcome": self.outcome,
            "detail": self.detail,
            "received_at": to_utc_z(self.received_at),
        }
