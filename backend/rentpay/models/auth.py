from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Marketplace principal as seen by the ledger.

    WHY: Every ledger mutation must be attributable. Profiles, passwords and
    KYC document handling live with the user service; the ledger only needs
    identity, role, and whether the account may transact.

    ROLES:
    - admin: reviews payouts, releases escrow, changes the commission rate
    - landlord: receives earnings, requests payouts
    - client: pays application fees and rent
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(16), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Synced from the KYC service; gates payouts when PAYOUT_REQUIRE_KYC is on
    kyc_verified = db.Column(db.Boolean, nullable=False, default=False)
    kyc_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "kyc_verified": self.kyc_verified,
            "kyc_verified_at": to_utc_z(self.kyc_verified_at),
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Hashed bearer tokens issued by the auth service.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute timeout (SESSION_TTL_HOURS)
    - Revocable
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
