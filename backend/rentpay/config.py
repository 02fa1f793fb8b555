# backend/rentpay/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/rentpay.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///rentpay.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateway (Stripe)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", "300"))
    CHECKOUT_SUCCESS_URL = os.environ.get(
        "CHECKOUT_SUCCESS_URL",
        "http://localhost:3000/payment/success?session_id={CHECKOUT_SESSION_ID}",
    )
    CHECKOUT_CANCEL_URL = os.environ.get("CHECKOUT_CANCEL_URL", "http://localhost:3000/payment/cancel")

    # Ledger policy
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "NGN")
    DEFAULT_COMMISSION_RATE = os.environ.get("DEFAULT_COMMISSION_RATE", "0.10")
    ESCROW_HOLD_DAYS = int(os.environ.get("ESCROW_HOLD_DAYS", "10"))
    ESCROW_DAILY_INTEREST_RATE = os.environ.get("ESCROW_DAILY_INTEREST_RATE", "0.02")

    # Payout policy (0 disables the minimum)
    PAYOUT_MINIMUM_AMOUNT = int(os.environ.get("PAYOUT_MINIMUM_AMOUNT", "0"))
    PAYOUT_REQUIRE_KYC = _env_bool("PAYOUT_REQUIRE_KYC", False)

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Injected gateways (None -> Stripe-backed implementations)
    TRANSFER_GATEWAY = None
    CHECKOUT_GATEWAY = None
